"""
Test suite for currency module

Tests Money arithmetic, currency definitions, the exchange-rate time series
and display conversion. Money must never lose precision.
"""

import pytest
from decimal import Decimal
from datetime import date

from ledger_core.storage import InMemoryStorage
from ledger_core.audit import AuditTrail, AuditEventType
from ledger_core.currency import (
    Money, CurrencyRegistry, decimal_from_string, fraction_digits, to_decimal, to_fixed_string
)
from ledger_core.errors import (
    DuplicateCurrencyError, ExchangeRateError, InvalidAmountError,
    UnknownCurrencyError
)


@pytest.fixture
def audit_trail():
    return AuditTrail(InMemoryStorage())


@pytest.fixture
def registry(audit_trail):
    registry = CurrencyRegistry(audit_trail.storage, audit_trail, base_currency="USD")
    registry.create_currency("USD", "US Dollar", "$")
    registry.create_currency("EUR", "Euro", "€")
    registry.create_currency("JPY", "Japanese Yen", "¥")
    return registry


class TestMoney:
    """Test Money value object"""

    def test_arithmetic_is_exact(self):
        a = Money(Decimal("0.10"), "USD")
        b = Money(Decimal("0.20"), "USD")
        assert (a + b).amount == Decimal("0.30")
        assert (b - a).amount == Decimal("0.10")
        assert (-a).amount == Decimal("-0.10")
        assert abs(Money(Decimal("-5"), "USD")).amount == Decimal("5")

    def test_string_amount_is_coerced(self):
        assert Money("12.345", "USD").amount == Decimal("12.345")

    def test_mixed_currency_arithmetic_fails(self):
        with pytest.raises(ValueError, match="Cannot add USD and EUR"):
            Money(Decimal("1"), "USD") + Money(Decimal("1"), "EUR")

    def test_comparisons(self):
        small = Money(Decimal("1.00"), "USD")
        large = Money(Decimal("2.00"), "USD")
        assert small < large
        assert small <= small
        assert Money.zero("USD").is_zero()
        assert large.is_positive()
        assert (-large).is_negative()

    def test_round_half_up(self):
        assert Money(Decimal("1.005"), "USD").round_to(2).amount == Decimal("1.01")
        assert Money(Decimal("-1.005"), "USD").round_to(2).amount == Decimal("-1.01")

    def test_to_string(self):
        assert Money(Decimal("5"), "USD").to_string() == "USD 5.00"


class TestFormatting:
    """Test decimal string helpers"""

    def test_to_fixed_string_pads(self):
        assert to_fixed_string(Decimal("500")) == "500.00"
        assert to_fixed_string(Decimal("0")) == "0.00"
        assert to_fixed_string(Decimal("-3.5")) == "-3.50"

    def test_to_fixed_string_never_rounds(self):
        assert to_fixed_string(Decimal("1.2345")) == "1.2345"

    def test_fraction_digits(self):
        assert fraction_digits(Decimal("1.50")) == 1
        assert fraction_digits(Decimal("100")) == 0
        assert fraction_digits(Decimal("0.001")) == 3

    def test_decimal_from_string(self):
        assert decimal_from_string("1234.56") == Decimal("1234.56")
        assert decimal_from_string(" -0.5 ") == Decimal("-0.5")
        assert decimal_from_string("+12.") == Decimal("12")
        assert decimal_from_string(".25") == Decimal("0.25")

    @pytest.mark.parametrize("value", [
        "abc", "", "1e2", "5O0", "1,234.56", "$ 99.99", "12,5", "NaN", "Infinity", "-inf", "1.2.3"
    ])
    def test_decimal_from_string_rejects_non_plain_amounts(self, value):
        with pytest.raises(InvalidAmountError):
            decimal_from_string(value)

    def test_to_decimal_requires_finite_values(self):
        assert to_decimal("1E+2") == Decimal("100")
        assert to_decimal(7) == Decimal("7")
        for value in [Decimal("NaN"), Decimal("Infinity"), "sNaN", "-Infinity"]:
            with pytest.raises(InvalidAmountError, match="finite"):
                to_decimal(value)

    def test_to_decimal_refuses_floats_and_garbage(self):
        with pytest.raises(InvalidAmountError):
            to_decimal(0.1)
        with pytest.raises(InvalidAmountError):
            to_decimal(True)
        with pytest.raises(InvalidAmountError) as exc_info:
            to_decimal("ten", "rate")
        assert exc_info.value.details["field"] == "rate"


class TestCurrencyDefinitions:
    """Test currency registry definitions"""

    def test_create_and_list(self, registry):
        codes = [c.code for c in registry.list_currencies()]
        assert codes == ["EUR", "JPY", "USD"]
        assert registry.get_currency("eur").symbol == "€"

    def test_duplicate_currency(self, registry):
        with pytest.raises(DuplicateCurrencyError):
            registry.create_currency("usd", "Dollar again")

    def test_precision_below_two_rejected(self, registry):
        with pytest.raises(InvalidAmountError, match="precision"):
            registry.create_currency("XXX", "Zero places", precision=0)

    def test_higher_precision_allowed(self, registry):
        currency = registry.create_currency("BTC", "Bitcoin", precision=8)
        assert currency.precision == 8

    def test_update_and_deactivate(self, registry, audit_trail):
        registry.update_currency("EUR", name="Euro (EMU)")
        registry.deactivate_currency("EUR")

        euro = registry.get_currency("EUR")
        assert euro.name == "Euro (EMU)"
        assert not euro.is_active
        assert [c.code for c in registry.list_currencies(active_only=True)] == ["JPY", "USD"]
        assert len(audit_trail.get_events_by_type(AuditEventType.CURRENCY_UPDATED)) == 2

    def test_require_active(self, registry):
        assert registry.require_active("usd").code == "USD"
        with pytest.raises(UnknownCurrencyError):
            registry.require_active("GBP")
        registry.deactivate_currency("JPY")
        with pytest.raises(UnknownCurrencyError, match="inactive"):
            registry.require_active("JPY")

    def test_ensure_currency_is_idempotent(self, registry):
        assert registry.ensure_currency("USD").name == "US Dollar"
        assert registry.ensure_currency("CHF").name == "CHF"


class TestExchangeRates:
    """Test the exchange-rate time series"""

    def test_latest_rate_on_or_before_date(self, registry):
        registry.set_rate("EUR", "USD", Decimal("1.10"), date(2024, 1, 1))
        registry.set_rate("EUR", "USD", Decimal("1.20"), date(2024, 2, 1))

        assert registry.get_rate("EUR", "USD", date(2024, 1, 15)).rate == Decimal("1.10")
        assert registry.get_rate("EUR", "USD", date(2024, 2, 1)).rate == Decimal("1.20")
        assert registry.get_rate("EUR", "USD", date(2023, 12, 31)) is None

    def test_inverse_fallback(self, registry):
        registry.set_rate("EUR", "USD", Decimal("1.25"), date(2024, 1, 1))
        rate = registry.get_rate("USD", "EUR", date(2024, 6, 1))
        assert rate.rate == Decimal("0.8")

    def test_same_currency_rate_is_one(self, registry):
        assert registry.get_rate("USD", "USD").rate == Decimal("1")

    def test_same_date_replaces(self, registry):
        registry.set_rate("EUR", "USD", Decimal("1.10"), date(2024, 1, 1))
        registry.set_rate("EUR", "USD", Decimal("1.11"), date(2024, 1, 1))

        history = registry.get_rate_history("EUR", "USD")
        assert len(history) == 1
        assert history[0].rate == Decimal("1.11")

    def test_earlier_effective_date_rejected(self, registry):
        registry.set_rate("EUR", "USD", Decimal("1.10"), date(2024, 2, 1))
        with pytest.raises(ExchangeRateError, match="earlier"):
            registry.set_rate("EUR", "USD", Decimal("1.05"), date(2024, 1, 1))

    def test_invalid_rates(self, registry):
        with pytest.raises(ExchangeRateError, match="positive"):
            registry.set_rate("EUR", "USD", Decimal("0"), date(2024, 1, 1))
        with pytest.raises(ExchangeRateError, match="different"):
            registry.set_rate("USD", "usd", Decimal("1"), date(2024, 1, 1))
        with pytest.raises(UnknownCurrencyError):
            registry.set_rate("GBP", "USD", Decimal("1.3"), date(2024, 1, 1))

    def test_convert_rounds_to_target_precision(self, registry):
        registry.set_rate("EUR", "USD", Decimal("1.0837"), date(2024, 1, 1))
        converted = registry.convert(Money(Decimal("10.00"), "EUR"), "USD", date(2024, 1, 2))
        assert converted == Money(Decimal("10.84"), "USD")

    def test_convert_without_rate(self, registry):
        with pytest.raises(ExchangeRateError, match="No exchange rate"):
            registry.convert(Money(Decimal("1"), "EUR"), "JPY", date(2024, 1, 1))

    def test_convert_same_currency_is_identity(self, registry):
        money = Money(Decimal("3.333"), "USD")
        assert registry.convert(money, "usd") is money
