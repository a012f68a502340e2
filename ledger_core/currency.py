"""
Multi-Currency Support Module

Currency definitions are configuration data stored alongside the ledger.
Exchange rates form a time series per currency pair keyed by effective date.
All monetary values use Decimal - NEVER float.

The journal never converts between currencies; conversion is only used to
translate reported balances into a reporting currency.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Union
import re

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import (
    DuplicateCurrencyError, ExchangeRateError, InvalidAmountError,
    UnknownCurrencyError
)

# Set global decimal context for financial precision
getcontext().prec = 28

MIN_PRECISION = 2


def to_fixed_string(value: Decimal, places: int = MIN_PRECISION) -> str:
    """
    Render a Decimal with at least ``places`` fraction digits.

    Values carrying more digits keep them; nothing is ever rounded away.
    """
    exponent = value.as_tuple().exponent
    if isinstance(exponent, int) and -exponent > places:
        return f"{value:f}"
    return f"{value.quantize(Decimal(1).scaleb(-places)):f}"


def fraction_digits(value: Decimal) -> int:
    """Number of significant fraction digits (trailing zeros ignored)"""
    normalized = value.normalize()
    exponent = normalized.as_tuple().exponent
    return max(0, -exponent) if isinstance(exponent, int) else 0


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation: exact Decimal amount plus currency code.
    Arithmetic never rounds; rounding happens only on explicit request.
    """
    amount: Decimal
    currency: str

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

    def _check(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency} and {other.currency}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check(other, "compare")
        return self.amount <= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def round_to(self, places: int) -> 'Money':
        """Round half-up to the given number of fraction digits"""
        return Money(
            self.amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP),
            self.currency
        )

    def to_string(self, places: int = MIN_PRECISION) -> str:
        """Format for display"""
        return f"{self.currency} {to_fixed_string(self.amount, places)}"

    @classmethod
    def zero(cls, currency: str) -> 'Money':
        return cls(Decimal('0'), currency)


@dataclass
class Currency(StorageRecord):
    """Currency definition; ``id`` is the ISO code"""
    code: str
    name: str
    symbol: str
    precision: int = MIN_PRECISION
    is_active: bool = True

    def __post_init__(self):
        if self.precision < MIN_PRECISION:
            raise InvalidAmountError(
                f"Currency {self.code} precision must be at least {MIN_PRECISION} fraction digits",
                currency=self.code,
                precision=self.precision
            )

    @classmethod
    def from_dict(cls, data: Dict) -> 'Currency':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            code=data['code'],
            name=data['name'],
            symbol=data['symbol'],
            precision=data.get('precision', MIN_PRECISION),
            is_active=data.get('is_active', True)
        )


@dataclass
class ExchangeRate:
    """Rate to convert one unit of from_currency into to_currency"""
    from_currency: str
    to_currency: str
    rate: Decimal
    effective_date: date

    def __post_init__(self):
        self.rate = to_decimal(self.rate, "rate")

    @property
    def key(self) -> str:
        return f"{self.from_currency}:{self.to_currency}:{self.effective_date.isoformat()}"

    def inverse(self) -> 'ExchangeRate':
        return ExchangeRate(
            from_currency=self.to_currency,
            to_currency=self.from_currency,
            rate=Decimal('1') / self.rate,
            effective_date=self.effective_date
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.key,
            'from_currency': self.from_currency,
            'to_currency': self.to_currency,
            'rate': str(self.rate),
            'effective_date': self.effective_date.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'ExchangeRate':
        return cls(
            from_currency=data['from_currency'],
            to_currency=data['to_currency'],
            rate=Decimal(data['rate']),
            effective_date=date.fromisoformat(data['effective_date'])
        )


class CurrencyRegistry:
    """
    Owns currency definitions and the exchange-rate time series.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        base_currency: str = "USD"
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.base_currency = base_currency
        self.currencies_table = "currencies"
        self.rates_table = "exchange_rates"

    def create_currency(
        self,
        code: str,
        name: str,
        symbol: str = "",
        precision: int = MIN_PRECISION
    ) -> Currency:
        """
        Create a new currency definition

        Raises:
            DuplicateCurrencyError: If the code is already defined
            InvalidAmountError: If precision is below two fraction digits
        """
        code = code.upper()
        if self.storage.exists(self.currencies_table, code):
            raise DuplicateCurrencyError(code)

        now = datetime.now(timezone.utc)
        currency = Currency(
            id=code,
            created_at=now,
            updated_at=now,
            code=code,
            name=name,
            symbol=symbol or code,
            precision=precision
        )
        self.storage.save(self.currencies_table, code, currency.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.CURRENCY_CREATED,
            entity_type="currency",
            entity_id=code,
            metadata={"name": name, "symbol": currency.symbol, "precision": precision}
        )
        return currency

    def ensure_currency(self, code: str, name: Optional[str] = None) -> Currency:
        """Return the currency, creating it with defaults if it does not exist"""
        existing = self.get_currency(code)
        if existing:
            return existing
        return self.create_currency(code, name or code.upper())

    def update_currency(
        self,
        code: str,
        name: Optional[str] = None,
        symbol: Optional[str] = None,
        is_active: Optional[bool] = None
    ) -> Currency:
        """Update display fields or the active flag; the code never changes"""
        currency = self.get_currency(code)
        if not currency:
            raise UnknownCurrencyError(code)

        changes = {}
        if name is not None and name != currency.name:
            changes['name'] = name
            currency.name = name
        if symbol is not None and symbol != currency.symbol:
            changes['symbol'] = symbol
            currency.symbol = symbol
        if is_active is not None and is_active != currency.is_active:
            changes['is_active'] = is_active
            currency.is_active = is_active

        if changes:
            currency.updated_at = datetime.now(timezone.utc)
            self.storage.save(self.currencies_table, currency.code, currency.to_dict())
            self.audit_trail.log_event(
                event_type=AuditEventType.CURRENCY_UPDATED,
                entity_type="currency",
                entity_id=currency.code,
                metadata=changes
            )
        return currency

    def deactivate_currency(self, code: str) -> Currency:
        return self.update_currency(code, is_active=False)

    def get_currency(self, code: str) -> Optional[Currency]:
        data = self.storage.load(self.currencies_table, code.upper())
        return Currency.from_dict(data) if data else None

    def require_active(self, code: str) -> Currency:
        """Return an active currency or raise UnknownCurrencyError"""
        currency = self.get_currency(code)
        if not currency:
            raise UnknownCurrencyError(code)
        if not currency.is_active:
            raise UnknownCurrencyError(code, "is inactive")
        return currency

    def list_currencies(self, active_only: bool = False) -> List[Currency]:
        currencies = [Currency.from_dict(d) for d in self.storage.load_all(self.currencies_table)]
        if active_only:
            currencies = [c for c in currencies if c.is_active]
        return sorted(currencies, key=lambda c: c.code)

    def set_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: Union[Decimal, str],
        effective_date: date
    ) -> ExchangeRate:
        """
        Record a rate for a currency pair.

        Effective dates must be non-decreasing per pair; a rate on the same
        date as the latest one replaces it.

        Raises:
            ExchangeRateError: On a non-positive rate, identical currencies or
                an effective date earlier than the latest recorded one
        """
        self.require_active(from_currency)
        self.require_active(to_currency)
        from_currency, to_currency = from_currency.upper(), to_currency.upper()

        if from_currency == to_currency:
            raise ExchangeRateError(
                "Exchange rate requires two different currencies",
                from_currency=from_currency
            )

        exchange_rate = ExchangeRate(from_currency, to_currency, rate, effective_date)
        if exchange_rate.rate <= 0:
            raise ExchangeRateError(
                f"Exchange rate must be positive, got {exchange_rate.rate}",
                from_currency=from_currency,
                to_currency=to_currency,
                rate=exchange_rate.rate
            )

        history = self.get_rate_history(from_currency, to_currency)
        if history and history[-1].effective_date > effective_date:
            raise ExchangeRateError(
                f"Rate for {from_currency}/{to_currency} effective {effective_date.isoformat()} "
                f"is earlier than latest rate effective {history[-1].effective_date.isoformat()}",
                from_currency=from_currency,
                to_currency=to_currency,
                effective_date=effective_date,
                latest_effective_date=history[-1].effective_date
            )

        self.storage.save(self.rates_table, exchange_rate.key, exchange_rate.to_dict())
        self.audit_trail.log_event(
            event_type=AuditEventType.EXCHANGE_RATE_SET,
            entity_type="exchange_rate",
            entity_id=exchange_rate.key,
            metadata={"rate": exchange_rate.rate}
        )
        return exchange_rate

    def get_rate_history(self, from_currency: str, to_currency: str) -> List[ExchangeRate]:
        """All rates for a pair ordered by effective date"""
        records = self.storage.find(self.rates_table, {
            'from_currency': from_currency.upper(),
            'to_currency': to_currency.upper()
        })
        return sorted((ExchangeRate.from_dict(r) for r in records), key=lambda r: r.effective_date)

    def get_rate(
        self,
        from_currency: str,
        to_currency: str,
        as_of: Optional[date] = None
    ) -> Optional[ExchangeRate]:
        """
        Latest rate effective on or before ``as_of``.

        Falls back to the inverse of the opposite pair when only that one is
        recorded. Returns None if neither direction has a usable rate.
        """
        from_currency, to_currency = from_currency.upper(), to_currency.upper()
        as_of = as_of or date.today()

        if from_currency == to_currency:
            return ExchangeRate(from_currency, to_currency, Decimal('1'), as_of)

        direct = [r for r in self.get_rate_history(from_currency, to_currency)
                  if r.effective_date <= as_of]
        if direct:
            return direct[-1]

        reverse = [r for r in self.get_rate_history(to_currency, from_currency)
                   if r.effective_date <= as_of]
        if reverse:
            return reverse[-1].inverse()
        return None

    def convert(self, money: Money, to_currency: str, as_of: Optional[date] = None) -> Money:
        """
        Convert money into another currency, rounded to its precision

        Raises:
            ExchangeRateError: If no exchange rate is available
        """
        if money.currency == to_currency.upper():
            return money

        rate = self.get_rate(money.currency, to_currency, as_of)
        if not rate:
            raise ExchangeRateError(
                f"No exchange rate available for {money.currency} -> {to_currency}",
                from_currency=money.currency,
                to_currency=to_currency,
                as_of=as_of
            )

        target = self.get_currency(to_currency)
        places = target.precision if target else MIN_PRECISION
        return Money(money.amount * rate.rate, rate.to_currency).round_to(places)


PLAIN_DECIMAL = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)$')


def to_decimal(value: Union[Decimal, int, str], field: str = "amount") -> Decimal:
    """
    Convert a value to a finite Decimal

    Floats are refused because they cannot carry exact amounts.

    Raises:
        InvalidAmountError: If the value is not a finite number
    """
    if isinstance(value, (bool, float)):
        raise InvalidAmountError(f"{field} must be a Decimal or decimal string, got {type(value).__name__}",
                                 field=field, value=str(value))
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidAmountError(f"Cannot convert '{value}' to Decimal", field=field, value=str(value))
    if not result.is_finite():
        raise InvalidAmountError(f"{field} must be finite, got {result}", field=field, value=str(result))
    return result


def decimal_from_string(value: str) -> Decimal:
    """
    Parse an amount string as it crosses the API boundary

    Only plain decimal notation is accepted: an optional sign, digits and an
    optional fraction. Exponents, separators, symbols, NaN and Infinity are
    rejected rather than rewritten.

    Raises:
        InvalidAmountError: If the string is empty or not a plain decimal
    """
    if not value or not isinstance(value, str):
        raise InvalidAmountError("Amount must be a non-empty string", value=value)
    if not PLAIN_DECIMAL.match(value.strip()):
        raise InvalidAmountError(f"Cannot convert '{value}' to Decimal", value=value)
    return to_decimal(value)
