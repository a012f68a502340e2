"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Dict, List, Optional


class LedgerConfig(BaseSettings):
    """General ledger engine configuration"""
    
    # Storage configuration
    database_url: str = "sqlite:///ledger.db"  # memory:// for in-memory storage
    storage_batch_size: int = 500
    
    # Ledger policy
    base_currency: str = "USD"
    retained_earnings_account: str = "3000"
    require_zero_balance_to_deactivate: bool = False
    
    # Cash flow classification
    cash_account_codes: List[str] = []
    cash_flow_mapping: Dict[str, str] = {
        "fee_payment": "operating",
        "expense": "operating",
        "payroll": "operating",
        "asset_purchase": "investing",
    }
    cash_flow_default_bucket: str = "operating"
    
    # Reconciliation matching window
    reconciliation_date_tolerance_days: int = 3
    reconciliation_amount_tolerance: str = "0.00"
    
    # Query defaults
    journal_page_size: int = 50
    balance_cache_size: int = 10000  # cached (account, as_of, currency) balances
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
