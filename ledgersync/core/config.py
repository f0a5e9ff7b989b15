"""
Configuration management module for the LedgerSync billing platform.
Loads and validates environment variables with type safety using Pydantic.
"""

from decimal import Decimal
from pathlib import Path
from typing import Optional, Dict, Any, List
from functools import lru_cache

from pydantic import Field, field_validator, ValidationInfo
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv


# Load environment variables from .env file
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def _split_csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class AppConfig(BaseSettings):
    """Application-wide configuration"""

    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    app_log_level: str = Field(default="INFO")
    app_log_json: bool = Field(default=True)
    app_timezone: str = Field(default="America/New_York")

    @field_validator("app_log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is valid"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("app_env")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment is valid"""
        valid_envs = ["development", "staging", "production", "testing"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment. Must be one of: {valid_envs}")
        return v.lower()

    @field_validator("app_debug")
    @classmethod
    def validate_debug_mode(cls, v, info: ValidationInfo):
        """Ensure debug is False in production"""
        if info.data.get("app_env") == "production" and v:
            raise ValueError("Debug mode must be disabled in production")
        return v

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class LedgerConfig(BaseSettings):
    """Ledger item references and document defaults.

    Every reference is an opaque string; the ledger assigns them and they are
    never coerced through a numeric type.
    """

    ledger_item_base: Optional[str] = Field(default=None)
    ledger_item_extras: Optional[str] = Field(default=None)
    ledger_item_discount: Optional[str] = Field(default=None)
    ledger_deposit_account: Optional[str] = Field(default=None)
    ledger_payment_method: Optional[str] = Field(default=None)
    ledger_net_terms_days: int = Field(default=30, ge=0)

    # Monthly usage invoicing
    ledger_item_full_usage: Optional[str] = Field(default=None)
    ledger_item_interview_usage: Optional[str] = Field(default=None)
    ledger_full_usage_price: Decimal = Field(default=Decimal("0.00"), ge=0)
    ledger_interview_usage_price: Decimal = Field(default=Decimal("0.00"), ge=0)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class CatalogConfig(BaseSettings):
    """Standard prices and labels for the catalog entries"""

    catalog_base_name: str = Field(default="Building Strong Teams")
    catalog_base_sku: str = Field(default="BST-001")
    catalog_base_keywords: str = Field(default="building strong teams,strong teams,bst")
    catalog_base_price: Decimal = Field(default=Decimal("1750.00"), ge=0)

    catalog_extras_name: str = Field(default="Additional Team Member")
    catalog_extras_sku: str = Field(default="BST-ADD")
    catalog_extras_keywords: str = Field(
        default="additional team member,extra member,add member,additional member"
    )
    catalog_extras_price: Decimal = Field(default=Decimal("99.00"), ge=0)

    @property
    def base_keywords(self) -> List[str]:
        return _split_csv(self.catalog_base_keywords)

    @property
    def extras_keywords(self) -> List[str]:
        return _split_csv(self.catalog_extras_keywords)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class PaymentConfig(BaseSettings):
    """Payment processor lookup configuration"""

    payment_processor_enabled: bool = Field(default=True)
    payment_lookback_minutes: int = Field(default=30, ge=1)
    payment_session_limit: int = Field(default=10, ge=1, le=100)
    payment_charge_limit: int = Field(default=20, ge=1, le=100)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class OrderConfig(BaseSettings):
    """E-commerce order classification configuration"""

    order_paylater_codes: str = Field(default="paylater,pay-later,pay_later")
    order_paylater_threshold: Decimal = Field(default=Decimal("0.99"), gt=0, le=1)
    order_billable_status: str = Field(default="completed")

    @property
    def paylater_codes(self) -> List[str]:
        return [code.lower() for code in _split_csv(self.order_paylater_codes)]

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class UsageConfig(BaseSettings):
    """Monthly usage billing configuration"""

    usage_account_id: str = Field(default="")
    usage_exclusion_keywords: str = Field(default="test,marketing")
    usage_admin_emails: str = Field(default="")
    usage_type_delimiter: str = Field(default="/", min_length=1)
    usage_limit_record_type: int = Field(default=3)
    usage_hard_limit_flag: str = Field(default="H")
    usage_name_suffixes: str = Field(default=" Interview Assessment")
    usage_full_label: str = Field(default="Full Assessment")
    usage_interview_label: str = Field(default="Interview Assessment")

    @property
    def exclusion_keywords(self) -> List[str]:
        return [kw.lower() for kw in _split_csv(self.usage_exclusion_keywords)]

    @property
    def admin_emails(self) -> List[str]:
        return [email.lower() for email in _split_csv(self.usage_admin_emails)]

    @property
    def name_suffixes(self) -> List[str]:
        # Suffixes keep their leading whitespace, so split without stripping
        return [s for s in self.usage_name_suffixes.split(",") if s.strip()]

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class Settings:
    """Main settings class that combines all configuration sections"""

    def __init__(self, **kwargs):
        self.app = kwargs.get("app") or AppConfig()
        self.ledger = kwargs.get("ledger") or LedgerConfig()
        self.catalog = kwargs.get("catalog") or CatalogConfig()
        self.payment = kwargs.get("payment") or PaymentConfig()
        self.order = kwargs.get("order") or OrderConfig()
        self.usage = kwargs.get("usage") or UsageConfig()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.app.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment"""
        return self.app.app_env == "development"

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        return {
            "app": {
                "environment": self.app.app_env,
                "debug": self.app.app_debug,
                "log_level": self.app.app_log_level,
                "timezone": self.app.app_timezone,
            },
            "ledger": {
                "item_base": self.ledger.ledger_item_base,
                "item_extras": self.ledger.ledger_item_extras,
                "item_discount": self.ledger.ledger_item_discount,
                "deposit_account": self.ledger.ledger_deposit_account,
                "net_terms_days": self.ledger.ledger_net_terms_days,
                "item_full_usage": self.ledger.ledger_item_full_usage,
                "item_interview_usage": self.ledger.ledger_item_interview_usage,
            },
            "payment": {
                "enabled": self.payment.payment_processor_enabled,
                "lookback_minutes": self.payment.payment_lookback_minutes,
                "session_limit": self.payment.payment_session_limit,
                "charge_limit": self.payment.payment_charge_limit,
            },
            "order": {
                "paylater_codes": self.order.paylater_codes,
                "paylater_threshold": str(self.order.order_paylater_threshold),
                "billable_status": self.order.order_billable_status,
            },
            "usage": {
                "account_id": self.usage.usage_account_id,
                "exclusion_keywords": self.usage.exclusion_keywords,
                "type_delimiter": self.usage.usage_type_delimiter,
            },
        }


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: The application settings instance

    Example:
        >>> from ledgersync.core.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.ledger.ledger_net_terms_days)
        30
    """
    return Settings()


if __name__ == "__main__":
    import json

    try:
        config = get_settings()
        print("Configuration loaded successfully!")
        print(json.dumps(config.to_dict(), indent=2))
    except Exception as e:
        print(f"Configuration error: {e}")
        import sys
        sys.exit(1)
