"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class MicrofinanceConfig(BaseSettings):
    """Microfinance loan system configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///microfinance.db"  # "memory://" for in-memory
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Security configuration
    auth_enabled: bool = True
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Business rules configuration
    audit_mode: str = "best_effort"  # best_effort or strict
    alert_window_days: int = 3
    payment_update_retries: int = 3
    advance_schedule_on_payment: bool = True
    
    # Bank account verification (Paystack)
    paystack_base_url: str = "https://api.paystack.co"
    paystack_secret_key: str = ""  # Empty = verification disabled
    paystack_timeout: float = 10.0
    
    class Config:
        env_prefix = "MICROFINANCE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = MicrofinanceConfig()


def get_config() -> MicrofinanceConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> MicrofinanceConfig:
    """Reload configuration from environment"""
    global config
    config = MicrofinanceConfig()
    return config
