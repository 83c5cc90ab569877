# app/config.py
from typing import List
from decimal import Decimal
from pydantic_settings import BaseSettings
from pydantic import field_validator

class Settings(BaseSettings):
    """Environment settings"""
    
    # API
    app_name: str = "CampusVote API"
    debug: bool = False
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    
    # Database
    database_url: str = "sqlite+aiosqlite:///./campusvote.db"
    
    # JWT (tokens are minted by the campus identity service)
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    
    # Paystack
    paystack_secret_key: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    paystack_callback_url: str = "http://localhost:3000/payment/callback"
    gateway_timeout_seconds: float = 15.0
    currency: str = "NGN"
    
    # Payment lifecycle
    payment_expiry_minutes: int = 30
    verify_max_attempts: int = 4
    verify_backoff_min_seconds: float = 1.0
    verify_backoff_max_seconds: float = 8.0
    payment_sweep_interval_seconds: int = 60  # 0 disables the background sweep
    
    # Payment initialization limits (per user)
    payment_init_limit: int = 10
    payment_init_window_minutes: int = 15
    
    # Voting
    min_vote_price: Decimal = Decimal("50")
    
    # Logging
    log_dir: str = "logs"
    
    @field_validator('secret_key')
    def validate_secret_key(cls, v):
        if len(v) < 32:
            raise ValueError('SECRET_KEY must be at least 32 characters long')
        return v
    
    class Config:
        env_file = ".env"
        case_sensitive = False

# Singleton
settings = Settings()
