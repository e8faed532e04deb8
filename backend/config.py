# backend/config.py
from pydantic_settings import BaseSettings
from typing import ClassVar
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

class Settings(BaseSettings):
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite:///./storefront.db"

    RAZORPAY_API_URL: str = "https://api.razorpay.com"
    RAZORPAY_KEY_ID: str = "rzp_test_key"
    RAZORPAY_KEY_SECRET: str = "rzp_test_secret"
    RAZORPAY_WEBHOOK_SECRET: str = "rzp_webhook_secret"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    CURRENCY: str = "INR"
    STORE_NAME: str = "Storefront"
    FRONTEND_URL: str = "http://localhost:5173"

    # Public backend URL used for payment link callbacks
    BACKEND_URL: str = "http://127.0.0.1:8000"

    # Directory for file-backed carts (one JSON file per cart key)
    CART_STORAGE_DIR: str = "./carts"

    # How many fresh order numbers to try before giving up on a unique clash
    ORDER_NUMBER_ATTEMPTS: int = 3

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file: ClassVar[str] = str(env_path)
        extra = "ignore"

settings = Settings()
