"""
Configuration settings for Progression Service
"""
from functools import lru_cache
from typing import Optional, List
from pydantic_settings import BaseSettings
from pydantic import ConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # App
    APP_NAME: str = "Progression Service"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "local"
    LOG_LEVEL: str = "INFO"

    # AWS
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None  # Only for LocalStack, ECS uses IAM roles
    AWS_SECRET_ACCESS_KEY: Optional[str] = None  # Only for LocalStack, ECS uses IAM roles

    # Storage
    STORAGE_BACKEND: str = "dynamodb"  # "dynamodb" or "memory" (local development)
    DYNAMODB_ENDPOINT: Optional[str] = None  # None uses AWS, set for LocalStack
    DYNAMODB_PROGRESSION_TABLE: str = "tutor-dev-progression"  # Empty disables persistence

    # XP awards
    BASE_XP_PER_PROBLEM: int = 15
    HINT_PENALTY_XP: int = 2
    MIN_PROBLEM_XP: int = 5
    DAILY_LOGIN_XP: int = 10
    FIRST_LOGIN_BONUS_XP: int = 50  # Added on top of the daily login XP
    REFEREE_REWARD_XP: int = 100
    REFERRER_REWARD_XP: int = 200

    # Ledger writes
    MAX_WRITE_ATTEMPTS: int = 3
    LEDGER_TIMEOUT_SECONDS: float = 10.0

    # Adaptive practice
    PROBLEM_HISTORY_LIMIT: int = 50
    DIFFICULTY_TARGET_LOW: float = 60.0   # Success rate (%) below this is "persistently failing"
    DIFFICULTY_TARGET_HIGH: float = 85.0  # Success rate (%) above this is "trivially easy"
    DIFFICULTY_MIN_ATTEMPTS: int = 3

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True
    )


@lru_cache()
def get_settings() -> Settings:
    """Returns cached settings instance (singleton)"""
    return Settings()
