from pydantic_settings import BaseSettings
from typing import List
from dotenv import load_dotenv
import os

load_dotenv()


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = os.getenv("DEBUG", True)
    API_VERSION: str = os.getenv("API_VERSION", "1.0.0")

    # Database
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_KEY: str = os.getenv("SUPABASE_SERVICE_KEY", "")

    # JWT (tokens are issued by the auth service, we only verify them)
    SECRET_KEY: str = os.getenv("SECRET_KEY", os.getenv("JWT_ACCESS_SECRET", ""))
    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 15)

    # CORS
    ALLOWED_ORIGINS: str = os.getenv("ALLOWED_ORIGINS", "*")

    @property
    def allowed_origins_list(self) -> List[str]:
        return self.ALLOWED_ORIGINS.split(",")

    # Challenges
    CHALLENGES_LIST_LIMIT: int = os.getenv("CHALLENGES_LIST_LIMIT", 200)
    CHALLENGE_TARGETS_MAX: int = os.getenv("CHALLENGE_TARGETS_MAX", 10)

    # WonyaSoft Mobile Money
    WONYASOFT_API_URL: str = os.getenv("WONYASOFT_API_URL", "https://api.wonyasoft.com")
    WONYASOFT_TOKEN: str = os.getenv("WONYASOFT_TOKEN", "")
    WONYASOFT_REF_PARTENAIRE: str = os.getenv("WONYASOFT_REF_PARTENAIRE", "")
    WONYASOFT_CALLBACK_URL: str = os.getenv("WONYASOFT_CALLBACK_URL", "")
    WONYASOFT_TIMEOUT_SECONDS: float = os.getenv("WONYASOFT_TIMEOUT_SECONDS", 15.0)

    # Payments
    PAYMENT_MAX_QUANTITY: int = os.getenv("PAYMENT_MAX_QUANTITY", 10)
    PAYMENT_CURRENCIES: str = os.getenv("PAYMENT_CURRENCIES", "CDF,USD")

    @property
    def payment_currencies_list(self) -> List[str]:
        return [c.strip().upper() for c in self.PAYMENT_CURRENCIES.split(",") if c.strip()]

    class Config:
        env_file = [".env.local", ".env"]
        case_sensitive = True
        extra = "ignore"


# Create settings instance
settings = Settings()
