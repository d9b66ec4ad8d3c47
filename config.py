import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8080"))

    # Database settings
    data_file: Optional[str] = os.getenv("LIBRARY_DATA_FILE")
    database_timeout: float = float(os.getenv("DATABASE_TIMEOUT", "30"))

    # Security settings
    secret_key: str = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", secret_key)
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("JWT_EXPIRATION_MINUTES", "1440"))  # 24 hours
    jwt_max_refresh_minutes: int = int(os.getenv("JWT_MAX_REFRESH_MINUTES", "10080"))  # 7 days
    jwt_cookie_name: str = os.getenv("JWT_COOKIE_NAME", "jwt")
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library API")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
