from pydantic_settings import BaseSettings
from pydantic import ConfigDict

class Settings(BaseSettings):
    model_config = ConfigDict(env_file=".env")

    ENV: str = "development"

    DATABASE_URL: str = "sqlite:///./auth.db"
    REDIS_URL: str = "redis://localhost:6379/0"
    NOTIFICATION_QUEUE_URL: str = "redis://localhost:6379/0"
    NOTIFICATION_QUEUE_NAME: str = "email"
    NOTIFICATION_QUEUE_MAX_LENGTH: int = 10000
    # Upper bound for any single call to the database or the cache
    STORE_TIMEOUT_SECONDS: float = 5.0

    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    PASSWORD_RESET_EXPIRE_MINUTES: int = 10
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    REFRESH_COOKIE_NAME: str = "refreshToken"

    # Account lockout
    LOGIN_MAX_FAILED_ATTEMPTS: int = 5
    LOGIN_LOCKOUT_MINUTES: int = 15

    # Global request quotas
    RATE_LIMIT_WINDOW_SECONDS: int = 900
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_MAX_REQUESTS_AUTH: int = 1000
    RATE_LIMIT_EXEMPT_PATHS: list[str] = ["/health"]

    # Static keys of the collaborating services
    API_KEY_GATEWAY: str
    API_KEY_USER_SERVICE: str
    API_KEY_NOTIFICATION_SERVICE: str

    FRONTEND_URL: str = "http://localhost:3000"
    MAIL_USERNAME: str = ""
    MAIL_PASSWORD: str = ""
    MAIL_FROM: str = "no-reply@localhost"
    MAIL_SERVER: str = "localhost"
    MAIL_PORT: int = 587

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]


settings = Settings()
