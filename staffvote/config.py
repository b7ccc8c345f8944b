from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Staff Recognition Voting API"
    DATABASE_BACKEND: Literal["sqlite", "sql", "mongodb"] = "sqlite"
    SQLALCHEMY_DATABASE_URI: str = "sqlite:///./staff_voting.db"
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "staff_voting"
    SECRET_KEY: str = "change-this-secret-in-prod"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_PASSWORD: str = "admin123"
    DEFAULT_ADMIN_EMAIL: str = "admin@example.com"
    SEED_SAMPLE_STAFF: bool = False
    BACKEND_CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
