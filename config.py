"""Application settings and configuration."""

from typing import List, Literal, Union

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "supersecretkey"


class Settings(BaseSettings):
    """Settings loaded from environment variables (and .env)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENV: Literal["dev", "staging", "prod", "test"] = Field(default="dev")
    PROJECT_NAME: str = Field(default="DevFlow API")
    API_PREFIX: str = Field(default="/api")

    # MongoDB
    MONGO_URI: str = Field(default="mongodb://localhost:27017/?replicaSet=rs0")
    MONGO_DB_NAME: str = Field(default="DevFlowDB")
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = Field(default=5000)

    # Auth
    SECRET_KEY: str = Field(default=DEFAULT_SECRET_KEY)
    ALGORITHM: str = Field(default="HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=24 * 60)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")

    # CORS, comma-separated string or list
    CORS_ORIGINS: Union[str, List[str]] = Field(default="http://localhost:3000")

    # Outbound calls to our own API (server side rendering, auth callbacks)
    API_BASE_URL: str = Field(default="http://localhost:8000/api")
    FETCH_TIMEOUT_SECONDS: float = Field(default=5.0)

    @model_validator(mode="after")
    def normalize(self) -> "Settings":
        if isinstance(self.CORS_ORIGINS, str):
            self.CORS_ORIGINS = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        # Fail fast in production if the JWT secret was never set
        if self.ENV == "prod" and self.SECRET_KEY == DEFAULT_SECRET_KEY:
            raise ValueError("SECRET_KEY must be set in production")
        return self


settings = Settings()
