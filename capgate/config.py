from typing import Literal

from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Challenges
    challenge_count: int = Field(3, gt=0)
    challenge_size: int = Field(16, gt=0)  # salt length in hex chars
    challenge_difficulty: int = Field(2, gt=0)  # target length in hex chars
    challenge_expires: int = Field(600, gt=0)  # 10 minutes

    # Verification tokens
    token_expires: int = Field(1200, gt=0)  # 20 minutes
    token_verify_once: bool = True

    # Rate Limiting (token bucket, 0 disables)
    rate_limit_rps: int = Field(10, ge=0)
    rate_limit_burst: int = Field(50, ge=0)
    rate_limit_bucket_max_age: int = Field(3600, gt=0)
    rate_limit_stats: str = "30/minute"

    # Storage
    storage_backend: Literal["memory", "file", "sql", "redis"] = "memory"
    storage_file_path: str = ".data/cap_storage.json"
    database_url: str = "sqlite:///./cap.db"
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "cap:"

    # Caller identification
    trust_proxy_headers: bool = True  # first X-Forwarded-For hop is the client

    # Background cleanup
    cleanup_interval_seconds: int = Field(300, gt=0)

    # Logging
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    # CORS
    cors_origins: list[str] | str = ["http://localhost:5173", "http://127.0.0.1:5173"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


settings = Settings()
