"""Configuration management using Pydantic settings."""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Controller settings loaded from CONSTRUCT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CONSTRUCT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    server_addr: str = "localhost:14000"
    auth_pass: str = "my_secure_password"
    delimiter: str = "<???DONE???---"

    # Socket deadlines (seconds)
    connect_timeout: float = 5.0
    read_timeout: float = 3.0

    # Force clamp applied to every apply_force component
    clamp_min: float = -20.0
    clamp_max: float = 20.0

    # Pulsing
    actions_per_second: int = 100
    pulse_duration: float = 5.0

    # Demo driver
    cube_count: int = 5
    goal: list[float] = [100.0, 0.0, 0.0]

    @field_validator("delimiter")
    @classmethod
    def _delimiter_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("delimiter must not be empty")
        return v

    @model_validator(mode="after")
    def _clamp_ordered(self) -> "Settings":
        if self.clamp_min > self.clamp_max:
            raise ValueError(
                f"clamp_min ({self.clamp_min}) must not exceed clamp_max ({self.clamp_max})"
            )
        return self


settings = Settings()
