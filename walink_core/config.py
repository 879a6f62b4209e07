"""Configuration for the session core and the HTTP service."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Literal

from pydantic import Field, PositiveInt, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .policy import BackoffMode, ReconnectionPolicy


@dataclass(frozen=True)
class SessionConfig:
    """Tuning values for the session controller.

    Attributes:
        max_retries: Transient closes tolerated before the session is ERRORED.
        retry_base_delay: Backoff delay unit (seconds).
        retry_multiplier_cap: Largest multiplier for linear backoff.
        retry_max_delay: Ceiling for any backoff delay (seconds).
        backoff_mode: "linear" or "exponential".
        restart_delay: Delay before reconnecting after a wipe (seconds).
        exhaustion_cooldown: Delay before the recovery cycle once retries are
            exhausted (seconds). None disables recovery.
        connect_timeout: Bound for credential load and handle construction.
        logout_timeout: Bound for the best-effort logout on disconnect.
        send_timeout: Bound for a single message send.
        auto_reconnect: Initial operator preference for automatic retries.
        max_pairing_codes: Pairing codes issued before a connection attempt is
            abandoned. None means unlimited.
    """

    max_retries: int = 3
    retry_base_delay: float = 5.0
    retry_multiplier_cap: int = 3
    retry_max_delay: float = 60.0
    backoff_mode: str = "linear"
    restart_delay: float = 2.0
    exhaustion_cooldown: float | None = 300.0
    connect_timeout: float = 30.0
    logout_timeout: float = 10.0
    send_timeout: float = 30.0
    auto_reconnect: bool = True
    max_pairing_codes: int | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.retry_multiplier_cap < 1:
            raise ValueError("retry_multiplier_cap must be at least 1")
        for name in (
            "retry_base_delay",
            "retry_max_delay",
            "restart_delay",
            "connect_timeout",
            "logout_timeout",
            "send_timeout",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.exhaustion_cooldown is not None and self.exhaustion_cooldown < 0:
            raise ValueError("exhaustion_cooldown must be non-negative")
        if self.max_pairing_codes is not None and self.max_pairing_codes < 1:
            raise ValueError("max_pairing_codes must be at least 1")
        BackoffMode(self.backoff_mode)

    def to_policy(self) -> ReconnectionPolicy:
        """Build the reconnection policy described by this config."""
        return ReconnectionPolicy(
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            multiplier_cap=self.retry_multiplier_cap,
            max_delay=self.retry_max_delay,
            mode=BackoffMode(self.backoff_mode),
            restart_delay=self.restart_delay,
            exhaustion_cooldown=self.exhaustion_cooldown,
        )


class ServiceSettings(BaseSettings):
    """Validated settings for the walink HTTP service."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="WALINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # HTTP surface
    host: str = Field(default="0.0.0.0", description="Interface to bind.")
    port: PositiveInt = Field(default=3000, description="HTTP port.")
    auth_token: SecretStr = Field(
        description="Bearer token required on control endpoints.",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    auto_init: bool = Field(
        default=False,
        description="Start connecting at boot instead of waiting for POST /init.",
    )

    # Credentials
    session_path: Path = Field(
        default=Path("./walink_auth_info"),
        description="Directory holding the persisted session credentials.",
    )

    # Bridge
    bridge_host: str = "127.0.0.1"
    bridge_port: PositiveInt = 8765
    bridge_path: str = "/ws"
    bridge_token: SecretStr | None = Field(default=None, repr=False)

    # Session tuning
    max_retries: PositiveInt = 3
    retry_base_delay: float = Field(default=5.0, ge=0)
    retry_multiplier_cap: PositiveInt = 3
    retry_max_delay: float = Field(default=60.0, ge=0)
    backoff_mode: Literal["linear", "exponential"] = "linear"
    restart_delay: float = Field(default=2.0, ge=0)
    exhaustion_cooldown: float | None = Field(default=300.0, ge=0)
    connect_timeout: float = Field(default=30.0, ge=0)
    logout_timeout: float = Field(default=10.0, ge=0)
    send_timeout: float = Field(default=30.0, ge=0)
    auto_reconnect: bool = True
    max_pairing_codes: PositiveInt | None = None

    @field_validator("auth_token")
    @classmethod
    def _require_token(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            raise ValueError("auth_token must not be empty")
        return value

    @field_validator("bridge_path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"

    def to_session_config(self) -> SessionConfig:
        return SessionConfig(
            max_retries=self.max_retries,
            retry_base_delay=self.retry_base_delay,
            retry_multiplier_cap=self.retry_multiplier_cap,
            retry_max_delay=self.retry_max_delay,
            backoff_mode=self.backoff_mode,
            restart_delay=self.restart_delay,
            exhaustion_cooldown=self.exhaustion_cooldown,
            connect_timeout=self.connect_timeout,
            logout_timeout=self.logout_timeout,
            send_timeout=self.send_timeout,
            auto_reconnect=self.auto_reconnect,
            max_pairing_codes=self.max_pairing_codes,
        )
