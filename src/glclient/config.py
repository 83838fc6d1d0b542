"""Client configuration using pydantic-settings.

All options are read from ``GL_``-prefixed environment variables or a
local ``.env`` file, e.g. ``GL_SCHEDULER_GRPC_URI``.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="GL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Scheduler
    # ======================
    scheduler_grpc_uri: str = Field(
        default="https://scheduler.gl.blckstrm.com:443",
        description="Scheduler service endpoint",
    )
    network: str = Field(default="bitcoin", description="Default network for the CLI")
    request_timeout: float = Field(default=30.0, description="Per-request timeout in seconds")
    retry_attempts: int = Field(default=3, description="Attempts for retryable scheduler calls")
    retry_base_delay: float = Field(
        default=1.0, description="Backoff unit between retries (1x, 2x, 3x...)"
    )

    # ======================
    # TLS
    # ======================
    ca_crt: Optional[str] = Field(default=None, description="Path to the CA bundle (PEM)")
    nobody_crt: Optional[str] = Field(
        default=None, description="Path to the unauthenticated client certificate (PEM)"
    )
    nobody_key: Optional[str] = Field(
        default=None, description="Path to the unauthenticated client key (PEM)"
    )

    # ======================
    # Signer
    # ======================
    hsmd_module: str = Field(
        default="glclient.hsmd.software",
        description="Module providing create_backend(seed, network)",
    )

    debug: bool = Field(default=False, description="Enable debug logging")

    @property
    def has_nobody_identity(self) -> bool:
        """Check if both halves of the default client identity are configured."""
        return bool(self.nobody_crt and self.nobody_key)

    def get_safe_dict(self) -> dict:
        """Return settings dict with key material locations redacted."""
        return {
            "scheduler_grpc_uri": self.scheduler_grpc_uri,
            "network": self.network,
            "request_timeout": self.request_timeout,
            "retry_attempts": self.retry_attempts,
            "retry_base_delay": self.retry_base_delay,
            "ca_crt": self.ca_crt or "(system)",
            "nobody_crt": self.nobody_crt or "(not set)",
            "nobody_key": "***" if self.nobody_key else "(not set)",
            "hsmd_module": self.hsmd_module,
            "debug": self.debug,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
