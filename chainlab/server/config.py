"""
Server configuration from environment variables.

Usage:
    from chainlab.server.config import get_settings

    settings = get_settings()
    print(settings.host, settings.port)
"""

from functools import lru_cache
from typing import List, Optional
import os
import shlex


class Settings:
    """Server configuration loaded from environment variables."""

    def __init__(self) -> None:
        # Server
        self.host: str = os.getenv("CHAINLAB_HOST", "0.0.0.0")
        self.port: int = int(os.getenv("CHAINLAB_PORT", "8080"))

        # Authentication
        self.api_key: Optional[str] = os.getenv("CHAINLAB_API_KEY")

        # Sandbox
        self.sandbox_image: str = os.getenv("CHAINLAB_SANDBOX_IMAGE", "chain-proxy")
        self.sandbox_command: Optional[List[str]] = (
            shlex.split(os.environ["CHAINLAB_SANDBOX_CMD"])
            if os.getenv("CHAINLAB_SANDBOX_CMD")
            else None
        )
        self.sandbox_port: int = int(os.getenv("CHAINLAB_SANDBOX_PORT", "8080"))

        # Container runtime
        self.docker_base_url: Optional[str] = os.getenv("CHAINLAB_DOCKER_BASE_URL")
        self.docker_api_version: str = os.getenv("CHAINLAB_DOCKER_API_VERSION", "auto")

        # Identity store
        self.store: str = os.getenv("CHAINLAB_STORE", "file")
        self.store_path: str = os.getenv("CHAINLAB_STORE_PATH", "./chainlab-data")

        # Deadlines
        self.runtime_timeout_seconds: float = float(
            os.getenv("CHAINLAB_RUNTIME_TIMEOUT_SECONDS", "60")
        )
        self.exec_timeout_seconds: float = float(
            os.getenv("CHAINLAB_EXEC_TIMEOUT_SECONDS", "30")
        )

        # Audit logging
        self.audit_log_path: Optional[str] = os.getenv("CHAINLAB_AUDIT_LOG_PATH")

    @property
    def auth_required(self) -> bool:
        """Authentication is required if CHAINLAB_API_KEY is set."""
        return self.api_key is not None


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear settings cache. For testing only."""
    get_settings.cache_clear()
