"""API routers."""

from chainlab.server.routers import health, sandbox

__all__ = ["health", "sandbox"]
