"""
Chainlab HTTP API Server.

Usage:
    # Start server
    uvicorn chainlab.server:app --reload

    # Or programmatically
    from chainlab.server import app, create_app

    # Custom orchestrator (tests, embedding)
    app = create_app(orchestrator)
"""

from chainlab.server.app import app, create_app

__all__ = ["app", "create_app"]
