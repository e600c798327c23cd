"""HTTP layer for heartbeat-collector."""

from heartbeat_collector.web.server import create_admin_app, create_public_app

__all__ = ["create_admin_app", "create_public_app"]
