"""Routes package for the heartbeat-collector HTTP apps."""

from heartbeat_collector.web.routes import heartbeats

__all__ = ["heartbeats"]
