"""Route modules exposed by the API package."""

from . import live, metrics, ping, queue, users

__all__ = ["live", "metrics", "ping", "queue", "users"]
