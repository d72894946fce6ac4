"""Per-service, per-day waiting lines with real-time updates."""

__version__ = "0.1.0"
