"""Core configuration and observability helpers."""
