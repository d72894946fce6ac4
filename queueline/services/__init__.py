"""Infrastructure services shared by the application."""

from .postgres import PostgresPool

__all__ = ["PostgresPool"]
