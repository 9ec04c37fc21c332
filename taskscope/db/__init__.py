"""Database layer for persisted code contexts."""

from .connection import get_connection, get_connection_string, init_db

__all__ = ["get_connection", "get_connection_string", "init_db"]
