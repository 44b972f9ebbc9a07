# Database package exports

from .settings import DatabaseSettings
from .pool import create_pool
from .client import DatabaseClient
from .schema import render_schema_sql

__all__ = [
    "DatabaseSettings",
    "create_pool",
    "DatabaseClient",
    "render_schema_sql",
]
