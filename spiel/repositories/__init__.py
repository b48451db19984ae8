"""Repository package: query construction for the Spiel models."""
from .query_builder import QueryBuilder

__all__ = [
    'QueryBuilder',
]
