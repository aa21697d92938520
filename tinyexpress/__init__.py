"""A chainable SQL query builder and an active-record model layer on top of it."""

__version__ = "0.1.0"

__all__ = ["model", "query", "records"]