"""Storefront API: catalog, checkout, sessions and admin over SQLAlchemy."""

__version__ = "0.1.0"
