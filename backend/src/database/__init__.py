"""
Database package: declarative base, engine and session management, and the
ORM models for products, orders and payment transactions.
"""

__all__ = []
