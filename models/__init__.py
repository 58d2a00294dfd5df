"""
Database models for the purchase engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, TimestampMixin

# Core models
from models.member import Member
from models.product import Product

__all__ = [
    # Base
    'Base',
    'TimestampMixin',

    # Core
    'Member',
    'Product',
]
