# models/product.py
"""
Product model - catalog entries a member can buy.
"""
from sqlalchemy import Column, Integer, String

from models.base import Base, TimestampMixin


class Product(Base, TimestampMixin):
    __tablename__ = 'products'

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=True)
    status = Column(String(16), nullable=False, default="ACTIVE")
    stock = Column(Integer, nullable=False, default=0)

    # Per-order quantity cap and minimum buyer level (both optional)
    purchaseLimit = Column(Integer, nullable=True)
    minLevel = Column(String(16), nullable=True)

    def __repr__(self):
        return f"<Product(id={self.id}, status={self.status}, stock={self.stock})>"
