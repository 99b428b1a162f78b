"""
Models for the store catalogue.

Every row carries the owning store's id in ``store_id``; the row-level
security policies created by the initial migration key on that column.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, CheckConstraint, Index, Text

from storecore.core.utils import utc_now, new_id
from storecore.database import Base, JSONType


class Category(Base):
    __tablename__ = "categories"

    id = Column(String, primary_key=True, default=new_id)
    store_id = Column(String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False)

    __table_args__ = (
        Index("idx_categories_store_slug", "store_id", "slug"),
    )

    def __repr__(self):
        return f"<Category {self.slug} store={self.store_id}>"


class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=new_id)
    store_id = Column(String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    # Core Product Information
    name = Column(String, nullable=False)
    description = Column(Text)
    category_id = Column(String, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    subcategory = Column(String)

    # Pricing (minor currency units)
    price = Column(Integer, nullable=False)
    original_price = Column(Integer)
    transfer_price = Column(Integer)

    # Media and options
    image = Column(String)
    images = Column(JSONType)
    sizes = Column(JSONType)
    colors = Column(JSONType)

    # Inventory
    stock = Column(Integer, nullable=False, default=0)
    variants_stock = Column(JSONType)  # {"Red": 5, "Blue": 2}; sum equals stock when present
    stock_status = Column(String)  # display override

    # Flags and ordering
    is_best_seller = Column(Boolean, nullable=False, default=False)
    is_new = Column(Boolean, nullable=False, default=False)
    is_on_sale = Column(Boolean, nullable=False, default=False)
    order_num = Column(Integer, nullable=False, default=0)

    # Counters
    views = Column(Integer, nullable=False, default=0)
    clicks = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        Index("idx_products_store", "store_id"),
        Index("idx_products_store_order", "store_id", "order_num", "created_at"),
        Index("idx_products_category", "category_id"),
    )

    def __repr__(self):
        return f"<Product {self.id} store={self.store_id} stock={self.stock}>"
