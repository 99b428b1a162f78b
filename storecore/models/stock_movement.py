from sqlalchemy import Column, Integer, String, DateTime, Index

from storecore.core.utils import utc_now, new_id
from storecore.database import Base


class StockMovement(Base):
    """
    History of stock changes. Written in the same transaction as the change
    it describes; no FK to products so history survives product deletion.
    """
    __tablename__ = "stock_movements"

    id = Column(String, primary_key=True, default=new_id)
    store_id = Column(String, nullable=False)
    product_id = Column(String, nullable=False)
    delta = Column(Integer, nullable=False)
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    reason = Column(String(50), nullable=False)
    order_id = Column(String, nullable=True)
    user_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        Index("idx_stock_movements_store_product", "store_id", "product_id"),
        Index("idx_stock_movements_store_created", "store_id", "created_at"),
    )

    def __repr__(self):
        return f"<StockMovement {self.product_id} {self.delta:+d} ({self.reason})>"
