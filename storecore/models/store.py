from sqlalchemy import Column, String, DateTime, ForeignKey

from storecore.core.utils import utc_now
from storecore.database import Base


class Store(Base):
    """A tenant. The primary key is the store id every other table is scoped by."""
    __tablename__ = "stores"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    owner_email = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self):
        return f"<Store {self.id}>"


class StoreConfig(Base):
    """Per-store key/value settings (e.g. ``low_stock_threshold``)."""
    __tablename__ = "store_config"

    store_id = Column(String, ForeignKey("stores.id", ondelete="CASCADE"), primary_key=True)
    key = Column(String, primary_key=True)
    value = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)
