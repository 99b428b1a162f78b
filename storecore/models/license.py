from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index

from storecore.core.enums import LicenseStatus
from storecore.core.utils import utc_now
from storecore.database import Base


class License(Base):
    """
    Commercial license of a store. Written by billing; the inventory core only
    reads it to decide whether a store may create more products.
    """
    __tablename__ = "licenses"

    serial = Column(String, primary_key=True)
    plan = Column(String, nullable=False, default="free")  # free|starter|pro|enterprise
    status = Column(String, nullable=False, default=LicenseStatus.GENERATED.value)
    store_id = Column(String, ForeignKey("stores.id", ondelete="SET NULL"), nullable=True)

    # Expiration and limits (NULL limit = unlimited)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    max_products = Column(Integer, nullable=True)
    max_orders = Column(Integer, nullable=True)

    owner_email = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    activated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_licenses_store", "store_id"),
        Index("idx_licenses_status", "status"),
    )

    def __repr__(self):
        return f"<License {self.serial} plan={self.plan} status={self.status}>"
