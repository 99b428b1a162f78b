from datetime import datetime
from typing import Optional

from storecore.schemas.base import BaseSchema


class LicenseUsage(BaseSchema):
    """Snapshot of a store's product quota, computed inside the caller's transaction."""
    serial: str
    plan: str
    status: str
    expires_at: Optional[datetime] = None
    max_products: Optional[int] = None  # None = unlimited
    product_count: int
    can_create_product: bool
    product_percentage: Optional[float] = None

    @property
    def remaining_products(self) -> Optional[int]:
        if self.max_products is None:
            return None
        return max(self.max_products - self.product_count, 0)
