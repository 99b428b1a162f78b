"""
Outbound messages handed to the notification dispatcher.
"""

from typing import List, Optional

from storecore.schemas.base import BaseSchema


class LowStockProduct(BaseSchema):
    id: str
    name: str
    stock: int
    variant: Optional[str] = None


class LowStockAlert(BaseSchema):
    store_id: str
    recipient: Optional[str] = None  # store owner; dispatcher falls back to NOTIFICATION_EMAILS
    products: List[LowStockProduct]
    threshold: int
