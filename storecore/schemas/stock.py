"""
Schemas for stock checks, decrements and reporting.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, Field

from storecore.core.enums import DecrementOutcome
from storecore.schemas.base import BaseSchema


class StockItemRequest(BaseSchema):
    product_id: str = Field(..., validation_alias=AliasChoices('product_id', 'productId', 'id'))
    quantity: int = Field(1, gt=0)
    variant: Optional[str] = None


class StockDecrementRequest(StockItemRequest):
    order_id: Optional[str] = None


class BatchDecrementRequest(BaseSchema):
    items: List[StockItemRequest]
    order_id: Optional[str] = None


class StockItemInfo(BaseSchema):
    product_id: str
    requested: int
    available: int
    sufficient: bool


class StockCheckResult(BaseSchema):
    valid: bool
    errors: List[str] = []
    stock_info: List[StockItemInfo] = []


class StockDecrement(BaseSchema):
    """Outcome of one decrement. Truthy only when the stock was taken."""
    outcome: DecrementOutcome
    product_id: str
    requested: int
    variant: Optional[str] = None
    remaining: Optional[int] = None

    @property
    def applied(self) -> bool:
        return self.outcome == DecrementOutcome.APPLIED

    def __bool__(self) -> bool:
        return self.applied


class StockShortfall(BaseSchema):
    product_id: str
    requested: int
    available: Optional[int] = None
    variant: Optional[str] = None
    reason: DecrementOutcome


class BatchDecrementResult(BaseSchema):
    """All-or-nothing outcome of a batch. ``failures`` lists every unsatisfied row."""
    applied: bool
    failures: List[StockShortfall] = []

    def __bool__(self) -> bool:
        return self.applied


class StockMovementRead(BaseSchema):
    id: str
    store_id: str
    product_id: str
    delta: int
    previous_stock: int
    new_stock: int
    reason: str
    order_id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime


class StockSummary(BaseSchema):
    total_products: int
    in_stock: int
    low_stock: int
    out_of_stock: int
    total_stock_value: int
    threshold: int


class ThresholdUpdate(BaseSchema):
    threshold: int = Field(..., ge=0)


class StockSetRequest(BaseSchema):
    stock: int = Field(..., ge=0)
    reason: str = "manual_update"
    user_id: Optional[str] = None


class LowStockDigest(BaseSchema):
    sent: bool
    products_count: int
