from .base import BaseSchema, TimestampedSchema
from .product import (
    ProductBody,
    ProductSeed,
    ProductRead,
    ProductFilters,
    ProductPage,
    derive_stock_status,
)
from .stock import (
    StockItemRequest,
    StockDecrementRequest,
    BatchDecrementRequest,
    StockItemInfo,
    StockCheckResult,
    StockDecrement,
    StockShortfall,
    BatchDecrementResult,
    StockMovementRead,
    StockSummary,
    LowStockDigest,
    ThresholdUpdate,
    StockSetRequest,
)
from .license import LicenseUsage
from .notifications import LowStockAlert, LowStockProduct
