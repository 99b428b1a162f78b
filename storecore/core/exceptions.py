from typing import Optional


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    code = "SERVICE_ERROR"


class TenantRequiredError(BaseServiceError):
    """Raised when a write path runs without a store id bound."""
    code = "TENANT_REQUIRED"


class ProductServiceError(BaseServiceError):
    """Base exception for product service errors."""
    code = "PRODUCT_ERROR"


class ProductCreationError(ProductServiceError):
    """Raised when product creation fails."""
    code = "PRODUCT_CREATION_FAILED"


class ProductNotFoundError(ProductServiceError):
    """
    Raised when a product is not found for the store.

    Deliberately says nothing about whether the id exists for another store.
    """
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class LicenseError(BaseServiceError):
    """Base exception for license/quota errors."""
    code = "LICENSE_ERROR"


class NoLicenseError(LicenseError):
    """Raised when the store has no usable license row."""
    code = "NO_LICENSE"

    def __init__(self, store_id: Optional[str] = None):
        self.store_id = store_id
        super().__init__("No valid license found")


class ProductLimitExceededError(LicenseError):
    """Raised when creating products would exceed the license's product cap."""
    code = "PRODUCT_LIMIT_EXCEEDED"

    def __init__(self, limit: int, current: int, requested: int = 1):
        self.limit = limit
        self.current = current
        self.requested = requested
        if requested == 1:
            message = f"Product limit of {limit} reached ({current} products)"
        else:
            message = f"Cannot import {requested} products. Limit: {limit}, current: {current}"
        super().__init__(message)
