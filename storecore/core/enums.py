"""
Shared enums and constants used across the application.
"""

from enum import Enum


class LicenseStatus(str, Enum):
    GENERATED = "generated"
    ACTIVATED = "activated"
    SUSPENDED = "suspended"
    EXPIRED = "expired"
    REVOKED = "revoked"

    @property
    def is_usable(self) -> bool:
        return self not in (LicenseStatus.SUSPENDED, LicenseStatus.EXPIRED, LicenseStatus.REVOKED)


class DecrementOutcome(str, Enum):
    """Terminal states of a single stock decrement request."""
    APPLIED = "APPLIED"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    NOT_FOUND = "NOT_FOUND"
    VARIANT_REQUIRED = "VARIANT_REQUIRED"  # product tracks per-variant stock


class StockStatus(str, Enum):
    IN_STOCK = "In stock"
    LAST_UNITS = "Last units"
    OUT_OF_STOCK = "Out of stock"


class MovementReason(str, Enum):
    SALE = "sale"
    MANUAL_UPDATE = "manual_update"
