"""
Core module exports.
"""
from .enums import (
    LicenseStatus,
    DecrementOutcome,
    StockStatus,
    MovementReason,
)
