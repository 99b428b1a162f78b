from .store import Store, StoreConfig
from .license import License
from .product import Product, Category
from .stock_movement import StockMovement

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'Store',
    'StoreConfig',
    'License',
    'Product',
    'Category',
    'StockMovement',
]
