"""
Schemas for product-related operations.
"""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from storecore.core.enums import StockStatus
from storecore.schemas.base import BaseSchema, TimestampedSchema

LAST_UNITS_THRESHOLD = 5


def derive_stock_status(stock: int) -> str:
    if stock <= 0:
        return StockStatus.OUT_OF_STOCK.value
    if stock <= LAST_UNITS_THRESHOLD:
        return StockStatus.LAST_UNITS.value
    return StockStatus.IN_STOCK.value


class ProductValidationMixin(BaseModel):
    """
    --- Mixin class for shared validation logic ---
    Shared by request bodies and read models.
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True
    )

    @field_validator('variants_stock', mode='before', check_fields=False)
    @classmethod
    def validate_variants_stock(cls, v):
        # An empty mapping means "no variant tracking"
        if not v:
            return None
        if not isinstance(v, dict):
            raise ValueError('variants_stock must be a mapping of variant label to count')
        for label, count in v.items():
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise ValueError(f'Variant "{label}" must have a non-negative integer count')
        return v

    @field_validator('images', 'sizes', 'colors', mode='before', check_fields=False)
    @classmethod
    def validate_lists(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            return [v]
        return v


class ProductBody(ProductValidationMixin):
    """Create/replace payload. Omitted optionals become null/false/0 on update."""
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: int = Field(..., ge=0)
    original_price: Optional[int] = Field(None, ge=0)
    transfer_price: Optional[int] = Field(None, ge=0)
    category_id: Optional[str] = Field(None, validation_alias=AliasChoices('category_id', 'categoryId', 'category'))
    subcategory: Optional[str] = None
    image: Optional[str] = None
    images: Optional[List[str]] = None
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    variants_stock: Optional[Dict[str, int]] = None
    stock_status: Optional[str] = None
    is_best_seller: bool = False
    is_new: bool = False
    is_on_sale: bool = False
    order_num: int = Field(0, alias='order')

    def resolved_stock(self, fallback: int) -> int:
        """Variant counts win over the scalar stock; ``fallback`` when neither is given."""
        if self.variants_stock:
            return sum(self.variants_stock.values())
        if self.stock is not None:
            return self.stock
        return fallback

    def column_values(self) -> Dict[str, Any]:
        """Mutable column values, excluding stock which callers resolve."""
        return self.model_dump(exclude={'stock', 'variants_stock'})


class ProductSeed(ProductBody):
    """Bulk import row; ``id`` is kept when supplied so re-running an import upserts."""
    id: Optional[str] = None

    def column_values(self) -> Dict[str, Any]:
        return self.model_dump(exclude={'id', 'stock', 'variants_stock'})


class ProductRead(ProductValidationMixin, TimestampedSchema):
    """Cached read model. View/click counters are deliberately not part of it."""
    id: str
    store_id: str
    name: str
    description: Optional[str] = None
    price: int
    original_price: Optional[int] = None
    transfer_price: Optional[int] = None
    category_id: Optional[str] = None
    subcategory: Optional[str] = None
    image: Optional[str] = None
    images: Optional[List[str]] = None
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    stock: int
    variants_stock: Optional[Dict[str, int]] = None
    stock_status: Optional[str] = None
    is_best_seller: bool = False
    is_new: bool = False
    is_on_sale: bool = False
    order_num: int = 0

    @model_validator(mode='after')
    def fill_stock_status(self):
        if not self.stock_status:
            self.stock_status = derive_stock_status(self.stock)
        return self


class ProductFilters(BaseSchema):
    category: Optional[str] = None  # category id or slug
    subcategory: Optional[str] = None
    limit: int = Field(100, ge=1, le=500)
    offset: int = Field(0, ge=0)


class ProductPage(BaseSchema):
    products: List[ProductRead]
    total: int
