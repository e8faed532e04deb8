from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from typing import List

# One cart line as held by CartStore and persisted by its storage
class CartLine(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    title: str
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(ge=0)
    max_stock: int = Field(ge=0)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

# Request schema for adding an item to the cart
class CartAddItem(BaseModel):
    product_id: int
    qty: int = Field(default=1, gt=0)

# Request schema for setting a line quantity; zero or less removes the line
class CartUpdateItem(BaseModel):
    qty: int

# Response schema for a single cart line item
class CartItemOut(BaseModel):
    product_id: int
    title: str
    qty: int
    max_stock: int
    unit_price: float
    line_total: float

# Response schema for the entire cart summary
class CartOut(BaseModel):
    items: List[CartItemOut]
    total: float
    item_count: int
