from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime


# Output schema for an individual order line item
class OrderItemOut(BaseModel):
    product_id: int
    seller_id: Optional[int] = None
    title: Optional[str] = None
    quantity: int
    price: float
    line_total: float
    fulfillment_status: str


# Output schema representing the full confirmed order
class OrderResponse(BaseModel):
    id: int
    order_number: str
    status: str
    payment_status: str
    total_amount: float
    currency: str
    payment_id: str
    verification_method: str
    assurance: str
    delivery_address: dict
    price_breakdown: Optional[dict] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemOut]
    class Config:
        from_attributes = True

# Schema for paginated order lists
class OrdersPage(BaseModel):
    items: List[OrderResponse]
    total: int
    page: int
    page_size: int


# One line of a confirmed order, as its seller sees it
class SellerOrderLineOut(BaseModel):
    id: int
    order_id: int
    order_number: str
    product_id: int
    title: Optional[str] = None
    quantity: int
    price: float
    line_total: float
    fulfillment_status: str
    created_at: Optional[datetime] = None


class SellerItemsPage(BaseModel):
    items: List[SellerOrderLineOut]
    total: int
    page: int
    page_size: int
