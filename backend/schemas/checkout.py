from datetime import datetime
from pydantic import BaseModel, ConfigDict, StringConstraints
from typing import Annotated, Dict, List, Literal, Optional

NonEmpty = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


# Delivery details captured at checkout and snapshotted onto the order
class DeliveryAddress(BaseModel):
    full_name: NonEmpty
    phone: NonEmpty
    address: NonEmpty
    city: NonEmpty
    state: NonEmpty
    pincode: NonEmpty


class PriceBreakdownRequest(BaseModel):
    coupon_code: Optional[str] = None


class PriceBreakdownOut(BaseModel):
    subtotal: float
    discount: float
    coupon_discount: float
    delivery_charge: float
    platform_charge: float
    tax: float
    total: float
    coupon_code: Optional[str] = None
    coupon_applied: bool = False


class CheckoutRequest(BaseModel):
    delivery_address: DeliveryAddress
    coupon_code: Optional[str] = None


# Options the embedded checkout widget is opened with
class EmbeddedCheckoutOut(BaseModel):
    key_id: str
    amount: int
    currency: str
    gateway_order_id: str
    pending_order_id: int
    order_number: str
    name: str
    prefill: Dict[str, str]
    breakdown: PriceBreakdownOut


class PaymentLinkOut(BaseModel):
    link_url: str
    payment_link_id: str
    pending_order_id: int
    order_number: str
    breakdown: PriceBreakdownOut


class RetryGatewayRequest(BaseModel):
    mode: Literal["embedded", "link"] = "embedded"


class CheckoutCallback(BaseModel):
    gateway_order_id: str
    payment_id: str
    signature: str


class ManualVerification(BaseModel):
    payment_id: str


class PendingOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    status: str
    total_amount: float
    currency: str
    items: List[dict]
    delivery_address: dict
    price_breakdown: Optional[dict] = None
    gateway_order_id: str
    payment_link_id: Optional[str] = None
    payment_link_url: Optional[str] = None
    awaiting_gateway: bool = False
    created_at: Optional[datetime] = None


class ConfirmationOut(BaseModel):
    order_id: int
    order_number: str
    payment_id: str
    status: str
    verification_method: str
    assurance: str
    already_confirmed: bool = False
