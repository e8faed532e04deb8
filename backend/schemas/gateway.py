# Typed payloads exchanged with the payment gateway. Responses that do not
# validate against these models are rejected at the client boundary.
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Literal, Optional


class GatewayOrderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: int = Field(gt=0)  # minor units
    currency: str = Field(min_length=3, max_length=3)
    receipt: str = Field(max_length=40)
    notes: Dict[str, str] = Field(default_factory=dict)


class GatewayOrder(BaseModel):
    entity: Literal["order"]
    id: str
    amount: int
    currency: str
    status: str
    receipt: Optional[str] = None


class LinkCustomer(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    email: Optional[str] = None
    contact: Optional[str] = None


class PaymentLinkRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: int = Field(gt=0)  # minor units
    currency: str = Field(min_length=3, max_length=3)
    reference_id: str = Field(max_length=40)
    description: str
    customer: LinkCustomer
    notify: Dict[str, bool] = Field(default_factory=lambda: {"sms": False, "email": False})
    callback_url: str
    callback_method: Literal["get"] = "get"
    notes: Dict[str, str] = Field(default_factory=dict)


class PaymentLink(BaseModel):
    id: str
    short_url: str
    status: str
    amount: int
    reference_id: Optional[str] = None


class WebhookEntity(BaseModel):
    id: str
    order_id: Optional[str] = None


class WebhookWrapped(BaseModel):
    entity: WebhookEntity


class WebhookPayload(BaseModel):
    payment: Optional[WebhookWrapped] = None
    payment_link: Optional[WebhookWrapped] = None
    order: Optional[WebhookWrapped] = None


class WebhookEvent(BaseModel):
    event: str
    payload: WebhookPayload
