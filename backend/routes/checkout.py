# backend/routes/checkout.py
import logging
from typing import List, Optional
from urllib.parse import urljoin

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from errors import CheckoutError, PartialConfirmation, UpstreamUnavailable
from models.order import PendingOrder, PendingStatus
from models.users import User
from routes.cart import get_cart_store
from schemas.checkout import (
    CheckoutCallback, CheckoutRequest, ConfirmationOut, EmbeddedCheckoutOut,
    ManualVerification, PaymentLinkOut, PendingOrderOut, PriceBreakdownOut,
    PriceBreakdownRequest, RetryGatewayRequest,
)
from schemas.gateway import GatewayOrderRequest, LinkCustomer, PaymentLinkRequest, WebhookEvent
from utils.audit import client_ip, write_log
from utils.cart_store import CartStore, DatabaseCartStorage
from utils.order_intent import (
    attach_gateway_reference, check_availability, create_provisional_order,
    get_pending_order, has_placeholder_reference, list_pending_orders, validate_checkout,
)
from utils.pricing import (
    PriceBreakdown, calculate_price_breakdown, from_minor_units, is_known_coupon, money, to_minor_units,
)
from utils.razorpay_client import GatewayError, RazorpayClient, get_gateway
from utils.reconciliation import (
    ConfirmationResult, confirm_from_redirect, confirm_from_webhook, confirm_manually,
    confirm_with_signature,
)
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/checkout", tags=["Checkout"])
logger = logging.getLogger(__name__)


def _breakdown_out(breakdown: PriceBreakdown) -> PriceBreakdownOut:
    return PriceBreakdownOut(
        subtotal=float(breakdown.subtotal),
        discount=float(breakdown.discount),
        coupon_discount=float(breakdown.coupon_discount),
        delivery_charge=float(breakdown.delivery_charge),
        platform_charge=float(breakdown.platform_charge),
        tax=float(breakdown.tax),
        total=float(breakdown.total),
        coupon_code=breakdown.coupon_code,
        coupon_applied=breakdown.coupon_code is not None,
    )


def _stored_breakdown(pending: PendingOrder) -> PriceBreakdownOut:
    data = pending.price_breakdown or {}
    return PriceBreakdownOut(
        subtotal=float(data.get("subtotal", 0)),
        discount=float(data.get("discount", 0)),
        coupon_discount=float(data.get("coupon_discount", 0)),
        delivery_charge=float(data.get("delivery_charge", 0)),
        platform_charge=float(data.get("platform_charge", 0)),
        tax=float(data.get("tax", 0)),
        total=float(pending.total_amount),
        coupon_code=data.get("coupon_code"),
        coupon_applied=data.get("coupon_code") is not None,
    )


def _pending_to_out(pending: PendingOrder) -> PendingOrderOut:
    out = PendingOrderOut.model_validate(pending)
    out.awaiting_gateway = has_placeholder_reference(pending) and not pending.payment_link_id
    return out


def _confirmation_to_out(result: ConfirmationResult) -> ConfirmationOut:
    order = result.order
    return ConfirmationOut(
        order_id=order.id,
        order_number=order.order_number,
        payment_id=order.external_payment_id,
        status=order.status,
        verification_method=order.verification_method,
        assurance=order.assurance,
        already_confirmed=result.already_confirmed,
    )


def _after_confirmation(db: Session, result: ConfirmationResult, request: Request, source: str):
    order = result.order
    if not result.already_confirmed:
        # The purchased cart is done with
        CartStore.open(DatabaseCartStorage(db, order.user_id)).clear()
    write_log(
        db, user_id=order.user_id, action="PAYMENT_CONFIRM", resource="orders",
        status="DUPLICATE" if result.already_confirmed else "SUCCESS",
        ip=client_ip(request),
        meta={
            "order_id": order.id, "order_number": order.order_number,
            "payment_id": order.external_payment_id, "source": source,
            "verification_method": order.verification_method, "assurance": order.assurance,
        },
    )


def _log_failure(db: Session, user_id: Optional[int], action: str, request: Request, error: CheckoutError, **meta):
    meta.update({"code": error.code, "error": error.message})
    write_log(db, user_id=user_id, action=action, resource="checkout", status="FAIL",
              ip=client_ip(request), meta=meta)


def _embedded_out(gateway: RazorpayClient, pending: PendingOrder, user: User) -> EmbeddedCheckoutOut:
    return EmbeddedCheckoutOut(
        key_id=gateway.key_id,
        amount=to_minor_units(pending.total_amount),
        currency=pending.currency,
        gateway_order_id=pending.gateway_order_id,
        pending_order_id=pending.id,
        order_number=pending.order_number,
        name=settings.STORE_NAME,
        prefill={
            "name": pending.delivery_address.get("full_name", ""),
            "email": user.email,
            "contact": pending.delivery_address.get("phone", ""),
        },
        breakdown=_stored_breakdown(pending),
    )


def _link_out(pending: PendingOrder) -> PaymentLinkOut:
    return PaymentLinkOut(
        link_url=pending.payment_link_url,
        payment_link_id=pending.payment_link_id,
        pending_order_id=pending.id,
        order_number=pending.order_number,
        breakdown=_stored_breakdown(pending),
    )


async def _open_embedded_checkout(
    db: Session, gateway: RazorpayClient, pending: PendingOrder, user: User, request: Request
) -> EmbeddedCheckoutOut:
    amount = to_minor_units(pending.total_amount)
    gateway_request = GatewayOrderRequest(
        amount=amount,
        currency=pending.currency,
        receipt=pending.order_number,
        notes={"pending_order_id": str(pending.id), "user_id": str(user.id)},
    )
    try:
        gateway_order = await gateway.create_order(gateway_request)
        if gateway_order.amount != amount:
            raise GatewayError(
                f"Gateway order amount {from_minor_units(gateway_order.amount)} does not match "
                f"{money(pending.total_amount)}"
            )
    except GatewayError as e:
        error = UpstreamUnavailable(
            "Payment service is unavailable. Your order was saved, retry payment for it.",
            code="gateway_order_pending",
            pending_order_id=pending.id,
            order_number=pending.order_number,
        )
        _log_failure(db, user.id, "GATEWAY_ORDER", request, error, pending_order_id=pending.id)
        raise error from e

    attach_gateway_reference(db, pending, gateway_order_id=gateway_order.id)
    write_log(db, user_id=user.id, action="GATEWAY_ORDER", resource="checkout", status="SUCCESS",
              ip=client_ip(request), meta={"pending_order_id": pending.id, "gateway_order_id": gateway_order.id})

    return _embedded_out(gateway, pending, user)


async def _open_payment_link(
    db: Session, gateway: RazorpayClient, pending: PendingOrder, user: User, request: Request
) -> PaymentLinkOut:
    address = pending.delivery_address
    link_request = PaymentLinkRequest(
        amount=to_minor_units(pending.total_amount),
        currency=pending.currency,
        reference_id=pending.order_number,
        description=f"{settings.STORE_NAME} order {pending.order_number}",
        customer=LinkCustomer(name=address.get("full_name", ""), email=user.email, contact=address.get("phone")),
        callback_url=urljoin(settings.BACKEND_URL, "/checkout/payment-link/callback"),
        notes={"pending_order_id": str(pending.id), "user_id": str(user.id)},
    )
    try:
        link = await gateway.create_payment_link(link_request)
    except GatewayError as e:
        error = UpstreamUnavailable(
            "Could not create a payment link. Your order was saved, retry payment for it.",
            code="gateway_order_pending",
            pending_order_id=pending.id,
            order_number=pending.order_number,
        )
        _log_failure(db, user.id, "PAYMENT_LINK", request, error, pending_order_id=pending.id)
        raise error from e

    attach_gateway_reference(db, pending, payment_link_id=link.id, payment_link_url=link.short_url)
    write_log(db, user_id=user.id, action="PAYMENT_LINK", resource="checkout", status="SUCCESS",
              ip=client_ip(request), meta={"pending_order_id": pending.id, "payment_link_id": link.id})

    return _link_out(pending)


def _start_checkout(
    db: Session, cart: CartStore, user: User, payload: CheckoutRequest, request: Request
) -> PendingOrder:
    items = cart.items
    validate_checkout(user.id, items)
    check_availability(db, items)
    breakdown = calculate_price_breakdown(cart.total, payload.coupon_code)

    pending = create_provisional_order(
        db,
        user_id=user.id,
        items=items,
        breakdown=breakdown,
        address=payload.delivery_address,
    )
    write_log(db, user_id=user.id, action="CHECKOUT_INTENT", resource="checkout", status="SUCCESS",
              ip=client_ip(request),
              meta={"pending_order_id": pending.id, "order_number": pending.order_number,
                    "total": str(breakdown.total), "coupon": breakdown.coupon_code})
    return pending


# Price the current cart, optionally with a coupon
@router.post("/price-breakdown", response_model=PriceBreakdownOut)
def price_breakdown(
    payload: PriceBreakdownRequest,
    cart: CartStore = Depends(get_cart_store),
):
    out = _breakdown_out(calculate_price_breakdown(cart.total, payload.coupon_code))
    if payload.coupon_code and not is_known_coupon(payload.coupon_code):
        logger.info("Unknown coupon code %r ignored", payload.coupon_code)
    return out


# Embedded checkout: provisional order + gateway order for the widget
@router.post("/intent", response_model=EmbeddedCheckoutOut)
async def create_checkout_intent(
    payload: CheckoutRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    cart: CartStore = Depends(get_cart_store),
    gateway: RazorpayClient = Depends(get_gateway),
):
    pending = _start_checkout(db, cart, current_user, payload, request)
    return await _open_embedded_checkout(db, gateway, pending, current_user, request)


# Hosted payment page: provisional order + payment link, confirmed later
@router.post("/payment-link", response_model=PaymentLinkOut)
async def create_checkout_payment_link(
    payload: CheckoutRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    cart: CartStore = Depends(get_cart_store),
    gateway: RazorpayClient = Depends(get_gateway),
):
    pending = _start_checkout(db, cart, current_user, payload, request)
    return await _open_payment_link(db, gateway, pending, current_user, request)


@router.get("/pending", response_model=List[PendingOrderOut])
def my_pending_orders(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return [_pending_to_out(p) for p in list_pending_orders(db, current_user.id)]


@router.get("/pending/{pending_id}", response_model=PendingOrderOut)
def pending_order_detail(
    pending_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _pending_to_out(get_pending_order(db, pending_id, current_user.id))


# Ask the gateway again for an existing pending order instead of starting over
@router.post("/pending/{pending_id}/retry-gateway")
async def retry_gateway(
    pending_id: int,
    payload: RetryGatewayRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: RazorpayClient = Depends(get_gateway),
):
    pending = get_pending_order(db, pending_id, current_user.id)
    if pending.status != PendingStatus.PENDING.value:
        raise HTTPException(status_code=409, detail="Order is no longer awaiting payment")

    # A reference already issued stays the one to pay against; payments made
    # through it must still reconcile
    if payload.mode == "link":
        if pending.payment_link_id:
            return _link_out(pending)
        return await _open_payment_link(db, gateway, pending, current_user, request)
    if not has_placeholder_reference(pending):
        return _embedded_out(gateway, pending, current_user)
    return await _open_embedded_checkout(db, gateway, pending, current_user, request)


# Embedded checkout success callback
@router.post("/verify", response_model=ConfirmationOut)
def verify_checkout_payment(
    payload: CheckoutCallback,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: RazorpayClient = Depends(get_gateway),
):
    try:
        result = confirm_with_signature(
            db, gateway, current_user.id, payload.gateway_order_id, payload.payment_id, payload.signature,
        )
    except CheckoutError as e:
        _log_failure(db, current_user.id, "PAYMENT_VERIFY", request, e,
                     gateway_order_id=payload.gateway_order_id, payment_id=payload.payment_id)
        raise

    _after_confirmation(db, result, request, source="checkout_callback")
    return _confirmation_to_out(result)


# Shopper pastes the payment id from their receipt
@router.post("/pending/{pending_id}/manual-verify", response_model=ConfirmationOut)
def manual_verify_payment(
    pending_id: int,
    payload: ManualVerification,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    pending = get_pending_order(db, pending_id, current_user.id)
    try:
        result = confirm_manually(db, pending, payload.payment_id)
    except CheckoutError as e:
        _log_failure(db, current_user.id, "PAYMENT_MANUAL_VERIFY", request, e,
                     pending_order_id=pending_id, payment_id=payload.payment_id)
        raise

    _after_confirmation(db, result, request, source="manual_entry")
    return _confirmation_to_out(result)


# Browser lands here after paying on the hosted page
@router.get("/payment-link/callback")
def payment_link_callback(
    request: Request,
    razorpay_payment_link_id: Optional[str] = Query(None),
    razorpay_payment_id: Optional[str] = Query(None),
    razorpay_payment_link_status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    logger.info("Payment link callback received: link=%s payment=%s status=%s",
                razorpay_payment_link_id, razorpay_payment_id, razorpay_payment_link_status)
    try:
        result = confirm_from_redirect(
            db, razorpay_payment_link_id, razorpay_payment_id, razorpay_payment_link_status,
        )
    except CheckoutError as e:
        _log_failure(db, None, "PAYMENT_LINK_CALLBACK", request, e,
                     payment_link_id=razorpay_payment_link_id, payment_id=razorpay_payment_id)
        return RedirectResponse(urljoin(settings.FRONTEND_URL, "/orders?payment=failed"), status_code=302)

    _after_confirmation(db, result, request, source="payment_link_redirect")
    return RedirectResponse(urljoin(settings.FRONTEND_URL, "/orders?payment=success"), status_code=302)


@router.post("/webhook")
async def gateway_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway),
    razorpay_signature: Optional[str] = Header(None, alias="X-Razorpay-Signature"),
):
    if razorpay_signature is None:
        raise HTTPException(status_code=400, detail="Missing X-Razorpay-Signature header")

    body = await request.body()
    logger.info("Gateway webhook received, body_preview=%s", body[:500])

    if not gateway.verify_webhook_signature(body, razorpay_signature):
        logger.warning("Webhook signature verification failed")
        raise HTTPException(status_code=400, detail="Signature verification failed")

    try:
        event = WebhookEvent.model_validate_json(body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Unrecognised webhook payload")

    try:
        result = confirm_from_webhook(db, event)
    except PartialConfirmation:
        raise
    except CheckoutError as e:
        # Acknowledge so the gateway stops redelivering an event we cannot apply
        _log_failure(db, None, "PAYMENT_WEBHOOK", request, e, event=event.event)
        return {"status": "error", "code": e.code, "message": e.message}

    if result is None:
        return {"status": "ignored", "event": event.event}

    _after_confirmation(db, result, request, source=f"webhook:{event.event}")
    return {"status": "ok", "order_id": result.order.id}
