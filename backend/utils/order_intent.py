"""Provisional order (checkout intent) creation.

A provisional order is written once, before any payment happens, and carries
a snapshot of the cart, the delivery address and the price breakdown. Stock
is untouched here; it is only taken when a payment is reconciled.
"""
import logging
import time
import uuid
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from errors import NotFound, OrderCreationFailed, Unauthenticated, ValidationFailure
from models.order import PendingOrder, PendingStatus
from models.product import Product
from schemas.cart import CartLine
from schemas.checkout import DeliveryAddress
from utils.pricing import PriceBreakdown

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "temp_"


def generate_order_number() -> str:
    return f"ORD-{time.time_ns()}"


def placeholder_reference() -> str:
    return f"{PLACEHOLDER_PREFIX}{uuid.uuid4().hex}"


def has_placeholder_reference(pending: PendingOrder) -> bool:
    return (pending.gateway_order_id or "").startswith(PLACEHOLDER_PREFIX)


def validate_checkout(user_id: Optional[int], items: List[CartLine]) -> None:
    if not user_id:
        raise Unauthenticated("Sign in to check out")
    if not items:
        raise ValidationFailure("Cart is empty", code="empty_cart")
    for line in items:
        if line.quantity <= 0:
            raise ValidationFailure(f"Invalid quantity for {line.title}", code="invalid_cart")
        if line.unit_price <= 0:
            raise ValidationFailure(f"Invalid price for {line.title}", code="invalid_cart")


def check_availability(db: Session, items: List[CartLine]) -> None:
    """Rejects lines whose product is gone, unapproved or short on stock."""
    ids = [line.product_id for line in items]
    products = {p.id: p for p in db.query(Product).filter(Product.id.in_(ids)).all()}
    for line in items:
        product = products.get(line.product_id)
        if product is None or product.status != "approved":
            raise ValidationFailure(f"{line.title} is no longer available", code="product_unavailable")
        if product.stock_quantity < line.quantity:
            raise ValidationFailure(
                f"Insufficient stock for {product.title}. Available: {product.stock_quantity}, "
                f"Requested: {line.quantity}",
                code="insufficient_stock",
            )


def create_provisional_order(
    db: Session,
    *,
    user_id: int,
    items: List[CartLine],
    breakdown: PriceBreakdown,
    address: DeliveryAddress,
    gateway_order_id: Optional[str] = None,
    currency: Optional[str] = None,
) -> PendingOrder:
    validate_checkout(user_id, items)

    snapshot = [line.model_dump(mode="json") for line in items]
    attempts = max(1, settings.ORDER_NUMBER_ATTEMPTS)

    for _ in range(attempts):
        order_number = generate_order_number()
        pending = PendingOrder(
            user_id=user_id,
            order_number=order_number,
            status=PendingStatus.PENDING.value,
            total_amount=breakdown.total,
            currency=currency or settings.CURRENCY,
            items=snapshot,
            delivery_address=address.model_dump(),
            price_breakdown=breakdown.as_json(),
            gateway_order_id=gateway_order_id or placeholder_reference(),
        )
        db.add(pending)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning("Order number %s already taken, generating another", order_number)
            continue
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception("Failed to write provisional order for user %s", user_id)
            raise OrderCreationFailed("Failed to create order") from e

        db.refresh(pending)
        logger.info("Provisional order %s created for user %s", pending.order_number, user_id)
        return pending

    raise OrderCreationFailed("Could not allocate a unique order number")


def attach_gateway_reference(
    db: Session,
    pending: PendingOrder,
    *,
    gateway_order_id: Optional[str] = None,
    payment_link_id: Optional[str] = None,
    payment_link_url: Optional[str] = None,
) -> PendingOrder:
    """Stores the gateway's reference on a provisional order that is still pending.

    A reference is written once: the placeholder order id can be replaced and an
    empty payment link slot filled, but a real reference is never overwritten,
    since a payment may already be in flight against it.
    """
    values = {}
    conditions = [PendingOrder.id == pending.id, PendingOrder.status == PendingStatus.PENDING.value]
    if gateway_order_id:
        values["gateway_order_id"] = gateway_order_id
        conditions.append(PendingOrder.gateway_order_id.startswith(PLACEHOLDER_PREFIX, autoescape=True))
    if payment_link_id:
        values["payment_link_id"] = payment_link_id
        values["payment_link_url"] = payment_link_url
        conditions.append(PendingOrder.payment_link_id.is_(None))
    if not values:
        return pending

    try:
        result = db.execute(
            update(PendingOrder)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to attach gateway reference to %s", pending.order_number)
        raise OrderCreationFailed("Failed to record payment reference") from e

    db.refresh(pending)
    if result.rowcount != 1:
        if pending.status != PendingStatus.PENDING.value:
            raise ValidationFailure("Order is no longer awaiting payment", code="not_pending")
        raise ValidationFailure("Order already has a payment reference", code="reference_exists")
    return pending


def get_pending_order(db: Session, pending_id: int, user_id: int) -> PendingOrder:
    pending = db.query(PendingOrder).filter(
        PendingOrder.id == pending_id, PendingOrder.user_id == user_id
    ).first()
    if not pending:
        raise NotFound("Pending order not found")
    return pending


def list_pending_orders(db: Session, user_id: int) -> List[PendingOrder]:
    return (
        db.query(PendingOrder)
        .filter(PendingOrder.user_id == user_id, PendingOrder.status == PendingStatus.PENDING.value)
        .order_by(PendingOrder.created_at.desc(), PendingOrder.id.desc())
        .all()
    )
