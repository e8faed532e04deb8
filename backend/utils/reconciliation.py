"""Turns a pending checkout into a confirmed order once a payment is known.

The only state transition here is ``pending -> confirmed``. It runs as one
database transaction:

1. conditional tombstone of the provisional order
   (``UPDATE ... WHERE status = 'pending'``),
2. insert of the confirmed order,
3. one line item per product, with the seller resolved from the product row
   at this moment, plus an atomic stock decrement per line.

If the tombstone matches no row, another confirmation already won and its
order is returned instead of creating a second one. Unique keys on
``orders.pending_order_id``, ``orders.external_payment_id`` and
``order_items(order_id, product_id)`` back this up when two confirmations
race. Any storage error rolls the whole transaction back, so retrying is safe.

Which path vouched for the payment is recorded on the order. Signature and
webhook confirmations are checked against the gateway secret; redirect and
manual confirmations accept the payment id as given and are recorded with
low assurance.
"""
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from errors import NotFound, PartialConfirmation, ValidationFailure, VerificationFailure
from models.order import (
    Assurance, FulfillmentStatus, Order, OrderItem, OrderStatus, PaymentStatus,
    PendingOrder, PendingStatus, VerificationMethod,
)
from models.product import Product
from schemas.gateway import WebhookEvent
from utils.razorpay_client import RazorpayClient
from utils.stock import decrease_stock

logger = logging.getLogger(__name__)

ASSURANCE_BY_METHOD = {
    VerificationMethod.SIGNATURE: Assurance.HIGH,
    VerificationMethod.WEBHOOK: Assurance.HIGH,
    VerificationMethod.REDIRECT: Assurance.LOW,
    VerificationMethod.MANUAL: Assurance.LOW,
}

MANUAL_PAYMENT_ID = re.compile(r"^pay_[A-Za-z0-9]+$")


@dataclass
class ConfirmationResult:
    order: Order
    already_confirmed: bool = False


def _merged_lines(items):
    # product_id -> (title, quantity, unit price); duplicate lines are summed
    merged = OrderedDict()
    for line in items or []:
        product_id = int(line["product_id"])
        quantity = int(line["quantity"])
        price = Decimal(str(line["unit_price"]))
        if product_id in merged:
            title, qty, _ = merged[product_id]
            merged[product_id] = (title, qty + quantity, price)
        else:
            merged[product_id] = (line.get("title"), quantity, price)
    return merged


def _resolve_existing(db: Session, pending_id: int, payment_id: str) -> ConfirmationResult:
    order = db.query(Order).filter(Order.pending_order_id == pending_id).first()
    if order:
        if order.external_payment_id != payment_id:
            logger.warning(
                "Pending order %s already confirmed with payment %s, ignoring payment %s",
                pending_id, order.external_payment_id, payment_id,
            )
        return ConfirmationResult(order=order, already_confirmed=True)

    if db.query(Order).filter(Order.external_payment_id == payment_id).first():
        raise VerificationFailure("This payment has already been used for another order", code="payment_reused")

    raise ValidationFailure("Order is no longer awaiting payment", code="not_pending")


def confirm_pending_order(
    db: Session,
    pending: PendingOrder,
    payment_id: str,
    method: VerificationMethod,
    gateway_order_id: Optional[str] = None,
) -> ConfirmationResult:
    payment_id = (payment_id or "").strip()
    if not payment_id:
        raise ValidationFailure("Payment identifier is required", code="missing_payment_id")

    pending_id = pending.id
    order_number = pending.order_number
    assurance = ASSURANCE_BY_METHOD[method]

    try:
        tombstoned = db.execute(
            update(PendingOrder)
            .where(PendingOrder.id == pending_id, PendingOrder.status == PendingStatus.PENDING.value)
            .values(status=PendingStatus.CONFIRMED.value)
            .execution_options(synchronize_session=False)
        )
        if tombstoned.rowcount != 1:
            db.rollback()
            return _resolve_existing(db, pending_id, payment_id)

        order = Order(
            user_id=pending.user_id,
            order_number=order_number,
            status=OrderStatus.CONFIRMED.value,
            payment_status=PaymentStatus.COMPLETED.value,
            total_amount=pending.total_amount,
            currency=pending.currency,
            items_snapshot=pending.items,
            delivery_address=pending.delivery_address,
            price_breakdown=pending.price_breakdown,
            pending_order_id=pending_id,
            gateway_order_id=gateway_order_id or pending.payment_link_id or pending.gateway_order_id,
            external_payment_id=payment_id,
            verification_method=method.value,
            assurance=assurance.value,
        )
        db.add(order)
        db.flush()

        for product_id, (title, quantity, price) in _merged_lines(pending.items).items():
            row = db.execute(select(Product.seller_id).where(Product.id == product_id)).first()
            if row is None:
                logger.warning("Product %s vanished before confirming %s", product_id, order_number)
                seller_id, status = None, FulfillmentStatus.UNASSIGNED
            else:
                seller_id = row[0]
                if decrease_stock(db, product_id, quantity):
                    status = FulfillmentStatus.PENDING
                else:
                    status = FulfillmentStatus.BACKORDERED
            db.add(OrderItem(
                order_id=order.id,
                product_id=product_id,
                seller_id=seller_id,
                title=title,
                quantity=quantity,
                price=price,
                fulfillment_status=status.value,
            ))

        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Concurrent confirmation detected for %s", order_number)
        return _resolve_existing(db, pending_id, payment_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Confirmation of %s failed and was rolled back", order_number)
        raise PartialConfirmation(
            "Payment received but the order could not be finalised, please retry",
            pending_order_id=pending_id,
        ) from e

    db.refresh(order)
    logger.info(
        "Order %s confirmed with payment %s via %s (%s assurance)",
        order_number, payment_id, method.value, assurance.value,
    )
    return ConfirmationResult(order=order)


def confirm_with_signature(
    db: Session,
    gateway: RazorpayClient,
    user_id: int,
    gateway_order_id: str,
    payment_id: str,
    signature: str,
) -> ConfirmationResult:
    """Embedded checkout callback: the widget's signature must check out."""
    if not gateway.verify_payment_signature(gateway_order_id, payment_id, signature):
        logger.warning("Signature verification failed for gateway order %s", gateway_order_id)
        raise VerificationFailure("Payment signature verification failed")

    pending = db.query(PendingOrder).filter(
        PendingOrder.gateway_order_id == gateway_order_id,
        PendingOrder.user_id == user_id,
    ).first()
    if not pending:
        raise NotFound("Pending order not found or access denied")

    return confirm_pending_order(db, pending, payment_id, VerificationMethod.SIGNATURE, gateway_order_id)


def confirm_from_webhook(db: Session, event: WebhookEvent) -> Optional[ConfirmationResult]:
    """Handles a signature-checked webhook. Returns None for events we ignore."""
    payment = event.payload.payment
    if event.event == "payment_link.paid" and event.payload.payment_link and payment:
        link_id = event.payload.payment_link.entity.id
        pending = db.query(PendingOrder).filter(PendingOrder.payment_link_id == link_id).first()
        gateway_ref = link_id
    elif event.event == "order.paid" and event.payload.order and payment:
        gateway_ref = event.payload.order.entity.id
        pending = db.query(PendingOrder).filter(PendingOrder.gateway_order_id == gateway_ref).first()
    else:
        return None

    if not pending:
        raise NotFound(f"No pending order for {gateway_ref}")
    return confirm_pending_order(db, pending, payment.entity.id, VerificationMethod.WEBHOOK, gateway_ref)


def confirm_from_redirect(
    db: Session,
    payment_link_id: Optional[str],
    payment_id: Optional[str],
    link_status: Optional[str],
) -> ConfirmationResult:
    """Hosted payment page redirect. The query parameters are taken at face value."""
    if link_status != "paid" or not payment_link_id or not payment_id:
        raise VerificationFailure("Payment was not completed", code="payment_not_completed")

    pending = db.query(PendingOrder).filter(PendingOrder.payment_link_id == payment_link_id).first()
    if not pending:
        raise NotFound("Pending order not found")
    return confirm_pending_order(db, pending, payment_id, VerificationMethod.REDIRECT, payment_link_id)


def confirm_manually(db: Session, pending: PendingOrder, payment_id: str) -> ConfirmationResult:
    """Shopper pasted the payment id from their receipt; it is not re-checked with the gateway."""
    payment_id = (payment_id or "").strip()
    if not payment_id:
        raise ValidationFailure("Payment identifier is required", code="missing_payment_id")
    if not MANUAL_PAYMENT_ID.match(payment_id):
        raise ValidationFailure("Payment ID should start with pay_", code="invalid_payment_id")
    return confirm_pending_order(db, pending, payment_id, VerificationMethod.MANUAL)
