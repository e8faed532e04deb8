# backend/routes/orders.py
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, joinedload

from database import get_db
import logging
from utils.tokenJWT import get_current_user
from models.users import User
from models.order import Order, OrderItem
from schemas.order import OrderResponse, OrdersPage, OrderItemOut, SellerItemsPage, SellerOrderLineOut

router = APIRouter(prefix="/orders", tags=["Orders"])
logger = logging.getLogger(__name__)

# Check permissions for Admin role
def _is_admin(user: User) -> bool:
    return (user.role or "").upper() == "ADMIN"

# Map Order model to OrderResponse schema
def _order_to_out(order: Order) -> OrderResponse:
    items: List[OrderItemOut] = []
    for it in order.items:
        items.append(OrderItemOut(
            product_id=it.product_id,
            seller_id=it.seller_id,
            title=it.title or (it.product.title if it.product else "Deleted product"),
            quantity=it.quantity,
            price=float(it.price),
            line_total=float(it.price * it.quantity),
            fulfillment_status=it.fulfillment_status,
        ))
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        total_amount=float(order.total_amount),
        currency=order.currency,
        payment_id=order.external_payment_id,
        verification_method=order.verification_method,
        assurance=order.assurance,
        delivery_address=order.delivery_address or {},
        price_breakdown=order.price_breakdown,
        created_at=order.created_at,
        items=items
    )

def _visible_to(order: Order, user: User) -> bool:
    return order.user_id == user.id or _is_admin(user)


# List the user's confirmed orders, newest first
@router.get("", response_model=OrdersPage)
def list_my_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    q = db.query(Order).filter(Order.user_id == current_user.id)
    total = q.count()
    rows = (
        q.options(joinedload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    items = [_order_to_out(o) for o in rows]
    return {"items": items, "total": total, "page": page, "page_size": page_size}


# Find the order a gateway payment was reconciled into
@router.get("/lookup/{payment_id}", response_model=OrderResponse)
def get_order_by_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    o = db.query(Order).options(joinedload(Order.items)).filter(
        Order.external_payment_id == payment_id
    ).first()

    if not o or not _visible_to(o, current_user):
        raise HTTPException(status_code=404, detail="Order not found or forbidden")
    return _order_to_out(o)


# Order lines sold by the current user, newest first
@router.get("/seller-items", response_model=SellerItemsPage)
def list_seller_items(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    q = db.query(OrderItem, Order.order_number).join(Order, OrderItem.order_id == Order.id).filter(
        OrderItem.seller_id == current_user.id
    )
    total = q.count()
    rows = (
        q.order_by(OrderItem.created_at.desc(), OrderItem.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    items = [
        SellerOrderLineOut(
            id=it.id,
            order_id=it.order_id,
            order_number=order_number,
            product_id=it.product_id,
            title=it.title,
            quantity=it.quantity,
            price=float(it.price),
            line_total=float(it.price * it.quantity),
            fulfillment_status=it.fulfillment_status,
            created_at=it.created_at,
        )
        for it, order_number in rows
    ]
    return {"items": items, "total": total, "page": page, "page_size": page_size}


# Get details of a specific order
@router.get("/{order_id}", response_model=OrderResponse)
def get_order_detail(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    o = db.query(Order).options(joinedload(Order.items)).filter(Order.id == order_id).first()

    if not o or not _visible_to(o, current_user):
        raise HTTPException(status_code=404, detail="Order not found or forbidden")
    logger.debug("Order %s viewed by user %s", o.id, current_user.id)
    return _order_to_out(o)
