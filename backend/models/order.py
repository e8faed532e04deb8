from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, JSON, UniqueConstraint, func
from sqlalchemy.orm import relationship
from database import Base
import enum


class PendingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class OrderStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


# Which path vouched for the external payment id
class VerificationMethod(str, enum.Enum):
    SIGNATURE = "signature"
    WEBHOOK = "webhook"
    REDIRECT = "redirect"
    MANUAL = "manual"


class Assurance(str, enum.Enum):
    HIGH = "high"
    LOW = "low"


class FulfillmentStatus(str, enum.Enum):
    PENDING = "pending"
    BACKORDERED = "backordered"
    UNASSIGNED = "unassigned"


# Checkout intent written before payment. It stays "pending" until a payment
# is reconciled against it; the confirmation flips it to "confirmed" exactly once.
class PendingOrder(Base):
    __tablename__ = "pending_orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_number = Column(String, nullable=False, unique=True)
    status = Column(String, nullable=False, default=PendingStatus.PENDING.value, index=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")

    # Snapshots taken at checkout time
    items = Column(JSON, nullable=False)
    delivery_address = Column(JSON, nullable=False)
    price_breakdown = Column(JSON, nullable=True)

    # Gateway references; gateway_order_id holds a temp_ placeholder until
    # the gateway order (or payment link) exists
    gateway_order_id = Column(String, nullable=False, index=True)
    payment_link_id = Column(String, nullable=True, index=True)
    payment_link_url = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_number = Column(String, nullable=False, unique=True)
    status = Column(String, nullable=False, default=OrderStatus.CONFIRMED.value)
    payment_status = Column(String, nullable=False, default=PaymentStatus.COMPLETED.value)
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")

    items_snapshot = Column(JSON, nullable=False)
    delivery_address = Column(JSON, nullable=False)
    price_breakdown = Column(JSON, nullable=True)

    # One confirmed order per pending order and per external payment
    pending_order_id = Column(Integer, ForeignKey("pending_orders.id"), nullable=False, unique=True)
    gateway_order_id = Column(String, nullable=True, index=True)
    external_payment_id = Column(String, nullable=False, unique=True)
    verification_method = Column(String, nullable=False)
    assurance = Column(String, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    confirmed_at = Column(DateTime(timezone=True), server_default=func.now())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    # Not a foreign key: the line outlives the product it was sold from
    product_id = Column(Integer, nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    title = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    fulfillment_status = Column(String, nullable=False, default=FulfillmentStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="items")
    product = relationship("Product", primaryjoin="foreign(OrderItem.product_id) == Product.id", viewonly=True)

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", name="uq_orderitem_order_product"),
    )
