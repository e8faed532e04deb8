# backend/models/cart.py
from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric, UniqueConstraint, func
from sqlalchemy.orm import relationship
from database import Base

# Server-side copy of a user's cart, written by DatabaseCartStorage
class Cart(Base):
    __tablename__ = "carts" # Table name

    id = Column(Integer, primary_key=True, index=True) # Primary key
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False) # Foreign key to users
    status = Column(String, default="open", index=True)  # Cart status
    created_at = Column(DateTime, server_default=func.now()) # Creation timestamp

    # Ordered by position so the cart keeps insertion order across reloads
    items = relationship(
        "CartItem", back_populates="cart", cascade="all, delete-orphan",
        order_by="CartItem.position",
    )


# A single cart line with the product snapshot taken when it was added
class CartItem(Base):
    __tablename__ = "cart_items" # Table name

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), index=True, nullable=False) # Foreign key to parent cart
    product_id = Column(Integer, ForeignKey("products.id"), index=True, nullable=False) # Foreign key to product
    position = Column(Integer, nullable=False, default=0)
    title = Column(String, nullable=False)
    qty = Column(Integer, nullable=False, default=1) # Product quantity
    unit_price_snapshot = Column(Numeric(12, 2), nullable=False) # Unit price at the moment of addition
    max_stock = Column(Integer, nullable=False) # Stock ceiling at the moment of addition

    cart = relationship("Cart", back_populates="items") # Relationship back to Cart

    __table_args__ = (
        # Unique constraint to prevent duplicate product entries in the same cart
        UniqueConstraint("cart_id", "product_id", name="uq_cartitem_cart_product"),
    )
