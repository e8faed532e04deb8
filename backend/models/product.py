# backend/models/product.py
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, CheckConstraint, DateTime, func
from sqlalchemy.orm import relationship
from database import Base

# Model Product
# A catalogue entry listed by a seller. The seller of record can change over
# time, so checkout resolves it again at confirmation instead of trusting the
# cart snapshot.
class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False, index=True)
    selling_price = Column(Numeric(12, 2), CheckConstraint("selling_price >= 0"), nullable=False)

    # Decremented only through utils.stock.decrease_stock
    stock_quantity = Column(Integer, CheckConstraint("stock_quantity >= 0"), nullable=False, default=0)

    seller_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    status = Column(String, nullable=False, default="approved", index=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    seller = relationship("User")
