import logging
from sqlalchemy import update
from sqlalchemy.orm import Session

from models.product import Product

logger = logging.getLogger(__name__)

def decrease_stock(db: Session, product_id: int, qty: int) -> bool:
    """Atomically take ``qty`` units off a product's stock.

    One conditional UPDATE: the row only changes when enough stock is left, so
    concurrent callers can never push the quantity below zero. Returns whether
    the decrement happened. Runs inside the caller's transaction.
    """
    if qty <= 0:
        return True
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity >= qty)
        .values(stock_quantity=Product.stock_quantity - qty)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Insufficient stock or missing product %s for qty %s", product_id, qty)
        return False
    return True
