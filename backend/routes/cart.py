# backend/routes/cart.py
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
from database import get_db
from utils.tokenJWT import get_current_user
from utils.audit import write_log, client_ip
from utils.cart_store import CartStore, DatabaseCartStorage
from models.users import User
from models.product import Product
from schemas.cart import CartAddItem, CartUpdateItem, CartOut, CartLine

router = APIRouter(prefix="/cart", tags=["Cart"])

def get_cart_store(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> CartStore:
    # One store per request, rehydrated from the user's server-side cart
    return CartStore.open(DatabaseCartStorage(db, current_user.id))

def _cart_line_for(product: Product) -> CartLine:
    return CartLine(
        product_id=product.id,
        title=product.title,
        unit_price=product.selling_price,
        quantity=0,
        max_stock=product.stock_quantity or 0,
    )

@router.get("", response_model=CartOut)
def get_cart(cart: CartStore = Depends(get_cart_store)):
    return cart.snapshot()

@router.post("/add", response_model=CartOut, status_code=status.HTTP_200_OK)
def add_to_cart(
    payload: CartAddItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    cart: CartStore = Depends(get_cart_store),
):
    product = db.query(Product).filter(Product.id == payload.product_id).first()
    if not product or product.status != "approved":
        raise HTTPException(status_code=404, detail="Product not found")

    # Nothing to add when the product is sold out
    if not product.stock_quantity:
        raise HTTPException(status_code=400, detail="Out of stock")

    before = cart.quantity_of(product.id)
    cart.add(_cart_line_for(product), payload.qty)
    added = cart.quantity_of(product.id) - before

    out = cart.snapshot()
    write_log(
        db,
        user_id=current_user.id,
        action="CART_ADD",
        resource="cart",
        status="SUCCESS" if added == payload.qty else "CAPPED",
        ip=client_ip(request),
        meta={"product_id": product.id, "qty": payload.qty, "added": added, "total": out.total},
    )
    return out

@router.put("/items/{product_id}", response_model=CartOut)
def update_cart_item(
    product_id: int,
    payload: CartUpdateItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    cart: CartStore = Depends(get_cart_store),
):
    if not cart.contains(product_id):
        raise HTTPException(status_code=404, detail="Cart item not found")

    cart.set_quantity(product_id, payload.qty)

    out = cart.snapshot()
    write_log(
        db,
        user_id=current_user.id,
        action="CART_UPDATE",
        resource="cart",
        status="SUCCESS",
        ip=client_ip(request),
        meta={"product_id": product_id, "qty": payload.qty, "total": out.total},
    )
    return out

@router.delete("/items/{product_id}", response_model=CartOut)
def delete_cart_item(
    product_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    cart: CartStore = Depends(get_cart_store),
):
    if not cart.contains(product_id):
        raise HTTPException(status_code=404, detail="Cart item not found")

    cart.remove(product_id)

    out = cart.snapshot()
    write_log(
        db,
        user_id=current_user.id,
        action="CART_DELETE",
        resource="cart",
        status="SUCCESS",
        ip=client_ip(request),
        meta={"product_id": product_id, "cart_items": len(out.items), "total": out.total},
    )
    return out

@router.delete("", response_model=CartOut)
def clear_cart(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    cart: CartStore = Depends(get_cart_store),
):
    cart.clear()
    write_log(db, user_id=current_user.id, action="CART_CLEAR", resource="cart",
              status="SUCCESS", ip=client_ip(request))
    return cart.snapshot()
