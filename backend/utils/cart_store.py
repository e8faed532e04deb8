"""Cart state owned by a checkout flow.

``CartStore`` is a plain object: whoever runs the checkout creates it with a
storage collaborator and passes it around. Totals are recomputed from the
lines after every mutation.
"""
import logging
from decimal import Decimal
from pathlib import Path
from typing import Iterable, List, Optional, Protocol

from pydantic import TypeAdapter
from sqlalchemy.orm import Session

from config import settings
from models.cart import Cart, CartItem
from schemas.cart import CartLine, CartItemOut, CartOut

logger = logging.getLogger(__name__)

_lines_adapter = TypeAdapter(List[CartLine])


class CartStorage(Protocol):
    def load(self) -> List[CartLine]: ...

    def save(self, items: List[CartLine]) -> None: ...


class MemoryCartStorage:
    def __init__(self, raw: Optional[str] = None):
        self.raw = raw

    def load(self) -> List[CartLine]:
        if not self.raw:
            return []
        return _lines_adapter.validate_json(self.raw)

    def save(self, items: List[CartLine]) -> None:
        self.raw = _lines_adapter.dump_json(items).decode("utf-8")


class JsonFileCartStorage:
    """One JSON file per cart key, the server-side analogue of browser local storage."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def for_key(cls, key: str, directory: Optional[str] = None) -> "JsonFileCartStorage":
        base = Path(directory or settings.CART_STORAGE_DIR)
        return cls(base / f"cart-{key}.json")

    def load(self) -> List[CartLine]:
        if not self.path.exists():
            return []
        return _lines_adapter.validate_json(self.path.read_bytes())

    def save(self, items: List[CartLine]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(_lines_adapter.dump_json(items))


class DatabaseCartStorage:
    """Keeps the user's open cart in the carts/cart_items tables."""

    def __init__(self, db: Session, user_id: int):
        self.db = db
        self.user_id = user_id

    def _open_cart(self, create: bool) -> Optional[Cart]:
        cart = self.db.query(Cart).filter(Cart.user_id == self.user_id, Cart.status == "open").first()
        if not cart and create:
            cart = Cart(user_id=self.user_id, status="open")
            self.db.add(cart)
            self.db.flush()
        return cart

    def load(self) -> List[CartLine]:
        cart = self._open_cart(create=False)
        if not cart:
            return []
        return [
            CartLine(
                product_id=row.product_id,
                title=row.title,
                unit_price=row.unit_price_snapshot,
                quantity=row.qty,
                max_stock=row.max_stock,
            )
            for row in cart.items
        ]

    def save(self, items: List[CartLine]) -> None:
        cart = self._open_cart(create=True)
        existing = {row.product_id: row for row in cart.items}
        wanted = {line.product_id for line in items}

        # Update in place so the (cart_id, product_id) constraint never sees a duplicate
        for row in list(cart.items):
            if row.product_id not in wanted:
                cart.items.remove(row)

        for position, line in enumerate(items):
            row = existing.get(line.product_id)
            if row is None:
                row = CartItem(product_id=line.product_id)
                cart.items.append(row)
            row.position = position
            row.title = line.title
            row.qty = line.quantity
            row.unit_price_snapshot = line.unit_price
            row.max_stock = line.max_stock

        self.db.commit()


class CartStore:
    def __init__(self, storage: CartStorage, items: Optional[Iterable[CartLine]] = None):
        self.storage = storage
        self._items: List[CartLine] = []
        self.total = Decimal("0")
        self.item_count = 0
        if items:
            self._replace(items)

    @classmethod
    def open(cls, storage: CartStorage) -> "CartStore":
        """Rehydrate from storage. Unreadable data means an empty cart."""
        try:
            items = storage.load()
        except (ValueError, OSError) as e:
            logger.warning("Discarding unreadable stored cart: %s", e)
            items = []
        return cls(storage, items)

    @property
    def items(self) -> List[CartLine]:
        return list(self._items)

    def is_empty(self) -> bool:
        return not self._items

    def contains(self, product_id: int) -> bool:
        return self._find(product_id) is not None

    def quantity_of(self, product_id: int) -> int:
        line = self._find(product_id)
        return line.quantity if line else 0

    def add(self, item: CartLine, qty: int = 1) -> None:
        if qty <= 0:
            return
        existing = self._find(item.product_id)
        if existing is None:
            quantity = min(qty, item.max_stock)
            if quantity <= 0:
                return
            items = self._items + [item.model_copy(update={"quantity": quantity})]
        else:
            quantity = min(existing.quantity + qty, item.max_stock)
            updated = existing.model_copy(update={
                "quantity": quantity,
                "max_stock": item.max_stock,
                "unit_price": item.unit_price,
                "title": item.title,
            })
            items = [updated if l.product_id == item.product_id else l for l in self._items]
            items = [l for l in items if l.quantity > 0]
        self._commit(items)

    def remove(self, product_id: int) -> None:
        self._commit([l for l in self._items if l.product_id != product_id])

    def set_quantity(self, product_id: int, qty: int) -> None:
        line = self._find(product_id)
        if line is None:
            return
        if qty <= 0:
            self.remove(product_id)
            return
        qty = min(qty, line.max_stock)
        self._commit([
            l.model_copy(update={"quantity": qty}) if l.product_id == product_id else l
            for l in self._items
        ])

    def clear(self) -> None:
        self._commit([])

    def load(self, items: Iterable[CartLine]) -> None:
        self._replace(items)
        self._persist()

    def snapshot(self) -> CartOut:
        return CartOut(
            items=[
                CartItemOut(
                    product_id=l.product_id,
                    title=l.title,
                    qty=l.quantity,
                    max_stock=l.max_stock,
                    unit_price=float(l.unit_price),
                    line_total=float(l.line_total),
                )
                for l in self._items
            ],
            total=float(self.total),
            item_count=self.item_count,
        )

    def _find(self, product_id: int) -> Optional[CartLine]:
        for line in self._items:
            if line.product_id == product_id:
                return line
        return None

    def _replace(self, items: Iterable[CartLine]) -> None:
        cleaned = []
        for line in items:
            quantity = min(line.quantity, line.max_stock)
            if quantity > 0:
                cleaned.append(line.model_copy(update={"quantity": quantity}))
        self._items = cleaned
        self._recompute()

    def _commit(self, items: List[CartLine]) -> None:
        self._items = items
        self._recompute()
        self._persist()

    def _recompute(self) -> None:
        self.total = sum((l.line_total for l in self._items), Decimal("0"))
        self.item_count = sum(l.quantity for l in self._items)

    def _persist(self) -> None:
        try:
            self.storage.save(self._items)
        except OSError as e:
            # In-memory cart stays authoritative when the write fails
            logger.error("Error saving cart: %s", e)
