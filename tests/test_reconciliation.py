"""Tests for turning pending orders into confirmed orders."""

import threading
from decimal import Decimal

import pytest

from conftest import FakeGateway, cart_line, sign_payment
from errors import NotFound, PartialConfirmation, ValidationFailure, VerificationFailure
from models.order import Order, OrderItem, PendingOrder, PendingStatus, VerificationMethod
from models.product import Product
from schemas.checkout import DeliveryAddress
from schemas.gateway import WebhookEvent
from utils import reconciliation
from utils.order_intent import attach_gateway_reference, create_provisional_order
from utils.pricing import calculate_price_breakdown
from utils.reconciliation import (
    confirm_from_redirect, confirm_from_webhook, confirm_manually, confirm_pending_order,
    confirm_with_signature,
)


@pytest.fixture
def new_pending(db, shopper, delivery_address):
    """Factory: a provisional order for the given (product, qty) pairs."""

    def _make(*lines, **kwargs):
        items = [cart_line(product, qty) for product, qty in lines]
        subtotal = sum((l.line_total for l in items), Decimal("0"))
        return create_provisional_order(
            db,
            user_id=shopper.id,
            items=items,
            breakdown=calculate_price_breakdown(subtotal),
            address=DeliveryAddress(**delivery_address),
            **kwargs,
        )

    return _make


class TestConfirmPendingOrder:
    def test_creates_order_and_items(self, db, seller, make_product, new_pending):
        kurta = make_product("Kurta", "250.00", stock=5)
        pending = new_pending((kurta, 2))

        result = confirm_pending_order(db, pending, "pay_A1", VerificationMethod.SIGNATURE)

        order = result.order
        assert not result.already_confirmed
        assert order.order_number == pending.order_number
        assert order.total_amount == Decimal("601.80")
        assert order.external_payment_id == "pay_A1"
        assert order.verification_method == "signature"
        assert order.assurance == "high"
        assert order.status == "confirmed"
        assert order.payment_status == "completed"

        [item] = order.items
        assert item.product_id == kurta.id
        assert item.seller_id == seller.id
        assert item.quantity == 2
        assert item.price == Decimal("250.00")
        assert item.fulfillment_status == "pending"

        db.expire_all()
        assert db.get(Product, kurta.id).stock_quantity == 3
        assert db.get(PendingOrder, pending.id).status == PendingStatus.CONFIRMED.value

    def test_requires_payment_id(self, db, make_product, new_pending):
        pending = new_pending((make_product(), 1))
        with pytest.raises(ValidationFailure):
            confirm_pending_order(db, pending, "  ", VerificationMethod.WEBHOOK)
        assert db.query(Order).count() == 0

    def test_second_confirmation_returns_existing(self, db, make_product, new_pending):
        product = make_product(stock=5)
        pending = new_pending((product, 1))

        first = confirm_pending_order(db, pending, "pay_A1", VerificationMethod.SIGNATURE)
        second = confirm_pending_order(db, pending, "pay_A1", VerificationMethod.WEBHOOK)

        assert second.already_confirmed
        assert second.order.id == first.order.id
        assert db.query(Order).count() == 1
        db.expire_all()
        assert db.get(Product, product.id).stock_quantity == 4

    def test_payment_reused_for_other_order(self, db, make_product, new_pending):
        product = make_product(stock=5)
        one = new_pending((product, 1))
        two = new_pending((product, 1))
        confirm_pending_order(db, one, "pay_SAME", VerificationMethod.MANUAL)

        with pytest.raises(VerificationFailure) as exc:
            confirm_pending_order(db, two, "pay_SAME", VerificationMethod.MANUAL)
        assert exc.value.code == "payment_reused"

        db.expire_all()
        assert db.get(PendingOrder, two.id).status == PendingStatus.PENDING.value
        assert db.get(Product, product.id).stock_quantity == 4

    def test_shortfall_is_backordered(self, db, make_product, new_pending):
        product = make_product(stock=3)
        first = new_pending((product, 3))
        second = new_pending((product, 3))

        confirm_pending_order(db, first, "pay_1", VerificationMethod.WEBHOOK)
        result = confirm_pending_order(db, second, "pay_2", VerificationMethod.WEBHOOK)

        assert result.order.items[0].fulfillment_status == "backordered"
        db.expire_all()
        assert db.get(Product, product.id).stock_quantity == 0

    def test_missing_product_is_unassigned(self, db, make_product, new_pending):
        product = make_product(stock=2)
        pending = new_pending((product, 1))
        db.delete(db.get(Product, product.id))
        db.commit()

        result = confirm_pending_order(db, pending, "pay_gone", VerificationMethod.WEBHOOK)

        [item] = result.order.items
        assert item.seller_id is None
        assert item.fulfillment_status == "unassigned"

    def test_storage_failure_rolls_back(self, db, make_product, new_pending, monkeypatch):
        from sqlalchemy.exc import OperationalError

        product = make_product(stock=5)
        pending = new_pending((product, 2))

        def broken(*args, **kwargs):
            raise OperationalError("UPDATE products", {}, Exception("disk I/O error"))

        monkeypatch.setattr(reconciliation, "decrease_stock", broken)
        with pytest.raises(PartialConfirmation):
            confirm_pending_order(db, pending, "pay_err", VerificationMethod.SIGNATURE)

        db.expire_all()
        assert db.query(Order).count() == 0
        assert db.query(OrderItem).count() == 0
        assert db.get(PendingOrder, pending.id).status == PendingStatus.PENDING.value
        assert db.get(Product, product.id).stock_quantity == 5

        monkeypatch.undo()
        result = confirm_pending_order(db, db.get(PendingOrder, pending.id), "pay_err", VerificationMethod.SIGNATURE)
        assert not result.already_confirmed


class TestConcurrency:
    def test_double_confirm_creates_one_order(self, session_factory, db, make_product, new_pending):
        product = make_product(stock=10)
        pending_id = new_pending((product, 2)).id
        barrier = threading.Barrier(2)
        results, errors = [], []

        def confirm(method):
            session = session_factory()
            try:
                pending = session.get(PendingOrder, pending_id)
                barrier.wait()
                results.append(confirm_pending_order(session, pending, "pay_RACE", method).order.id)
            except Exception as e:  # collected for the assertion below
                errors.append(e)
            finally:
                session.close()

        threads = [
            threading.Thread(target=confirm, args=(VerificationMethod.SIGNATURE,)),
            threading.Thread(target=confirm, args=(VerificationMethod.WEBHOOK,)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(set(results)) == 1
        db.expire_all()
        assert db.query(Order).count() == 1
        assert db.query(OrderItem).count() == 1
        assert db.get(Product, product.id).stock_quantity == 8

    def test_racing_orders_never_oversell(self, session_factory, db, make_product, new_pending):
        product = make_product(stock=4)
        ids = [new_pending((product, 3)).id for _ in range(3)]
        barrier = threading.Barrier(len(ids))
        errors = []

        def confirm(pending_id, payment_id):
            session = session_factory()
            try:
                pending = session.get(PendingOrder, pending_id)
                barrier.wait()
                confirm_pending_order(session, pending, payment_id, VerificationMethod.WEBHOOK)
            except Exception as e:  # collected for the assertion below
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=confirm, args=(pid, f"pay_{pid}")) for pid in ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        db.expire_all()
        statuses = sorted(i.fulfillment_status for i in db.query(OrderItem).all())
        assert statuses == ["backordered", "backordered", "pending"]
        assert db.get(Product, product.id).stock_quantity == 1


class TestVerificationPaths:
    def test_signature(self, db, shopper, make_product, new_pending):
        gateway = FakeGateway()
        pending = new_pending((make_product(), 1), gateway_order_id="order_sig1")

        result = confirm_with_signature(
            db, gateway, shopper.id, "order_sig1", "pay_S1", sign_payment("order_sig1", "pay_S1"),
        )
        assert result.order.pending_order_id == pending.id
        assert result.order.assurance == "high"

    def test_bad_signature_keeps_order_pending(self, db, shopper, make_product, new_pending):
        pending = new_pending((make_product(), 1), gateway_order_id="order_sig2")
        with pytest.raises(VerificationFailure):
            confirm_with_signature(db, FakeGateway(), shopper.id, "order_sig2", "pay_S2", "deadbeef")
        db.expire_all()
        assert db.get(PendingOrder, pending.id).status == PendingStatus.PENDING.value

    def test_signature_for_someone_elses_order(self, db, seller, make_product, new_pending):
        new_pending((make_product(), 1), gateway_order_id="order_sig3")
        with pytest.raises(NotFound):
            confirm_with_signature(
                db, FakeGateway(), seller.id, "order_sig3", "pay_S3", sign_payment("order_sig3", "pay_S3"),
            )

    def test_webhook_payment_link_paid(self, db, make_product, new_pending):
        pending = new_pending((make_product(), 1))
        attach_gateway_reference(db, pending, payment_link_id="plink_W1", payment_link_url="https://rzp.io/i/w1")
        event = WebhookEvent.model_validate({
            "event": "payment_link.paid",
            "payload": {
                "payment_link": {"entity": {"id": "plink_W1"}},
                "payment": {"entity": {"id": "pay_W1"}},
            },
        })

        result = confirm_from_webhook(db, event)
        assert result.order.verification_method == "webhook"
        assert result.order.assurance == "high"
        assert result.order.gateway_order_id == "plink_W1"

    def test_webhook_order_paid(self, db, make_product, new_pending):
        new_pending((make_product(), 1), gateway_order_id="order_W2")
        event = WebhookEvent.model_validate({
            "event": "order.paid",
            "payload": {
                "order": {"entity": {"id": "order_W2"}},
                "payment": {"entity": {"id": "pay_W2", "order_id": "order_W2"}},
            },
        })
        assert confirm_from_webhook(db, event).order.external_payment_id == "pay_W2"

    def test_webhook_other_events_ignored(self, db):
        event = WebhookEvent.model_validate({"event": "payment.failed", "payload": {}})
        assert confirm_from_webhook(db, event) is None

    def test_redirect_is_low_assurance(self, db, make_product, new_pending):
        pending = new_pending((make_product(), 1))
        attach_gateway_reference(db, pending, payment_link_id="plink_R1", payment_link_url="https://rzp.io/i/r1")
        result = confirm_from_redirect(db, "plink_R1", "pay_R1", "paid")
        assert result.order.verification_method == "redirect"
        assert result.order.assurance == "low"

    def test_redirect_not_paid(self, db):
        with pytest.raises(VerificationFailure):
            confirm_from_redirect(db, "plink_R2", "pay_R2", "cancelled")

    def test_manual_unverified_id_is_flagged_low(self, db, make_product, new_pending):
        pending = new_pending((make_product(), 1))
        result = confirm_manually(db, pending, " pay_Manual123 ")
        assert result.order.external_payment_id == "pay_Manual123"
        assert result.order.verification_method == "manual"
        assert result.order.assurance == "low"

    @pytest.mark.parametrize("payment_id", ["", "order_123", "pay_", "pay_12-34"])
    def test_manual_rejects_malformed_ids(self, db, make_product, new_pending, payment_id):
        pending = new_pending((make_product(), 1))
        with pytest.raises(ValidationFailure):
            confirm_manually(db, pending, payment_id)
        assert db.query(Order).count() == 0
