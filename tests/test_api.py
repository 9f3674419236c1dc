"""
Tests for the HTTP surface: refunds, push subscriptions, events and admin tools.
"""

import pytest

from runclub.dependencies import get_dispatcher
from runclub.errors import DispatchError
from runclub.models.push_subscription import PushSubscription
from runclub.models.reconciliation import ReconciliationTask
from runclub.models.registration import Attendee, AttendeeStatus, EventRegistration, PaymentStatus, RegistrationStatus
from runclub.models.transaction import PaymentTransaction, TransactionStatus
from runclub.services.ledger import LedgerService

SUBSCRIPTION = {
    "endpoint": "https://fcm.googleapis.com/fcm/send/device-1",
    "keys": {"p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA", "auth": "tBHItJI5svbpez7KI4CCXg"},
    "user_id": "m1",
}


class TestHealthEndpoint:

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestRefundEndpoint:
    """Tests for POST /payments/refund."""

    def test_refund_success(self, client, db, admin_headers, succeeded_transaction):
        response = client.post(
            "/payments/refund",
            json={"transaction_id": "tx1", "reason": "requested_by_customer"},
            headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "refund_id": "re_1", "status": "succeeded"}

        db.expire_all()
        transaction = LedgerService.get(db, "tx1")
        assert transaction.status == TransactionStatus.REFUNDED
        assert transaction.refund_reason == "requested_by_customer"
        registration = db.query(EventRegistration).filter(EventRegistration.member_id == "m1").one()
        assert registration.payment_status == PaymentStatus.REFUNDED

    def test_refund_of_pending_transaction(self, client, db, admin_headers, club_event, member):
        db.add(PaymentTransaction(
            id="tx2", event_id="e1", member_id="m1", amount=250.0, currency="mxn",
            status=TransactionStatus.PENDING
        ))
        db.commit()

        response = client.post("/payments/refund", json={"transaction_id": "tx2"}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_STATE"

    def test_unknown_transaction(self, client, admin_headers):
        response = client.post("/payments/refund", json={"transaction_id": "nope"}, headers=admin_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_processor_failure(self, client, processor, admin_headers, succeeded_transaction):
        processor.fail_refunds = True

        response = client.post("/payments/refund", json={"transaction_id": "tx1"}, headers=admin_headers)

        assert response.status_code == 500
        assert response.json() == {"error": "PROCESSOR_ERROR", "details": "Stripe error: card_declined"}

    def test_pending_reconciliation_is_a_warning(
        self, client, db, admin_headers, succeeded_transaction, monkeypatch
    ):
        from sqlalchemy.exc import OperationalError

        def db_failure(*args, **kwargs):
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        monkeypatch.setattr(LedgerService, "mark_refunded", staticmethod(db_failure))

        response = client.post("/payments/refund", json={"transaction_id": "tx1"}, headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["refund_id"] == "re_1"
        assert body["warning"]["code"] == "RECONCILIATION_PENDING"
        assert db.query(ReconciliationTask).count() == 1

    def test_requires_admin(self, client, member_headers, succeeded_transaction):
        response = client.post("/payments/refund", json={"transaction_id": "tx1"}, headers=member_headers)

        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

    def test_requires_authentication(self, client, succeeded_transaction):
        response = client.post("/payments/refund", json={"transaction_id": "tx1"})

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"

    def test_missing_transaction_id(self, client, admin_headers):
        response = client.post("/payments/refund", json={}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"


class TestCancelRegistrationEndpoint:
    """Tests for POST /payments/cancel-registration."""

    def test_member_cancels_paid_registration(self, client, db, member_headers, succeeded_transaction):
        registration_id = db.query(EventRegistration).one().id

        response = client.post(
            "/payments/cancel-registration",
            json={"registration_id": registration_id},
            headers=member_headers
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "registration_id": registration_id,
            "refund_id": "re_1",
            "refund_status": "succeeded",
        }
        db.expire_all()
        assert db.query(EventRegistration).one().status == RegistrationStatus.CANCELLED
        assert LedgerService.get(db, "tx1").status == TransactionStatus.REFUNDED

    def test_other_member_gets_not_found(self, client, db, processor, headers_for, succeeded_transaction):
        registration_id = db.query(EventRegistration).one().id

        response = client.post(
            "/payments/cancel-registration",
            json={"registration_id": registration_id},
            headers=headers_for("m2", "other@runclub.test")
        )

        assert response.status_code == 404
        assert processor.refunds == []

    def test_requires_authentication(self, client, db, succeeded_transaction):
        registration_id = db.query(EventRegistration).one().id

        response = client.post("/payments/cancel-registration", json={"registration_id": registration_id})

        assert response.status_code == 401


class TestPushEndpoints:
    """Tests for the /push routes."""

    def test_subscribe_and_check(self, client, member_headers):
        response = client.post("/push/subscribe", json=SUBSCRIPTION, headers=member_headers)
        assert response.status_code == 200
        assert response.json() == {"success": True}

        response = client.post(
            "/push/check-subscription",
            json={"endpoint": SUBSCRIPTION["endpoint"], "user_id": "m1"},
            headers=member_headers
        )
        assert response.json() == {"exists": True}

    def test_subscribe_for_other_user_forbidden(self, client, db, headers_for):
        response = client.post("/push/subscribe", json=SUBSCRIPTION, headers=headers_for("someone-else"))

        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"
        assert db.query(PushSubscription).count() == 0

    def test_subscribe_requires_authentication(self, client):
        response = client.post("/push/subscribe", json=SUBSCRIPTION)

        assert response.status_code == 401

    def test_subscribe_validates_keys(self, client, member_headers):
        body = dict(SUBSCRIPTION, keys={"p256dh": "only-one-key"})

        response = client.post("/push/subscribe", json=body, headers=member_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_unsubscribe(self, client, db, member_headers):
        client.post("/push/subscribe", json=SUBSCRIPTION, headers=member_headers)

        response = client.post(
            "/push/unsubscribe",
            json={"endpoint": SUBSCRIPTION["endpoint"], "user_id": "m1"},
            headers=member_headers
        )

        assert response.status_code == 200
        assert db.query(PushSubscription).count() == 0

    def test_vapid_public_key(self, client, settings, monkeypatch):
        monkeypatch.setattr(settings, "vapid_public_key", "BPublicKey")

        response = client.get("/push/vapid-public-key")

        assert response.json() == {"publicKey": "BPublicKey"}

    def test_admin_send_reports_counts(self, client, transport, member_headers, admin_headers):
        client.post("/push/subscribe", json=SUBSCRIPTION, headers=member_headers)
        transport.gone.add(SUBSCRIPTION["endpoint"])

        response = client.post(
            "/push/send",
            json={"title": "Heads up", "body": "Rain expected", "all_users": True},
            headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "sent": 0, "failed": 0, "pruned": 1, "total": 1}

    def test_send_needs_a_target(self, client, admin_headers):
        response = client.post("/push/send", json={"title": "t", "body": "b"}, headers=admin_headers)

        assert response.status_code == 400


class TestEventEndpoints:
    """Tests for event creation and guest registration."""

    def test_create_event_notifies_subscribers(self, client, transport, member_headers, admin_headers):
        client.post("/push/subscribe", json=SUBSCRIPTION, headers=member_headers)

        response = client.post(
            "/events",
            json={"slug": "sunrise-5k", "title": "Sunrise 5K", "date": "2026-11-02", "price": 0},
            headers=admin_headers
        )

        assert response.status_code == 201
        assert response.json()["slug"] == "sunrise-5k"
        assert len(transport.sent) == 1
        assert transport.sent[0][1]["url"] == "/eventos/sunrise-5k"

    def test_create_event_survives_dispatch_failure(self, client, admin_headers):
        from runclub.main import app

        class FailingDispatcher:
            def dispatch(self, db, message, user_id=None):
                raise DispatchError("store unavailable")

        app.dependency_overrides[get_dispatcher] = lambda: FailingDispatcher()

        response = client.post("/events", json={"slug": "hill-repeats", "title": "Hill Repeats"}, headers=admin_headers)

        assert response.status_code == 201

    def test_duplicate_slug(self, client, admin_headers, club_event):
        response = client.post("/events", json={"slug": "night-10k", "title": "Again"}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "BAD_REQUEST"

    def test_guest_registration(self, client, club_event):
        response = client.post("/events/e1/attendees", json={"name": "Luis", "email": "luis.runner@gmail.com"})

        assert response.status_code == 201
        assert response.json()["payment_status"] == "pending"

    def test_guest_registration_unknown_event(self, client):
        response = client.post("/events/missing/attendees", json={"name": "Luis"})

        assert response.status_code == 404


class TestCheckIn:
    """Check-in is independent of payment status."""

    def test_checkin_and_undo(self, client, db, admin_headers, guest):
        response = client.post("/attendees/a1/checkin", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "checked_in"
        assert response.json()["checked_in_at"] is not None

        response = client.post("/attendees/a1/undo-checkin", headers=admin_headers)
        assert response.json()["status"] == "pending"

        db.expire_all()
        attendee = db.get(Attendee, "a1")
        assert attendee.status == AttendeeStatus.PENDING
        assert attendee.payment_status == PaymentStatus.PENDING


class TestAdminEndpoints:

    def test_drift_and_resync(self, client, db, admin_headers, succeeded_transaction):
        db.query(PaymentTransaction).filter(PaymentTransaction.id == "tx1").update(
            {PaymentTransaction.status: TransactionStatus.REFUNDED}
        )
        db.commit()

        response = client.get("/admin/events/e1/payment-drift", headers=admin_headers)
        assert response.json() == [{
            "payer_kind": "member",
            "payer_id": "m1",
            "transaction_id": "tx1",
            "current": "paid",
            "expected": "refunded",
        }]

        response = client.post("/admin/events/e1/resync", headers=admin_headers)
        assert len(response.json()) == 1

        response = client.get("/admin/events/e1/payment-drift", headers=admin_headers)
        assert response.json() == []

    def test_reconciliation_queue(self, client, admin_headers, succeeded_transaction):
        from sqlalchemy.exc import OperationalError

        def db_failure(*args, **kwargs):
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        with pytest.MonkeyPatch.context() as patch:
            patch.setattr(LedgerService, "mark_refunded", staticmethod(db_failure))
            client.post("/payments/refund", json={"transaction_id": "tx1"}, headers=admin_headers)

        pending = client.get("/admin/reconciliation", headers=admin_headers).json()
        assert len(pending) == 1
        assert pending[0]["step"] == "ledger"

        response = client.post("/admin/reconciliation/retry", headers=admin_headers)
        assert response.json() == {"resolved": 1, "pending": 0}
        assert client.get("/admin/reconciliation", headers=admin_headers).json() == []

    def test_customer_payments(self, client, admin_headers):
        response = client.get("/payments/customer/cus_123", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["payment_history"][0]["customer"] == "cus_123"
