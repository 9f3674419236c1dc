"""
Tests for the payment ledger.

Status changes must only ever move forward through the conditional updates.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from runclub.database import Base
from runclub.errors import NotFound, InvalidState
from runclub.models.event import Event
from runclub.models.member import Member
from runclub.models.payer import MemberPayer, GuestPayer
from runclub.models.transaction import PaymentTransaction, TransactionStatus
from runclub.services.ledger import LedgerService


class TestRecordAttempt:
    """Tests for creating pending transactions."""

    def test_member_attempt_is_pending(self, db, club_event, member):
        transaction = LedgerService.record_attempt(
            db, club_event.id, MemberPayer(member.id), 250.0, "mxn", stripe_session_id="cs_new"
        )

        assert transaction.status == TransactionStatus.PENDING
        assert transaction.member_id == "m1"
        assert transaction.attendee_id is None
        assert transaction.payer == MemberPayer("m1")

    def test_guest_attempt_sets_only_attendee(self, db, guest):
        transaction = LedgerService.record_attempt(db, "e1", GuestPayer(guest.id), 250.0, "mxn")

        assert transaction.member_id is None
        assert transaction.attendee_id == "a1"
        assert transaction.payer == GuestPayer("a1")

    def test_rejects_non_positive_amount(self, db, club_event, member):
        with pytest.raises(ValueError):
            LedgerService.record_attempt(db, club_event.id, MemberPayer(member.id), 0, "mxn")

    def test_row_cannot_reference_both_payers(self, db, club_event, member, guest):
        """The single-payer check is enforced by the database too."""
        db.add(PaymentTransaction(
            event_id=club_event.id, member_id=member.id, attendee_id=guest.id, amount=10.0, currency="mxn"
        ))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()


class TestMarkSucceeded:
    """Tests for confirming payments from processor callbacks."""

    def test_links_processor_ref_through_session(self, db, club_event, member):
        LedgerService.record_attempt(db, club_event.id, MemberPayer(member.id), 250.0, "mxn", stripe_session_id="cs_9")

        transaction = LedgerService.mark_succeeded(db, "pi_9", session_id="cs_9", payment_method="card")

        assert transaction.status == TransactionStatus.SUCCEEDED
        assert transaction.stripe_payment_intent_id == "pi_9"
        assert transaction.payment_method == "card"

    def test_repeat_callback_is_noop(self, db, succeeded_transaction):
        first = LedgerService.mark_succeeded(db, "pi_1")
        second = LedgerService.mark_succeeded(db, "pi_1")

        assert first.id == second.id == "tx1"
        assert second.status == TransactionStatus.SUCCEEDED

    def test_unknown_ref_not_found(self, db, club_event):
        with pytest.raises(NotFound):
            LedgerService.mark_succeeded(db, "pi_missing")


class TestMarkRefunded:
    """Tests for the succeeded -> refunded transition."""

    def test_refunds_succeeded_transaction(self, db, succeeded_transaction):
        transaction = LedgerService.mark_refunded(db, "tx1", "Injury")

        assert transaction.status == TransactionStatus.REFUNDED
        assert transaction.refund_reason == "Injury"

    def test_second_refund_is_invalid_state(self, db, succeeded_transaction):
        LedgerService.mark_refunded(db, "tx1", "Injury")

        with pytest.raises(InvalidState):
            LedgerService.mark_refunded(db, "tx1", "Again")

        db.expire_all()
        assert LedgerService.get(db, "tx1").refund_reason == "Injury"

    def test_pending_transaction_cannot_be_refunded(self, db, club_event, member):
        transaction = LedgerService.record_attempt(db, club_event.id, MemberPayer(member.id), 250.0, "mxn")

        with pytest.raises(InvalidState) as exc_info:
            LedgerService.mark_refunded(db, transaction.id, "Too early")

        assert exc_info.value.context["status"] == "pending"

    def test_unknown_transaction_not_found(self, db):
        with pytest.raises(NotFound):
            LedgerService.mark_refunded(db, "nope", None)


class TestMarkFailed:
    """Tests for payment failures."""

    def test_pending_becomes_failed(self, db, club_event, member):
        LedgerService.record_attempt(db, club_event.id, MemberPayer(member.id), 250.0, "mxn", processor_ref="pi_f")

        transaction = LedgerService.mark_failed(db, "pi_f")

        assert transaction.status == TransactionStatus.FAILED

    def test_succeeded_is_left_alone(self, db, succeeded_transaction):
        transaction = LedgerService.mark_failed(db, "pi_1")

        assert transaction.status == TransactionStatus.SUCCEEDED

    def test_unknown_ref_returns_none(self, db):
        assert LedgerService.mark_failed(db, "pi_unknown") is None


class TestLatestForPayer:

    def test_returns_most_recent_attempt(self, db, succeeded_transaction):
        latest = LedgerService.latest_for_payer(db, "e1", MemberPayer("m1"))

        assert latest.id == "tx1"

    def test_none_without_transactions(self, db, guest):
        assert LedgerService.latest_for_payer(db, "e1", GuestPayer(guest.id)) is None

    def test_attempts_in_the_same_second_keep_insertion_order(self, db, club_event, member):
        same_second = datetime(2026, 10, 1, 12, 0, 0)
        for transaction_id, ref, status in (("tx_a", "pi_a", TransactionStatus.FAILED),
                                            ("tx_b", "pi_b", TransactionStatus.SUCCEEDED)):
            db.add(PaymentTransaction(
                id=transaction_id, event_id="e1", member_id="m1", stripe_payment_intent_id=ref,
                amount=250.0, currency="mxn", status=status, created_at=same_second, updated_at=same_second
            ))
            db.commit()

        latest = LedgerService.latest_for_payer(db, "e1", MemberPayer("m1"))

        assert latest.id == "tx_b"


class TestConcurrentRefunds:
    """Refunds racing on a real database file, each with its own connection."""

    @pytest.fixture
    def file_session_factory(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'ledger.db'}",
            connect_args={"check_same_thread": False, "timeout": 30}
        )
        Base.metadata.create_all(bind=engine)
        factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        setup = factory()
        setup.add(Event(id="e1", slug="night-10k", title="Night 10K", price=250.0))
        setup.add(Member(id="m1", email="runner@runclub.test"))
        setup.add(PaymentTransaction(
            id="tx1", event_id="e1", member_id="m1", stripe_payment_intent_id="pi_1",
            amount=250.0, currency="mxn", status=TransactionStatus.SUCCEEDED
        ))
        setup.commit()
        setup.close()

        yield factory
        engine.dispose()

    def test_only_one_concurrent_refund_wins(self, file_session_factory):
        workers = 8
        barrier = threading.Barrier(workers)

        def attempt(n):
            db = file_session_factory()
            try:
                barrier.wait()
                LedgerService.mark_refunded(db, "tx1", f"attempt {n}")
                return "ok"
            except InvalidState:
                return "invalid"
            finally:
                db.close()

        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(attempt, range(workers)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("invalid") == workers - 1

        db = file_session_factory()
        try:
            assert LedgerService.get(db, "tx1").status == TransactionStatus.REFUNDED
        finally:
            db.close()
