"""Tests for Giglet payments — balance ledger path, platform fee, idempotency, batch."""

import threading

import pytest

from balance import BANK_ACCOUNT_ID
from errors import ConflictError, ValidationError
from models import AccountKind, PaymentMethod, PaymentStatus, SubmissionStatus

HOUR = 3600
VIDEO = {"files": {"videos": ["https://cdn.giglet.test/v1.mp4"]}}


def _approved_submission(svc, clock, brand_balance=500, base_payout=100, **gig_fields):
    """Brand, gig, accepted creator, and a submission forced to approved without side effects."""
    brand = svc.profiles.create_brand({"company_name": "Acme Snacks"})
    if brand_balance:
        svc.ledger.add_balance(brand.id, brand_balance)
    data = {"title": "Unbox", "primary_thing": "food", "base_payout": base_payout}
    data.update(gig_fields)
    gig = svc.gigs.create_gig(brand.id, data)
    clock.advance(HOUR)
    creator = svc.profiles.create_creator({"username": "c_" + gig.id.replace("-", "_")})
    svc.gigs.accept_gig(creator.id, gig.id)
    sub = svc.submissions.submit(creator.id, gig.id, VIDEO)

    with svc.store.transaction() as conn:
        doc = svc.store.ops.get(conn, "submissions", sub.id)
        doc["status"] = SubmissionStatus.APPROVED.value
        svc.store.ops.put(conn, "submissions", doc)
    return brand, creator, sub


class TestBalanceLedger:
    def test_top_up_and_history(self, svc):
        brand = svc.profiles.create_brand({"company_name": "Acme"})
        txn = svc.ledger.add_balance(brand.id, 250)
        assert txn.balance_before == 0
        assert txn.balance_after == 250
        assert svc.ledger.get_balance(brand.id, AccountKind.BRAND) == 250
        assert svc.ledger.history(brand.id)[0]["reason"] == "brand_top_up"

    def test_top_up_must_be_positive(self, svc):
        brand = svc.profiles.create_brand({"company_name": "Acme"})
        with pytest.raises(ValidationError):
            svc.ledger.add_balance(brand.id, 0)

    def test_transfer_cannot_overdraw(self, svc):
        brand = svc.profiles.create_brand({"company_name": "Acme"})
        creator = svc.profiles.create_creator({"username": "maya"})
        svc.ledger.add_balance(brand.id, 10)
        with pytest.raises(ConflictError):
            svc.ledger.transfer(brand.id, creator.id, 25, "gig_payment")
        assert svc.ledger.get_balance(brand.id, AccountKind.BRAND) == 10
        assert svc.ledger.get_balance(creator.id, AccountKind.CREATOR) == 0

    def test_bank_account_exists(self, svc):
        assert svc.ledger.get_balance(BANK_ACCOUNT_ID, AccountKind.BRAND) == 0


class TestProcessPayment:
    def test_balance_payment_splits_fee(self, svc, clock):
        brand, creator, sub = _approved_submission(svc, clock)
        payment = svc.payments.process_payment(sub.id)

        assert payment.method == PaymentMethod.BALANCE
        assert payment.status == PaymentStatus.BALANCE_TRANSFERRED
        assert payment.id.startswith("PAY-")
        assert payment.base_payout == 100
        assert payment.platform_fee == 15
        assert payment.creator_net == 85

        assert svc.ledger.get_balance(creator.id, AccountKind.CREATOR) == 85
        assert svc.ledger.get_balance(brand.id, AccountKind.BRAND) == 500 - 85 - 15
        assert svc.ledger.get_balance(BANK_ACCOUNT_ID, AccountKind.BRAND) == 15

    def test_idempotent(self, svc, clock):
        brand, creator, sub = _approved_submission(svc, clock)
        first = svc.payments.process_payment(sub.id)
        second = svc.payments.process_payment(sub.id)
        assert second.id == first.id
        assert svc.ledger.get_balance(creator.id, AccountKind.CREATOR) == 85
        assert len(svc.payments.history(brand_id=brand.id)) == 1

    def test_requires_approval(self, svc, clock):
        _, _, sub = _approved_submission(svc, clock)
        with svc.store.transaction() as conn:
            doc = svc.store.ops.get(conn, "submissions", sub.id)
            doc["status"] = SubmissionStatus.SUBMITTED.value
            svc.store.ops.put(conn, "submissions", doc)
        with pytest.raises(ConflictError):
            svc.payments.process_payment(sub.id)

    def test_insufficient_balance_leaves_pending_then_retries(self, svc, clock):
        brand, creator, sub = _approved_submission(svc, clock, brand_balance=50)
        with pytest.raises(ConflictError, match="Insufficient brand balance"):
            svc.payments.process_payment(sub.id)

        [pending] = svc.payments.history(creator_id=creator.id)
        assert pending["status"] == PaymentStatus.PENDING.value
        assert pending["error"]
        assert svc.ledger.get_balance(brand.id, AccountKind.BRAND) == 50

        svc.ledger.add_balance(brand.id, 100)
        paid = svc.payments.process_payment(sub.id)
        assert paid.id == pending["id"]
        assert paid.status == PaymentStatus.BALANCE_TRANSFERRED
        assert paid.error == ""
        assert svc.ledger.get_balance(brand.id, AccountKind.BRAND) == 50
        assert len(svc.payments.history(creator_id=creator.id)) == 1

    def test_reimbursement_added_to_net(self, svc, clock):
        brand = svc.profiles.create_brand({"company_name": "Acme Snacks"})
        svc.ledger.add_balance(brand.id, 500)
        gig = svc.gigs.create_gig(brand.id, {
            "title": "Buy and review", "primary_thing": "food", "base_payout": 100,
            "reimbursement_mode": "reimbursement", "reimbursement_cap": 30,
        })
        clock.advance(HOUR)
        creator = svc.profiles.create_creator({"username": "buyer"})
        svc.profiles.set_verifications(creator.id, email_verified=True, phone_verified=True,
                                       stripe_onboarding_complete=True, identity_verified=True)
        svc.gigs.accept_gig(creator.id, gig.id)
        sub = svc.submissions.submit(creator.id, gig.id, {
            **VIDEO, "product_purchase": {"receipt_url": "https://r", "amount": 45}})
        with svc.store.transaction() as conn:
            doc = svc.store.ops.get(conn, "submissions", sub.id)
            doc["status"] = SubmissionStatus.APPROVED.value
            svc.store.ops.put(conn, "submissions", doc)

        payment = svc.payments.process_payment(sub.id)
        assert payment.reimbursement_amount == 30
        assert payment.creator_net == 115
        assert svc.ledger.get_balance(brand.id, AccountKind.BRAND) == 500 - 115 - 15

    def test_zero_net_skipped(self, svc, clock):
        _, creator, sub = _approved_submission(
            svc, clock, payout_type="dynamic", base_payout=0,
            follower_ranges=[{"min": 5000, "payout": 200}])
        assert svc.payments.process_payment(sub.id) is None
        assert svc.payments.history(creator_id=creator.id) == []


class TestPaymentRace:
    def test_concurrent_attempts_pay_once(self, svc, clock):
        brand, creator, sub = _approved_submission(svc, clock)
        barrier = threading.Barrier(4)
        results, errors = [], []

        def attempt():
            barrier.wait()
            try:
                results.append(svc.payments.process_payment(sub.id))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=attempt) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len({p.id for p in results}) == 1
        assert len(svc.payments.history(creator_id=creator.id)) == 1
        assert svc.ledger.get_balance(creator.id, AccountKind.CREATOR) == 85
        assert svc.ledger.get_balance(brand.id, AccountKind.BRAND) == 400
        assert svc.ledger.get_balance(BANK_ACCOUNT_ID, AccountKind.BRAND) == 15

    def test_concurrent_retries_of_pending_pay_once(self, svc, clock):
        brand, creator, sub = _approved_submission(svc, clock, brand_balance=50)
        with pytest.raises(ConflictError):
            svc.payments.process_payment(sub.id)
        svc.ledger.add_balance(brand.id, 100)

        barrier = threading.Barrier(3)
        results = []

        def attempt():
            barrier.wait()
            results.append(svc.payments.process_payment(sub.id))

        threads = [threading.Thread(target=attempt) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 3
        assert {p.status for p in results} == {PaymentStatus.BALANCE_TRANSFERRED}
        assert len(svc.payments.history(creator_id=creator.id)) == 1
        assert svc.ledger.get_balance(brand.id, AccountKind.BRAND) == 50


class TestBatchPayments:
    def test_process_approved(self, svc, clock):
        _, c1, s1 = _approved_submission(svc, clock)
        _, c2, s2 = _approved_submission(svc, clock, brand_balance=10)
        svc.payments.process_payment(s1.id)

        counts = svc.payments.process_approved_payments()
        assert counts == {"processed": 0, "skipped": 1, "failed": 1}
        assert svc.payments.history(creator_id=c2.id)[0]["status"] == "pending"
