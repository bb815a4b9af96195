# Giglet payments — paying creators for approved submissions
#
# One payment per submission. Stripe Connect transfer when Stripe is
# configured and the creator has a connected account; otherwise (or when
# Stripe refuses) the internal balance ledger:
#   brand   -(net + fee)
#   creator +net
#   BANK    +fee
# all inside one store transaction with the payment record.
#
# The fast-path lookup in process_payment is only a hint. Each attempt
# re-reads the submission's payments inside the transaction that claims it,
# and backs off if another attempt already settled or reserved the payment.
# The Stripe path reserves a pending row before calling Stripe and passes
# the payment id as the idempotency key.
#
# A balance failure leaves a pending payment carrying the error. The next
# attempt for that submission retries it in place.

import logging
import time
from typing import Optional

from balance import BANK_ACCOUNT_ID, BalanceLedger
from config import Settings
from db import Store
from errors import ConflictError, NotFoundError, PaymentProviderError
from models import (
    SETTLED_PAYMENT_STATUSES,
    AccountKind,
    Creator,
    Gig,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Submission,
    SubmissionStatus,
    ledger_id,
)
from payouts import compute_breakdown, creator_following_count
from stripe_connect import StripeConnect

log = logging.getLogger("giglet")


def is_retryable(payment: Payment) -> bool:
    return payment.status == PaymentStatus.PENDING and bool(payment.error)


class PaymentService:
    def __init__(self, store: Store, settings: Settings, ledger: BalanceLedger,
                 stripe: StripeConnect, clock=time.time):
        self.store = store
        self.settings = settings
        self.ledger = ledger
        self.stripe = stripe
        self.clock = clock

    def _load(self, collection, record_cls, doc_id, label):
        doc = self.store.get(collection, doc_id)
        if doc is None:
            raise NotFoundError(f"{label} {doc_id} not found")
        return record_cls.from_dict(doc)

    def existing_payment(self, submission_id: str) -> Optional[Payment]:
        docs = self.store.find("payments", submission_id=submission_id,
                               status=sorted(SETTLED_PAYMENT_STATUSES))
        return Payment.from_dict(docs[0]) if docs else None

    def _blocking_payment(self, conn, payment: Payment, reserved: bool = False) -> Optional[Payment]:
        """A payment on this submission that makes the current attempt redundant.

        Retryable (pending with an error) rows never block. With reserved=True
        the attempt's own pending reservation does not block either.
        """
        docs = self.store.ops.find(conn, "payments", submission_id=payment.submission_id,
                                   status=sorted(SETTLED_PAYMENT_STATUSES))
        for doc in docs:
            other = Payment.from_dict(doc)
            if is_retryable(other):
                continue
            if reserved and other.id == payment.id and other.status == PaymentStatus.PENDING:
                continue
            return other
        return None

    def process_payment(self, submission_id: str) -> Optional[Payment]:
        """Pay the creator for an approved submission. Returns None when there is nothing to pay."""
        submission = self._load("submissions", Submission, submission_id, "Submission")
        if submission.status != SubmissionStatus.APPROVED:
            raise ConflictError(f"Submission {submission_id} is not approved")

        existing = self.existing_payment(submission_id)
        if existing is not None and not is_retryable(existing):
            log.info("PAYMENT %s already exists for submission %s (%s)",
                     existing.id, submission_id, existing.status.value)
            return existing

        gig = self._load("gigs", Gig, submission.gig_id, "Gig")
        creator = self._load("creators", Creator, submission.creator_id, "Creator")
        breakdown = compute_breakdown(gig, submission, creator_following_count(creator),
                                      self.settings.platform_fee_pct)
        if breakdown.creator_net <= 0:
            log.warning("PAYMENT skipped for submission %s: net $%.2f", submission_id,
                        breakdown.creator_net)
            return None

        payment = existing or Payment(id=ledger_id("PAY"))
        payment.submission_id = submission_id
        payment.gig_id = gig.id
        payment.brand_id = gig.brand_id
        payment.creator_id = creator.id
        payment.base_payout = breakdown.base_payout
        payment.bonus_amount = breakdown.bonus_amount
        payment.reimbursement_amount = breakdown.reimbursement_amount
        payment.platform_fee = breakdown.platform_fee
        payment.creator_net = breakdown.creator_net

        reserved = False
        if self.stripe.enabled and creator.stripe_account_id:
            winner = self._reserve(payment)
            if winner is not None:
                return winner
            reserved = True
            try:
                return self._pay_stripe(payment, creator)
            except PaymentProviderError as e:
                log.warning("PAYMENT %s Stripe failed, falling back to balance: %s", payment.id, e)
        return self._pay_balance(payment, reserved=reserved)

    def _reserve(self, payment: Payment) -> Optional[Payment]:
        """Claim the payment as pending before money leaves the platform."""
        with self.store.transaction() as conn:
            winner = self._blocking_payment(conn, payment)
            if winner is not None:
                log.info("PAYMENT %s already in progress for submission %s", winner.id,
                         payment.submission_id)
                return winner
            payment.method = PaymentMethod.STRIPE
            payment.status = PaymentStatus.PENDING
            payment.error = ""
            self.store.ops.put(conn, "payments", payment.to_dict())
        return None

    def _pay_stripe(self, payment: Payment, creator: Creator) -> Payment:
        transfer_id = self.stripe.transfer(
            creator.stripe_account_id, payment.creator_net,
            metadata={"submission_id": payment.submission_id, "gig_id": payment.gig_id},
            idempotency_key=payment.id,
        )
        payment.method = PaymentMethod.STRIPE
        payment.status = PaymentStatus.TRANSFERRED
        payment.stripe_transfer_id = transfer_id
        payment.error = ""
        payment.transferred_at = self.clock()
        self.store.put("payments", payment.to_dict())
        log.info("PAYMENT %s Stripe transfer %s $%.2f -> %s", payment.id, transfer_id,
                 payment.creator_net, payment.creator_id)
        return payment

    def _pay_balance(self, payment: Payment, reserved: bool = False) -> Payment:
        payment.method = PaymentMethod.BALANCE
        meta = {"payment_id": payment.id, "submission_id": payment.submission_id}
        self.ledger.ensure_bank_account()
        failure = None
        with self.store.transaction() as conn:
            winner = self._blocking_payment(conn, payment, reserved=reserved)
            if winner is not None:
                log.info("PAYMENT %s already settled for submission %s (%s)", winner.id,
                         payment.submission_id, winner.status.value)
                return winner

            brand_doc = self.store.ops.get(conn, "brands", payment.brand_id)
            available = float(brand_doc.get("balance") or 0) if brand_doc else 0.0
            required = round(payment.creator_net + payment.platform_fee, 2)
            if brand_doc is None:
                failure = NotFoundError(f"Brand {payment.brand_id} not found")
            elif available < required:
                failure = ConflictError(
                    f"Insufficient brand balance. Current: ${available:.2f}, "
                    f"Required: ${required:.2f} (Creator: ${payment.creator_net:.2f} "
                    f"+ Platform Fee: ${payment.platform_fee:.2f})",
                )

            if failure is not None:
                payment.status = PaymentStatus.PENDING
                payment.error = failure.message
                payment.transferred_at = None
            else:
                self.ledger.move(conn, payment.brand_id, payment.creator_id,
                                 payment.creator_net, "gig_payment", meta)
                if payment.platform_fee > 0:
                    self.ledger.apply(conn, payment.brand_id, AccountKind.BRAND,
                                      -payment.platform_fee, "platform_fee", meta)
                    self.ledger.apply(conn, BANK_ACCOUNT_ID, AccountKind.BRAND,
                                      payment.platform_fee, "platform_fee", meta)
                payment.status = PaymentStatus.BALANCE_TRANSFERRED
                payment.error = ""
                payment.transferred_at = self.clock()
            self.store.ops.put(conn, "payments", payment.to_dict())

        if failure is not None:
            log.error("PAYMENT %s balance transfer failed: %s", payment.id, failure.message)
            raise failure

        log.info("PAYMENT %s balance $%.2f -> %s (fee $%.2f)", payment.id,
                 payment.creator_net, payment.creator_id, payment.platform_fee)
        return payment

    def process_approved_payments(self) -> dict:
        """Operator batch: pay every approved submission that has no settled payment."""
        counts = {"processed": 0, "skipped": 0, "failed": 0}
        for doc in self.store.find("submissions", status=SubmissionStatus.APPROVED.value,
                                   order_by="created_at"):
            existing = self.existing_payment(doc["id"])
            if existing is not None and not is_retryable(existing):
                counts["skipped"] += 1
                continue
            try:
                payment = self.process_payment(doc["id"])
            except (ConflictError, NotFoundError) as e:
                log.warning("Batch payment failed for submission %s: %s", doc["id"], e.message)
                counts["failed"] += 1
                continue
            counts["processed" if payment is not None else "skipped"] += 1
        log.info("Batch payments: %(processed)d processed, %(skipped)d skipped, %(failed)d failed",
                 counts)
        return counts

    def history(self, creator_id: Optional[str] = None, brand_id: Optional[str] = None,
                limit: int = 50) -> list:
        filters = {}
        if creator_id:
            filters["creator_id"] = creator_id
        if brand_id:
            filters["brand_id"] = brand_id
        return self.store.find("payments", order_by="created_at", descending=True,
                               limit=limit, **filters)
