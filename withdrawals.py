# Giglet withdrawals — creators cash out their balance
# Instant payouts need trust 50+ and a fully verified Stripe account. ACH
# needs a bank account on file. The balance is debited before the provider
# is called and re-credited if the provider refuses.

import logging
import time
from typing import Optional

from balance import BalanceLedger
from db import Store
from errors import EligibilityError, NotFoundError, PaymentProviderError, ValidationError
from models import AccountKind, Creator, Withdrawal, WithdrawalMethod, WithdrawalStatus, ledger_id
from stripe_connect import StripeConnect
from trust import can_instant_payout, trust_score

log = logging.getLogger("giglet")

MIN_WITHDRAWAL = 1.00

ESTIMATED_ARRIVAL = {
    WithdrawalMethod.INSTANT: "minutes",
    WithdrawalMethod.ACH: "2-3 business days",
}


def validate_amount(amount) -> float:
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("Withdrawal amount must be a number")
    if amount <= 0:
        raise ValidationError("Withdrawal amount must be positive")
    if amount < MIN_WITHDRAWAL:
        raise ValidationError(f"Minimum withdrawal amount is ${MIN_WITHDRAWAL:.2f}")
    return round(amount, 2)


def choose_method(score: int, requested: Optional[str] = None) -> WithdrawalMethod:
    if requested:
        try:
            method = WithdrawalMethod(requested)
        except ValueError:
            raise ValidationError(f"Unknown withdrawal method {requested!r}")
        if method == WithdrawalMethod.INSTANT and not can_instant_payout(score):
            raise EligibilityError(
                f"Instant withdrawals require a trust score of 50+ (yours is {score})"
            )
        return method
    return WithdrawalMethod.INSTANT if can_instant_payout(score) else WithdrawalMethod.ACH


class WithdrawalService:
    def __init__(self, store: Store, ledger: BalanceLedger, stripe: StripeConnect, clock=time.time):
        self.store = store
        self.ledger = ledger
        self.stripe = stripe
        self.clock = clock

    def withdraw(self, creator_id: str, amount, method: Optional[str] = None) -> Withdrawal:
        amount = validate_amount(amount)
        doc = self.store.get("creators", creator_id)
        if doc is None:
            raise NotFoundError(f"Creator {creator_id} not found")
        creator = Creator.from_dict(doc)

        chosen = choose_method(trust_score(creator), method)
        if chosen == WithdrawalMethod.INSTANT:
            if not creator.stripe_account_id or not creator.stripe_onboarding_complete:
                raise EligibilityError("Complete Stripe onboarding to use instant withdrawals")
            if not creator.identity_verified:
                raise EligibilityError("Verify your identity to use instant withdrawals")
        elif not creator.bank_account_id:
            raise EligibilityError("Add a bank account to withdraw by ACH")

        wd = Withdrawal(
            id=ledger_id("WD"),
            creator_id=creator_id,
            amount=amount,
            method=chosen,
            estimated_arrival=ESTIMATED_ARRIVAL[chosen],
            created_at=self.clock(),
        )
        meta = {"withdrawal_id": wd.id, "method": chosen.value}
        with self.store.transaction() as conn:
            self.ledger.apply(conn, creator_id, AccountKind.CREATOR, -amount, "withdrawal", meta)
            self.store.ops.put(conn, "withdrawals", wd.to_dict())

        account = creator.stripe_account_id or creator.bank_account_id
        try:
            payout_id = self.stripe.payout(account, amount, instant=chosen == WithdrawalMethod.INSTANT)
        except PaymentProviderError as e:
            with self.store.transaction() as conn:
                self.ledger.apply(conn, creator_id, AccountKind.CREATOR, amount,
                                  "withdrawal_reversal", meta)
                wd.status = WithdrawalStatus.FAILED
                wd.error = e.message
                self.store.ops.put(conn, "withdrawals", wd.to_dict())
            log.error("WITHDRAWAL %s failed for %s, balance restored: %s", wd.id, creator_id, e.message)
            raise

        wd.stripe_payout_id = payout_id
        wd.status = WithdrawalStatus.COMPLETED
        wd.completed_at = self.clock()
        self.store.put("withdrawals", wd.to_dict())
        log.info("WITHDRAWAL %s $%.2f %s for %s (%s)", wd.id, amount, chosen.value, creator_id,
                 wd.estimated_arrival)
        return wd

    def history(self, creator_id: str, limit: int = 50) -> list:
        return self.store.find("withdrawals", creator_id=creator_id, order_by="created_at",
                               descending=True, limit=limit)
