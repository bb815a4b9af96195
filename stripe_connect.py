# Giglet Stripe Connect Integration
# Creator onboarding (Express accounts), transfers for approved work,
# creator payouts, and the webhook events that flip creator flags.
#
# Runs in stub mode when GIGLET_STRIPE_SECRET_KEY is not an sk_ key:
# every call returns a placeholder id and nothing leaves the process.
# Real mode passes the key per request, so there is no global stripe state.

import logging
import time
from typing import Optional

import stripe

from balance import BalanceLedger
from config import Settings
from db import Store
from errors import NotFoundError, PaymentProviderError, ValidationError
from models import AccountKind, Creator

log = logging.getLogger("giglet.stripe")

CURRENCY = "usd"


def _cents(amount: float) -> int:
    return int(round(amount * 100))


class StripeConnect:
    """Payment provider for creators. One per process."""

    def __init__(self, settings: Settings, store: Store, ledger: BalanceLedger):
        self.settings = settings
        self.store = store
        self.ledger = ledger
        if self.enabled:
            log.info("Stripe Connect ENABLED (key prefix: %s...)", settings.stripe_secret_key[:7])
        else:
            log.info("Stripe Connect in STUB mode")

    @property
    def enabled(self) -> bool:
        return self.settings.stripe_enabled

    @property
    def _key(self) -> str:
        return self.settings.stripe_secret_key

    def _creator(self, creator_id: str) -> Creator:
        doc = self.store.get("creators", creator_id)
        if doc is None:
            raise NotFoundError(f"Creator {creator_id} not found")
        return Creator.from_dict(doc)

    def _update_creator(self, creator_id: str, **changes) -> Creator:
        with self.store.transaction() as conn:
            doc = self.store.ops.get(conn, "creators", creator_id)
            if doc is None:
                raise NotFoundError(f"Creator {creator_id} not found")
            creator = Creator.from_dict(doc)
            for key, value in changes.items():
                setattr(creator, key, value)
            creator.updated_at = time.time()
            self.store.ops.put(conn, "creators", creator.to_dict())
        return creator

    # ── Onboarding ────────────────────────────────────────────────────

    def start_onboarding(self, creator_id: str, email: str = "") -> dict:
        """Create (or reuse) an Express account and return a hosted onboarding link."""
        creator = self._creator(creator_id)
        account_id = creator.stripe_account_id
        refresh_url = f"{self.settings.public_url}/creator/settings?stripe=refresh"
        return_url = f"{self.settings.public_url}/creator/settings?stripe=complete"

        if not self.enabled:
            account_id = account_id or f"acct_stub_{creator_id[:8]}"
            url = f"{self.settings.public_url}/onboarding/stub?creator={creator_id}"
            log.info("Stripe STUB: placeholder account %s for creator %s", account_id, creator_id)
        else:
            try:
                if not account_id:
                    acct = stripe.Account.create(
                        api_key=self._key,
                        type="express",
                        email=email or None,
                        capabilities={"transfers": {"requested": True}},
                        metadata={"giglet_creator_id": creator_id},
                    )
                    account_id = acct.id
                    log.info("Stripe Connect account created: %s for creator %s",
                             account_id, creator_id)
                link = stripe.AccountLink.create(
                    api_key=self._key,
                    account=account_id,
                    refresh_url=refresh_url,
                    return_url=return_url,
                    type="account_onboarding",
                )
                url = link.url
            except stripe.StripeError as e:
                log.error("Stripe onboarding failed for %s: %s", creator_id, e)
                raise PaymentProviderError(f"Stripe onboarding failed: {e}")

        if account_id != creator.stripe_account_id:
            self._update_creator(creator_id, stripe_account_id=account_id)
        return {"creator_id": creator_id, "stripe_account_id": account_id, "onboarding_url": url}

    def refresh_status(self, creator_id: str) -> dict:
        """Pull account state from Stripe and store onboarding_complete."""
        creator = self._creator(creator_id)
        if not creator.stripe_account_id:
            return {"connected": False, "onboarding_complete": False,
                    "details_submitted": False, "payouts_enabled": False}

        if not self.enabled:
            done = creator.stripe_onboarding_complete
            return {"connected": True, "stripe_account_id": creator.stripe_account_id,
                    "onboarding_complete": done, "details_submitted": done,
                    "payouts_enabled": done}

        try:
            acct = stripe.Account.retrieve(creator.stripe_account_id, api_key=self._key)
        except stripe.StripeError as e:
            log.error("Stripe account lookup failed for %s: %s", creator_id, e)
            raise PaymentProviderError(f"Stripe account lookup failed: {e}")

        details = bool(acct.get("details_submitted"))
        payouts = bool(acct.get("payouts_enabled"))
        done = details and payouts
        if done != creator.stripe_onboarding_complete:
            self._update_creator(creator_id, stripe_onboarding_complete=done)
        return {"connected": True, "stripe_account_id": creator.stripe_account_id,
                "onboarding_complete": done, "details_submitted": details,
                "payouts_enabled": payouts}

    # ── Money movement ────────────────────────────────────────────────

    def transfer(self, destination: str, amount: float, metadata: Optional[dict] = None,
                 idempotency_key: Optional[str] = None) -> str:
        """Platform -> connected account. Returns the transfer id.

        Retries with the same idempotency_key return the original transfer.
        """
        if amount <= 0:
            raise ValidationError("Transfer amount must be positive")
        if not self.enabled:
            transfer_id = f"tr_stub_{int(time.time())}"
            log.info("Stripe STUB: transfer $%.2f to %s", amount, destination)
            return transfer_id
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        try:
            transfer = stripe.Transfer.create(
                api_key=self._key,
                amount=_cents(amount),
                currency=CURRENCY,
                destination=destination,
                metadata=metadata or {},
                **options,
            )
        except stripe.StripeError as e:
            log.error("Stripe transfer to %s failed: %s", destination, e)
            raise PaymentProviderError(f"Stripe transfer failed: {e}")
        log.info("Stripe transfer %s $%.2f -> %s", transfer.id, amount, destination)
        return transfer.id

    def payout(self, account_id: str, amount: float, instant: bool) -> str:
        """Connected account balance -> creator's bank or card."""
        if not self.enabled:
            log.info("Stripe STUB: %s payout $%.2f from %s",
                     "instant" if instant else "standard", amount, account_id)
            return f"po_stub_{int(time.time())}"
        try:
            payout = stripe.Payout.create(
                api_key=self._key,
                amount=_cents(amount),
                currency=CURRENCY,
                method="instant" if instant else "standard",
                stripe_account=account_id,
            )
        except stripe.StripeError as e:
            log.error("Stripe payout from %s failed: %s", account_id, e)
            raise PaymentProviderError(f"Stripe payout failed: {e}")
        return payout.id

    # ── Webhook Handling ──────────────────────────────────────────────

    def handle_webhook(self, payload: bytes, sig_header: str) -> dict:
        """Verify a Stripe webhook and apply it."""
        if not self.enabled:
            return {"handled": False, "reason": "Stripe not enabled"}
        try:
            event = stripe.Webhook.construct_event(
                payload, sig_header, self.settings.stripe_webhook_secret,
            )
        except (ValueError, stripe.SignatureVerificationError) as e:
            log.error("Webhook signature verification failed: %s", e)
            raise ValidationError("Invalid webhook signature")
        return self.dispatch_event(event)

    def dispatch_event(self, event) -> dict:
        """Apply a verified event.

        Handles:
        - account.updated -> onboarding_complete on the creator
        - identity.verification_session.verified -> identity_verified
        - checkout.session.completed -> brand balance top-up
        """
        event_type = event["type"]
        event_id = event.get("id") or ""
        data = event["data"]["object"]
        metadata = data.get("metadata") or {}

        if event_id and self.store.get("stripe_events", event_id) is not None:
            log.info("Stripe event %s (%s) already processed", event_id, event_type)
            return {"handled": False, "type": event_type, "reason": "duplicate"}

        if event_type == "account.updated":
            creator_id = metadata.get("giglet_creator_id")
            if not creator_id:
                return {"handled": False, "type": event_type, "reason": "no creator id"}
            done = bool(data.get("details_submitted")) and bool(data.get("payouts_enabled"))
            self._update_creator(creator_id, stripe_onboarding_complete=done)
            self._record_event(event_id, event_type)
            log.info("Creator %s onboarding_complete=%s", creator_id, done)
            return {"handled": True, "type": event_type}

        if event_type == "identity.verification_session.verified":
            creator_id = metadata.get("giglet_creator_id")
            if not creator_id:
                return {"handled": False, "type": event_type, "reason": "no creator id"}
            self._update_creator(creator_id, identity_verified=True)
            self._record_event(event_id, event_type)
            log.info("Creator %s identity VERIFIED", creator_id)
            return {"handled": True, "type": event_type}

        if event_type == "checkout.session.completed":
            brand_id = metadata.get("giglet_brand_id")
            amount = (data.get("amount_total") or 0) / 100
            if not brand_id or amount <= 0:
                return {"handled": False, "type": event_type, "reason": "no brand top-up"}
            return self._apply_checkout(event_id, event_type, brand_id, amount)

        return {"handled": False, "type": event_type}

    def _record_event(self, event_id: str, event_type: str, conn=None):
        if not event_id:
            return
        doc = {"id": event_id, "type": event_type, "created_at": time.time()}
        if conn is None:
            self.store.put("stripe_events", doc)
        else:
            self.store.ops.put(conn, "stripe_events", doc)

    def _apply_checkout(self, event_id: str, event_type: str, brand_id: str, amount: float) -> dict:
        """Credit a brand top-up once per event id, together with the event record."""
        with self.store.transaction() as conn:
            if event_id and self.store.ops.get(conn, "stripe_events", event_id) is not None:
                return {"handled": False, "type": event_type, "reason": "duplicate"}
            self.ledger.apply(conn, brand_id, AccountKind.BRAND, amount, "stripe_checkout",
                              {"stripe_event_id": event_id})
            self._record_event(event_id, event_type, conn=conn)
        log.info("Brand %s topped up $%.2f via Stripe checkout", brand_id, amount)
        return {"handled": True, "type": event_type}
