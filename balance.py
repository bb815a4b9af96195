# Giglet internal balance ledger
# Brands and creators carry a balance on their record. Every change goes
# through BalanceLedger so it lands inside a store transaction together with
# a balance_transactions row (before/after). Brands may not go negative,
# except the platform BANK account that collects fees.

import logging
import time

from db import Store
from errors import ConflictError, NotFoundError, ValidationError
from models import AccountKind, BalanceTransaction, Brand, Creator, ledger_id

log = logging.getLogger("giglet")

BANK_ACCOUNT_ID = "BANK"

_COLLECTIONS = {
    AccountKind.CREATOR: ("creators", Creator),
    AccountKind.BRAND: ("brands", Brand),
}


class BalanceLedger:
    def __init__(self, store: Store):
        self.store = store

    # ── Connection-level primitives (caller owns the transaction) ──

    def apply(self, conn, account_id: str, kind: AccountKind, amount: float,
              reason: str, metadata: dict = None) -> BalanceTransaction:
        """Add amount (may be negative) to an account on an open transaction."""
        kind = AccountKind(kind)
        collection, record_cls = _COLLECTIONS[kind]
        doc = self.store.ops.get(conn, collection, account_id)
        if doc is None:
            raise NotFoundError(f"{kind.value.title()} {account_id} not found")
        account = record_cls.from_dict(doc)

        before = round(float(account.balance or 0), 2)
        after = round(before + amount, 2)
        if after < 0 and not (kind == AccountKind.BRAND and account_id == BANK_ACCOUNT_ID):
            raise ConflictError(
                f"Insufficient balance: ${before:.2f} available, ${-amount:.2f} needed",
                available=before,
            )
        account.balance = after
        if hasattr(account, "updated_at"):
            account.updated_at = time.time()
        self.store.ops.put(conn, collection, account.to_dict())

        txn = BalanceTransaction(
            id=ledger_id("TX"),
            account_id=account_id,
            account_kind=kind,
            amount=round(amount, 2),
            balance_before=before,
            balance_after=after,
            reason=reason,
            metadata=metadata or {},
        )
        self.store.ops.put(conn, "balance_transactions", txn.to_dict())
        return txn

    def move(self, conn, brand_id: str, creator_id: str, amount: float,
             reason: str, metadata: dict = None):
        if amount <= 0:
            raise ValidationError("Transfer amount must be positive")
        self.apply(conn, brand_id, AccountKind.BRAND, -amount, reason, metadata)
        return self.apply(conn, creator_id, AccountKind.CREATOR, amount, reason, metadata)

    # ── Public operations ──

    def get_balance(self, account_id: str, kind: AccountKind) -> float:
        collection, record_cls = _COLLECTIONS[AccountKind(kind)]
        doc = self.store.get(collection, account_id)
        if doc is None:
            raise NotFoundError(f"{AccountKind(kind).value.title()} {account_id} not found")
        return round(float(record_cls.from_dict(doc).balance or 0), 2)

    def update_balance(self, account_id: str, kind: AccountKind, amount: float,
                       reason: str = "", metadata: dict = None) -> BalanceTransaction:
        with self.store.transaction() as conn:
            txn = self.apply(conn, account_id, kind, amount, reason, metadata)
        log.info("BALANCE %s %s %+.2f (%s) balance=$%.2f",
                 AccountKind(kind).value, account_id, amount, reason, txn.balance_after)
        return txn

    def transfer(self, brand_id: str, creator_id: str, amount: float,
                 reason: str = "", metadata: dict = None) -> BalanceTransaction:
        """Brand -> creator, both sides in one transaction."""
        with self.store.transaction() as conn:
            txn = self.move(conn, brand_id, creator_id, amount, reason, metadata)
        log.info("TRANSFER %s -> %s $%.2f (%s)", brand_id, creator_id, amount, reason)
        return txn

    def add_balance(self, brand_id: str, amount: float, reason: str = "brand_top_up") -> BalanceTransaction:
        if amount <= 0:
            raise ValidationError("Top-up amount must be positive")
        return self.update_balance(brand_id, AccountKind.BRAND, amount, reason)

    def ensure_bank_account(self) -> Brand:
        with self.store.transaction() as conn:
            doc = self.store.ops.get(conn, "brands", BANK_ACCOUNT_ID)
            if doc is not None:
                return Brand.from_dict(doc)
            bank = Brand(id=BANK_ACCOUNT_ID, company_name="Giglet Platform", balance=0.0)
            self.store.ops.put(conn, "brands", bank.to_dict())
        log.info("BANK account created")
        return bank

    def history(self, account_id: str, limit: int = 50) -> list:
        return self.store.find("balance_transactions", account_id=account_id,
                               order_by="created_at", descending=True, limit=limit)
