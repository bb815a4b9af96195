# Giglet service container
# Everything a request or CLI command needs, wired once from Settings.
# The API builds one in its lifespan handler and keeps it on app.state.

import logging
import time
from dataclasses import dataclass
from typing import Optional

from balance import BalanceLedger
from config import Settings
from db import Store
from evaluation import SubmissionEvaluator
from gigs import GigService
from notifications import Notifier
from payments import PaymentService
from profiles import ProfileService
from reputation import RepEngine
from squads import SquadService
from stripe_connect import StripeConnect
from submissions import SubmissionService
from withdrawals import WithdrawalService

log = logging.getLogger("giglet")


@dataclass
class Services:
    settings: Settings
    store: Store
    ledger: BalanceLedger
    rep: RepEngine
    notifier: Notifier
    profiles: ProfileService
    stripe: StripeConnect
    squads: SquadService
    gigs: GigService
    payments: PaymentService
    submissions: SubmissionService
    withdrawals: WithdrawalService

    def close(self):
        # Connections are per operation; nothing is held open between calls.
        log.info("Services closed (db=%s)", self.store.db_path)


def build_services(settings: Settings, evaluator: Optional[SubmissionEvaluator] = None,
                   clock=time.time) -> Services:
    store = Store(settings.db_path)
    ledger = BalanceLedger(store)
    ledger.ensure_bank_account()
    rep = RepEngine(store)
    notifier = Notifier(store)
    stripe = StripeConnect(settings, store, ledger)
    payments = PaymentService(store, settings, ledger, stripe, clock=clock)
    return Services(
        settings=settings,
        store=store,
        ledger=ledger,
        rep=rep,
        notifier=notifier,
        profiles=ProfileService(store),
        stripe=stripe,
        squads=SquadService(store, rep),
        gigs=GigService(store, settings, clock=clock),
        payments=payments,
        submissions=SubmissionService(store, settings, rep, notifier, payments,
                                      evaluator=evaluator, clock=clock),
        withdrawals=WithdrawalService(store, ledger, stripe, clock=clock),
    )
