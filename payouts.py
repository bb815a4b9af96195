# Giglet payout math
# Pure functions: what a creator earns for a gig, and how that splits into
# platform fee, reimbursement and net.

from dataclasses import asdict, dataclass

from models import SOCIAL_PLATFORMS, Creator, Gig, PayoutType, Submission


def creator_following_count(creator: Creator) -> int:
    counts = creator.following_count or {}
    total = 0
    for platform in SOCIAL_PLATFORMS:
        try:
            total += int(counts.get(platform) or 0)
        except (TypeError, ValueError):
            continue
    return total


def calculate_payout(gig: Gig, following_count: int) -> float:
    """Fixed gigs pay base_payout. Dynamic gigs pay the first matching follower range."""
    if gig.payout_type != PayoutType.DYNAMIC:
        return float(gig.base_payout or 0)
    for rng in sorted(gig.follower_ranges, key=lambda r: r.min):
        if rng.min <= following_count and (rng.max is None or following_count <= rng.max):
            return float(rng.payout)
    return 0.0


@dataclass
class PayoutBreakdown:
    base_payout: float
    platform_fee: float
    reimbursement_amount: float
    bonus_amount: float
    creator_net: float

    def to_dict(self) -> dict:
        return asdict(self)


def compute_breakdown(gig: Gig, submission: Submission, following_count: int,
                      fee_pct: float) -> PayoutBreakdown:
    base = calculate_payout(gig, following_count)
    fee = round(base * fee_pct / 100, 2)

    reimbursement = 0.0
    purchase = submission.product_purchase
    if purchase is not None and purchase.amount > 0 and gig.reimbursement_cap > 0:
        reimbursement = min(purchase.amount, gig.reimbursement_cap)

    bonus = 0.0
    net = round(base - fee + reimbursement + bonus, 2)
    return PayoutBreakdown(
        base_payout=round(base, 2),
        platform_fee=fee,
        reimbursement_amount=round(reimbursement, 2),
        bonus_amount=bonus,
        creator_net=net,
    )
