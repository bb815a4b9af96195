# Giglet Trust Score — 0–100 composite that unlocks payout and gig tiers
#
# Buckets:
#   Verification (cap 55): email +10, phone +10, payment setup +15, identity +20
#   Socials      (cap 20): TikTok +7, Instagram +7, YouTube +5, LinkedIn +1
#   Performance  (cap 25): reserved, currently 0
#
# Gates:
#   >= 50  instant payouts, reimbursement gigs
#   >= 70  high-payout gigs (base payout >= threshold)
#   >= 85  premium gigs

from dataclasses import asdict, dataclass
from typing import Optional

from models import Creator, Gig, ReimbursementMode

MAX_TRUST_SCORE = 100

VERIFICATION_POINTS = {
    "email": 10,
    "phone": 10,
    "payment_setup": 15,
    "identity": 20,
}
MAX_VERIFICATION_POINTS = 55

SOCIAL_POINTS = {
    "tiktok": 7,
    "instagram": 7,
    "youtube": 5,
    "linkedin": 1,
}
MAX_SOCIAL_POINTS = 20

MAX_PERFORMANCE_POINTS = 25

INSTANT_PAYOUT_MIN = 50
REIMBURSEMENT_GIG_MIN = 50
HIGH_PAYOUT_MIN = 70
PREMIUM_GIG_MIN = 85

MILESTONES = (
    (INSTANT_PAYOUT_MIN, "Instant Payouts"),
    (HIGH_PAYOUT_MIN, "High-Value Gigs"),
    (PREMIUM_GIG_MIN, "Premium Gigs"),
)


@dataclass
class TrustScoreBreakdown:
    score: int
    verification: int
    socials: int
    performance: int
    max_score: int = MAX_TRUST_SCORE
    next_milestone: Optional[int] = None
    milestone_label: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _verification_points(creator: Creator) -> int:
    earned = 0
    if creator.email_verified:
        earned += VERIFICATION_POINTS["email"]
    if creator.phone_verified:
        earned += VERIFICATION_POINTS["phone"]
    if creator.stripe_onboarding_complete:
        earned += VERIFICATION_POINTS["payment_setup"]
    if creator.identity_verified:
        earned += VERIFICATION_POINTS["identity"]
    return min(earned, MAX_VERIFICATION_POINTS)


def _social_points(creator: Creator) -> int:
    connected = creator.social_connections or {}
    earned = sum(pts for platform, pts in SOCIAL_POINTS.items() if connected.get(platform))
    return min(earned, MAX_SOCIAL_POINTS)


def trust_breakdown(creator: Creator) -> TrustScoreBreakdown:
    verification = _verification_points(creator)
    socials = _social_points(creator)
    performance = 0
    score = max(0, min(MAX_TRUST_SCORE, verification + socials + performance))

    next_milestone, label = None, None
    for threshold, name in MILESTONES:
        if score < threshold:
            next_milestone, label = threshold, name
            break

    return TrustScoreBreakdown(
        score=score,
        verification=verification,
        socials=socials,
        performance=performance,
        next_milestone=next_milestone,
        milestone_label=label,
    )


def trust_score(creator: Creator) -> int:
    return trust_breakdown(creator).score


def can_instant_payout(score: int) -> bool:
    return score >= INSTANT_PAYOUT_MIN


def is_high_payout(gig: Gig, threshold: float) -> bool:
    return gig.base_payout >= threshold


def gate_failure(gig: Gig, score: int, high_payout_threshold: float) -> Optional[str]:
    """First trust gate the creator misses for this gig, or None."""
    if gig.trust_score_min is not None and score < gig.trust_score_min:
        return f"Trust score {gig.trust_score_min}+ required (yours is {score})"
    if gig.reimbursement_mode == ReimbursementMode.REIMBURSEMENT and score < REIMBURSEMENT_GIG_MIN:
        return f"Reimbursement gigs require trust score {REIMBURSEMENT_GIG_MIN}+ (yours is {score})"
    if is_high_payout(gig, high_payout_threshold) and score < HIGH_PAYOUT_MIN:
        return f"High-value gigs require trust score {HIGH_PAYOUT_MIN}+ (yours is {score})"
    if gig.premium and score < PREMIUM_GIG_MIN:
        return f"Premium gigs require trust score {PREMIUM_GIG_MIN}+ (yours is {score})"
    return None
