# Giglet record types
# One dataclass per stored entity. Records cross the store boundary as dicts:
# to_dict() on the way in, from_dict() on the way out. from_dict() drops
# unknown keys, coerces enums and nested records, and raises ValidationError
# on malformed shapes so a bad document never reaches the services.

import os
import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Optional

from errors import ValidationError


def new_id(prefix: str = "") -> str:
    raw = str(uuid.uuid4())[:12]
    return f"{prefix}-{raw}" if prefix else raw


def ledger_id(prefix: str) -> str:
    """Time-ordered id for money records (PAY-, TX-, WD-)."""
    return f"{prefix}-{int(time.time())}-{os.urandom(3).hex()}"


# ── Enums ─────────────────────────────────────────────────────────────

class UserRole(str, Enum):
    CREATOR = "creator"
    BRAND = "brand"
    ADMIN = "admin"
    RECRUITER = "recruiter"


class GigStatus(str, Enum):
    OPEN = "open"
    ACCEPTED = "accepted"
    SUBMITTED = "submitted"
    NEEDS_CHANGES = "needs_changes"
    APPROVED = "approved"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"
    CLOSED = "closed"


class PayoutType(str, Enum):
    FIXED = "fixed"
    DYNAMIC = "dynamic"        # payout picked from follower ranges


class Visibility(str, Enum):
    OPEN = "open"
    SQUAD = "squad"            # only members of gig.squad_ids
    INVITE = "invite"          # only gig.invited_creator_ids


class ReimbursementMode(str, Enum):
    REIMBURSEMENT = "reimbursement"   # creator buys, brand pays back
    SHIPPING = "shipping"             # brand ships the product


class SubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    NEEDS_CHANGES = "needs_changes"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    STRIPE = "stripe"
    BALANCE = "balance"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CAPTURED = "captured"
    TRANSFERRED = "transferred"
    BALANCE_TRANSFERRED = "balance_transferred"
    REFUNDED = "refunded"


class WithdrawalMethod(str, Enum):
    INSTANT = "instant"
    ACH = "ach"


class WithdrawalStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class AccountKind(str, Enum):
    CREATOR = "creator"
    BRAND = "brand"


SOCIAL_PLATFORMS = ("tiktok", "instagram", "youtube", "linkedin")

LIVE_SUBMISSION_STATUSES = frozenset({
    SubmissionStatus.SUBMITTED.value,
    SubmissionStatus.NEEDS_CHANGES.value,
    SubmissionStatus.APPROVED.value,
})

# Gigs in these states never show in a feed and cannot be accepted
CLOSED_GIG_STATUSES = frozenset({
    GigStatus.CLOSED.value,
    GigStatus.CANCELLED.value,
    GigStatus.EXPIRED.value,
    GigStatus.PAID.value,
})

# Payments that count as "already paid" for idempotency
SETTLED_PAYMENT_STATUSES = frozenset({
    PaymentStatus.PENDING.value,
    PaymentStatus.CAPTURED.value,
    PaymentStatus.TRANSFERRED.value,
    PaymentStatus.BALANCE_TRANSFERRED.value,
})


# ── Mapping layer ─────────────────────────────────────────────────────

def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def _number(cls_name, key, value, kind=float):
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{cls_name}.{key} must be a number")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{cls_name}.{key} must be a number, got {value!r}")


class Record:
    """Mixin: dict mapping for dataclass records.

    Subclasses declare ENUMS (field -> Enum), NESTED (field -> Record),
    NESTED_LISTS (field -> Record) and NUMBERS (field -> float/int) as
    plain class attributes.
    """

    ENUMS: dict = {}
    NESTED: dict = {}
    NESTED_LISTS: dict = {}
    NUMBERS: dict = {}

    def to_dict(self) -> dict:
        return _plain(asdict(self))

    @classmethod
    def from_dict(cls, data):
        if isinstance(data, cls):
            return data
        if not isinstance(data, dict):
            raise ValidationError(f"{cls.__name__} must be an object")
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key not in known:
                continue
            if value is None:
                kwargs[key] = None
                continue
            if key in cls.ENUMS:
                try:
                    value = cls.ENUMS[key](value)
                except ValueError:
                    raise ValidationError(f"{cls.__name__}.{key}: invalid value {value!r}")
            elif key in cls.NESTED:
                value = cls.NESTED[key].from_dict(value)
            elif key in cls.NESTED_LISTS:
                if not isinstance(value, list):
                    raise ValidationError(f"{cls.__name__}.{key} must be a list")
                value = [cls.NESTED_LISTS[key].from_dict(v) for v in value]
            elif key in cls.NUMBERS:
                value = _number(cls.__name__, key, value, cls.NUMBERS[key])
            kwargs[key] = value
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ValidationError(f"{cls.__name__}: {e}")


# ── Users ─────────────────────────────────────────────────────────────

@dataclass
class User(Record):
    id: str = ""
    role: UserRole = UserRole.CREATOR
    name: str = ""
    email: str = ""
    username: str = ""
    phone: str = ""
    email_verified: bool = False
    phone_verified: bool = False
    created_at: float = field(default_factory=time.time)

    ENUMS = {"role": UserRole}


@dataclass
class CreatorMetrics(Record):
    gigs_completed: int = 0
    submissions_count: int = 0
    on_time_rate: float = 0.0
    rating_avg: float = 0.0
    avg_ai_score: float = 0.0

    NUMBERS = {"gigs_completed": int, "submissions_count": int,
               "on_time_rate": float, "rating_avg": float, "avg_ai_score": float}


@dataclass
class Creator(Record):
    id: str = ""
    username: str = ""
    bio: str = ""
    location: str = ""
    languages: list = field(default_factory=list)
    interests: list = field(default_factory=list)
    experience: list = field(default_factory=list)
    hard_nos: list = field(default_factory=list)
    socials: dict = field(default_factory=dict)               # platform -> handle
    social_connections: dict = field(default_factory=dict)    # platform -> connected
    following_count: dict = field(default_factory=dict)       # platform -> followers
    email_verified: bool = False
    phone_verified: bool = False
    stripe_onboarding_complete: bool = False
    identity_verified: bool = False
    stripe_account_id: str = ""
    bank_account_id: str = ""
    rep: int = 0
    balance: float = 0.0
    community_id: Optional[str] = None
    metrics: CreatorMetrics = field(default_factory=CreatorMetrics)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    NESTED = {"metrics": CreatorMetrics}
    NUMBERS = {"rep": int, "balance": float}

    def __post_init__(self):
        for name in ("socials", "social_connections", "following_count"):
            if not isinstance(getattr(self, name), dict):
                raise ValidationError(f"Creator.{name} must be an object")
        for name in ("languages", "interests", "experience", "hard_nos"):
            if not isinstance(getattr(self, name), list):
                raise ValidationError(f"Creator.{name} must be a list")
        if self.metrics is None:
            self.metrics = CreatorMetrics()


@dataclass
class Brand(Record):
    id: str = ""
    company_name: str = ""
    website: str = ""
    industry: str = ""
    balance: float = 0.0
    created_at: float = field(default_factory=time.time)

    NUMBERS = {"balance": float}


# ── Gigs ──────────────────────────────────────────────────────────────

@dataclass
class FollowerRange(Record):
    min: int = 0
    max: Optional[int] = None     # None = open-ended
    payout: float = 0.0

    NUMBERS = {"min": int, "max": int, "payout": float}


@dataclass
class Deliverables(Record):
    videos: int = 0
    photos: int = 0
    raw: bool = False
    notes: str = ""

    NUMBERS = {"videos": int, "photos": int}


@dataclass
class Gig(Record):
    id: str = ""
    brand_id: str = ""
    title: str = ""
    description: str = ""
    product_description: str = ""
    primary_thing: str = ""
    secondary_tags: list = field(default_factory=list)
    platform: str = ""
    content_type: str = ""
    deliverables: Deliverables = field(default_factory=Deliverables)
    payout_type: PayoutType = PayoutType.FIXED
    base_payout: float = 0.0
    follower_ranges: list = field(default_factory=list)
    bonus_pool: float = 0.0
    visibility: Visibility = Visibility.OPEN
    squad_ids: list = field(default_factory=list)
    invited_creator_ids: list = field(default_factory=list)
    trust_score_min: Optional[int] = None
    min_followers: Optional[int] = None
    min_followers_platform: str = ""
    experience_requirements: list = field(default_factory=list)
    accepted_submissions_limit: int = 1
    product_in_video_required: bool = False
    reimbursement_mode: Optional[ReimbursementMode] = None
    reimbursement_cap: float = 0.0
    ai_compliance_required: bool = False
    premium: bool = False
    status: GigStatus = GigStatus.OPEN
    accepted_by: Optional[str] = None
    accepted_at: Optional[float] = None
    accepted_creator_ids: list = field(default_factory=list)
    deadline_at: Optional[float] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    ENUMS = {"payout_type": PayoutType, "visibility": Visibility,
             "reimbursement_mode": ReimbursementMode, "status": GigStatus}
    NESTED = {"deliverables": Deliverables}
    NESTED_LISTS = {"follower_ranges": FollowerRange}
    NUMBERS = {"base_payout": float, "bonus_pool": float, "trust_score_min": int,
               "min_followers": int, "accepted_submissions_limit": int,
               "reimbursement_cap": float, "accepted_at": float, "deadline_at": float}

    def __post_init__(self):
        if self.accepted_submissions_limit is None or self.accepted_submissions_limit < 1:
            raise ValidationError("Gig.accepted_submissions_limit must be at least 1")
        if self.deliverables is None:
            self.deliverables = Deliverables()
        for name in ("secondary_tags", "squad_ids", "invited_creator_ids",
                     "experience_requirements", "accepted_creator_ids", "follower_ranges"):
            if not isinstance(getattr(self, name), list):
                raise ValidationError(f"Gig.{name} must be a list")

    @property
    def is_squad_gig(self) -> bool:
        return self.visibility == Visibility.SQUAD

    def is_past_deadline(self, now: float) -> bool:
        return self.deadline_at is not None and self.deadline_at < now


# ── Submissions ───────────────────────────────────────────────────────

@dataclass
class SubmissionFiles(Record):
    videos: list = field(default_factory=list)
    photos: list = field(default_factory=list)
    raw: list = field(default_factory=list)


@dataclass
class ProductPurchase(Record):
    receipt_url: str = ""
    product_photo_url: str = ""
    amount: float = 0.0
    purchase_date: str = ""

    NUMBERS = {"amount": float}


@dataclass
class AIEvaluation(Record):
    compliance_passed: bool = False
    compliance_issues: list = field(default_factory=list)
    quality_score: float = 0.0
    quality_breakdown: dict = field(default_factory=dict)
    improvement_tips: list = field(default_factory=list)
    evaluated_at: float = field(default_factory=time.time)

    NUMBERS = {"quality_score": float, "evaluated_at": float}

    def __post_init__(self):
        if not 0 <= self.quality_score <= 100:
            raise ValidationError("quality_score must be between 0 and 100")


@dataclass
class Submission(Record):
    id: str = ""
    gig_id: str = ""
    creator_id: str = ""
    version: int = 1
    content_link: str = ""
    files: SubmissionFiles = field(default_factory=SubmissionFiles)
    product_purchase: Optional[ProductPurchase] = None
    ai_evaluation: Optional[AIEvaluation] = None
    status: SubmissionStatus = SubmissionStatus.SUBMITTED
    change_requests_count: int = 0
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    ENUMS = {"status": SubmissionStatus}
    NESTED = {"files": SubmissionFiles, "product_purchase": ProductPurchase,
              "ai_evaluation": AIEvaluation}
    NUMBERS = {"version": int, "change_requests_count": int}

    def __post_init__(self):
        if self.files is None:
            self.files = SubmissionFiles()

    @property
    def is_live(self) -> bool:
        return self.status.value in LIVE_SUBMISSION_STATUSES


# ── Money ─────────────────────────────────────────────────────────────

@dataclass
class Payment(Record):
    id: str = ""
    submission_id: str = ""
    gig_id: str = ""
    brand_id: str = ""
    creator_id: str = ""
    base_payout: float = 0.0
    bonus_amount: float = 0.0
    reimbursement_amount: float = 0.0
    platform_fee: float = 0.0
    creator_net: float = 0.0
    method: PaymentMethod = PaymentMethod.BALANCE
    status: PaymentStatus = PaymentStatus.PENDING
    stripe_transfer_id: str = ""
    error: str = ""
    created_at: float = field(default_factory=time.time)
    transferred_at: Optional[float] = None

    ENUMS = {"method": PaymentMethod, "status": PaymentStatus}


@dataclass
class BalanceTransaction(Record):
    id: str = ""
    account_id: str = ""
    account_kind: AccountKind = AccountKind.CREATOR
    amount: float = 0.0
    balance_before: float = 0.0
    balance_after: float = 0.0
    reason: str = ""
    metadata: dict = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    ENUMS = {"account_kind": AccountKind}


@dataclass
class Withdrawal(Record):
    id: str = ""
    creator_id: str = ""
    amount: float = 0.0
    method: WithdrawalMethod = WithdrawalMethod.ACH
    status: WithdrawalStatus = WithdrawalStatus.PROCESSING
    stripe_payout_id: str = ""
    estimated_arrival: str = ""
    error: str = ""
    created_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None

    ENUMS = {"method": WithdrawalMethod, "status": WithdrawalStatus}


# ── Community ─────────────────────────────────────────────────────────

@dataclass
class SquadStats(Record):
    completion_rate: float = 0.0
    avg_ai_score: float = 0.0
    gigs_completed: int = 0


@dataclass
class Squad(Record):
    id: str = ""
    name: str = ""
    description: str = ""
    recruiter_id: str = ""
    tags: list = field(default_factory=list)
    member_ids: list = field(default_factory=list)
    invite_only: bool = False
    trust_score_min: Optional[int] = None
    stats: SquadStats = field(default_factory=SquadStats)
    created_at: float = field(default_factory=time.time)

    NESTED = {"stats": SquadStats}
    NUMBERS = {"trust_score_min": int}


@dataclass
class SquadInvitation(Record):
    id: str = ""
    squad_id: str = ""
    creator_id: str = ""
    invited_by: str = ""
    status: InvitationStatus = InvitationStatus.PENDING
    created_at: float = field(default_factory=time.time)

    ENUMS = {"status": InvitationStatus}


@dataclass
class Notification(Record):
    id: str = ""
    user_id: str = ""
    type: str = ""
    title: str = ""
    message: str = ""
    gig_id: Optional[str] = None
    submission_id: Optional[str] = None
    read: bool = False
    created_at: float = field(default_factory=time.time)


@dataclass
class RepEvent(Record):
    id: str = ""
    creator_id: str = ""
    delta: int = 0               # what was applied after clamping
    requested_delta: int = 0
    rep_before: int = 0
    rep_after: int = 0
    reason: str = ""
    created_at: float = field(default_factory=time.time)
