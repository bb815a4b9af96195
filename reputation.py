# Giglet Reputation Engine — rep levels, rep mutation, early access
#
# Rep is a cumulative point total on the creator record. It maps to one of
# seven levels, and the level decides how long a creator waits before a new
# non-squad gig shows as unlocked in their feed.
#
# Seven Levels (minimum cumulative rep):
#   1 Rookie:      0
#   2 Amateur:     100
#   3 Rising Star: 300
#   4 Pro:         600
#   5 Expert:      1000
#   6 Master:      1500
#   7 Legend:      2500
#
# Rep Events:
#   Gig completed:        +50
#   Squad joined:         +10
#   AI quality >= 90:     +30
#   AI quality 80–89:     +20
#   AI quality 70–79:     +10
#   Failed submission:    -20
#
# Early Access: a level L creator sees a new gig (7 - L) * 10 minutes after
# it is posted. Legends see everything immediately.

import logging
import math
import time
from dataclasses import asdict, dataclass
from typing import Optional

from db import Store
from errors import NotFoundError, ValidationError
from models import Creator, RepEvent, new_id

log = logging.getLogger("giglet")


# ── Level Table ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class RepLevel:
    level: int
    name: str
    min_rep: int


REP_LEVELS = (
    RepLevel(1, "Rookie", 0),
    RepLevel(2, "Amateur", 100),
    RepLevel(3, "Rising Star", 300),
    RepLevel(4, "Pro", 600),
    RepLevel(5, "Expert", 1000),
    RepLevel(6, "Master", 1500),
    RepLevel(7, "Legend", 2500),
)

MAX_LEVEL = REP_LEVELS[-1].level


@dataclass
class LevelInfo:
    level: int
    name: str
    min_rep: int
    next_level_rep: int      # next tier threshold; own threshold at max level
    prev_level_rep: int

    def to_dict(self) -> dict:
        return asdict(self)


def get_rep_level(rep: int) -> LevelInfo:
    """Highest tier whose threshold is <= rep. Negative rep reads as 0."""
    rep = max(0, int(rep or 0))
    idx = 0
    for i, tier in enumerate(REP_LEVELS):
        if rep >= tier.min_rep:
            idx = i
    current = REP_LEVELS[idx]
    nxt = REP_LEVELS[idx + 1] if idx + 1 < len(REP_LEVELS) else current
    prev = REP_LEVELS[idx - 1] if idx > 0 else current
    return LevelInfo(
        level=current.level,
        name=current.name,
        min_rep=current.min_rep,
        next_level_rep=nxt.min_rep,
        prev_level_rep=prev.min_rep,
    )


def level_progress(rep: int) -> float:
    """Fraction of the way from this level to the next, 0..1."""
    info = get_rep_level(rep)
    if info.level == MAX_LEVEL:
        return 1.0
    span = info.next_level_rep - info.min_rep
    return round(min(1.0, (max(0, rep) - info.min_rep) / span), 4)


# ── Rep Deltas ────────────────────────────────────────────────────────

REP_GIG_COMPLETED = 50
REP_SQUAD_JOINED = 10
REP_SUBMISSION_FAILED = -20

SQUAD_JOIN_REASON = "squad_joined"

# (minimum quality score, rep bonus), checked top-down
AI_SCORE_BONUSES = (
    (90, 30),
    (80, 20),
    (70, 10),
)


def ai_score_rep(score: float) -> int:
    """Rep bonus for an AI quality score. Below 70 earns nothing."""
    for floor, bonus in AI_SCORE_BONUSES:
        if score >= floor:
            return bonus
    return 0


# ── Early Access ──────────────────────────────────────────────────────

ACCESS_DELAY_STEP_MIN = 10


def get_access_delay_minutes(level: int) -> int:
    if not 1 <= level <= MAX_LEVEL:
        raise ValidationError(f"Rep level must be 1-{MAX_LEVEL}, got {level}")
    return (MAX_LEVEL - level) * ACCESS_DELAY_STEP_MIN


@dataclass
class GigAccess:
    can_access: bool
    unlock_at: float
    minutes_until_unlock: int

    def to_dict(self) -> dict:
        return asdict(self)


def can_access_gig(rep: int, created_at: float, now: Optional[float] = None) -> GigAccess:
    """Whether a creator with this rep can open a gig posted at created_at."""
    now = time.time() if now is None else now
    level = get_rep_level(rep).level
    unlock_at = created_at + get_access_delay_minutes(level) * 60
    if now >= unlock_at:
        return GigAccess(can_access=True, unlock_at=unlock_at, minutes_until_unlock=0)
    return GigAccess(
        can_access=False,
        unlock_at=unlock_at,
        minutes_until_unlock=math.ceil((unlock_at - now) / 60),
    )


# ── Reputation Engine ─────────────────────────────────────────────────

class RepEngine:
    """Applies rep events to creators.

    Every change is a read-modify-write inside one store transaction, with
    an audit row in rep_events. Rep is clamped at zero.
    """

    def __init__(self, store: Store):
        self.store = store

    def apply(self, conn, creator_id: str, delta: int, reason: str = "") -> tuple:
        """Apply a rep change on an open transaction. Returns (creator, before, after)."""
        delta = int(delta)
        doc = self.store.ops.get(conn, "creators", creator_id)
        if doc is None:
            raise NotFoundError(f"Creator {creator_id} not found")
        creator = Creator.from_dict(doc)
        before = creator.rep
        after = max(0, before + delta)
        creator.rep = after
        creator.updated_at = time.time()
        self.store.ops.put(conn, "creators", creator.to_dict())

        event = RepEvent(
            id=new_id("rep"),
            creator_id=creator_id,
            delta=after - before,
            requested_delta=delta,
            rep_before=before,
            rep_after=after,
            reason=reason,
        )
        self.store.ops.put(conn, "rep_events", event.to_dict())
        return creator, before, after

    def log_change(self, creator_id: str, before: int, after: int, reason: str):
        before_level = get_rep_level(before).level
        after_level = get_rep_level(after).level
        log.info("REP %s %+d (%s) %d -> %d", creator_id, after - before, reason, before, after)
        if after_level != before_level:
            log.info("REP %s level %d -> %d (%s)", creator_id, before_level, after_level,
                     get_rep_level(after).name)

    def award_rep(self, creator_id: str, delta: int, reason: str = "") -> Creator:
        with self.store.transaction() as conn:
            creator, before, after = self.apply(conn, creator_id, delta, reason)
        self.log_change(creator_id, before, after, reason)
        return creator

    def award_gig_completion(self, creator_id: str) -> Creator:
        return self.award_rep(creator_id, REP_GIG_COMPLETED, "gig_completed")

    def award_squad_join(self, creator_id: str) -> Creator:
        return self.award_rep(creator_id, REP_SQUAD_JOINED, SQUAD_JOIN_REASON)

    def award_ai_score(self, creator_id: str, score: float) -> Optional[Creator]:
        """No-op below 70."""
        bonus = ai_score_rep(score)
        if bonus <= 0:
            return None
        return self.award_rep(creator_id, bonus, f"ai_score_{int(score)}")

    def deduct_failed_submission(self, creator_id: str) -> Creator:
        return self.award_rep(creator_id, REP_SUBMISSION_FAILED, "submission_failed")

    def get_history(self, creator_id: str, limit: int = 50) -> list:
        return self.store.find("rep_events", creator_id=creator_id,
                               order_by="created_at", descending=True, limit=limit)

    def get_status(self, creator_id: str) -> dict:
        doc = self.store.get("creators", creator_id)
        if doc is None:
            raise NotFoundError(f"Creator {creator_id} not found")
        rep = Creator.from_dict(doc).rep
        info = get_rep_level(rep)
        return {
            "creator_id": creator_id,
            "rep": rep,
            **info.to_dict(),
            "progress": level_progress(rep),
            "access_delay_minutes": get_access_delay_minutes(info.level),
        }

    def leaderboard(self, limit: int = 20, community_id: Optional[str] = None) -> list:
        """Top creators by rep, optionally within one community."""
        filters = {"community_id": community_id} if community_id else {}
        docs = self.store.find("creators", order_by="rep", descending=True,
                               limit=limit, **filters)
        board = []
        for rank, doc in enumerate(docs, start=1):
            creator = Creator.from_dict(doc)
            info = get_rep_level(creator.rep)
            board.append({
                "rank": rank,
                "creator_id": creator.id,
                "username": creator.username,
                "rep": creator.rep,
                "level": info.level,
                "level_name": info.name,
            })
        return board
