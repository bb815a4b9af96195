# Giglet gigs — authoring, creator feed, acceptance gate
#
# Gate order used by accept_gig:
#   1. State:       deadline passed, already accepted (idempotent), closed,
#                   single-acceptor gig held by someone else
#   2. Visibility:  invite list, squad membership
#   3. Early access: rep timer, non-squad gigs only
#   4. Eligibility: trust minimum, follower minimum, experience,
#                   reimbursement, high-payout and premium gates
#   5. Capacity:    live submissions below the limit
#
# The feed drops gigs that fail 1, 2 or 4 and shows gigs held by 3 as
# locked. Only accept_gig checks capacity.
#
# The pre-check in accept_gig is only there to fail fast with a useful
# message. The store transaction that follows re-reads the gig and
# re-counts live submissions, and that transaction is the guard.

import logging
import time
from typing import Optional

from config import Settings
from db import Store
from errors import ConflictError, EligibilityError, NotFoundError, ValidationError
from models import (
    CLOSED_GIG_STATUSES,
    LIVE_SUBMISSION_STATUSES,
    Creator,
    Gig,
    GigStatus,
    PayoutType,
    Visibility,
    new_id,
)
from payouts import calculate_payout, creator_following_count
from reputation import can_access_gig
from squads import squad_ids_for_creator
from trust import gate_failure, trust_score

log = logging.getLogger("giglet")

DEFAULT_DEADLINE_HOURS = 24
GIG_ENDED_MESSAGE = "This gig has ended"


def _lower_set(values) -> set:
    return {str(v).strip().lower() for v in (values or []) if str(v).strip()}


def live_submission_count(store: Store, conn, gig_id: str) -> int:
    return store.ops.count(conn, "submissions", gig_id=gig_id,
                           status=sorted(LIVE_SUBMISSION_STATUSES))


def hits_hard_nos(creator: Creator, gig: Gig) -> bool:
    nos = _lower_set(creator.hard_nos)
    if not nos:
        return False
    if gig.primary_thing and gig.primary_thing.strip().lower() in nos:
        return True
    return bool(_lower_set(gig.secondary_tags) & nos)


def follower_shortfall(creator: Creator, gig: Gig) -> Optional[str]:
    if not gig.min_followers:
        return None
    platform = (gig.min_followers_platform or "").strip().lower()
    if platform:
        have = int((creator.following_count or {}).get(platform) or 0)
        where = f" on {platform}"
    else:
        have = creator_following_count(creator)
        where = ""
    if have < gig.min_followers:
        return f"{gig.min_followers:,}+ followers required{where} (you have {have:,})"
    return None


def experience_mismatch(creator: Creator, gig: Gig) -> bool:
    required = _lower_set(gig.experience_requirements)
    if not required:
        return False
    return not (required & _lower_set(creator.experience))


def visibility_failure(creator_id: str, gig: Gig, squad_ids: set) -> Optional[str]:
    if gig.visibility == Visibility.INVITE and creator_id not in gig.invited_creator_ids:
        return "This gig is invite-only"
    if gig.visibility == Visibility.SQUAD:
        if not gig.squad_ids or not (set(gig.squad_ids) & squad_ids):
            return "This gig is only open to squad members"
    return None


class GigService:
    def __init__(self, store: Store, settings: Settings, clock=time.time):
        self.store = store
        self.settings = settings
        self.clock = clock

    # ── Authoring ─────────────────────────────────────────────────────

    def create_gig(self, brand_id: str, fields: dict) -> Gig:
        if self.store.get("brands", brand_id) is None:
            raise NotFoundError(f"Brand {brand_id} not found")
        fields = dict(fields or {})
        now = self.clock()

        hours = fields.pop("deadline_hours", None)
        if fields.get("deadline_at") is None:
            hours = DEFAULT_DEADLINE_HOURS if hours is None else hours
            try:
                hours = float(hours)
            except (TypeError, ValueError):
                raise ValidationError("deadline_hours must be a number")
            fields["deadline_at"] = now + hours * 3600

        for key in ("id", "brand_id", "status", "accepted_by", "accepted_at",
                    "accepted_creator_ids", "created_at", "updated_at"):
            fields.pop(key, None)
        gig = Gig.from_dict({**fields, "id": new_id("gig"), "brand_id": brand_id,
                             "created_at": now, "updated_at": now})

        if not gig.title.strip():
            raise ValidationError("Title is required")
        if not gig.primary_thing.strip():
            raise ValidationError("Category (primary_thing) is required")
        if gig.payout_type == PayoutType.FIXED and gig.base_payout <= 0:
            raise ValidationError("Payout must be greater than 0")
        if gig.payout_type == PayoutType.DYNAMIC:
            if not any(r.payout > 0 for r in gig.follower_ranges):
                raise ValidationError("Dynamic payout needs at least one follower range with a payout")
            for r in gig.follower_ranges:
                if r.max is not None and r.max < r.min:
                    raise ValidationError(f"Follower range {r.min}-{r.max} is inverted")
        if gig.deadline_at <= now:
            raise ValidationError("Deadline must be in the future")
        if gig.trust_score_min is not None and not 0 <= gig.trust_score_min <= 100:
            raise ValidationError("trust_score_min must be between 0 and 100")
        if gig.visibility == Visibility.SQUAD and not gig.squad_ids:
            raise ValidationError("Squad gigs need at least one squad")
        if gig.visibility == Visibility.INVITE and not gig.invited_creator_ids:
            raise ValidationError("Invite-only gigs need at least one invited creator")
        if gig.reimbursement_mode is not None and gig.reimbursement_cap < 0:
            raise ValidationError("reimbursement_cap cannot be negative")

        self.store.put("gigs", gig.to_dict())
        log.info("GIG %s created by brand %s: %s ($%.2f, limit %d)", gig.id, brand_id,
                 gig.title, gig.base_payout, gig.accepted_submissions_limit)
        return gig

    def get_gig(self, gig_id: str) -> Gig:
        doc = self.store.get("gigs", gig_id)
        if doc is None:
            raise NotFoundError(f"Gig {gig_id} not found")
        return Gig.from_dict(doc)

    def list_brand_gigs(self, brand_id: str) -> list:
        docs = self.store.find("gigs", brand_id=brand_id, order_by="created_at", descending=True)
        return [Gig.from_dict(d) for d in docs]

    def close_gig(self, brand_id: str, gig_id: str) -> Gig:
        with self.store.transaction() as conn:
            doc = self.store.ops.get(conn, "gigs", gig_id)
            if doc is None:
                raise NotFoundError(f"Gig {gig_id} not found")
            gig = Gig.from_dict(doc)
            if gig.brand_id != brand_id:
                raise EligibilityError("Only the posting brand can close this gig")
            gig.status = GigStatus.CLOSED
            gig.updated_at = self.clock()
            self.store.ops.put(conn, "gigs", gig.to_dict())
        log.info("GIG %s closed by brand %s", gig_id, brand_id)
        return gig

    def expire_overdue(self, now: Optional[float] = None) -> int:
        """Mark open/accepted gigs past their deadline as expired."""
        now = self.clock() if now is None else now
        expired = 0
        with self.store.transaction() as conn:
            docs = self.store.ops.find(conn, "gigs",
                                       status=[GigStatus.OPEN.value, GigStatus.ACCEPTED.value])
            for doc in docs:
                gig = Gig.from_dict(doc)
                if gig.is_past_deadline(now):
                    gig.status = GigStatus.EXPIRED
                    gig.updated_at = now
                    self.store.ops.put(conn, "gigs", gig.to_dict())
                    expired += 1
        if expired:
            log.info("Expired %d overdue gigs", expired)
        return expired

    # ── Feed ──────────────────────────────────────────────────────────

    def _creator(self, creator_id: str, conn=None) -> Creator:
        if conn is None:
            doc = self.store.get("creators", creator_id)
        else:
            doc = self.store.ops.get(conn, "creators", creator_id)
        if doc is None:
            raise NotFoundError(f"Creator {creator_id} not found")
        return Creator.from_dict(doc)

    def creator_feed(self, creator_id: str, now: Optional[float] = None) -> list:
        """Gigs this creator may see, newest first, with early-access lock flags."""
        now = self.clock() if now is None else now
        creator = self._creator(creator_id)
        score = trust_score(creator)
        following = creator_following_count(creator)
        visible_statuses = [s.value for s in GigStatus if s.value not in CLOSED_GIG_STATUSES]

        with self.store.connection() as conn:
            squad_ids = squad_ids_for_creator(self.store, creator_id, conn=conn)
            docs = self.store.ops.find(conn, "gigs", status=visible_statuses,
                                       order_by="created_at", descending=True)

        feed = []
        for doc in docs:
            gig = Gig.from_dict(doc)
            mine = creator_id in gig.accepted_creator_ids
            if gig.accepted_submissions_limit == 1 and gig.accepted_by and not mine:
                continue
            if gig.is_past_deadline(now):
                continue
            if hits_hard_nos(creator, gig):
                continue
            if visibility_failure(creator_id, gig, squad_ids):
                continue
            if follower_shortfall(creator, gig):
                continue
            if experience_mismatch(creator, gig):
                continue
            if gate_failure(gig, score, self.settings.high_payout_threshold):
                continue

            if gig.is_squad_gig:
                locked, unlock_at, minutes = False, gig.created_at, 0
            else:
                access = can_access_gig(creator.rep, gig.created_at, now=now)
                locked = not access.can_access
                unlock_at, minutes = access.unlock_at, access.minutes_until_unlock

            item = gig.to_dict()
            item.update({
                "locked": locked,
                "unlock_at": unlock_at,
                "minutes_until_unlock": minutes,
                "accepted_by_me": mine,
                "payout": calculate_payout(gig, following),
            })
            feed.append(item)
        return feed

    # ── Acceptance ────────────────────────────────────────────────────

    def _precheck(self, creator: Creator, gig: Gig, now: float) -> bool:
        """Raise on the first gate the creator misses. True when already accepted."""
        if gig.is_past_deadline(now):
            raise ConflictError(GIG_ENDED_MESSAGE)
        if creator.id in gig.accepted_creator_ids:
            return True
        if gig.status.value in CLOSED_GIG_STATUSES:
            raise ConflictError(f"This gig is {gig.status.value}")
        if gig.accepted_submissions_limit == 1 and gig.accepted_by and gig.accepted_by != creator.id:
            raise ConflictError("This gig has already been accepted by another creator")

        squad_ids = squad_ids_for_creator(self.store, creator.id) if gig.is_squad_gig else set()
        reason = visibility_failure(creator.id, gig, squad_ids)
        if reason:
            raise EligibilityError(reason)

        if not gig.is_squad_gig:
            access = can_access_gig(creator.rep, gig.created_at, now=now)
            if not access.can_access:
                raise EligibilityError(
                    f"This gig unlocks for your level in {access.minutes_until_unlock} minutes",
                    unlock_at=access.unlock_at,
                    minutes_until_unlock=access.minutes_until_unlock,
                )

        score = trust_score(creator)
        if gig.trust_score_min is not None and score < gig.trust_score_min:
            raise EligibilityError(f"Trust score {gig.trust_score_min}+ required (yours is {score})")
        shortfall = follower_shortfall(creator, gig)
        if shortfall:
            raise EligibilityError(shortfall)
        if experience_mismatch(creator, gig):
            raise EligibilityError("Your experience does not match this gig's requirements")
        reason = gate_failure(gig, score, self.settings.high_payout_threshold)
        if reason:
            raise EligibilityError(reason)

        with self.store.connection() as conn:
            live = live_submission_count(self.store, conn, gig.id)
        if live >= gig.accepted_submissions_limit:
            raise ConflictError("This gig has reached its acceptance limit")
        return False

    def accept_gig(self, creator_id: str, gig_id: str, now: Optional[float] = None) -> dict:
        now = self.clock() if now is None else now
        creator = self._creator(creator_id)
        gig = self.get_gig(gig_id)

        if self._precheck(creator, gig, now):
            return {"gig_id": gig_id, "creator_id": creator_id, "accepted": True,
                    "already_accepted": True, "status": gig.status.value}

        with self.store.transaction() as conn:
            doc = self.store.ops.get(conn, "gigs", gig_id)
            if doc is None:
                raise NotFoundError(f"Gig {gig_id} not found")
            gig = Gig.from_dict(doc)

            if creator_id in gig.accepted_creator_ids:
                return {"gig_id": gig_id, "creator_id": creator_id, "accepted": True,
                        "already_accepted": True, "status": gig.status.value}
            if gig.is_past_deadline(now):
                raise ConflictError(GIG_ENDED_MESSAGE)
            if gig.status.value in CLOSED_GIG_STATUSES:
                raise ConflictError(f"This gig is {gig.status.value}")
            if gig.accepted_submissions_limit == 1 and gig.accepted_by:
                raise ConflictError("This gig has already been accepted by another creator")
            live = live_submission_count(self.store, conn, gig_id)
            if live >= gig.accepted_submissions_limit:
                raise ConflictError("This gig has reached its acceptance limit")

            gig.accepted_by = creator_id
            gig.accepted_at = now
            gig.accepted_creator_ids.append(creator_id)
            if gig.status == GigStatus.OPEN:
                gig.status = GigStatus.ACCEPTED
            gig.updated_at = now
            self.store.ops.put(conn, "gigs", gig.to_dict())

        log.info("GIG %s accepted by %s (%d/%d live)", gig_id, creator_id, live,
                 gig.accepted_submissions_limit)
        return {"gig_id": gig_id, "creator_id": creator_id, "accepted": True,
                "already_accepted": False, "status": gig.status.value}

