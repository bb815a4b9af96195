# Giglet squads — creator groups with squad-only gig visibility
# Recruiters create a squad and invite creators. Joining an invite-only
# squad needs a pending invitation. A creator's first join earns rep.

import logging
from typing import Optional

from db import Store
from errors import ConflictError, EligibilityError, NotFoundError, ValidationError
from models import Creator, InvitationStatus, Squad, SquadInvitation, SquadStats, new_id
from reputation import REP_SQUAD_JOINED, SQUAD_JOIN_REASON, RepEngine
from trust import trust_score

log = logging.getLogger("giglet")


def squad_ids_for_creator(store: Store, creator_id: str, conn=None) -> set:
    """Squads the creator belongs to or holds a pending invite for."""
    if conn is None:
        with store.connection() as c:
            return squad_ids_for_creator(store, creator_id, conn=c)
    ids = {
        doc["id"] for doc in store.ops.find(conn, "squads")
        if creator_id in (doc.get("member_ids") or [])
    }
    for doc in store.ops.find(conn, "squad_invitations", creator_id=creator_id,
                              status=InvitationStatus.PENDING.value):
        ids.add(doc["squad_id"])
    return ids


class SquadService:
    def __init__(self, store: Store, rep: RepEngine):
        self.store = store
        self.rep = rep

    def get_squad(self, squad_id: str) -> Squad:
        doc = self.store.get("squads", squad_id)
        if doc is None:
            raise NotFoundError(f"Squad {squad_id} not found")
        return Squad.from_dict(doc)

    def create_squad(self, recruiter_id: str, name: str, description: str = "",
                     tags: Optional[list] = None, invite_only: bool = False,
                     trust_score_min: Optional[int] = None) -> Squad:
        if not name or not name.strip():
            raise ValidationError("Squad name is required")
        if self.store.get("creators", recruiter_id) is None:
            raise NotFoundError(f"Creator {recruiter_id} not found")
        squad = Squad(
            id=new_id("sq"),
            name=name.strip(),
            description=description,
            recruiter_id=recruiter_id,
            tags=list(tags or []),
            member_ids=[recruiter_id],
            invite_only=invite_only,
            trust_score_min=trust_score_min,
        )
        self.store.put("squads", squad.to_dict())
        log.info("SQUAD %s created by %s (%s)", squad.id, recruiter_id, squad.name)
        return squad

    def invite(self, squad_id: str, creator_id: str, invited_by: str) -> SquadInvitation:
        squad = self.get_squad(squad_id)
        if invited_by not in squad.member_ids:
            raise EligibilityError("Only squad members can invite")
        if creator_id in squad.member_ids:
            raise ConflictError("Creator is already a member")
        if self.store.get("creators", creator_id) is None:
            raise NotFoundError(f"Creator {creator_id} not found")
        pending = self.store.find("squad_invitations", squad_id=squad_id, creator_id=creator_id,
                                  status=InvitationStatus.PENDING.value)
        if pending:
            return SquadInvitation.from_dict(pending[0])
        inv = SquadInvitation(id=new_id("inv"), squad_id=squad_id, creator_id=creator_id,
                              invited_by=invited_by)
        self.store.put("squad_invitations", inv.to_dict())
        return inv

    def join(self, squad_id: str, creator_id: str) -> Squad:
        with self.store.transaction() as conn:
            doc = self.store.ops.get(conn, "squads", squad_id)
            if doc is None:
                raise NotFoundError(f"Squad {squad_id} not found")
            squad = Squad.from_dict(doc)
            if creator_id in squad.member_ids:
                return squad

            cdoc = self.store.ops.get(conn, "creators", creator_id)
            if cdoc is None:
                raise NotFoundError(f"Creator {creator_id} not found")
            creator = Creator.from_dict(cdoc)

            invites = self.store.ops.find(conn, "squad_invitations", squad_id=squad_id,
                                          creator_id=creator_id,
                                          status=InvitationStatus.PENDING.value)
            if squad.invite_only and not invites:
                raise EligibilityError("This squad is invite-only")
            if squad.trust_score_min is not None:
                score = trust_score(creator)
                if score < squad.trust_score_min:
                    raise EligibilityError(
                        f"Trust score {squad.trust_score_min}+ required (yours is {score})"
                    )

            squad.member_ids.append(creator_id)
            self.store.ops.put(conn, "squads", squad.to_dict())
            for inv_doc in invites:
                inv = SquadInvitation.from_dict(inv_doc)
                inv.status = InvitationStatus.ACCEPTED
                self.store.ops.put(conn, "squad_invitations", inv.to_dict())

            # Only the first squad a creator ever joins earns rep.
            prior = [e for e in self.store.ops.find(conn, "rep_events", creator_id=creator_id)
                     if e.get("reason") == SQUAD_JOIN_REASON]
            awarded = None
            if not prior:
                _, before, after = self.rep.apply(conn, creator_id, REP_SQUAD_JOINED,
                                                  SQUAD_JOIN_REASON)
                awarded = (before, after)

        log.info("SQUAD %s joined by %s", squad_id, creator_id)
        if awarded:
            self.rep.log_change(creator_id, *awarded, SQUAD_JOIN_REASON)
        return squad

    def leave(self, squad_id: str, creator_id: str) -> Squad:
        with self.store.transaction() as conn:
            doc = self.store.ops.get(conn, "squads", squad_id)
            if doc is None:
                raise NotFoundError(f"Squad {squad_id} not found")
            squad = Squad.from_dict(doc)
            if creator_id not in squad.member_ids:
                raise ConflictError("Creator is not a member")
            if creator_id == squad.recruiter_id:
                raise ConflictError("The recruiter cannot leave their own squad")
            squad.member_ids.remove(creator_id)
            self.store.ops.put(conn, "squads", squad.to_dict())
        return squad

    def is_member(self, squad_id: str, creator_id: str) -> bool:
        return creator_id in self.get_squad(squad_id).member_ids

    def list_for_creator(self, creator_id: str) -> list:
        ids = squad_ids_for_creator(self.store, creator_id)
        squads = [self.get_squad(sid) for sid in sorted(ids)]
        return [s for s in squads if creator_id in s.member_ids]

    def refresh_stats(self, squad_id: str) -> SquadStats:
        """Recompute completion rate, average AI score and completed gigs from members' submissions."""
        squad = self.get_squad(squad_id)
        subs = self.store.find("submissions", creator_id=squad.member_ids)
        squad_gig_ids = {
            g["id"] for g in self.store.find("gigs", visibility="squad")
            if squad_id in (g.get("squad_ids") or [])
        }
        subs = [s for s in subs if s.get("gig_id") in squad_gig_ids]
        approved = [s for s in subs if s.get("status") == "approved"]
        scores = [
            s["ai_evaluation"]["quality_score"] for s in subs
            if s.get("ai_evaluation") and s["ai_evaluation"].get("quality_score") is not None
        ]
        stats = SquadStats(
            completion_rate=round(len(approved) / len(subs), 4) if subs else 0.0,
            avg_ai_score=round(sum(scores) / len(scores), 1) if scores else 0.0,
            gigs_completed=len(approved),
        )
        with self.store.transaction() as conn:
            doc = self.store.ops.get(conn, "squads", squad_id)
            current = Squad.from_dict(doc)
            current.stats = stats
            self.store.ops.put(conn, "squads", current.to_dict())
        log.info("SQUAD %s stats: %d completed, %.0f%% rate", squad_id, stats.gigs_completed,
                 stats.completion_rate * 100)
        return stats
