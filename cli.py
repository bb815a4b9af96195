#!/usr/bin/env python3
# Giglet CLI
# argparse. Operator commands against the local store.

import argparse
import json
import sys
from dataclasses import replace

from config import Settings, setup_logging
from errors import GigletError
from reputation import REP_LEVELS, get_access_delay_minutes, get_rep_level
from services import build_services
from trust import trust_breakdown


def _services(args):
    settings = Settings.from_env()
    if args.db:
        settings = replace(settings, db_path=args.db)
    setup_logging(settings)
    return build_services(settings)


def cmd_serve(args):
    """Run the API under uvicorn."""
    import uvicorn

    uvicorn.run("api:create_app", factory=True, host=args.host, port=args.port)


def cmd_init_db(args):
    svc = _services(args)
    print(f"Store ready: {svc.store.db_path}")
    health = svc.store.healthcheck()
    print(f"  healthcheck: {'ok' if health['ok'] else health.get('error')}")


def cmd_rep(args):
    """Show a creator's rep, level and early-access delay."""
    svc = _services(args)
    status = svc.rep.get_status(args.creator_id)
    print(f"{args.creator_id}: {status['rep']} rep | level {status['level']} ({status['name']})")
    print(f"  next level at {status['next_level_rep']} | progress {status['progress'] * 100:.0f}%")
    print(f"  early access delay: {status['access_delay_minutes']} min")
    if args.history:
        for e in svc.rep.get_history(args.creator_id, limit=args.history):
            print(f"    {e['delta']:+4d}  {e['reason']:<20} {e['rep_before']} -> {e['rep_after']}")


def cmd_award_rep(args):
    svc = _services(args)
    creator = svc.rep.award_rep(args.creator_id, args.delta, args.reason)
    info = get_rep_level(creator.rep)
    print(f"{args.creator_id}: {creator.rep} rep | level {info.level} ({info.name})")


def cmd_trust(args):
    svc = _services(args)
    creator = svc.profiles.get_creator(args.creator_id)
    t = trust_breakdown(creator)
    print(f"{args.creator_id}: trust {t.score}/{t.max_score}")
    print(f"  verification {t.verification} | socials {t.socials} | performance {t.performance}")
    if t.next_milestone:
        print(f"  next: {t.milestone_label} at {t.next_milestone}")


def cmd_levels(args):
    """Print the level table."""
    for tier in REP_LEVELS:
        print(f"  L{tier.level} {tier.name:<12} {tier.min_rep:>5}+ rep | "
              f"early access delay {get_access_delay_minutes(tier.level):>2} min")


def cmd_accept(args):
    svc = _services(args)
    result = svc.gigs.accept_gig(args.creator_id, args.gig_id)
    if result["already_accepted"]:
        print(f"{args.creator_id} had already accepted {args.gig_id}")
    else:
        print(f"{args.creator_id} accepted {args.gig_id} (gig now {result['status']})")


def cmd_expire_gigs(args):
    svc = _services(args)
    print(f"Expired {svc.gigs.expire_overdue()} gigs")


def cmd_process_payments(args):
    svc = _services(args)
    counts = svc.payments.process_approved_payments()
    if args.json:
        print(json.dumps(counts))
        return
    print(f"Processed {counts['processed']} | skipped {counts['skipped']} | failed {counts['failed']}")


def cmd_leaderboard(args):
    svc = _services(args)
    board = svc.rep.leaderboard(limit=args.limit, community_id=args.community)
    if not board:
        print("No creators.")
        return
    for row in board:
        print(f"  #{row['rank']:<3} {row['username']:<20} {row['rep']:>6} rep  "
              f"L{row['level']} {row['level_name']}")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="giglet",
        description="Giglet — UGC marketplace operator tools",
    )
    parser.add_argument("--db", default=None, help="SQLite path (overrides GIGLET_DB_PATH)")
    sub = parser.add_subparsers(dest="command")

    # giglet serve
    p_serve = sub.add_parser("serve", help="Run the API server")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.set_defaults(func=cmd_serve)

    # giglet init-db
    p_init = sub.add_parser("init-db", help="Create tables and the BANK account")
    p_init.set_defaults(func=cmd_init_db)

    # giglet rep <creator>
    p_rep = sub.add_parser("rep", help="Show a creator's rep and level")
    p_rep.add_argument("creator_id")
    p_rep.add_argument("--history", type=int, default=0, help="Show the last N rep events")
    p_rep.set_defaults(func=cmd_rep)

    # giglet award-rep <creator> <delta>
    p_award = sub.add_parser("award-rep", help="Apply a manual rep adjustment")
    p_award.add_argument("creator_id")
    p_award.add_argument("delta", type=int)
    p_award.add_argument("--reason", default="manual_adjustment")
    p_award.set_defaults(func=cmd_award_rep)

    # giglet levels
    p_levels = sub.add_parser("levels", help="Print the rep level table")
    p_levels.set_defaults(func=cmd_levels)

    # giglet trust <creator>
    p_trust = sub.add_parser("trust", help="Show a creator's trust score breakdown")
    p_trust.add_argument("creator_id")
    p_trust.set_defaults(func=cmd_trust)

    # giglet accept <creator> <gig>
    p_accept = sub.add_parser("accept", help="Accept a gig on behalf of a creator")
    p_accept.add_argument("creator_id")
    p_accept.add_argument("gig_id")
    p_accept.set_defaults(func=cmd_accept)

    # giglet expire-gigs
    p_expire = sub.add_parser("expire-gigs", help="Expire gigs past their deadline")
    p_expire.set_defaults(func=cmd_expire_gigs)

    # giglet process-payments
    p_pay = sub.add_parser("process-payments", help="Pay approved submissions without a payment")
    p_pay.add_argument("--json", action="store_true", help="Print counts as JSON")
    p_pay.set_defaults(func=cmd_process_payments)

    # giglet leaderboard
    p_board = sub.add_parser("leaderboard", help="Top creators by rep")
    p_board.add_argument("--limit", type=int, default=20)
    p_board.add_argument("--community", default=None, help="Community id")
    p_board.set_defaults(func=cmd_leaderboard)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except GigletError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
