# Giglet API
# FastAPI. Creators, brands, gigs, submissions, squads, payouts. No fluff.
#
# create_app(settings) builds the app. Services are wired in the lifespan
# handler and live on app.state; route handlers reach them through
# the services() dependency.

import hmac
import json
import logging
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware

from config import Settings, setup_logging
from errors import GigletError
from evaluation import EvaluationResult, SubmissionEvaluator
from models import AccountKind
from reputation import get_rep_level, level_progress
from scout import ScoutFilters, all_interests, filter_creators, unique_locations
from services import Services, build_services
from trust import trust_breakdown

log = logging.getLogger("giglet")

VERSION = "1.0.0"

# Public routes — no token required
PUBLIC_PATHS = {"/", "/docs", "/openapi.json", "/healthz", "/readyz", "/stripe/webhook"}


def _error(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    body = {"code": code, "message": message}
    body.update(extra)
    return JSONResponse(status_code=status_code, content={"ok": False, "error": body})


# ── Middleware ────────────────────────────────────────────────────────


class TokenAuthMiddleware(BaseHTTPMiddleware):
    """
    Bearer token auth outside dev/test. Every request except public
    routes must carry GIGLET_API_TOKEN.
    """

    async def dispatch(self, request: Request, call_next):
        settings: Settings = request.app.state.settings
        if not settings.auth_required:
            return await call_next(request)

        if not settings.api_token:
            return _error(500, "auth_config_error",
                          "GIGLET_API_TOKEN must be set in non-dev environments")

        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        auth = request.headers.get("Authorization", "")
        token = auth[7:] if auth.startswith("Bearer ") else ""
        if not token or not hmac.compare_digest(token, settings.api_token):
            return _error(401, "unauthorized", "Unauthorized")

        return await call_next(request)


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Emit structured access logs for observability."""

    async def dispatch(self, request: Request, call_next):
        started = time.time()
        response = await call_next(request)
        duration_ms = round((time.time() - started) * 1000, 2)
        entry = {
            "event": "api_request",
            "path": request.url.path,
            "method": request.method,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "client_ip": request.client.host if request.client else "unknown",
        }
        log.info(json.dumps(entry, sort_keys=True))
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Simple in-memory IP rate limiting for API safety."""

    def __init__(self, app, requests: int, window_sec: int):
        super().__init__(app)
        self.requests = requests
        self.window_sec = window_sec
        self.buckets = defaultdict(deque)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        now = time.time()
        client_ip = request.client.host if request.client else "unknown"
        bucket = self.buckets[client_ip]
        while bucket and bucket[0] <= now - self.window_sec:
            bucket.popleft()

        if len(bucket) >= self.requests:
            return _error(429, "rate_limited", "Too many requests")

        bucket.append(now)
        return await call_next(request)


# ── Request models ────────────────────────────────────────────────────


class CreatorIn(BaseModel):
    username: str = Field(min_length=3, max_length=30)
    id: Optional[str] = None
    name: str = ""
    email: str = ""
    bio: str = ""
    location: str = ""
    languages: list[str] = []
    interests: list[str] = []
    experience: list[str] = []
    hard_nos: list[str] = []
    community_id: Optional[str] = None


class VerificationsIn(BaseModel):
    email_verified: Optional[bool] = None
    phone_verified: Optional[bool] = None
    stripe_onboarding_complete: Optional[bool] = None
    identity_verified: Optional[bool] = None


class SocialIn(BaseModel):
    platform: str
    handle: str = Field(min_length=1)
    followers: int = Field(default=0, ge=0)


class BankAccountIn(BaseModel):
    bank_account_id: str = Field(min_length=1)


class BrandIn(BaseModel):
    company_name: str = Field(min_length=1)
    id: Optional[str] = None
    email: str = ""
    website: str = ""
    industry: str = ""


class AmountIn(BaseModel):
    amount: float = Field(gt=0)


class FollowerRangeIn(BaseModel):
    min: int = Field(ge=0)
    max: Optional[int] = None
    payout: float = Field(ge=0)


class DeliverablesIn(BaseModel):
    videos: int = Field(default=0, ge=0)
    photos: int = Field(default=0, ge=0)
    raw: bool = False
    notes: str = ""


class GigIn(BaseModel):
    brand_id: str
    title: str = Field(min_length=1, max_length=200)
    primary_thing: str = Field(min_length=1)
    description: str = ""
    product_description: str = ""
    secondary_tags: list[str] = []
    platform: str = ""
    content_type: str = ""
    deliverables: DeliverablesIn = DeliverablesIn()
    payout_type: str = "fixed"
    base_payout: float = Field(default=0, ge=0)
    follower_ranges: list[FollowerRangeIn] = []
    bonus_pool: float = Field(default=0, ge=0)
    visibility: str = "open"
    squad_ids: list[str] = []
    invited_creator_ids: list[str] = []
    trust_score_min: Optional[int] = Field(default=None, ge=0, le=100)
    min_followers: Optional[int] = Field(default=None, ge=0)
    min_followers_platform: str = ""
    experience_requirements: list[str] = []
    accepted_submissions_limit: int = Field(default=1, ge=1)
    product_in_video_required: bool = False
    reimbursement_mode: Optional[str] = None
    reimbursement_cap: float = Field(default=0, ge=0)
    ai_compliance_required: bool = False
    premium: bool = False
    deadline_hours: Optional[float] = Field(default=None, gt=0)


class CreatorRef(BaseModel):
    creator_id: str


class BrandRef(BaseModel):
    brand_id: str


class SubmissionFilesIn(BaseModel):
    videos: list[str] = []
    photos: list[str] = []
    raw: list[str] = []


class ProductPurchaseIn(BaseModel):
    receipt_url: str = ""
    product_photo_url: str = ""
    amount: float = Field(default=0, ge=0)
    purchase_date: str = ""


class SubmissionIn(BaseModel):
    creator_id: str
    content_link: str = ""
    files: SubmissionFilesIn = SubmissionFilesIn()
    product_purchase: Optional[ProductPurchaseIn] = None


class EvaluationIn(BaseModel):
    compliance_passed: bool
    compliance_issues: list[str] = []
    quality_score: float = Field(ge=0, le=100)
    quality_breakdown: dict = {}
    improvement_tips: list[str] = []


class WithdrawIn(BaseModel):
    amount: float
    method: Optional[str] = None


class SquadIn(BaseModel):
    recruiter_id: str
    name: str = Field(min_length=1, max_length=80)
    description: str = ""
    tags: list[str] = []
    invite_only: bool = False
    trust_score_min: Optional[int] = Field(default=None, ge=0, le=100)


class InviteIn(BaseModel):
    creator_id: str
    invited_by: str


class ScoutIn(BaseModel):
    location: str = ""
    interests: list[str] = []
    has_social: str = ""
    min_following: Optional[int] = Field(default=None, ge=0)
    min_following_platform: str = ""
    sort_by: str = "username"


def services(request: Request) -> Services:
    return request.app.state.services


router = APIRouter()


# ── Health ────────────────────────────────────────────────────────────


@router.get("/")
def root():
    return {"name": "Giglet", "status": "running", "version": VERSION}


@router.get("/healthz")
def healthz(request: Request):
    return {"ok": True, "status": "healthy", "env": request.app.state.settings.env}


@router.get("/readyz")
def readyz(svc: Services = Depends(services)):
    if svc.settings.auth_required and not svc.settings.api_token:
        raise HTTPException(status_code=503,
                            detail="API token not configured for non-dev environment")
    storage = svc.store.healthcheck()
    if not storage.get("ok"):
        raise HTTPException(status_code=503,
                            detail=f"Storage not ready: {storage.get('error', 'unknown')}")
    return {"ok": True, "status": "ready", "storage": storage,
            "stripe": "live" if svc.stripe.enabled else "stub"}


# ── Creators ──────────────────────────────────────────────────────────


@router.post("/creators")
def api_create_creator(body: CreatorIn, svc: Services = Depends(services)):
    """Sign up a creator."""
    fields = body.model_dump()
    creator = svc.profiles.create_creator(fields, user_id=fields.pop("id"))
    return {"ok": True, "creator": creator.to_dict()}


@router.get("/creators/{creator_id}")
def api_get_creator(creator_id: str, svc: Services = Depends(services)):
    creator = svc.profiles.get_creator(creator_id)
    return {"ok": True, "creator": creator.to_dict()}


@router.put("/creators/{creator_id}/verifications")
def api_set_verifications(creator_id: str, body: VerificationsIn,
                          svc: Services = Depends(services)):
    flags = {k: v for k, v in body.model_dump().items() if v is not None}
    creator = svc.profiles.set_verifications(creator_id, **flags)
    return {"ok": True, "creator": creator.to_dict(),
            "trust": trust_breakdown(creator).to_dict()}


@router.put("/creators/{creator_id}/socials")
def api_connect_social(creator_id: str, body: SocialIn, svc: Services = Depends(services)):
    creator = svc.profiles.connect_social(creator_id, body.platform, body.handle, body.followers)
    return {"ok": True, "creator": creator.to_dict(),
            "trust": trust_breakdown(creator).to_dict()}


@router.delete("/creators/{creator_id}/socials/{platform}")
def api_disconnect_social(creator_id: str, platform: str, svc: Services = Depends(services)):
    creator = svc.profiles.disconnect_social(creator_id, platform)
    return {"ok": True, "creator": creator.to_dict()}


@router.put("/creators/{creator_id}/bank-account")
def api_set_bank_account(creator_id: str, body: BankAccountIn,
                         svc: Services = Depends(services)):
    creator = svc.profiles.set_bank_account(creator_id, body.bank_account_id)
    return {"ok": True, "creator": creator.to_dict()}


@router.get("/creators/{creator_id}/trust-score")
def api_trust_score(creator_id: str, svc: Services = Depends(services)):
    creator = svc.profiles.get_creator(creator_id)
    return {"ok": True, "trust": trust_breakdown(creator).to_dict()}


@router.get("/creators/{creator_id}/rep")
def api_rep(creator_id: str, svc: Services = Depends(services)):
    return {"ok": True, "rep": svc.rep.get_status(creator_id)}


@router.get("/creators/{creator_id}/rep/history")
def api_rep_history(creator_id: str, limit: int = 50, svc: Services = Depends(services)):
    return {"ok": True, "events": svc.rep.get_history(creator_id, limit=limit)}


@router.get("/creators/{creator_id}/feed")
def api_feed(creator_id: str, svc: Services = Depends(services)):
    """Gigs the creator may see, with early-access lock flags."""
    return {"ok": True, "gigs": svc.gigs.creator_feed(creator_id)}


@router.get("/creators/{creator_id}/submissions")
def api_creator_submissions(creator_id: str, svc: Services = Depends(services)):
    subs = svc.submissions.list_for_creator(creator_id)
    return {"ok": True, "submissions": [s.to_dict() for s in subs]}


@router.get("/creators/{creator_id}/notifications")
def api_notifications(creator_id: str, unread_only: bool = False,
                      svc: Services = Depends(services)):
    return {"ok": True,
            "notifications": svc.notifier.list_for_user(creator_id, unread_only=unread_only)}


@router.post("/creators/{creator_id}/notifications/{notification_id}/read")
def api_mark_read(creator_id: str, notification_id: str, svc: Services = Depends(services)):
    note = svc.notifier.mark_read(notification_id, creator_id)
    return {"ok": True, "notification": note.to_dict()}


@router.get("/creators/{creator_id}/payments")
def api_creator_payments(creator_id: str, svc: Services = Depends(services)):
    return {"ok": True, "payments": svc.payments.history(creator_id=creator_id),
            "balance": svc.ledger.get_balance(creator_id, AccountKind.CREATOR)}


@router.post("/creators/{creator_id}/withdraw")
def api_withdraw(creator_id: str, body: WithdrawIn, svc: Services = Depends(services)):
    wd = svc.withdrawals.withdraw(creator_id, body.amount, method=body.method)
    return {"ok": True, "withdrawal": wd.to_dict()}


@router.get("/creators/{creator_id}/withdrawals")
def api_withdrawals(creator_id: str, svc: Services = Depends(services)):
    return {"ok": True, "withdrawals": svc.withdrawals.history(creator_id)}


# ── Brands ────────────────────────────────────────────────────────────


@router.post("/brands")
def api_create_brand(body: BrandIn, svc: Services = Depends(services)):
    fields = body.model_dump()
    brand = svc.profiles.create_brand(fields, user_id=fields.pop("id"))
    return {"ok": True, "brand": brand.to_dict()}


@router.get("/brands/{brand_id}")
def api_get_brand(brand_id: str, svc: Services = Depends(services)):
    return {"ok": True, "brand": svc.profiles.get_brand(brand_id).to_dict()}


@router.post("/brands/{brand_id}/balance")
def api_add_balance(brand_id: str, body: AmountIn, svc: Services = Depends(services)):
    """Top up a brand balance."""
    txn = svc.ledger.add_balance(brand_id, body.amount)
    return {"ok": True, "transaction": txn.to_dict(), "balance": txn.balance_after}


@router.get("/brands/{brand_id}/gigs")
def api_brand_gigs(brand_id: str, svc: Services = Depends(services)):
    return {"ok": True, "gigs": [g.to_dict() for g in svc.gigs.list_brand_gigs(brand_id)]}


@router.get("/brands/{brand_id}/payments")
def api_brand_payments(brand_id: str, svc: Services = Depends(services)):
    return {"ok": True, "payments": svc.payments.history(brand_id=brand_id)}


# ── Gigs ──────────────────────────────────────────────────────────────


@router.post("/gigs")
def api_create_gig(body: GigIn, svc: Services = Depends(services)):
    fields = body.model_dump(exclude_none=True)
    brand_id = fields.pop("brand_id")
    gig = svc.gigs.create_gig(brand_id, fields)
    return {"ok": True, "gig": gig.to_dict()}


@router.get("/gigs/{gig_id}")
def api_get_gig(gig_id: str, svc: Services = Depends(services)):
    return {"ok": True, "gig": svc.gigs.get_gig(gig_id).to_dict()}


@router.post("/gigs/{gig_id}/accept")
def api_accept_gig(gig_id: str, body: CreatorRef, svc: Services = Depends(services)):
    """Accept a gig. Idempotent for the same creator."""
    result = svc.gigs.accept_gig(body.creator_id, gig_id)
    return {"ok": True, **result}


@router.post("/gigs/{gig_id}/close")
def api_close_gig(gig_id: str, body: BrandRef, svc: Services = Depends(services)):
    gig = svc.gigs.close_gig(body.brand_id, gig_id)
    return {"ok": True, "gig": gig.to_dict()}


@router.get("/gigs/{gig_id}/submissions")
def api_gig_submissions(gig_id: str, svc: Services = Depends(services)):
    return {"ok": True, "submissions": [s.to_dict() for s in svc.submissions.list_for_gig(gig_id)]}


@router.post("/gigs/{gig_id}/submissions")
def api_submit(gig_id: str, body: SubmissionIn, svc: Services = Depends(services)):
    data = body.model_dump()
    creator_id = data.pop("creator_id")
    sub = svc.submissions.submit(creator_id, gig_id, data)
    return {"ok": True, "submission": sub.to_dict()}


# ── Submissions ───────────────────────────────────────────────────────


@router.get("/submissions/{submission_id}")
def api_get_submission(submission_id: str, svc: Services = Depends(services)):
    return {"ok": True, "submission": svc.submissions.get_submission(submission_id).to_dict()}


@router.post("/submissions/{submission_id}/evaluate")
def api_evaluate(submission_id: str, svc: Services = Depends(services)):
    """Run AI evaluation on the first video of a submission."""
    return {"ok": True, **svc.submissions.evaluate(submission_id)}


@router.post("/submissions/{submission_id}/evaluation")
def api_apply_evaluation(submission_id: str, body: EvaluationIn,
                         svc: Services = Depends(services)):
    """Record an evaluation produced out of band."""
    result = EvaluationResult.from_dict(body.model_dump())
    return {"ok": True, **svc.submissions.apply_evaluation(submission_id, result)}


# ── Squads ────────────────────────────────────────────────────────────


@router.post("/squads")
def api_create_squad(body: SquadIn, svc: Services = Depends(services)):
    squad = svc.squads.create_squad(body.recruiter_id, body.name, body.description,
                                    tags=body.tags, invite_only=body.invite_only,
                                    trust_score_min=body.trust_score_min)
    return {"ok": True, "squad": squad.to_dict()}


@router.get("/squads/{squad_id}")
def api_get_squad(squad_id: str, svc: Services = Depends(services)):
    return {"ok": True, "squad": svc.squads.get_squad(squad_id).to_dict()}


@router.post("/squads/{squad_id}/invite")
def api_invite(squad_id: str, body: InviteIn, svc: Services = Depends(services)):
    inv = svc.squads.invite(squad_id, body.creator_id, body.invited_by)
    return {"ok": True, "invitation": inv.to_dict()}


@router.post("/squads/{squad_id}/join")
def api_join(squad_id: str, body: CreatorRef, svc: Services = Depends(services)):
    return {"ok": True, "squad": svc.squads.join(squad_id, body.creator_id).to_dict()}


@router.post("/squads/{squad_id}/leave")
def api_leave(squad_id: str, body: CreatorRef, svc: Services = Depends(services)):
    return {"ok": True, "squad": svc.squads.leave(squad_id, body.creator_id).to_dict()}


@router.get("/creators/{creator_id}/squads")
def api_creator_squads(creator_id: str, svc: Services = Depends(services)):
    return {"ok": True, "squads": [s.to_dict() for s in svc.squads.list_for_creator(creator_id)]}


# ── Community ─────────────────────────────────────────────────────────


@router.get("/leaderboard")
def api_leaderboard(limit: int = 20, community_id: Optional[str] = None,
                    svc: Services = Depends(services)):
    return {"ok": True, "leaderboard": svc.rep.leaderboard(limit=limit, community_id=community_id)}


@router.get("/rep/levels/{rep}")
def api_rep_level(rep: int):
    info = get_rep_level(rep)
    return {"ok": True, "level": info.to_dict(), "progress": level_progress(rep)}


@router.post("/scout")
def api_scout(body: ScoutIn, svc: Services = Depends(services)):
    """Brand-side creator search."""
    creators = svc.profiles.list_creators()
    matches = filter_creators(creators, ScoutFilters(**body.model_dump()))
    return {
        "ok": True,
        "creators": [c.to_dict() for c in matches],
        "locations": unique_locations(creators),
        "interests": all_interests(creators),
    }


# ── Stripe ────────────────────────────────────────────────────────────


@router.post("/stripe/onboarding/{creator_id}")
def api_stripe_onboarding(creator_id: str, svc: Services = Depends(services)):
    return {"ok": True, **svc.stripe.start_onboarding(creator_id)}


@router.get("/stripe/status/{creator_id}")
def api_stripe_status(creator_id: str, svc: Services = Depends(services)):
    return {"ok": True, **svc.stripe.refresh_status(creator_id)}


@router.post("/stripe/webhook")
async def api_stripe_webhook(request: Request):
    svc: Services = request.app.state.services
    payload = await request.body()
    result = svc.stripe.handle_webhook(payload, request.headers.get("Stripe-Signature", ""))
    return {"ok": True, **result}


# ── Admin ─────────────────────────────────────────────────────────────


@router.post("/admin/payments/process")
def api_process_payments(svc: Services = Depends(services)):
    """Pay every approved submission that has no payment yet."""
    return {"ok": True, **svc.payments.process_approved_payments()}


@router.post("/admin/gigs/expire")
def api_expire_gigs(svc: Services = Depends(services)):
    return {"ok": True, "expired": svc.gigs.expire_overdue()}


@router.delete("/admin/submissions/{submission_id}")
def api_delete_submission(submission_id: str, svc: Services = Depends(services)):
    svc.submissions.delete_submission(submission_id)
    return {"ok": True, "deleted": submission_id}


# ── App factory ───────────────────────────────────────────────────────


def create_app(settings: Optional[Settings] = None,
               evaluator: Optional[SubmissionEvaluator] = None,
               clock=time.time) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = build_services(settings, evaluator=evaluator, clock=clock)
        log.info("API STARTING env=%s db=%s", settings.env, settings.db_path)
        yield
        app.state.services.close()

    app = FastAPI(title="Giglet", version=VERSION, lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(TokenAuthMiddleware)
    app.add_middleware(RequestLogMiddleware)
    app.add_middleware(RateLimitMiddleware, requests=settings.rate_limit_requests,
                       window_sec=settings.rate_limit_window_sec)

    @app.exception_handler(GigletError)
    async def giglet_error_handler(_: Request, exc: GigletError):
        if exc.status_code >= 500:
            log.error("API %s: %s", exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code,
                            content={"ok": False, "error": exc.to_dict()})

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_: Request, exc: HTTPException):
        return _error(exc.status_code, "http_error", str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(_: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "ok": False,
                "error": {
                    "code": "validation_error",
                    "message": "Request validation failed",
                    "retryable": False,
                    "details": json.loads(json.dumps(exc.errors(), default=str)),
                },
            },
        )

    app.include_router(router)
    return app
