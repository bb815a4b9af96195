# Giglet submissions — deliverables, versioning, AI evaluation outcome
#
# A creator who accepted a gig submits content against it. Submissions in
# submitted / needs_changes / approved are "live" and count against the
# gig's accepted_submissions_limit. Resubmitting while a live submission
# exists bumps its version instead of taking another slot.

import logging
import os
import time
from typing import Optional

from config import Settings
from db import Store
from errors import (
    ConflictError,
    EligibilityError,
    EvaluatorUnavailableError,
    GigletError,
    NotFoundError,
    ValidationError,
)
from evaluation import EvaluationResult, SubmissionEvaluator
from gigs import GIG_ENDED_MESSAGE, live_submission_count
from models import (
    LIVE_SUBMISSION_STATUSES,
    Creator,
    Gig,
    GigStatus,
    ProductPurchase,
    ReimbursementMode,
    Submission,
    SubmissionFiles,
    SubmissionStatus,
    new_id,
)
from notifications import Notifier
from payments import PaymentService
from reputation import RepEngine

log = logging.getLogger("giglet")

VIDEO_EXTENSIONS = (".mp4", ".mov", ".avi", ".webm", ".mkv")
MAX_LISTED_ISSUES = 2


def _is_video(path: str) -> bool:
    name = path.split("?", 1)[0].lower()
    return os.path.splitext(name)[1] in VIDEO_EXTENSIONS


def video_files(files: SubmissionFiles) -> list:
    """Uploaded videos, else raw files that look like video."""
    if files.videos:
        return list(files.videos)
    return [f for f in files.raw if _is_video(f)]


def validate_submission(gig: Gig, content_link: str, files: SubmissionFiles,
                        product_purchase: Optional[ProductPurchase] = None) -> Optional[str]:
    """First problem with a submission for this gig, or None."""
    has_videos = bool(video_files(files))
    wanted = gig.deliverables

    if wanted.videos > 0:
        if gig.ai_compliance_required and not has_videos:
            return (f"This gig requires AI evaluation. Please upload at least {wanted.videos} "
                    "video file(s). Content links are not supported for AI evaluation.")
        if not has_videos and not content_link:
            return f"Please upload at least {wanted.videos} video(s) or provide a content link"

    if wanted.photos > 0 and not files.photos:
        return f"Please upload at least {wanted.photos} photo(s)"

    if wanted.raw and not files.raw:
        return "Please upload raw footage files"

    if not content_link and not files.videos and not files.photos and not files.raw:
        return "Please provide a content link or upload files"

    if gig.ai_compliance_required and not has_videos:
        return ("This gig requires AI evaluation. Please upload video files. "
                "Content links are not supported for AI evaluation.")

    if gig.reimbursement_mode == ReimbursementMode.REIMBURSEMENT:
        if product_purchase is None or not product_purchase.receipt_url:
            return "Please upload your purchase receipt"
        if product_purchase.amount <= 0:
            return "Please enter the purchase amount"

    return None


class SubmissionService:
    def __init__(self, store: Store, settings: Settings, rep: RepEngine, notifier: Notifier,
                 payments: PaymentService, evaluator: Optional[SubmissionEvaluator] = None,
                 clock=time.time):
        self.store = store
        self.settings = settings
        self.rep = rep
        self.notifier = notifier
        self.payments = payments
        self.evaluator = evaluator
        self.clock = clock

    def get_submission(self, submission_id: str) -> Submission:
        doc = self.store.get("submissions", submission_id)
        if doc is None:
            raise NotFoundError(f"Submission {submission_id} not found")
        return Submission.from_dict(doc)

    def list_for_gig(self, gig_id: str) -> list:
        return [Submission.from_dict(d) for d in
                self.store.find("submissions", gig_id=gig_id, order_by="created_at")]

    def list_for_creator(self, creator_id: str) -> list:
        return [Submission.from_dict(d) for d in
                self.store.find("submissions", creator_id=creator_id,
                                order_by="created_at", descending=True)]

    # ── Submit ────────────────────────────────────────────────────────

    def submit(self, creator_id: str, gig_id: str, data: dict) -> Submission:
        data = data or {}
        content_link = str(data.get("content_link") or "").strip()
        files = SubmissionFiles.from_dict(data.get("files") or {})
        purchase = data.get("product_purchase")
        purchase = ProductPurchase.from_dict(purchase) if purchase else None

        now = self.clock()
        with self.store.transaction() as conn:
            gig_doc = self.store.ops.get(conn, "gigs", gig_id)
            if gig_doc is None:
                raise NotFoundError(f"Gig {gig_id} not found")
            gig = Gig.from_dict(gig_doc)
            if creator_id not in gig.accepted_creator_ids:
                raise EligibilityError("You must accept this gig before submitting")
            if gig.is_past_deadline(now):
                raise ConflictError(GIG_ENDED_MESSAGE)
            problem = validate_submission(gig, content_link, files, purchase)
            if problem:
                raise ValidationError(problem)

            mine = [
                Submission.from_dict(d) for d in self.store.ops.find(
                    conn, "submissions", gig_id=gig_id, creator_id=creator_id,
                    status=sorted(LIVE_SUBMISSION_STATUSES))
            ]
            if mine:
                sub = mine[0]
                if sub.status == SubmissionStatus.APPROVED:
                    raise ConflictError("This submission is already approved")
                sub.version += 1
                sub.content_link = content_link
                sub.files = files
                sub.product_purchase = purchase
                sub.ai_evaluation = None
                sub.status = SubmissionStatus.SUBMITTED
                sub.updated_at = now
            else:
                live = live_submission_count(self.store, conn, gig_id)
                if live >= gig.accepted_submissions_limit:
                    raise ConflictError("This gig has reached its acceptance limit")
                sub = Submission(
                    id=new_id("sub"),
                    gig_id=gig_id,
                    creator_id=creator_id,
                    content_link=content_link,
                    files=files,
                    product_purchase=purchase,
                    created_at=now,
                    updated_at=now,
                )
                creator_doc = self.store.ops.get(conn, "creators", creator_id)
                if creator_doc is not None:
                    creator = Creator.from_dict(creator_doc)
                    creator.metrics.submissions_count += 1
                    self.store.ops.put(conn, "creators", creator.to_dict())

            self.store.ops.put(conn, "submissions", sub.to_dict())
            if gig.status in (GigStatus.OPEN, GigStatus.ACCEPTED, GigStatus.NEEDS_CHANGES):
                gig.status = GigStatus.SUBMITTED
                gig.updated_at = now
                self.store.ops.put(conn, "gigs", gig.to_dict())

        log.info("SUBMISSION %s v%d for gig %s by %s", sub.id, sub.version, gig_id, creator_id)
        return sub

    # ── Evaluation ────────────────────────────────────────────────────

    def evaluate(self, submission_id: str) -> dict:
        """Run the configured evaluator on the submission's first video."""
        if self.evaluator is None:
            raise EvaluatorUnavailableError("AI evaluation is not configured")
        sub = self.get_submission(submission_id)
        videos = video_files(sub.files)
        if not videos:
            raise ValidationError("No video files found in submission. AI evaluation requires video files.")
        gig_doc = self.store.get("gigs", sub.gig_id)
        if gig_doc is None:
            raise NotFoundError(f"Gig {sub.gig_id} not found")
        result = self.evaluator.evaluate(Gig.from_dict(gig_doc), videos[0])
        return self.apply_evaluation(submission_id, result)

    def apply_evaluation(self, submission_id: str, result: EvaluationResult) -> dict:
        with self.store.transaction() as conn:
            doc = self.store.ops.get(conn, "submissions", submission_id)
            if doc is None:
                raise NotFoundError(f"Submission {submission_id} not found")
            sub = Submission.from_dict(doc)
            previous = sub.status
            gig_doc = self.store.ops.get(conn, "gigs", sub.gig_id)
            gig = Gig.from_dict(gig_doc) if gig_doc else None

            # A rejected submission gave up its slot; approving it takes one back.
            if (result.compliance_passed and previous.value not in LIVE_SUBMISSION_STATUSES
                    and gig is not None):
                live = live_submission_count(self.store, conn, gig.id)
                if live >= gig.accepted_submissions_limit:
                    raise ConflictError("This gig has reached its acceptance limit")

            sub.ai_evaluation = result.to_evaluation()
            sub.status = SubmissionStatus.APPROVED if result.compliance_passed else SubmissionStatus.REJECTED
            sub.updated_at = self.clock()
            self.store.ops.put(conn, "submissions", sub.to_dict())

            if gig is not None and gig.status in (GigStatus.SUBMITTED, GigStatus.NEEDS_CHANGES,
                                                  GigStatus.APPROVED):
                gig.status = GigStatus.APPROVED if result.compliance_passed else GigStatus.NEEDS_CHANGES
                gig.updated_at = sub.updated_at
                self.store.ops.put(conn, "gigs", gig.to_dict())

        new_approval = result.compliance_passed and previous != SubmissionStatus.APPROVED
        new_failure = (not result.compliance_passed
                       and previous in (SubmissionStatus.SUBMITTED, SubmissionStatus.APPROVED))
        title = gig.title if gig is not None and gig.title else "Your submission"
        log.info("EVALUATION %s passed=%s score=%.0f (was %s)", submission_id,
                 result.compliance_passed, result.quality_score, previous.value)

        payment = None
        if new_approval:
            self._side_effect(
                "approval notification", self.notifier.notify,
                sub.creator_id, "submission_approved", "Submission Approved!",
                f'Your submission for "{title}" has been approved by AI evaluation. '
                f"Quality score: {result.quality_score:.0f}/100",
                gig_id=sub.gig_id, submission_id=submission_id,
            )
            self._side_effect("completion rep", self._award_completion, sub.creator_id,
                              result.quality_score)
            payment = self._side_effect("payment", self.payments.process_payment, submission_id)
        elif new_failure:
            self._side_effect("rep deduction", self.rep.deduct_failed_submission, sub.creator_id)
            issues = result.compliance_issues
            issues_text = ""
            if issues:
                issues_text = " Issues: " + ", ".join(issues[:MAX_LISTED_ISSUES])
                if len(issues) > MAX_LISTED_ISSUES:
                    issues_text += "..."
            self._side_effect(
                "failure notification", self.notifier.notify,
                sub.creator_id, "submission_failed", "Submission Needs Changes",
                f'Your submission for "{title}" did not pass AI evaluation.{issues_text}',
                gig_id=sub.gig_id, submission_id=submission_id,
            )

        return {
            "submission_id": submission_id,
            "status": sub.status.value,
            "auto_approved": result.compliance_passed,
            "evaluation": result.to_dict(),
            "payment_id": payment.id if payment is not None else None,
        }

    def _award_completion(self, creator_id: str, quality_score: float):
        self.rep.award_gig_completion(creator_id)
        self.rep.award_ai_score(creator_id, quality_score)
        with self.store.transaction() as conn:
            doc = self.store.ops.get(conn, "creators", creator_id)
            if doc is None:
                return
            creator = Creator.from_dict(doc)
            metrics = creator.metrics
            done = metrics.gigs_completed
            metrics.avg_ai_score = round((metrics.avg_ai_score * done + quality_score) / (done + 1), 1)
            metrics.gigs_completed = done + 1
            self.store.ops.put(conn, "creators", creator.to_dict())

    def _side_effect(self, label, fn, *args, **kwargs):
        """Run an evaluation side effect. Failures are logged, never raised."""
        try:
            return fn(*args, **kwargs)
        except GigletError as e:
            log.error("Evaluation side effect '%s' failed: %s", label, e.message)
        return None

    def delete_submission(self, submission_id: str) -> bool:
        """Admin removal. Frees the slot the submission held."""
        with self.store.transaction() as conn:
            if self.store.ops.get(conn, "submissions", submission_id) is None:
                raise NotFoundError(f"Submission {submission_id} not found")
            self.store.ops.delete(conn, "submissions", submission_id)
        log.warning("SUBMISSION %s deleted by admin", submission_id)
        return True
