"""Tests for Giglet submissions — deliverable checks, versioning, capacity, AI evaluation outcome."""

import pytest

from errors import (
    ConflictError,
    EligibilityError,
    EvaluatorUnavailableError,
    NotFoundError,
    ValidationError,
)
from evaluation import EvaluationResult, StaticEvaluator
from models import (
    LIVE_SUBMISSION_STATUSES,
    Deliverables,
    Gig,
    GigStatus,
    ProductPurchase,
    ReimbursementMode,
    SubmissionFiles,
    SubmissionStatus,
)
from services import build_services
from submissions import validate_submission, video_files

HOUR = 3600
VIDEO = {"files": {"videos": ["https://cdn.giglet.test/v1.mp4"]}}

PASS = EvaluationResult(compliance_passed=True, quality_score=92)
FAIL = EvaluationResult(compliance_passed=False, quality_score=40,
                        compliance_issues=["Product not shown", "Too short", "No hook"])


def _setup(svc, clock, limit=1, brand_balance=500, **gig_fields):
    brand = svc.profiles.create_brand({"company_name": "Acme Snacks"})
    if brand_balance:
        svc.ledger.add_balance(brand.id, brand_balance)
    data = {"title": "Unbox our chips", "primary_thing": "food", "base_payout": 100,
            "accepted_submissions_limit": limit, "deliverables": {"videos": 1}}
    data.update(gig_fields)
    gig = svc.gigs.create_gig(brand.id, data)
    clock.advance(HOUR)
    return brand, gig


def _accepted_creator(svc, gig, username="maya_makes"):
    creator = svc.profiles.create_creator({"username": username})
    svc.gigs.accept_gig(creator.id, gig.id)
    return creator


# ── Deliverable validation ────────────────────────────────────────────


class TestValidateSubmission:
    def _gig(self, **fields):
        return Gig(id="g", base_payout=100, **fields)

    def test_link_satisfies_video_gig(self):
        gig = self._gig(deliverables=Deliverables(videos=1))
        assert validate_submission(gig, "https://tiktok.com/@x/1", SubmissionFiles()) is None

    def test_video_gig_needs_something(self):
        gig = self._gig(deliverables=Deliverables(videos=2))
        assert "at least 2 video" in validate_submission(gig, "", SubmissionFiles())

    def test_ai_gig_rejects_link_only(self):
        gig = self._gig(deliverables=Deliverables(videos=1), ai_compliance_required=True)
        problem = validate_submission(gig, "https://tiktok.com/@x/1", SubmissionFiles())
        assert "requires AI evaluation" in problem

    def test_raw_video_counts_for_ai(self):
        gig = self._gig(deliverables=Deliverables(videos=1), ai_compliance_required=True)
        files = SubmissionFiles(raw=["https://cdn/clip.MOV?sig=abc"])
        assert validate_submission(gig, "", files) is None

    def test_photos_required(self):
        gig = self._gig(deliverables=Deliverables(photos=3))
        assert "3 photo" in validate_submission(gig, "https://x", SubmissionFiles())

    def test_raw_required(self):
        gig = self._gig(deliverables=Deliverables(raw=True))
        assert "raw footage" in validate_submission(gig, "https://x", SubmissionFiles())

    def test_empty_submission(self):
        assert "content link or upload" in validate_submission(self._gig(), "", SubmissionFiles())

    def test_reimbursement_needs_receipt_and_amount(self):
        gig = self._gig(reimbursement_mode=ReimbursementMode.REIMBURSEMENT, reimbursement_cap=30)
        assert "receipt" in validate_submission(gig, "https://x", SubmissionFiles())
        no_amount = ProductPurchase(receipt_url="https://r")
        assert "amount" in validate_submission(gig, "https://x", SubmissionFiles(), no_amount)
        ok = ProductPurchase(receipt_url="https://r", amount=12.5)
        assert validate_submission(gig, "https://x", SubmissionFiles(), ok) is None

    def test_video_files_prefers_uploads(self):
        files = SubmissionFiles(videos=["a.mp4"], raw=["b.mov"])
        assert video_files(files) == ["a.mp4"]
        assert video_files(SubmissionFiles(raw=["b.mov", "c.wav"])) == ["b.mov"]


# ── Submit ────────────────────────────────────────────────────────────


class TestSubmit:
    def test_submit_after_accept(self, svc, clock):
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        sub = svc.submissions.submit(creator.id, gig.id, VIDEO)
        assert sub.status == SubmissionStatus.SUBMITTED
        assert sub.version == 1
        assert svc.gigs.get_gig(gig.id).status == GigStatus.SUBMITTED
        assert svc.profiles.get_creator(creator.id).metrics.submissions_count == 1

    def test_must_accept_first(self, svc, clock):
        _, gig = _setup(svc, clock)
        creator = svc.profiles.create_creator({"username": "sneaky"})
        with pytest.raises(EligibilityError):
            svc.submissions.submit(creator.id, gig.id, VIDEO)

    def test_after_deadline(self, svc, clock):
        _, gig = _setup(svc, clock, deadline_hours=2)
        creator = _accepted_creator(svc, gig)
        clock.advance(2 * HOUR)
        with pytest.raises(ConflictError, match="This gig has ended"):
            svc.submissions.submit(creator.id, gig.id, VIDEO)

    def test_invalid_deliverables(self, svc, clock):
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        with pytest.raises(ValidationError):
            svc.submissions.submit(creator.id, gig.id, {})

    def test_resubmit_bumps_version(self, svc, clock):
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        first = svc.submissions.submit(creator.id, gig.id, VIDEO)
        second = svc.submissions.submit(creator.id, gig.id,
                                        {"files": {"videos": ["https://cdn/v2.mp4"]}})
        assert second.id == first.id
        assert second.version == 2
        assert second.files.videos == ["https://cdn/v2.mp4"]
        assert len(svc.submissions.list_for_gig(gig.id)) == 1
        assert svc.profiles.get_creator(creator.id).metrics.submissions_count == 1

    def test_capacity_enforced(self, svc, clock):
        _, gig = _setup(svc, clock, limit=2)
        a = _accepted_creator(svc, gig, "first")
        b = _accepted_creator(svc, gig, "second")
        svc.submissions.submit(a.id, gig.id, VIDEO)
        svc.submissions.submit(b.id, gig.id, VIDEO)
        assert len(svc.submissions.list_for_gig(gig.id)) == 2

        late = svc.profiles.create_creator({"username": "third"})
        with pytest.raises(ConflictError, match="acceptance limit"):
            svc.gigs.accept_gig(late.id, gig.id)

    def test_approved_cannot_resubmit(self, svc, clock):
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        sub = svc.submissions.submit(creator.id, gig.id, VIDEO)
        svc.submissions.apply_evaluation(sub.id, PASS)
        with pytest.raises(ConflictError):
            svc.submissions.submit(creator.id, gig.id, VIDEO)

    def test_rejected_frees_slot_for_new_submission(self, svc, clock):
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        first = svc.submissions.submit(creator.id, gig.id, VIDEO)
        svc.submissions.apply_evaluation(first.id, FAIL)
        second = svc.submissions.submit(creator.id, gig.id, VIDEO)
        assert second.id != first.id
        assert svc.gigs.get_gig(gig.id).status == GigStatus.SUBMITTED


# ── Evaluation ────────────────────────────────────────────────────────


class TestApplyEvaluation:
    def test_approval_side_effects(self, svc, clock):
        brand, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        sub = svc.submissions.submit(creator.id, gig.id, VIDEO)

        result = svc.submissions.apply_evaluation(sub.id, PASS)
        assert result["status"] == "approved"
        assert result["auto_approved"] is True
        assert result["payment_id"] is not None

        assert svc.gigs.get_gig(gig.id).status == GigStatus.APPROVED
        updated = svc.profiles.get_creator(creator.id)
        assert updated.rep == 50 + 30
        assert updated.metrics.gigs_completed == 1
        assert updated.metrics.avg_ai_score == 92.0
        assert updated.balance == 85.0

        notes = svc.notifier.list_for_user(creator.id)
        assert notes[0]["type"] == "submission_approved"
        assert "92/100" in notes[0]["message"]

    def test_failure_side_effects(self, svc, clock):
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        svc.rep.award_rep(creator.id, 100, "manual")
        sub = svc.submissions.submit(creator.id, gig.id, VIDEO)

        result = svc.submissions.apply_evaluation(sub.id, FAIL)
        assert result["status"] == "rejected"
        assert result["payment_id"] is None
        assert svc.gigs.get_gig(gig.id).status == GigStatus.NEEDS_CHANGES
        assert svc.profiles.get_creator(creator.id).rep == 80

        note = svc.notifier.list_for_user(creator.id)[0]
        assert note["type"] == "submission_failed"
        assert note["message"].endswith("Issues: Product not shown, Too short...")

    def test_two_issues_no_ellipsis(self, svc, clock):
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        sub = svc.submissions.submit(creator.id, gig.id, VIDEO)
        svc.submissions.apply_evaluation(sub.id, EvaluationResult(
            compliance_passed=False, quality_score=50, compliance_issues=["A", "B"]))
        note = svc.notifier.list_for_user(creator.id)[0]
        assert note["message"].endswith("Issues: A, B")

    def test_reevaluating_approved_does_not_pay_twice(self, svc, clock):
        brand, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        sub = svc.submissions.submit(creator.id, gig.id, VIDEO)
        svc.submissions.apply_evaluation(sub.id, PASS)
        again = svc.submissions.apply_evaluation(sub.id, PASS)
        assert again["payment_id"] is None
        assert svc.profiles.get_creator(creator.id).rep == 80
        assert len(svc.payments.history(creator_id=creator.id)) == 1

    def test_reapproving_rejected_needs_a_free_slot(self, svc, clock):
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        first = svc.submissions.submit(creator.id, gig.id, VIDEO)
        svc.submissions.apply_evaluation(first.id, FAIL)
        second = svc.submissions.submit(creator.id, gig.id, VIDEO)
        svc.submissions.apply_evaluation(second.id, PASS)

        with pytest.raises(ConflictError, match="acceptance limit"):
            svc.submissions.apply_evaluation(first.id, PASS)

        assert svc.submissions.get_submission(first.id).status == SubmissionStatus.REJECTED
        live = [s for s in svc.submissions.list_for_gig(gig.id)
                if s.status.value in LIVE_SUBMISSION_STATUSES]
        assert len(live) == gig.accepted_submissions_limit
        assert len(svc.payments.history(creator_id=creator.id)) == 1

    def test_reapproving_rejected_with_free_slot(self, svc, clock):
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        sub = svc.submissions.submit(creator.id, gig.id, VIDEO)
        svc.submissions.apply_evaluation(sub.id, FAIL)
        result = svc.submissions.apply_evaluation(sub.id, PASS)
        assert result["status"] == "approved"
        assert result["payment_id"] is not None

    def test_payment_failure_does_not_block_approval(self, svc, clock):
        _, gig = _setup(svc, clock, brand_balance=0)
        creator = _accepted_creator(svc, gig)
        sub = svc.submissions.submit(creator.id, gig.id, VIDEO)
        result = svc.submissions.apply_evaluation(sub.id, PASS)
        assert result["status"] == "approved"
        assert result["payment_id"] is None
        [payment] = svc.payments.history(creator_id=creator.id)
        assert payment["status"] == "pending"
        assert "Insufficient brand balance" in payment["error"]

    def test_unknown_submission(self, svc):
        with pytest.raises(NotFoundError):
            svc.submissions.apply_evaluation("sub-missing", PASS)


class TestEvaluate:
    def test_no_evaluator_configured(self, svc, clock):
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        sub = svc.submissions.submit(creator.id, gig.id, VIDEO)
        with pytest.raises(EvaluatorUnavailableError):
            svc.submissions.evaluate(sub.id)

    def test_runs_on_first_video(self, settings, clock):
        evaluator = StaticEvaluator(PASS)
        svc = build_services(settings, evaluator=evaluator, clock=clock)
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        sub = svc.submissions.submit(creator.id, gig.id, VIDEO)

        result = svc.submissions.evaluate(sub.id)
        assert result["status"] == "approved"
        assert evaluator.calls == [(gig.id, VIDEO["files"]["videos"][0])]

    def test_link_only_cannot_be_evaluated(self, settings, clock):
        svc = build_services(settings, evaluator=StaticEvaluator(PASS), clock=clock)
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        sub = svc.submissions.submit(creator.id, gig.id, {"content_link": "https://tiktok.com/x"})
        with pytest.raises(ValidationError, match="No video files"):
            svc.submissions.evaluate(sub.id)


class TestEvaluationResult:
    @pytest.mark.parametrize("score", [-1, 101, "high", True])
    def test_score_bounds(self, score):
        with pytest.raises(ValidationError):
            EvaluationResult(compliance_passed=True, quality_score=score)

    def test_from_dict(self):
        result = EvaluationResult.from_dict({"compliance_passed": 1, "quality_score": 75,
                                             "compliance_issues": ["Too short"]})
        assert result.compliance_passed is True
        assert result.to_evaluation().compliance_issues == ["Too short"]

    def test_from_dict_needs_verdict(self):
        with pytest.raises(ValidationError):
            EvaluationResult.from_dict({"quality_score": 75})


class TestDeleteSubmission:
    def test_delete_frees_slot(self, svc, clock):
        _, gig = _setup(svc, clock)
        creator = _accepted_creator(svc, gig)
        sub = svc.submissions.submit(creator.id, gig.id, VIDEO)
        assert svc.submissions.delete_submission(sub.id) is True
        assert svc.submissions.list_for_gig(gig.id) == []
        with pytest.raises(NotFoundError):
            svc.submissions.delete_submission(sub.id)
