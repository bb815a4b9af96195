# Giglet AI evaluation collaborator
# The evaluator looks at one video for a submission and returns a compliance
# verdict plus a quality score. The model behind it lives elsewhere; the
# service only sees this interface.

from dataclasses import asdict, dataclass, field

from errors import ValidationError
from models import AIEvaluation, Gig


@dataclass
class EvaluationResult:
    compliance_passed: bool
    compliance_issues: list = field(default_factory=list)
    quality_score: float = 0.0
    quality_breakdown: dict = field(default_factory=dict)
    improvement_tips: list = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.quality_score, bool) or not isinstance(self.quality_score, (int, float)):
            raise ValidationError("quality_score must be a number")
        if not 0 <= self.quality_score <= 100:
            raise ValidationError("quality_score must be between 0 and 100")
        if not isinstance(self.compliance_issues, list):
            raise ValidationError("compliance_issues must be a list")

    @classmethod
    def from_dict(cls, data: dict) -> "EvaluationResult":
        if not isinstance(data, dict) or "compliance_passed" not in data:
            raise ValidationError("Evaluation result needs compliance_passed")
        return cls(
            compliance_passed=bool(data["compliance_passed"]),
            compliance_issues=list(data.get("compliance_issues") or []),
            quality_score=data.get("quality_score", 0.0),
            quality_breakdown=dict(data.get("quality_breakdown") or {}),
            improvement_tips=list(data.get("improvement_tips") or []),
        )

    def to_evaluation(self) -> AIEvaluation:
        return AIEvaluation(
            compliance_passed=self.compliance_passed,
            compliance_issues=list(self.compliance_issues),
            quality_score=float(self.quality_score),
            quality_breakdown=dict(self.quality_breakdown),
            improvement_tips=list(self.improvement_tips),
        )

    def to_dict(self) -> dict:
        return asdict(self)


class SubmissionEvaluator:
    """Judges one video against a gig brief."""

    def evaluate(self, gig: Gig, video_url: str) -> EvaluationResult:
        raise NotImplementedError


class StaticEvaluator(SubmissionEvaluator):
    """Returns the same verdict every time. For dev and tests."""

    def __init__(self, result: EvaluationResult):
        self.result = result
        self.calls = []

    def evaluate(self, gig: Gig, video_url: str) -> EvaluationResult:
        self.calls.append((gig.id, video_url))
        return self.result
