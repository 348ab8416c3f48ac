"""
Confidence scorer for DirectoryVerify.

Turns field validation deductions, plus an optional enrichment adjustment,
into a bounded 0-100 confidence score and the record's initial status.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from directory_verify.config import ScoringConfig
from directory_verify.models import ProviderRecord, RecordStatus, utc_now
from directory_verify.validate.field_validator import FieldValidationReport

logger = logging.getLogger(__name__)

MAX_SCORE = 100
MIN_SCORE = 0


@dataclass(frozen=True)
class ScoreResult:
    score: int
    status: RecordStatus


class ConfidenceScorer:
    """
    Scores validated records and decides validated vs. flagged.

    The decision is made once, when a pending record is first scored;
    later review decisions move the status independently.
    """

    def __init__(self, config: Optional[ScoringConfig] = None):
        """
        Initialize confidence scorer with configuration.

        Args:
            config: Scoring configuration with the flagging threshold
        """
        self.config = config or ScoringConfig()
        self.threshold = self.config.confidence_threshold

        logger.info(f"Initialized ConfidenceScorer with threshold {self.threshold}")

    def calculate_score(self, total_deduction: int, enrichment_adjustment: float = 0) -> int:
        """
        Calculate the clamped confidence score.

        Args:
            total_deduction: Sum of field deductions
            enrichment_adjustment: Signed adjustment from the enrichment adapter

        Returns:
            Integer score in [0, 100]
        """
        raw_score = MAX_SCORE - total_deduction + (enrichment_adjustment or 0)
        return int(max(MIN_SCORE, min(MAX_SCORE, round(raw_score))))

    def determine_status(self, score: int) -> RecordStatus:
        if score < self.threshold:
            return RecordStatus.FLAGGED
        return RecordStatus.VALIDATED

    def score(self, report: FieldValidationReport, enrichment_adjustment: float = 0) -> ScoreResult:
        """
        Score a field validation report.

        Args:
            report: Output of the field validator
            enrichment_adjustment: Signed adjustment from the enrichment adapter

        Returns:
            ScoreResult with score and status
        """
        score = self.calculate_score(report.total_deduction, enrichment_adjustment)
        return ScoreResult(score=score, status=self.determine_status(score))

    def apply(self, record: ProviderRecord, report: FieldValidationReport,
              enrichment_adjustment: float = 0) -> ScoreResult:
        """
        Score a pending record and set its results, score and status.

        Raises:
            InvalidStatusTransition: If the record was already scored
        """
        result = self.score(report, enrichment_adjustment)
        record.transition_to(result.status)
        record.validation_results = report.results
        record.confidence_score = result.score
        record.last_validated = utc_now()
        return result
