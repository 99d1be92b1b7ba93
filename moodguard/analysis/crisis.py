"""
Crisis detection.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from moodguard.database.models import (
    CrisisAlert,
    CrisisSeverity,
    EvaluationState,
    MoodEntry,
    RiskLevel,
)
from .trend import MoodTrend

logger = logging.getLogger(__name__)


RECOMMENDED_ACTIONS: dict[CrisisSeverity, tuple[str, ...]] = {
    CrisisSeverity.SEVERE: (
        "Contact a crisis line or emergency services now",
        "Reach out to your support contacts",
        "Go to a safe place from your safety plan",
        "Review your safety plan",
    ),
    CrisisSeverity.MODERATE: (
        "Review your coping strategies",
        "Consider contacting a support person",
        "Use grounding techniques",
        "Review your safety plan",
    ),
    CrisisSeverity.MILD: (
        "Practice self-care activities",
        "Review your reasons for living",
        "Consider scheduling time with supportive people",
    ),
}


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of one crisis detection cycle."""

    alert: Optional[CrisisAlert]
    state: EvaluationState
    evaluated: bool


class CrisisDetector:
    """Decides whether a crisis alert must be raised for the latest entry."""

    def __init__(self, sustained_high_cycles: int = 2):
        """
        Initialize detector.

        Args:
            sustained_high_cycles: Consecutive high-risk evaluations that make an alert severe
        """
        self.sustained_high_cycles = sustained_high_cycles

    def evaluate(
        self,
        trend: MoodTrend,
        entries: Sequence[MoodEntry],
        state: EvaluationState,
        now: datetime,
    ) -> DetectionResult:
        """
        Run one detection cycle.

        The cycle is keyed to the latest entry in the window. The watermark only
        moves forward: unless that entry is newer than the last evaluated one,
        ordered by (created_at, id), the state is returned unchanged and no alert
        is raised. Deleting or backdating entries never re-opens evaluation.

        Args:
            trend: Trend computed from the same window
            entries: Window of entries the trend was computed from
            state: Watermark and risk history from previous cycles
            now: Evaluation time, used as the alert timestamp

        Returns:
            DetectionResult with the new state and an alert, if any
        """
        if not entries:
            return DetectionResult(alert=None, state=state, evaluated=False)

        latest = max(entries, key=lambda e: (e.created_at, e.id))
        if not state.is_newer(latest):
            return DetectionResult(alert=None, state=state, evaluated=False)

        history = (list(state.risk_history) + [trend.risk_level])[
            -self.sustained_high_cycles:
        ]
        new_state = EvaluationState(
            last_evaluated_entry_id=latest.id,
            risk_history=history,
            last_evaluated_at=latest.created_at,
        )

        sustained_high = len(history) >= self.sustained_high_cycles and all(
            level == RiskLevel.HIGH for level in history
        )
        severity = self._severity(trend.risk_level, sustained_high, latest)
        if severity is None:
            return DetectionResult(alert=None, state=new_state, evaluated=True)

        triggers = [f"Risk level {trend.risk_level.value} with {trend.trend.value} mood"]
        triggers.extend(trend.pattern_insights)
        if sustained_high:
            triggers.append(
                f"High risk sustained across the last "
                f"{self.sustained_high_cycles} evaluations"
            )

        alert = CrisisAlert(
            severity=severity,
            timestamp=now,
            triggers=tuple(triggers),
            recommended_actions=RECOMMENDED_ACTIONS[severity],
            emergency_contacts_notified=severity == CrisisSeverity.SEVERE,
        )
        logger.info(
            f"Crisis alert {alert.id} raised: {severity.value} "
            f"(entry {latest.id})"
        )
        return DetectionResult(alert=alert, state=new_state, evaluated=True)

    def _severity(
        self,
        risk: RiskLevel,
        sustained_high: bool,
        latest: MoodEntry,
    ) -> Optional[CrisisSeverity]:
        if risk == RiskLevel.HIGH:
            return CrisisSeverity.SEVERE if sustained_high else CrisisSeverity.MODERATE
        if risk == RiskLevel.MODERATE and latest.warning_signs:
            return CrisisSeverity.MILD
        return None
