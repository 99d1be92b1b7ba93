"""
Mood trend analysis.

Reduces a window of journal entries to a trend label, a risk level and a
list of human-readable insights. The analysis is a pure function of the
window: the same entries always produce the same MoodTrend.

Risk mapping (defaults):
    average <= 3.0  -> high
    average <= 6.0  -> moderate
    otherwise       -> low
    declining trend                     -> escalate one level
    warning sign in most recent entry   -> escalate one level
Escalation is capped at high.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Optional, Sequence

from moodguard.config import AnalysisConfig
from moodguard.database.models import MoodEntry, RiskLevel, Trend


@dataclass(frozen=True)
class MoodTrend:
    """Trend derived from a window of mood entries."""

    average_mood: Optional[float]
    trend: Trend
    risk_level: RiskLevel
    pattern_insights: tuple[str, ...]
    entry_count: int
    insufficient_data: bool = False

    def to_dict(self) -> dict:
        return {
            "average_mood": (
                round(self.average_mood, 2) if self.average_mood is not None else None
            ),
            "trend": self.trend.value,
            "risk_level": self.risk_level.value,
            "pattern_insights": list(self.pattern_insights),
            "entry_count": self.entry_count,
        }


class TrendAnalyzer:
    """Computes MoodTrend values from entry windows."""

    def __init__(
        self,
        epsilon: float = 0.5,
        min_entries: int = 3,
        high_risk_average: float = 3.0,
        moderate_risk_average: float = 6.0,
        low_mood_threshold: int = 4,
        low_mood_streak: int = 3,
    ):
        """
        Initialize the analyzer.

        Args:
            epsilon: Minimum half-to-half change that counts as a trend
            min_entries: Smallest window that can show a trend
            high_risk_average: Averages at or below this are high risk
            moderate_risk_average: Averages at or below this are moderate risk
            low_mood_threshold: Scores at or below this count as low
            low_mood_streak: Trailing run of low scores worth reporting
        """
        self.epsilon = epsilon
        self.min_entries = min_entries
        self.high_risk_average = high_risk_average
        self.moderate_risk_average = moderate_risk_average
        self.low_mood_threshold = low_mood_threshold
        self.low_mood_streak = low_mood_streak

    @classmethod
    def from_config(cls, config: AnalysisConfig) -> "TrendAnalyzer":
        return cls(
            epsilon=config.trend_epsilon,
            min_entries=config.min_entries,
            high_risk_average=config.high_risk_average,
            moderate_risk_average=config.moderate_risk_average,
            low_mood_threshold=config.low_mood_threshold,
            low_mood_streak=config.low_mood_streak,
        )

    def analyze(self, entries: Sequence[MoodEntry]) -> MoodTrend:
        """
        Analyze a window of entries.

        Args:
            entries: Window of entries; sorted chronologically before use

        Returns:
            MoodTrend for the window. An empty window yields an
            insufficient-data trend with no average.
        """
        window = sorted(entries, key=lambda e: e.created_at)

        if not window:
            return MoodTrend(
                average_mood=None,
                trend=Trend.STABLE,
                risk_level=RiskLevel.LOW,
                pattern_insights=("No mood entries recorded yet",),
                entry_count=0,
                insufficient_data=True,
            )

        scores = [entry.mood for entry in window]
        average = sum(scores) / len(scores)
        insights: list[str] = []

        risk = self._base_risk(average)
        if risk == RiskLevel.HIGH:
            insights.append(
                f"Average mood {average:.1f} is in the high-risk range "
                f"(at or below {self.high_risk_average:g})"
            )
        elif risk == RiskLevel.MODERATE:
            insights.append(
                f"Average mood {average:.1f} is below average "
                f"(at or below {self.moderate_risk_average:g})"
            )

        insufficient = len(window) < self.min_entries
        if insufficient:
            trend = Trend.STABLE
            insights.append(
                f"Not enough data to identify a trend: {len(window)} of "
                f"{self.min_entries} entries recorded"
            )
        else:
            trend, earlier, recent = self._trend(scores)
            if trend == Trend.DECLINING:
                risk = risk.escalate()
                insights.append(
                    f"Mood is declining: from {earlier:.1f} to {recent:.1f}"
                )
            elif trend == Trend.IMPROVING:
                insights.append(
                    f"Mood is improving: from {earlier:.1f} to {recent:.1f}, "
                    "keep up the good work"
                )

        streak = self._trailing_low_streak(scores)
        if streak >= self.low_mood_streak:
            insights.append(
                f"{streak} consecutive entries with mood at or below "
                f"{self.low_mood_threshold}"
            )

        latest = window[-1]
        if latest.warning_signs:
            risk = risk.escalate()
            for sign in latest.warning_signs:
                insights.append(f"Warning sign '{sign}' reported in the latest entry")

        counts = Counter(sign for entry in window for sign in entry.warning_signs)
        for sign, count in counts.items():
            if count >= 2:
                insights.append(
                    f"Warning sign '{sign}' reported {count} times "
                    f"in the last {len(window)} entries"
                )

        return MoodTrend(
            average_mood=average,
            trend=trend,
            risk_level=risk,
            pattern_insights=tuple(insights),
            entry_count=len(window),
            insufficient_data=insufficient,
        )

    def _base_risk(self, average: float) -> RiskLevel:
        if average <= self.high_risk_average:
            return RiskLevel.HIGH
        if average <= self.moderate_risk_average:
            return RiskLevel.MODERATE
        return RiskLevel.LOW

    def _trend(self, scores: list[int]) -> tuple[Trend, float, float]:
        """Compare first-half and second-half means; the middle of an odd window is skipped."""
        half = len(scores) // 2
        earlier_scores = scores[:half]
        recent_scores = scores[len(scores) - half:]
        earlier = sum(earlier_scores) / len(earlier_scores)
        recent = sum(recent_scores) / len(recent_scores)

        difference = recent - earlier
        if difference >= self.epsilon:
            return Trend.IMPROVING, earlier, recent
        if difference <= -self.epsilon:
            return Trend.DECLINING, earlier, recent
        return Trend.STABLE, earlier, recent

    def _trailing_low_streak(self, scores: list[int]) -> int:
        streak = 0
        for score in reversed(scores):
            if score > self.low_mood_threshold:
                break
            streak += 1
        return streak
