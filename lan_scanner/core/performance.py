"""
Rolling performance statistics for probes.

Every completed probe attempt is recorded as a (latency, success) sample in
a bounded per-kind window. The windows feed per-probe tuning
recommendations and an overall network-quality assessment.
"""

import threading
from collections import deque
from enum import Enum
from typing import Any, Deque, Dict, List

from .data_models import NetworkQuality, PerformanceSample, ProbeKind


class Recommendation(Enum):
    """Tuning advice derived from a probe's recent samples."""
    INCREASE_CONCURRENCY = "increase_concurrency"
    REDUCE_CONCURRENCY = "reduce_concurrency_or_raise_timeout"
    KEEP_CURRENT = "keep_current"


# (success rate %, mean latency ms) thresholds, best first
_QUALITY_THRESHOLDS = (
    (NetworkQuality.EXCELLENT, 90.0, 200.0),
    (NetworkQuality.GOOD, 80.0, 500.0),
    (NetworkQuality.FAIR, 60.0, 1000.0),
)


class PerformanceTracker:
    """
    Thread-safe sliding windows of probe samples, one window per ProbeKind.

    Each window keeps the most recent ``window_size`` samples; appending to a
    full window evicts the oldest sample.
    """

    DEFAULT_WINDOW_SIZE = 100

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE):
        if window_size < 1:
            raise ValueError(f"window_size must be at least 1, got {window_size}")
        self.window_size = window_size
        self._lock = threading.Lock()
        self._windows: Dict[ProbeKind, Deque[PerformanceSample]] = {}

    def record(self, kind: ProbeKind, latency_ms: float, success: bool) -> None:
        """
        Append the outcome of one probe attempt.

        Args:
            kind: Probe kind that made the attempt
            latency_ms: Elapsed time of the attempt
            success: Whether the attempt produced a result
        """
        sample = PerformanceSample(latency_ms=max(0.0, latency_ms), success=success)
        with self._lock:
            window = self._windows.get(kind)
            if window is None:
                window = deque(maxlen=self.window_size)
                self._windows[kind] = window
            window.append(sample)

    def samples(self, kind: ProbeKind) -> List[PerformanceSample]:
        with self._lock:
            return list(self._windows.get(kind, ()))

    def average_latency(self, kind: ProbeKind) -> float:
        window = self.samples(kind)
        if not window:
            return 0.0
        return sum(sample.latency_ms for sample in window) / len(window)

    def success_rate(self, kind: ProbeKind) -> float:
        """Fraction (0.0 to 1.0) of successful attempts in the window."""
        window = self.samples(kind)
        if not window:
            return 0.0
        return sum(1 for sample in window if sample.success) / len(window)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    @staticmethod
    def recommend(success_rate: float, average_latency: float) -> Recommendation:
        """
        Derive tuning advice from a probe's success rate and mean latency.

        Args:
            success_rate: Fraction of successful attempts (0.0 to 1.0)
            average_latency: Mean latency in milliseconds

        Returns:
            Recommendation for the probe's concurrency/timeout
        """
        if success_rate > 0.9 and average_latency < 300:
            return Recommendation.INCREASE_CONCURRENCY
        if success_rate < 0.5 or average_latency > 2000:
            return Recommendation.REDUCE_CONCURRENCY
        return Recommendation.KEEP_CURRENT

    def get_recommendations(self) -> Dict[ProbeKind, Dict[str, Any]]:
        """
        Summarize every probe kind that has samples.

        Returns:
            Mapping of kind to avg_response_time (ms), success_rate (percent),
            recommendation and sample_size
        """
        with self._lock:
            kinds = list(self._windows)

        recommendations: Dict[ProbeKind, Dict[str, Any]] = {}
        for kind in kinds:
            window = self.samples(kind)
            if not window:
                continue
            average = sum(sample.latency_ms for sample in window) / len(window)
            rate = sum(1 for sample in window if sample.success) / len(window)
            recommendations[kind] = {
                "avg_response_time": round(average, 2),
                "success_rate": round(rate * 100, 2),
                "recommendation": self.recommend(rate, average),
                "sample_size": len(window),
            }
        return recommendations

    @staticmethod
    def classify_quality(success_rate_percent: float, average_latency: float) -> NetworkQuality:
        """
        Map an aggregate success rate and latency onto a quality label.

        Args:
            success_rate_percent: Success rate in percent
            average_latency: Mean latency in milliseconds
        """
        for quality, min_success, max_latency in _QUALITY_THRESHOLDS:
            if success_rate_percent > min_success and average_latency < max_latency:
                return quality
        return NetworkQuality.POOR

    def assess_network(self) -> Dict[str, Any]:
        """
        Assess overall network quality from all probe windows.

        Per-kind averages are combined weighted by their sample counts.

        Returns:
            Dictionary with quality, avg_response_time, success_rate (percent),
            total_samples and probes_analyzed
        """
        recommendations = self.get_recommendations()
        total_samples = sum(entry["sample_size"] for entry in recommendations.values())

        if total_samples == 0:
            return {
                "quality": NetworkQuality.UNKNOWN,
                "avg_response_time": 0.0,
                "success_rate": 0.0,
                "total_samples": 0,
                "probes_analyzed": 0,
            }

        weighted_latency = sum(
            entry["avg_response_time"] * entry["sample_size"] for entry in recommendations.values()
        ) / total_samples
        weighted_success = sum(
            entry["success_rate"] * entry["sample_size"] for entry in recommendations.values()
        ) / total_samples

        return {
            "quality": self.classify_quality(weighted_success, weighted_latency),
            "avg_response_time": round(weighted_latency, 2),
            "success_rate": round(weighted_success, 2),
            "total_samples": total_samples,
            "probes_analyzed": len(recommendations),
        }
