"""
Metric extraction from PageSpeed Insights responses.

Maps the nested Lighthouse payload to a flat, normalized record. A partially
populated response is not an error; missing metrics are simply None.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


# Lighthouse audit ids for each normalized field
AUDIT_IDS = {
    "lcp_ms": "largest-contentful-paint",
    "inp_ms": "interaction-to-next-paint",
    "fcp_ms": "first-contentful-paint",
    "ttfb_ms": "server-response-time",
    "fid_ms": "max-potential-fid",
    "tbt_ms": "total-blocking-time",
    "speed_index_ms": "speed-index",
    "cls": "cumulative-layout-shift",
}


@dataclass(frozen=True)
class NormalizedMetrics:
    """Core Web Vitals and performance score for one test run.

    ``score`` is a 0..1 fraction; timings are whole milliseconds; ``cls`` is
    unitless.
    """
    score: Optional[float] = None
    lcp_ms: Optional[int] = None
    inp_ms: Optional[int] = None
    fcp_ms: Optional[int] = None
    ttfb_ms: Optional[int] = None
    fid_ms: Optional[int] = None
    cls: Optional[float] = None
    tbt_ms: Optional[int] = None
    speed_index_ms: Optional[int] = None


class PerformanceRating(Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    NEEDS_IMPROVEMENT = "Needs improvement"


def _number(value: Any) -> Optional[float]:
    # bool is an int subclass but never a metric
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _dig(data: Any, *path: str) -> Any:
    for part in path:
        if not isinstance(data, dict):
            return None
        data = data.get(part)
    return data


def _audit_value(audits: Any, audit_id: str) -> Optional[float]:
    return _number(_dig(audits, audit_id, "numericValue"))


def _milliseconds(value: Optional[float]) -> Optional[int]:
    return None if value is None else int(round(value))


def extract_metrics(raw_response: Dict[str, Any]) -> NormalizedMetrics:
    """Extract normalized metrics from a raw PSI response.

    Args:
        raw_response: Decoded JSON body of a successful runPagespeed call

    Returns:
        NormalizedMetrics with None for every metric the response lacks
    """
    lighthouse = _dig(raw_response, "lighthouseResult")
    audits = _dig(lighthouse, "audits")
    score = _number(_dig(lighthouse, "categories", "performance", "score"))

    timings = {
        field: _milliseconds(_audit_value(audits, audit_id))
        for field, audit_id in AUDIT_IDS.items()
        if field != "cls"
    }

    return NormalizedMetrics(
        score=score,
        cls=_audit_value(audits, AUDIT_IDS["cls"]),
        **timings
    )


def score_percent(score: Optional[float]) -> Optional[int]:
    """Convert a 0..1 score to a rounded percentage for display."""
    if score is None:
        return None
    return int(round(score * 100))


def rate_performance(
    percent: int,
    excellent: int = 90,
    good: int = 70
) -> PerformanceRating:
    """Bucket a percentage score into a human-facing rating."""
    if percent >= excellent:
        return PerformanceRating.EXCELLENT
    if percent >= good:
        return PerformanceRating.GOOD
    return PerformanceRating.NEEDS_IMPROVEMENT
