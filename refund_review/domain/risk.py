"""Priority derivation from the (opaque) model risk score."""

import math

from refund_review.domain.models.transaction import Priority

CRITICAL_THRESHOLD = 0.9
HIGH_THRESHOLD = 0.75
MEDIUM_THRESHOLD = 0.5


def clamp01(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value))


def priority_for_risk(risk_score: float) -> Priority:
    risk = clamp01(risk_score)
    if risk >= CRITICAL_THRESHOLD:
        return Priority.CRITICAL
    if risk >= HIGH_THRESHOLD:
        return Priority.HIGH
    if risk >= MEDIUM_THRESHOLD:
        return Priority.MEDIUM
    return Priority.LOW
