"""
audit/risk.py -- Residual risk score to risk level classification.

Bands are inclusive on their lower edge:

    8-10 -> critical
    6-7  -> high
    4-5  -> medium
    1-3  -> low

The store calls classify_risk() on every create and update of a risk
assessment, so the stored risk_level can never drift from the score.
"""

from audit.models import RiskLevel

MIN_SCORE = 1
MAX_SCORE = 10

# (lower bound, level), checked from the top band down.
_BANDS: tuple[tuple[int, RiskLevel], ...] = (
    (8, RiskLevel.critical),
    (6, RiskLevel.high),
    (4, RiskLevel.medium),
    (MIN_SCORE, RiskLevel.low),
)


def classify_risk(residual_score: int) -> RiskLevel:
    """Return the risk level for a residual risk score in [1, 10].

    Raises ValueError for anything else, including bools and floats.
    """
    if isinstance(residual_score, bool) or not isinstance(residual_score, int):
        raise ValueError(f"Risk score must be an integer, got {residual_score!r}")
    if not MIN_SCORE <= residual_score <= MAX_SCORE:
        raise ValueError(f"Risk score must be between {MIN_SCORE} and {MAX_SCORE}, got {residual_score}")
    for lower, level in _BANDS:
        if residual_score >= lower:
            return level
    raise AssertionError("unreachable: bands cover the full score range")
