# File: posturescan/utils/scoring.py
# =============================================================================
# Centralized Posture Score Calculator
# =============================================================================
# Single source of truth for score and grade calculation.
# Used by: scanner/pipeline (report score), SSL and header stages (sub-grades).
#
# Scale:
#   100     = nothing failed
#   >= 95   = A+
#   >= 85   = A
#   >= 75   = B
#   >= 60   = C
#   >= 40   = D
#   < 40    = F
#
# Only FAILED and ERROR findings cost points. Warning and info never do.
# =============================================================================

from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

SEVERITY_PENALTIES: Dict[str, int] = {
    "critical": 20,
    "high": 10,
    "medium": 5,
    "low": 2,
    "info": 0,
}

# Bonus points for top-tier SSL / header sub-grades
GRADE_BONUS: Dict[str, int] = {
    "A+": 5,
    "A": 3,
}

GRADE_BREAKPOINTS: Tuple[Tuple[int, str], ...] = (
    (95, "A+"),
    (85, "A"),
    (75, "B"),
    (60, "C"),
    (40, "D"),
)

GRADES = ("A+", "A", "B", "C", "D", "F")


def clamp_score(value: float) -> int:
    """Clamp to [0, 100] and round to an int."""
    return int(round(max(0.0, min(100.0, value))))


def score_grade(score: float) -> str:
    """
    Map a 0–100 score to a letter grade.
    Every value maps to exactly one grade; anything below 40 is F.
    """
    for threshold, grade in GRADE_BREAKPOINTS:
        if score >= threshold:
            return grade
    return "F"


def calculate_score(
    findings: Iterable,
    ssl_grade: Optional[str] = None,
    headers_grade: Optional[str] = None,
) -> Tuple[int, str]:
    """
    Calculate the report score from findings and stage sub-grades.

      - Start at 100
      - Subtract per failed/error finding: critical 20, high 10, medium 5, low 2
      - Add +5 (A+) or +3 (A) for the SSL sub-grade, same for headers
      - Clamp to [0, 100]

    Returns: (score, grade)
    """
    score = 100.0
    for f in findings:
        if f.status in ("failed", "error"):
            score -= SEVERITY_PENALTIES.get(f.severity, 0)

    score += GRADE_BONUS.get(ssl_grade or "", 0)
    score += GRADE_BONUS.get(headers_grade or "", 0)

    final = clamp_score(score)
    return final, score_grade(final)


def summarize(findings: Iterable) -> Dict[str, int]:
    """
    Summary counts for a report.
    failed includes error findings; severity counts only cover failed/error.
    """
    summary = {
        "passed": 0,
        "warning": 0,
        "failed": 0,
        "total": 0,
        "critical": 0,
        "high": 0,
        "medium": 0,
        "low": 0,
    }
    for f in findings:
        summary["total"] += 1
        if f.status == "passed":
            summary["passed"] += 1
        elif f.status == "warning":
            summary["warning"] += 1
        elif f.status in ("failed", "error"):
            summary["failed"] += 1
            if f.severity in ("critical", "high", "medium", "low"):
                summary[f.severity] += 1
    return summary
