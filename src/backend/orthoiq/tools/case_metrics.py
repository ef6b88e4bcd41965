"""
Case Metrics — numeric features derived from a free-form case.

Used by fee accrual (complexity multiplier), prediction initiation (case
snapshot) and the orchestrator (per-specialist data completeness).
"""
from __future__ import annotations

import math
import re
from typing import Any, Dict, Optional

from orthoiq.models.schemas import CaseInput, SpecialtyTag

MAX_COMPLEXITY = 3.0

_UNIT_DAYS = {
    "day": 1, "days": 1, "d": 1,
    "week": 7, "weeks": 7, "wk": 7, "wks": 7, "w": 7,
    "month": 30, "months": 30, "mo": 30, "mos": 30,
    "year": 365, "years": 365, "yr": 365, "yrs": 365, "y": 365,
}

_WORD_NUMBERS = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10, "twelve": 12,
    "few": 3, "several": 3, "couple": 2,
}

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?|[a-z]+)\s*(?:of\s+)?([a-z]+)")


def round_half_up(x: float) -> int:
    """Round to the nearest integer, halves away from zero for non-negative input."""
    return int(math.floor(x + 0.5))


def parse_duration_days(duration: Optional[str]) -> Optional[int]:
    """
    Parse a free-text duration such as ``"3 weeks"``, ``"2 months"`` or
    ``"three days"`` into days. A bare number is read as days.
    Returns None when nothing recognisable is found.
    """
    if not duration:
        return None
    text = duration.strip().lower()
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return int(float(text))

    for amount, unit in _DURATION_RE.findall(text):
        if unit not in _UNIT_DAYS:
            continue
        if amount.replace(".", "", 1).isdigit():
            n = float(amount)
        elif amount in _WORD_NUMBERS:
            n = _WORD_NUMBERS[amount]
        else:
            continue
        return int(n * _UNIT_DAYS[unit])

    for unit, days in _UNIT_DAYS.items():
        if len(unit) > 2 and re.search(rf"\b{unit}\b", text):
            return days
    return None


def complexity_multiplier(case: CaseInput) -> float:
    """
    1.0 base, plus pain (≥7: +0.5, ≥4: +0.25), duration (≥90 d: +0.3,
    ≥30 d: +0.15), 0.1 per symptom (max 5) and 0.2 per comorbidity
    (max 3), capped at 3.0.
    """
    m = 1.0
    if case.pain_level is not None:
        if case.pain_level >= 7:
            m += 0.5
        elif case.pain_level >= 4:
            m += 0.25

    days = parse_duration_days(case.duration)
    if days is not None:
        if days >= 90:
            m += 0.3
        elif days >= 30:
            m += 0.15

    m += 0.1 * min(len(case.symptoms), 5)
    m += 0.2 * min(len(case.comorbidities), 3)
    return min(m, MAX_COMPLEXITY)


# ──────────────────────────────────────────────
# Data completeness
# ──────────────────────────────────────────────

def core_data_score(case: CaseInput) -> float:
    score = 0.0
    if case.symptoms or case.primary_complaint:
        score += 0.25
    if case.primary_complaint:
        score += 0.20
    if case.pain_level is not None:
        score += 0.15
    if case.duration:
        score += 0.10
    if case.age is not None:
        score += 0.10
    if case.location:
        score += 0.10
    if case.comorbidities:
        score += 0.10
    return min(score, 1.0)


def specialty_data_score(case: CaseInput, tag: SpecialtyTag) -> float:
    extra = case.model_extra or {}
    if tag == SpecialtyTag.PAIN:
        return (
            (0.5 if case.pain_level is not None else 0.0)
            + (0.25 if case.location else 0.0)
            + (0.25 if case.symptoms else 0.0)
        )
    if tag == SpecialtyTag.MOVEMENT:
        return (
            (0.5 if case.movement_notes else 0.0)
            + (0.25 if case.functional_limitations else 0.0)
            + (0.25 if case.location else 0.0)
        )
    if tag == SpecialtyTag.STRENGTH:
        return (
            (0.5 if case.functional_limitations else 0.0)
            + (0.25 if case.movement_notes else 0.0)
            + (0.25 if "goals" in extra or "activity_level" in extra else 0.0)
        )
    if tag == SpecialtyTag.MIND:
        return (
            (0.6 if case.psychological_factors else 0.0)
            + (0.2 if "anxiety_level" in extra else 0.0)
            + (0.2 if case.duration else 0.0)
        )
    others = [t for t in SpecialtyTag if t != SpecialtyTag.TRIAGE]
    return sum(specialty_data_score(case, t) for t in others) / len(others)


def data_completeness(case: CaseInput, tag: SpecialtyTag) -> float:
    """Core data weighs 60%, the specialty's own data 40%."""
    return round(core_data_score(case) * 0.6 + specialty_data_score(case, tag) * 0.4, 3)


def case_summary(case: CaseInput) -> Dict[str, Any]:
    """Snapshot stored alongside a prediction set."""
    return {
        "case_id": case.case_id,
        "primary_complaint": case.primary_complaint,
        "pain_level": case.pain_level,
        "duration": case.duration,
        "duration_days": parse_duration_days(case.duration),
        "location": case.location,
        "symptom_count": len(case.symptoms),
        "comorbidity_count": len(case.comorbidities),
        "complexity": round(complexity_multiplier(case), 2),
    }
