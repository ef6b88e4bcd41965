from __future__ import annotations

import pytest

from orthoiq.models.schemas import CaseInput, SpecialtyTag
from orthoiq.tools.routing import primary_specialty, route_case, select_specialists

T, P, M, S, MIND = (
    SpecialtyTag.TRIAGE,
    SpecialtyTag.PAIN,
    SpecialtyTag.MOVEMENT,
    SpecialtyTag.STRENGTH,
    SpecialtyTag.MIND,
)


# ──────────────────────────────────────────────
# Branches
# ──────────────────────────────────────────────

def test_rich_case_routes_to_every_viable_specialist() -> None:
    case = CaseInput(
        primary_complaint="Knee pain when climbing stairs",
        pain_level=8,
        duration="3 weeks",
        location="left knee",
        age=34,
        symptoms=["swelling"],
        comorbidities=["previous ACL repair"],
        movement_notes="Limps on stairs",
        functional_limitations=["stairs"],
        psychological_factors=["fear of reinjury"],
    )
    routing = route_case(case)

    assert routing.confidence == 0.95
    assert routing.minimum_data_met is True
    assert routing.selected_specialists == [T, P, M, S, MIND]


def test_moderate_case_uses_limited_panel() -> None:
    # core 0.55, no specialty data: pain is inferred from the complaint
    routing = route_case(CaseInput(primary_complaint="Knee pain after a long run", age=29))

    assert routing.minimum_data_met is True
    assert routing.confidence == pytest.approx(0.53)
    assert routing.recommended_specialists == [T, P]
    assert routing.selected_specialists == [T, P]


def test_thin_case_routes_to_triage_only() -> None:
    routing = route_case(CaseInput(primary_complaint="Knee pain"))

    assert routing.core_data_score == 0.45
    assert routing.minimum_data_met is False
    assert routing.recommended_specialists == [T, P]
    assert routing.selected_specialists == [T]


@pytest.mark.parametrize("confidence, minimum_data_met, expected", [
    (0.71, False, [T, P, M, S, MIND]),
    (0.7, True, [T, P, M]),
    (0.6, False, [T]),
])
def test_selection_thresholds(confidence, minimum_data_met, expected) -> None:
    assert select_specialists([T, P, M, S, MIND], confidence, minimum_data_met) == expected


# ──────────────────────────────────────────────
# Viability
# ──────────────────────────────────────────────

def test_thin_specialty_data_needs_a_keyword() -> None:
    base = dict(age=40, symptoms=["stiffness"], functional_limitations=["stairs"], anxiety_level=5)

    without = route_case(CaseInput(primary_complaint="Hip hurts and feels stiff", **base))
    assert without.recommended_specialists == [T, P, M, S]

    with_worry = route_case(CaseInput(primary_complaint="Hip hurts and feels stiff, worried it is getting worse", **base))
    assert with_worry.recommended_specialists == [T, P, M, S, MIND]
    assert with_worry.selected_specialists == [T, P, M, S, MIND]


def test_critical_anxiety_makes_mind_viable_without_keywords() -> None:
    routing = route_case(CaseInput(primary_complaint="Shoulder feels off", age=50, anxiety_level=9))
    assert routing.recommended_specialists == [T, MIND]


@pytest.mark.parametrize("complaint, expected", [
    ("Sharp pain in the wrist", P),
    ("Odd gait since the fall", M),
    ("Anxiety about running again", MIND),
    ("Shoulder feels off", S),
])
def test_primary_specialty_from_complaint(complaint, expected) -> None:
    assert primary_specialty(complaint) == expected
