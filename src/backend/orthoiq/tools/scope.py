"""
Scope Screening — keeps non-musculoskeletal cases away from the panel.

Runs before any specialist is called. Priority order:
  1. An in-scope affirmer (body part, MSK condition, sports injury,
     rehab context) passes the case.
  2. An out-of-scope term rejects it, unless the category's exclusion
     terms show orthopedic context.
  3. Anything else passes.
"""
from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from orthoiq.config import settings
from orthoiq.models.schemas import CaseInput, ScopeCategory, ScopeCheck, ScopeRedirect

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Term tables
# ──────────────────────────────────────────────

# category → (terms, exclusions)
OUT_OF_SCOPE: Dict[str, Tuple[List[str], List[str]]] = {
    "cardiac": (
        ["heart disease", "arrhythmia", "heart palpitations", "high blood pressure", "cardiac"],
        ["chest wall", "rib", "costochondritis"],
    ),
    "endocrine": (
        ["diabetes", "blood sugar", "thyroid", "insulin", "hormone therapy"],
        [],
    ),
    "dermatology": (
        ["skin rash", "acne", "eczema", "psoriasis", "dermatitis"],
        [],
    ),
    "gastrointestinal": (
        ["stomach pain", "diarrhea", "acid reflux", "bowel", "nausea", "vomiting"],
        ["abdominal muscle", "core injury", "oblique strain"],
    ),
    "respiratory": (
        ["asthma", "copd", "lung disease", "bronchitis", "wheezing", "shortness of breath",
         "breathing difficulty", "difficulty breathing"],
        ["chest wall", "rib pain", "hurts to breathe"],
    ),
    "mental_health_standalone": (
        ["depression diagnosis", "bipolar disorder", "schizophrenia", "panic disorder"],
        ["injury", "pain", "surgery", "recovery", "fear of movement", "return to play",
         "return to sport", "performance anxiety", "surgery anxiety", "rehabilitation"],
    ),
    "oncology": (
        ["cancer treatment", "tumor", "chemotherapy", "radiation therapy"],
        ["bone cancer", "osteosarcoma"],
    ),
    "infectious": (
        ["flu symptoms", "cold", "covid symptoms", "fever", "infection"],
        ["joint infection", "septic arthritis", "osteomyelitis"],
    ),
    "pregnancy": (
        ["pregnant", "prenatal", "pregnancy"],
        ["back pain", "pelvic pain", "pelvic girdle pain", "sciatica"],
    ),
    "dental": (
        ["toothache", "cavity", "dental work", "root canal"],
        ["tmj", "jaw joint", "temporomandibular"],
    ),
    "neurological": (
        ["seizure", "epilepsy", "migraine", "headache"],
        ["cervicogenic", "neck pain", "whiplash"],
    ),
}

IN_SCOPE_AFFIRMERS: Dict[str, List[str]] = {
    "musculoskeletal": [
        "joint pain", "muscle pain", "bone pain", "tendon", "ligament", "sprain", "strain",
        "subluxation", "dislocation", "fracture", "arthritis", "bursitis",
    ],
    "body_parts": [
        "shoulder", "elbow", "wrist", "hand", "finger", "thumb", "hip", "knee", "ankle",
        "foot", "feet", "toe", "spine", "back", "neck", "clavicle", "pelvis",
    ],
    "sports_injury": [
        "sports injury", "rotator cuff", "acl", "mcl", "pcl", "meniscus", "tennis elbow",
        "golfer's elbow", "runner's knee",
    ],
    "special_cases": [
        "cervicogenic headache", "tmj", "temporomandibular joint", "chest wall pain",
        "costochondritis", "rib pain",
    ],
    "recovery": [
        "post surgery", "post surgical", "rehabilitation", "physical therapy",
        "return to sport", "return to play", "return to activity",
    ],
}

_REFERRALS: Dict[str, Tuple[str, str]] = {
    "cardiac": ("Heart-Related Concerns", "a cardiologist or your primary care provider"),
    "endocrine": ("Metabolic/Endocrine Concerns", "an endocrinologist or your primary care provider"),
    "dermatology": ("Skin Condition Detected", "a dermatologist"),
    "gastrointestinal": ("Digestive Health Concerns", "a gastroenterologist or your primary care provider"),
    "respiratory": ("Respiratory Concerns", "a pulmonologist or your primary care provider"),
    "mental_health_standalone": ("Mental Health Support", "a therapist, counselor or psychiatrist"),
    "oncology": ("Cancer-Related Concerns", "your oncologist or primary care provider"),
    "infectious": ("Infection or Illness Concerns", "your primary care provider"),
    "pregnancy": ("Pregnancy-Related Concerns", "your OB/GYN or midwife"),
    "dental": ("Dental Concerns", "your dentist"),
    "neurological": ("Neurological Concerns", "a neurologist"),
}


def _pattern(term: str) -> re.Pattern:
    # whole words, plural endings allowed ("seizures", "toes")
    return re.compile(rf"\b{re.escape(term)}(?:s|es)?\b")


_OUT_OF_SCOPE_RE = {
    category: ([_pattern(t) for t in terms], [_pattern(t) for t in exclusions])
    for category, (terms, exclusions) in OUT_OF_SCOPE.items()
}
_AFFIRMER_RE = {
    category: [(t, _pattern(t)) for t in terms] for category, terms in IN_SCOPE_AFFIRMERS.items()
}


# ──────────────────────────────────────────────
# Screening
# ──────────────────────────────────────────────

def case_text(case: CaseInput) -> str:
    """Lower-cased complaint, symptoms and any raw query text."""
    parts = [case.primary_complaint, *case.symptoms]
    raw_query = (case.model_extra or {}).get("raw_query")
    if isinstance(raw_query, str):
        parts.append(raw_query)
    return " ".join(parts).lower()


def _affirmer(text: str) -> Optional[Tuple[str, str]]:
    for category, patterns in _AFFIRMER_RE.items():
        for term, pattern in patterns:
            if pattern.search(text):
                return category, term
    return None


def _out_of_scope(text: str) -> Optional[Tuple[str, str]]:
    for category, (terms, exclusions) in _OUT_OF_SCOPE_RE.items():
        if any(p.search(text) for p in exclusions):
            continue
        for term, pattern in zip(OUT_OF_SCOPE[category][0], terms):
            if pattern.search(text):
                return category, term
    return None


def redirect_for(category: str) -> ScopeRedirect:
    title, provider = _REFERRALS.get(category, ("Specialized Care Recommended", "your primary care provider"))
    return ScopeRedirect(
        title=title,
        message=(
            "This panel covers musculoskeletal and sports medicine conditions. "
            f"For this concern, please consult {provider}."
        ),
        suggestion=f"Contact {provider}.",
    )


def check_scope(case: CaseInput) -> ScopeCheck:
    """Screen a case before any specialist sees it. Always passes when screening is disabled."""
    if not settings.enable_scope_validation:
        return ScopeCheck(category=ScopeCategory.IN_SCOPE, pass_to_agent=True, confidence=1.0)

    text = case_text(case)

    hit = _affirmer(text)
    if hit:
        return ScopeCheck(
            category=ScopeCategory.IN_SCOPE,
            pass_to_agent=True,
            detected_category=hit[0],
            confidence=0.85,
            matched_terms=[hit[1]],
        )

    hit = _out_of_scope(text)
    if hit:
        logger.info("Case out of scope (%s, matched %r): %.100s", hit[0], hit[1], case.primary_complaint)
        return ScopeCheck(
            category=ScopeCategory.OUT_OF_SCOPE,
            pass_to_agent=False,
            detected_category=hit[0],
            confidence=0.8,
            matched_terms=[hit[1]],
            redirect=redirect_for(hit[0]),
        )

    return ScopeCheck(category=ScopeCategory.IN_SCOPE, pass_to_agent=True, confidence=0.5)
