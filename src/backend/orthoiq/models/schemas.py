"""
Domain models for the specialist panel.

These Pydantic models define the structured data flowing between the
orchestrator, the dialogue conference and the prediction market. Every
component consumes and produces typed models, and every model serialises
cleanly for the HTTP layer.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator


def _lower(v: Any) -> Any:
    return v.strip().lower() if isinstance(v, str) else v


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class SpecialtyTag(str, Enum):
    TRIAGE = "triage"
    PAIN = "pain_whisperer"
    MOVEMENT = "movement_detective"
    STRENGTH = "strength_sage"
    MIND = "mind_mender"


class ConsultationMode(str, Enum):
    NORMAL = "normal"
    FAST = "fast"


class ConsultationStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class ResponseStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ClinicalImportance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TriageAgreement(str, Enum):
    SELF = "self"
    FULL = "full"
    PARTIAL = "partial"
    DISAGREE = "disagree"


class DisagreementType(str, Enum):
    EXPLICIT = "explicit"
    PRIORITY_CONFLICT = "priority_conflict"
    TIMELINE_CONFLICT = "timeline_conflict"
    IMPORTANCE_CONFLICT = "importance_conflict"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Novelty(str, Enum):
    ROUTINE = "routine"
    UNUSUAL = "unusual"
    NOVEL = "novel"


class FindingSource(str, Enum):
    DIALOGUE = "inter_agent_dialogue"
    DISAGREEMENT_RESOLUTION = "disagreement_resolution"
    CROSS_SPECIALTY = "cross_specialty_collaboration"


class ExchangeStatus(str, Enum):
    ANSWERED = "answered"
    UNAVAILABLE = "unavailable"
    ERROR = "error"


class DimensionType(str, Enum):
    BINARY = "binary"
    RANGE = "range"
    TIMELINE = "timeline"


class PredictionStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


class ResolutionSource(str, Enum):
    """Ground-truth sources, declared lowest priority first."""
    INTER_AGENT = "inter_agent"
    MD_REVIEW = "md_review"
    USER_MODAL = "user_modal"
    FOLLOW_UP = "follow_up"


class PlanPhase(str, Enum):
    IMMEDIATE = "immediate"
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"


class ConsensusLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ScopeCategory(str, Enum):
    IN_SCOPE = "in_scope"
    OUT_OF_SCOPE = "out_of_scope"


# ──────────────────────────────────────────────
# Case Input
# ──────────────────────────────────────────────

class CaseInput(BaseModel):
    """A patient case as submitted for consultation."""
    model_config = {"extra": "allow"}

    case_id: Optional[str] = None
    primary_complaint: str = Field(..., min_length=3, description="Primary reason for consultation")
    pain_level: Optional[float] = Field(None, ge=0, le=10, description="Self-reported pain, 0-10")
    duration: Optional[str] = Field(None, description="Free-text duration, e.g. '3 weeks'")
    location: Optional[str] = Field(None, description="Body part / region")
    age: Optional[int] = None
    symptoms: List[str] = Field(default_factory=list)
    comorbidities: List[str] = Field(default_factory=list)
    movement_notes: Optional[str] = None
    functional_limitations: List[str] = Field(default_factory=list)
    psychological_factors: List[str] = Field(default_factory=list)


class ScopeRedirect(BaseModel):
    title: str
    message: str
    suggestion: str


class ScopeCheck(BaseModel):
    """Outcome of screening a case for musculoskeletal scope."""
    category: ScopeCategory
    pass_to_agent: bool
    detected_category: Optional[str] = None
    confidence: float = Field(..., ge=0, le=1)
    matched_terms: List[str] = Field(default_factory=list)
    redirect: Optional[ScopeRedirect] = None


class TriageRouting(BaseModel):
    """Specialists picked from data completeness when the caller names none."""
    core_data_score: float
    completeness: float
    confidence: float
    minimum_data_met: bool
    recommended_specialists: List[SpecialtyTag] = Field(default_factory=list)
    selected_specialists: List[SpecialtyTag] = Field(default_factory=list)


# ──────────────────────────────────────────────
# Specialist Assessment Envelope
# ──────────────────────────────────────────────

_PRIORITY_WORDS = {"critical": 1, "urgent": 1, "high": 2, "medium": 3, "moderate": 3, "low": 4}


class Recommendation(BaseModel):
    intervention: str = Field(..., description="Recommended intervention")
    priority: int = Field(3, ge=1, le=5, description="1 = most urgent, 5 = least")
    timeline: Optional[str] = Field(None, description="When the intervention should happen")
    evidence_grade: Optional[str] = None
    expected_outcome: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, v: Any) -> Any:
        if isinstance(v, str):
            word = v.strip().lower()
            if word in _PRIORITY_WORDS:
                return _PRIORITY_WORDS[word]
            if word.isdigit():
                return int(word)
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return min(5, max(1, int(v)))
        return v


class AgentQuestion(BaseModel):
    target_agent: str = Field(..., description="Tag or alias of the agent being asked")
    question: str
    priority: Priority = Priority.MEDIUM

    @field_validator("priority", mode="before")
    @classmethod
    def _normalise_priority(cls, v: Any) -> Any:
        v = _lower(v)
        return v if v in {p.value for p in Priority} else Priority.MEDIUM


class AssessmentBody(BaseModel):
    primary_findings: List[str] = Field(default_factory=list)
    clinical_importance: ClinicalImportance = ClinicalImportance.MEDIUM
    data_quality: Optional[float] = Field(None, ge=0, le=1)

    @field_validator("clinical_importance", mode="before")
    @classmethod
    def _normalise_importance(cls, v: Any) -> Any:
        v = _lower(v)
        return v if v in {i.value for i in ClinicalImportance} else ClinicalImportance.MEDIUM


class SpecialistAssessment(BaseModel):
    """Machine-parseable envelope returned by a specialist's ``assess`` call."""
    summary: str = ""
    assessment: AssessmentBody = Field(default_factory=AssessmentBody)
    recommendations: List[Recommendation] = Field(default_factory=list)
    questions_for_agents: List[AgentQuestion] = Field(default_factory=list)
    agreement_with_triage: TriageAgreement = TriageAgreement.FULL
    disagreement_reason: Optional[str] = None
    red_flags: List[str] = Field(default_factory=list)
    confidence: Optional[float] = Field(None, ge=0, le=1)
    raw_response: str = ""

    @field_validator("agreement_with_triage", mode="before")
    @classmethod
    def _normalise_agreement(cls, v: Any) -> Any:
        return _lower(v)


# ──────────────────────────────────────────────
# Consultation
# ──────────────────────────────────────────────

class SpecialistResponse(BaseModel):
    """One specialist's outcome for one consultation."""
    specialist: SpecialtyTag
    agent_id: str
    name: str
    assessment: Optional[SpecialistAssessment] = None
    confidence: float = Field(0.0, ge=0, le=1)
    data_completeness: float = Field(0.0, ge=0, le=1)
    status: ResponseStatus
    error: Optional[str] = None
    latency_ms: int = 0
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @property
    def succeeded(self) -> bool:
        return self.status == ResponseStatus.SUCCESS and self.assessment is not None


class ConsultationOptions(BaseModel):
    mode: ConsultationMode = ConsultationMode.NORMAL
    min_responses: Optional[int] = Field(None, ge=1)
    timeout_seconds: Optional[float] = Field(None, gt=0, description="Per-specialist timeout")
    deadline_seconds: Optional[float] = Field(None, gt=0, description="Whole-consultation deadline")

    @field_validator("mode", mode="before")
    @classmethod
    def _normalise_mode(cls, v: Any) -> Any:
        return _lower(v)


class Consultation(BaseModel):
    """
    Mutable state of one consultation.

    ``responses`` is keyed by specialty tag value. In fast mode, specialists
    that finish after the early return still add their entry here.
    """
    consultation_id: str
    case_input: CaseInput
    requested_specialists: List[str] = Field(default_factory=list)
    available_specialists: List[SpecialtyTag] = Field(default_factory=list)
    mode: ConsultationMode = ConsultationMode.NORMAL
    routing: Optional[TriageRouting] = None
    responses: Dict[str, SpecialistResponse] = Field(default_factory=dict)
    status: ConsultationStatus = ConsultationStatus.IN_PROGRESS
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def successful_responses(self) -> List[SpecialistResponse]:
        return [r for r in self.responses.values() if r.succeeded]


# ──────────────────────────────────────────────
# Dialogue Conference
# ──────────────────────────────────────────────

class DialogueExchange(BaseModel):
    from_agent: str
    to_agent: str
    question: str
    answer: str
    impact_on_diagnosis: bool = False
    priority: Priority = Priority.MEDIUM
    refined_insight: Optional[str] = None
    status: ExchangeStatus = ExchangeStatus.ANSWERED
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class Disagreement(BaseModel):
    agents: List[str]
    topic: str
    disagreement_type: DisagreementType
    severity: Severity
    reason: str = ""
    resolution: Optional[str] = None
    confidence: float = Field(0.5, ge=0, le=1)


class EmergentFinding(BaseModel):
    finding: str
    discovered_by: List[str]
    novelty: Novelty
    clinical_significance: str
    confidence: float = Field(0.75, ge=0, le=1)
    source: FindingSource
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ConferenceMetadata(BaseModel):
    """Output of one dialogue conference round."""
    inter_agent_dialogue: List[DialogueExchange] = Field(default_factory=list)
    disagreements: List[Disagreement] = Field(default_factory=list)
    emergent_findings: List[EmergentFinding] = Field(default_factory=list)
    participating_agents: List[str] = Field(default_factory=list)
    duration_ms: int = 0
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# ──────────────────────────────────────────────
# Prediction Market
# ──────────────────────────────────────────────

PredictedValue = Union[bool, int, float]


class PredictionDimension(BaseModel):
    name: str
    type: DimensionType
    value: PredictedValue
    value_range: Optional[Tuple[float, float]] = None
    confidence: float = Field(..., ge=0, le=1)
    stake: int = 0
    stake_percentage: int = 0
    rationale: str = ""


class AgentPrediction(BaseModel):
    prediction_id: str
    agent_id: str
    agent_name: str
    specialty: SpecialtyTag
    consultation_id: str
    dimensions: List[PredictionDimension] = Field(default_factory=list)
    total_stake: int = 0
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class PredictionSet(BaseModel):
    """All predictions staked for one consultation. One entry per agent id."""
    consultation_id: str
    case_summary: Dict[str, Any] = Field(default_factory=dict)
    agent_predictions: List[AgentPrediction] = Field(default_factory=list)
    status: PredictionStatus = PredictionStatus.ACTIVE
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def agent_ids(self) -> set[str]:
        return {p.agent_id for p in self.agent_predictions}

    @property
    def total_stake(self) -> int:
        return sum(p.total_stake for p in self.agent_predictions)


class InitiationSummary(BaseModel):
    consultation_id: str
    total_predictions: int
    total_staked: int
    specialist_count: int
    recommend_md_review: bool
    timestamp: datetime


class DimensionScore(BaseModel):
    dimension: str
    type: DimensionType
    predicted: PredictedValue
    actual: Optional[PredictedValue] = None
    accuracy: float = Field(..., ge=0, le=1)
    confidence: Optional[float] = None
    stake: Optional[int] = None
    partial_credit: bool = False
    resolution_source: ResolutionSource


class AgentScore(BaseModel):
    agent_id: str
    agent_name: str
    dimension_scores: List[DimensionScore] = Field(default_factory=list)
    total_staked: int = 0
    accuracy: float = 0.0
    tokens_won: int = 0
    tokens_lost: int = 0
    net_change: int = 0


class Resolution(BaseModel):
    consultation_id: str
    source: ResolutionSource
    outcomes: Dict[str, Any] = Field(default_factory=dict)
    agent_results: List[AgentScore] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ResolutionPayload(BaseModel):
    """Ground truth arriving for a consultation; any subset of sources may be set."""
    follow_up: Optional[Dict[str, Any]] = None
    user_modal: Optional[Dict[str, Any]] = None
    md_review: Optional[Dict[str, Any]] = None
    inter_agent: Optional[Dict[str, Any]] = None


class DimensionPerformance(BaseModel):
    count: int = 0
    total_accuracy: float = 0.0
    average_accuracy: float = 0.0


class AgentPerformanceRecord(BaseModel):
    agent_id: str
    total_predictions: int = 0
    total_staked: int = 0
    total_won: int = 0
    total_lost: int = 0
    resolution_count: int = 0
    average_accuracy: float = 0.0
    dimension_accuracy: Dict[str, DimensionPerformance] = Field(default_factory=dict)


class TopPerformer(BaseModel):
    agent_id: str
    average_accuracy: int
    total_predictions: int
    net_tokens: int


class ResolutionHistoryEntry(BaseModel):
    consultation_id: str
    source: ResolutionSource
    timestamp: datetime
    total_agents: int
    average_accuracy: float


class MarketStats(BaseModel):
    total_consultations: int = 0
    resolved_consultations: int = 0
    total_agents: int = 0
    total_predictions: int = 0
    total_staked: int = 0
    average_market_accuracy: float = 0.0
    top_performers: List[TopPerformer] = Field(default_factory=list)
    recent_resolutions: List[ResolutionHistoryEntry] = Field(default_factory=list)


# ──────────────────────────────────────────────
# Synthesis and Consultation Result
# ──────────────────────────────────────────────

class PlanItem(BaseModel):
    intervention: str
    phase: PlanPhase
    priority: int
    timeline: Optional[str] = None
    recommended_by: List[str] = Field(default_factory=list)
    evidence_grade: Optional[str] = None


class SynthesizedPlan(BaseModel):
    """Structured plan merged from every successful specialist response."""
    summary: str
    phases: Dict[PlanPhase, List[PlanItem]] = Field(default_factory=dict)
    red_flags: List[str] = Field(default_factory=list)
    consensus_confidence: float = Field(0.0, ge=0, le=1)
    consensus_level: ConsensusLevel = ConsensusLevel.LOW
    participating_specialists: List[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=datetime.utcnow)


class CoordinationSummary(BaseModel):
    total_specialists: int
    successful_responses: int
    success_rate: int
    duration_ms: int
    quality_score: int


class ConsultationResult(BaseModel):
    consultation_id: str
    mode: ConsultationMode
    status: ConsultationStatus
    synthesized_plan: SynthesizedPlan
    responses: Dict[str, SpecialistResponse] = Field(default_factory=dict)
    participating_specialists: List[str] = Field(default_factory=list)
    requested_specialists: List[str] = Field(default_factory=list)
    routing: Optional[TriageRouting] = None
    coordination: Optional[ConferenceMetadata] = None
    coordination_summary: CoordinationSummary
    background_pending: int = 0
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# ──────────────────────────────────────────────
# API Request / Response Models
# ──────────────────────────────────────────────

class ConsultationRequest(BaseModel):
    """API request to run a multi-specialist consultation."""
    case_input: CaseInput
    specialists: List[str] = Field(
        default_factory=list,
        description="Specialty tags or aliases; empty lets triage routing pick from data completeness",
    )
    options: ConsultationOptions = Field(default_factory=ConsultationOptions)


class OutcomeSubmission(BaseModel):
    """API request carrying observed outcomes from one ground-truth source."""
    outcomes: Dict[str, Any] = Field(..., description="dimension name → observed value")
