"""
Consultation Orchestrator — runs one multi-specialist consultation.

Pipeline:
  1. Resolve requested specialty tags to available agents (or route by
     data completeness when none are requested)
  2. Spawn background work: prediction initiation and fee accrual
  3. Fan out to every specialist concurrently, each call under its own timeout
       normal mode: wait for all calls to settle
       fast mode:   return once ``min_responses`` calls have succeeded;
                    the rest keep running in the background
  4. Dialogue conference when at least two responses were collected
  5. Inter-agent prediction resolution (background, after initiation)
  6. Synthesis into a phased plan

The whole run is bounded by an outer deadline. Specialist failures and
timeouts degrade into failed responses; only the fatal errors in
``orthoiq.agent.errors`` reach the caller.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from orthoiq.agent.background import BackgroundTasks
from orthoiq.agent.errors import (
    ConsultationError,
    ConsultationTimedOut,
    NoSpecialistsAvailable,
    SpecialistCallFailed,
    SpecialistCallTimedOut,
)
from orthoiq.agent.specialists import SpecialistAgent
from orthoiq.config import settings
from orthoiq.models.schemas import (
    CaseInput,
    ConferenceMetadata,
    Consultation,
    ConsultationMode,
    ConsultationOptions,
    ConsultationResult,
    ConsultationStatus,
    CoordinationSummary,
    InitiationSummary,
    ResolutionSource,
    ResponseStatus,
    Severity,
    SpecialistResponse,
    SpecialtyTag,
    TriageRouting,
)
from orthoiq.services.ledger import TokenLedger
from orthoiq.services.registry import SpecialistRegistry
from orthoiq.storage.base import ConsultationRepository
from orthoiq.storage.memory import InMemoryConsultationRepository
from orthoiq.tools.case_metrics import data_completeness, round_half_up
from orthoiq.tools.conference import DialogueConference
from orthoiq.tools.fees import accrue_fees
from orthoiq.tools.prediction_market import PredictionMarket
from orthoiq.tools.routing import route_case
from orthoiq.tools.synthesis import synthesize_plan

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Scoring helpers
# ──────────────────────────────────────────────

def inter_agent_outcomes(
    coordination: Optional[ConferenceMetadata], responses: Iterable[SpecialistResponse]
) -> Dict[str, object]:
    """Baseline outcomes the panel can infer about itself right after a consultation."""
    disagreements = coordination.disagreements if coordination else []
    confidences = [r.confidence for r in responses if r.succeeded]
    mean_confidence = sum(confidences) / len(confidences) if confidences else 0.0
    agreement = max(0.3, 1 - 0.2 * len(disagreements))
    return {
        "inter_agent_agreement": round(agreement, 3),
        "user_satisfaction": agreement >= 0.6 and mean_confidence >= 0.6,
        "md_approval": (
            not any(d.severity == Severity.HIGH for d in disagreements)
            and mean_confidence >= 0.7
        ),
    }


def coordination_summary(responses: Dict[str, SpecialistResponse], duration_ms: int) -> CoordinationSummary:
    items = list(responses.values())
    total = len(items)
    successful = sum(1 for r in items if r.succeeded)
    success_rate = successful / total if total else 0.0

    avg_confidence = (sum(r.confidence for r in items if r.confidence) / total if total else 0.0) or 0.5
    avg_latency = (sum(r.latency_ms for r in items if r.latency_ms) / total if total else 0.0) or 5000
    time_score = max(0.0, (10000 - avg_latency) / 10000)

    return CoordinationSummary(
        total_specialists=total,
        successful_responses=successful,
        success_rate=round_half_up(success_rate * 100),
        duration_ms=duration_ms,
        quality_score=round_half_up(success_rate * 40 + avg_confidence * 30 + time_score * 30),
    )


class ConsultationOrchestrator:
    """
    Orchestrates specialist consultations.

    Usage:
        orchestrator = ConsultationOrchestrator(registry, ledger)
        result = await orchestrator.run(case, ["triage", "pain_whisperer"])
        await orchestrator.join_background()
    """

    def __init__(
        self,
        registry: SpecialistRegistry,
        ledger: TokenLedger,
        market: Optional[PredictionMarket] = None,
        conference: Optional[DialogueConference] = None,
        consultations: Optional[ConsultationRepository] = None,
        background: Optional[BackgroundTasks] = None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.market = market or PredictionMarket(ledger)
        self.conference = conference or DialogueConference()
        self.consultations: ConsultationRepository = consultations or InMemoryConsultationRepository()
        self.background = background or BackgroundTasks()
        self.coordination_history: List[dict] = []
        # prediction initiation per consultation, until its inter-agent resolution is spawned
        self._initiations: Dict[str, asyncio.Task] = {}

    # ──────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────

    async def run(
        self,
        case_input: CaseInput,
        specialist_tags: Optional[List[str]] = None,
        options: Optional[ConsultationOptions] = None,
    ) -> ConsultationResult:
        """
        Run a consultation end to end.

        With no ``specialist_tags`` the panel is picked by triage routing.

        Raises:
            NoSpecialistsAvailable: no requested tag maps to an available agent.
            NoSuccessfulResponses: every specialist failed.
            ConsultationTimedOut: the outer deadline expired.
        """
        options = options or ConsultationOptions(mode=settings.default_mode)
        deadline = options.deadline_seconds or settings.consultation_deadline_seconds
        consultation_id = f"consult_{uuid.uuid4().hex[:12]}"
        start = time.monotonic()

        try:
            result = await asyncio.wait_for(
                self._run(consultation_id, case_input, specialist_tags, options, start),
                timeout=deadline,
            )
        except asyncio.TimeoutError:
            logger.error("Consultation %s exceeded its %.0fs deadline", consultation_id, deadline)
            self._close_failed(consultation_id, ConsultationStatus.TIMED_OUT)
            self._record_history(consultation_id, options.mode, start, success=False)
            raise ConsultationTimedOut(consultation_id, deadline)
        except ConsultationError as e:
            logger.error("Consultation %s failed: %s", consultation_id, e)
            self._close_failed(consultation_id, ConsultationStatus.FAILED)
            self._record_history(consultation_id, options.mode, start, success=False)
            raise

        self._record_history(consultation_id, options.mode, start, success=True,
                             specialists=result.participating_specialists)
        return result

    def get(self, consultation_id: str) -> Optional[Consultation]:
        return self.consultations.get(consultation_id)

    def list_consultations(self) -> List[str]:
        return self.consultations.list_ids()

    async def join_background(self, timeout: Optional[float] = None) -> bool:
        """Wait for detached work (predictions, fees, fast-mode stragglers)."""
        return await self.background.join(timeout)

    async def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        if self.background.pending:
            logger.info("Waiting for %d background tasks", self.background.pending)
        if not await self.background.join(timeout):
            logger.warning("Shutdown with %d background tasks still running", self.background.pending)

    def coordination_statistics(self) -> dict:
        total = len(self.coordination_history)
        successful = sum(1 for c in self.coordination_history if c["success"])
        usage: Dict[str, int] = {}
        for c in self.coordination_history:
            for tag in c["specialists_involved"]:
                usage[tag] = usage.get(tag, 0) + 1
        stored = (self.consultations.get(cid) for cid in self.consultations.list_ids())
        active = sum(1 for c in stored if c is not None and c.status == ConsultationStatus.IN_PROGRESS)
        return {
            "total_consultations": total,
            "success_rate": successful / total * 100 if total else 0.0,
            "average_duration_ms": sum(c["duration_ms"] for c in self.coordination_history) / total if total else 0.0,
            "specialist_usage": usage,
            "performance_metrics": self.registry.summary(),
            "active_consultations": active,
            "conference": self.conference.statistics(),
            "background_pending": self.background.pending,
        }

    # ──────────────────────────────────────────────
    # Pipeline
    # ──────────────────────────────────────────────

    async def _run(
        self,
        consultation_id: str,
        case_input: CaseInput,
        specialist_tags: Optional[List[str]],
        options: ConsultationOptions,
        start: float,
    ) -> ConsultationResult:
        # ── Step 1: Resolve specialists (triage routing when none were named) ──
        routing: Optional[TriageRouting] = None
        if not specialist_tags:
            routing = route_case(case_input)
            specialist_tags = [tag.value for tag in routing.selected_specialists]

        resolved = self.registry.resolve(specialist_tags)
        if not resolved:
            raise NoSpecialistsAvailable(specialist_tags)

        consultation = Consultation(
            consultation_id=consultation_id,
            case_input=case_input,
            requested_specialists=list(specialist_tags),
            available_specialists=[tag for tag, _ in resolved],
            mode=options.mode,
            routing=routing,
        )
        self.consultations.save(consultation)
        agents = [agent for _, agent in resolved]
        logger.info(
            "Consultation %s started (%s mode): %s",
            consultation_id, options.mode.value, ", ".join(t.value for t, _ in resolved),
        )

        # ── Step 2: Background bookkeeping ──
        self._initiations[consultation_id] = self.background.spawn(
            self._initiate_predictions(consultation_id, case_input, agents, options.mode),
            name=f"predictions:{consultation_id}",
        )
        self.background.spawn(
            self._accrue_fees(consultation_id, case_input, agents),
            name=f"fees:{consultation_id}",
        )

        # ── Step 3: Fan out ──
        timeout = options.timeout_seconds or settings.specialist_timeout_seconds
        calls = [
            asyncio.ensure_future(self._call_specialist(consultation, tag, agent, timeout))
            for tag, agent in resolved
        ]
        if options.mode == ConsultationMode.FAST:
            quorum = min(options.min_responses or settings.default_min_responses, len(calls))
            await self._collect_fast(consultation_id, calls, quorum)
        else:
            await asyncio.gather(*calls)

        collected = dict(consultation.responses)

        # ── Step 4: Dialogue conference ──
        coordination: Optional[ConferenceMetadata] = None
        if len(collected) >= 2:
            coordination = await self.conference.conduct_round(collected, self.registry, case_input)

        # ── Step 5: Inter-agent resolution ──
        self._spawn_inter_agent_resolution(consultation_id, coordination, list(collected.values()))

        # ── Step 6: Synthesis ──
        plan = synthesize_plan(consultation_id, collected, coordination)

        consultation.status = ConsultationStatus.COMPLETED
        consultation.completed_at = datetime.utcnow()
        self.consultations.save(consultation)

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Consultation %s completed in %dms: %d/%d responses",
            consultation_id, duration_ms, len(plan.participating_specialists), len(resolved),
        )
        return ConsultationResult(
            consultation_id=consultation_id,
            mode=options.mode,
            status=consultation.status,
            synthesized_plan=plan,
            responses=collected,
            participating_specialists=plan.participating_specialists,
            requested_specialists=list(specialist_tags),
            routing=routing,
            coordination=coordination,
            coordination_summary=coordination_summary(collected, duration_ms),
            background_pending=self.background.pending,
        )

    async def _collect_fast(self, consultation_id: str, calls: List[asyncio.Task], quorum: int) -> None:
        """
        Wait until ``quorum`` calls have succeeded (or all have finished).

        Which specialists make the cut depends on arrival order. Calls still
        running are handed to the background tracker and keep writing into
        the consultation's response map.
        """
        pending: Set[asyncio.Task] = set(calls)
        successes = 0
        try:
            while pending and successes < quorum:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                successes += sum(1 for t in done if t.result().succeeded)
        finally:
            for task in pending:
                task.set_name(f"straggler:{consultation_id}")
                self.background.track(task)
        if pending:
            logger.info(
                "Fast mode quorum reached for %s; %d specialists continue in background",
                consultation_id, len(pending),
            )

    async def _call_specialist(
        self,
        consultation: Consultation,
        tag: SpecialtyTag,
        agent: SpecialistAgent,
        timeout: float,
    ) -> SpecialistResponse:
        """One specialist call. Never raises except on cancellation."""
        self.registry.begin_call(tag)
        start = time.monotonic()
        case = consultation.case_input
        error: Optional[str] = None
        assessment = None

        try:
            assessment = await asyncio.wait_for(agent.assess(case), timeout=timeout)
        except asyncio.TimeoutError:
            error = str(SpecialistCallTimedOut(tag.value, timeout))
        except asyncio.CancelledError:
            self.registry.record_call(tag, False, int((time.monotonic() - start) * 1000))
            raise
        except Exception as e:
            error = str(SpecialistCallFailed(tag.value, e))

        latency_ms = int((time.monotonic() - start) * 1000)
        if assessment is not None:
            confidence = assessment.confidence
            if confidence is None:
                confidence = agent.confidence(case.primary_complaint)
            response = SpecialistResponse(
                specialist=tag,
                agent_id=agent.agent_id,
                name=agent.name,
                assessment=assessment,
                confidence=confidence,
                data_completeness=data_completeness(case, tag),
                status=ResponseStatus.SUCCESS,
                latency_ms=latency_ms,
            )
        else:
            logger.warning("Specialist call failed in %s: %s", consultation.consultation_id, error)
            response = SpecialistResponse(
                specialist=tag,
                agent_id=agent.agent_id,
                name=agent.name,
                data_completeness=data_completeness(case, tag),
                status=ResponseStatus.FAILED,
                error=error,
                latency_ms=latency_ms,
            )

        self.registry.record_call(tag, response.succeeded, latency_ms)
        consultation.responses[tag.value] = response
        return response

    # ──────────────────────────────────────────────
    # Background work
    # ──────────────────────────────────────────────

    async def _initiate_predictions(
        self,
        consultation_id: str,
        case_input: CaseInput,
        agents: List[SpecialistAgent],
        mode: ConsultationMode,
    ) -> InitiationSummary:
        if mode == ConsultationMode.FAST:
            # triage predicts first; everyone else is merged in afterwards
            first = next((a for a in agents if a.specialty == SpecialtyTag.TRIAGE), agents[0])
            self.market.initiate(consultation_id, case_input, [first])
            await asyncio.sleep(0)
        summary = self.market.initiate(consultation_id, case_input, agents)
        if summary.recommend_md_review:
            logger.info("Consultation %s recommended for MD review (%d specialists)",
                        consultation_id, summary.specialist_count)
        return summary

    async def _accrue_fees(self, consultation_id: str, case_input: CaseInput, agents: List[SpecialistAgent]) -> None:
        accrue_fees(consultation_id, case_input, agents, self.ledger, self.registry)

    def _spawn_inter_agent_resolution(
        self,
        consultation_id: str,
        coordination: Optional[ConferenceMetadata],
        responses: List[SpecialistResponse],
    ) -> None:
        initiation = self._initiations.pop(consultation_id, None)
        if initiation is None:
            return
        self.background.spawn(
            self._resolve_inter_agent(consultation_id, initiation, coordination, responses),
            name=f"inter_agent_resolution:{consultation_id}",
        )

    def _close_failed(self, consultation_id: str, status: ConsultationStatus) -> None:
        """
        Mark an aborted consultation terminal and still resolve its stakes.

        Runs when the deadline fires or a fatal error escapes the pipeline.
        The panel is scored on whatever responses arrived, without a conference.
        """
        consultation = self.consultations.get(consultation_id)
        if consultation is None:
            return
        consultation.status = status
        consultation.completed_at = datetime.utcnow()
        self.consultations.save(consultation)
        self._spawn_inter_agent_resolution(consultation_id, None, list(consultation.responses.values()))

    async def _resolve_inter_agent(
        self,
        consultation_id: str,
        initiation: asyncio.Task,
        coordination: Optional[ConferenceMetadata],
        responses: List[SpecialistResponse],
    ) -> None:
        await initiation
        outcomes = inter_agent_outcomes(coordination, responses)
        self.market.resolve_source(consultation_id, ResolutionSource.INTER_AGENT, outcomes)

    def _record_history(
        self,
        consultation_id: str,
        mode: ConsultationMode,
        start: float,
        success: bool,
        specialists: Optional[List[str]] = None,
    ) -> None:
        self.coordination_history.append({
            "consultation_id": consultation_id,
            "mode": mode.value,
            "success": success,
            "specialists_involved": specialists or [],
            "duration_ms": int((time.monotonic() - start) * 1000),
            "timestamp": datetime.utcnow().isoformat(),
        })
