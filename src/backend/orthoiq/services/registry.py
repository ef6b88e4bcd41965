"""
Specialist Registry — specialty tag → agent, availability and call metrics.

Dispatch is always by :class:`SpecialtyTag`. Free-text names coming from
API requests or from agents' questions are normalised through
:func:`normalize_tag`, which accepts the common aliases (``painWhisperer``,
``pain``, ``pain-whisperer`` → ``pain_whisperer``).
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from orthoiq.agent.specialists import SpecialistAgent
from orthoiq.config import settings
from orthoiq.models.schemas import SpecialtyTag

logger = logging.getLogger(__name__)

_ALIASES: Dict[str, SpecialtyTag] = {
    "triage": SpecialtyTag.TRIAGE,
    "orthotriage": SpecialtyTag.TRIAGE,
    "pain": SpecialtyTag.PAIN,
    "painwhisperer": SpecialtyTag.PAIN,
    "movement": SpecialtyTag.MOVEMENT,
    "movementdetective": SpecialtyTag.MOVEMENT,
    "strength": SpecialtyTag.STRENGTH,
    "strengthsage": SpecialtyTag.STRENGTH,
    "mind": SpecialtyTag.MIND,
    "mindmender": SpecialtyTag.MIND,
}


def normalize_tag(value) -> Optional[SpecialtyTag]:
    """Map a tag, alias or display name onto a SpecialtyTag; None if unrecognised."""
    if isinstance(value, SpecialtyTag):
        return value
    if not isinstance(value, str):
        return None
    return _ALIASES.get(re.sub(r"[^a-z]", "", value.lower()))


@dataclass
class AgentMetrics:
    """Running call statistics for one registered agent."""
    consultations: int = 0
    successes: int = 0
    total_response_ms: int = 0
    active: int = 0

    @property
    def success_rate(self) -> float:
        return self.successes / self.consultations if self.consultations else 0.0

    @property
    def average_response_ms(self) -> float:
        return self.total_response_ms / self.consultations if self.consultations else 0.0

    def to_dict(self) -> dict:
        return {
            "consultations": self.consultations,
            "successes": self.successes,
            "success_rate": round(self.success_rate, 3),
            "average_response_ms": round(self.average_response_ms),
            "active": self.active,
        }


class SpecialistRegistry:
    """Holds at most one agent per specialty tag."""

    def __init__(self, max_active_per_agent: Optional[int] = None):
        self._agents: Dict[str, SpecialistAgent] = {}
        self._available: Dict[str, bool] = {}
        self._metrics: Dict[str, AgentMetrics] = {}
        self.max_active_per_agent = max_active_per_agent or settings.max_active_consultations_per_agent

    def register(self, agent: SpecialistAgent, available: bool = True) -> None:
        tag = agent.specialty.value
        if tag in self._agents:
            logger.warning("Replacing registered %s agent %s with %s", tag, self._agents[tag].agent_id, agent.agent_id)
        self._agents[tag] = agent
        self._available[tag] = available
        self._metrics.setdefault(tag, AgentMetrics())

    def set_available(self, tag: SpecialtyTag, available: bool) -> None:
        if tag.value in self._agents:
            self._available[tag.value] = available

    def get(self, tag) -> Optional[SpecialistAgent]:
        """The agent for a tag or alias, regardless of availability."""
        resolved = normalize_tag(tag)
        return self._agents.get(resolved.value) if resolved else None

    def is_available(self, tag: SpecialtyTag) -> bool:
        if not self._available.get(tag.value, False):
            return False
        return self._metrics[tag.value].active < self.max_active_per_agent

    def resolve(self, requested: Iterable[str]) -> List[Tuple[SpecialtyTag, SpecialistAgent]]:
        """
        Resolve requested tags to available agents, preserving request order.

        Unknown, duplicate or unavailable tags are dropped.
        """
        resolved: List[Tuple[SpecialtyTag, SpecialistAgent]] = []
        seen = set()
        for name in requested:
            tag = normalize_tag(name)
            if tag is None:
                logger.warning("Unknown specialist requested: %s", name)
                continue
            if tag in seen:
                continue
            seen.add(tag)
            if tag.value not in self._agents or not self.is_available(tag):
                logger.info("Specialist %s not available", tag.value)
                continue
            resolved.append((tag, self._agents[tag.value]))
        return resolved

    def agents(self) -> List[SpecialistAgent]:
        return list(self._agents.values())

    def by_agent_id(self, agent_id: str) -> Optional[SpecialistAgent]:
        for agent in self._agents.values():
            if agent.agent_id == agent_id:
                return agent
        return None

    # ──────────────────────────────────────────────
    # Call metrics
    # ──────────────────────────────────────────────

    def begin_call(self, tag: SpecialtyTag) -> None:
        self._metrics.setdefault(tag.value, AgentMetrics()).active += 1

    def record_call(self, tag: SpecialtyTag, success: bool, latency_ms: int) -> None:
        m = self._metrics.setdefault(tag.value, AgentMetrics())
        m.active = max(0, m.active - 1)
        m.consultations += 1
        m.total_response_ms += latency_ms
        if success:
            m.successes += 1

    def metrics(self, tag: SpecialtyTag) -> AgentMetrics:
        return self._metrics.setdefault(tag.value, AgentMetrics())

    def metrics_for_agent(self, agent_id: str) -> Optional[AgentMetrics]:
        agent = self.by_agent_id(agent_id)
        return self._metrics.get(agent.specialty.value) if agent else None

    def summary(self) -> Dict[str, dict]:
        return {
            tag: {
                "agent_id": agent.agent_id,
                "name": agent.name,
                "available": self.is_available(agent.specialty),
                **self._metrics[tag].to_dict(),
            }
            for tag, agent in self._agents.items()
        }
