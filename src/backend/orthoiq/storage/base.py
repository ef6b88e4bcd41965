"""Repository interfaces for consultation and market state."""

from __future__ import annotations

from typing import List, Optional, Protocol

from orthoiq.models.schemas import (
    AgentPerformanceRecord,
    Consultation,
    PredictionSet,
    Resolution,
    ResolutionHistoryEntry,
)


class ConsultationRepository(Protocol):
    def save(self, consultation: Consultation) -> None:
        """Insert or replace a consultation by id."""

    def get(self, consultation_id: str) -> Optional[Consultation]:
        """Return the consultation, or None if unknown."""

    def list_ids(self) -> List[str]:
        """Return every stored consultation id."""


class MarketRepository(Protocol):
    def get_predictions(self, consultation_id: str) -> Optional[PredictionSet]:
        """Return the prediction set for a consultation."""

    def save_predictions(self, predictions: PredictionSet) -> None:
        """Insert or replace a prediction set by consultation id."""

    def count_predictions(self) -> int:
        """Number of consultations with a prediction set."""

    def get_resolution(self, consultation_id: str) -> Optional[Resolution]:
        """Return the most recent resolution for a consultation."""

    def save_resolution(self, resolution: Resolution) -> None:
        """Replace the stored resolution for the consultation."""

    def count_resolutions(self) -> int:
        """Number of consultations resolved at least once."""

    def get_performance(self, agent_id: str) -> Optional[AgentPerformanceRecord]:
        """Return the running performance record for an agent."""

    def save_performance(self, record: AgentPerformanceRecord) -> None:
        """Insert or replace an agent's performance record."""

    def all_performance(self) -> List[AgentPerformanceRecord]:
        """Every performance record."""

    def append_history(self, entry: ResolutionHistoryEntry) -> None:
        """Record one resolution event."""

    def history(self, limit: Optional[int] = None) -> List[ResolutionHistoryEntry]:
        """Resolution events, oldest first; the last ``limit`` if given."""
