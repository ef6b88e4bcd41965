"""In-memory repositories. State lives for the lifetime of the process."""

from __future__ import annotations

from typing import Dict, List, Optional

from orthoiq.models.schemas import (
    AgentPerformanceRecord,
    Consultation,
    PredictionSet,
    Resolution,
    ResolutionHistoryEntry,
)


class InMemoryConsultationRepository:
    def __init__(self) -> None:
        self._consultations: Dict[str, Consultation] = {}

    def save(self, consultation: Consultation) -> None:
        self._consultations[consultation.consultation_id] = consultation

    def get(self, consultation_id: str) -> Optional[Consultation]:
        return self._consultations.get(consultation_id)

    def list_ids(self) -> List[str]:
        return list(self._consultations.keys())


class InMemoryMarketRepository:
    def __init__(self) -> None:
        self._predictions: Dict[str, PredictionSet] = {}
        self._resolutions: Dict[str, Resolution] = {}
        self._performance: Dict[str, AgentPerformanceRecord] = {}
        self._history: List[ResolutionHistoryEntry] = []

    def get_predictions(self, consultation_id: str) -> Optional[PredictionSet]:
        return self._predictions.get(consultation_id)

    def save_predictions(self, predictions: PredictionSet) -> None:
        self._predictions[predictions.consultation_id] = predictions

    def count_predictions(self) -> int:
        return len(self._predictions)

    def get_resolution(self, consultation_id: str) -> Optional[Resolution]:
        return self._resolutions.get(consultation_id)

    def save_resolution(self, resolution: Resolution) -> None:
        self._resolutions[resolution.consultation_id] = resolution

    def count_resolutions(self) -> int:
        return len(self._resolutions)

    def get_performance(self, agent_id: str) -> Optional[AgentPerformanceRecord]:
        return self._performance.get(agent_id)

    def save_performance(self, record: AgentPerformanceRecord) -> None:
        self._performance[record.agent_id] = record

    def all_performance(self) -> List[AgentPerformanceRecord]:
        return list(self._performance.values())

    def append_history(self, entry: ResolutionHistoryEntry) -> None:
        self._history.append(entry)

    def history(self, limit: Optional[int] = None) -> List[ResolutionHistoryEntry]:
        if limit is None:
            return list(self._history)
        return self._history[-limit:] if limit > 0 else []
