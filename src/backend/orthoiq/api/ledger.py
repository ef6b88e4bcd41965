"""Token balance lookup."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from orthoiq.agent.orchestrator import ConsultationOrchestrator
from orthoiq.api.dependencies import get_orchestrator
from orthoiq.services.ledger import InMemoryTokenLedger

router = APIRouter()


@router.get("/{agent_id}")
async def agent_balance(agent_id: str, limit: int = 20, orchestrator: ConsultationOrchestrator = Depends(get_orchestrator)):
    ledger = orchestrator.ledger
    body = {"agent_id": agent_id, "balance": ledger.balance(agent_id)}
    if isinstance(ledger, InMemoryTokenLedger):
        body["transactions"] = [
            {
                "transaction_id": t.transaction_id,
                "amount": t.amount,
                "reason": t.reason,
                "balance_after": t.balance_after,
                "timestamp": t.timestamp,
            }
            for t in ledger.transactions_for(agent_id)[:limit]
        ]
    return body
