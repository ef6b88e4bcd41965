"""
Token Ledger — tracks each agent's token balance.

The orchestrator and the prediction market only compute amounts; moving
them is delegated to whatever implements :class:`TokenLedger`. The
in-memory ledger here keeps a running transaction log so fee accruals and
prediction payouts can be audited per agent.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Protocol

logger = logging.getLogger(__name__)


class TokenLedger(Protocol):
    def credit(self, agent_id: str, amount: int, reason: str = "") -> int:
        """Add tokens; returns the new balance."""

    def debit(self, agent_id: str, amount: int, reason: str = "") -> int:
        """Remove tokens (never below zero); returns the new balance."""

    def balance(self, agent_id: str) -> int:
        """Current balance; unknown agents have zero."""


@dataclass
class LedgerTransaction:
    """Record of a single balance movement."""
    transaction_id: str
    agent_id: str
    amount: int                            # signed: credits > 0, debits < 0
    reason: str
    balance_after: int
    timestamp: float = 0.0


@dataclass
class InMemoryTokenLedger:
    """
    Running ledger of agent balances.

    Debits clamp at zero, so the recorded amount of a debit is the amount
    actually removed.
    """
    initial_balances: Dict[str, int] = field(default_factory=dict)
    transactions: List[LedgerTransaction] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._balances: Dict[str, int] = dict(self.initial_balances)

    def open_account(self, agent_id: str, initial_balance: int = 0) -> None:
        """Register an agent with a starting balance; existing accounts are left untouched."""
        self._balances.setdefault(agent_id, initial_balance)

    def credit(self, agent_id: str, amount: int, reason: str = "") -> int:
        if amount < 0:
            raise ValueError(f"credit amount must be non-negative, got {amount}")
        new_balance = self._balances.get(agent_id, 0) + amount
        self._balances[agent_id] = new_balance
        self._record(agent_id, amount, reason, new_balance)
        logger.debug("Credited %d tokens to %s (%s) → %d", amount, agent_id, reason or "unspecified", new_balance)
        return new_balance

    def debit(self, agent_id: str, amount: int, reason: str = "") -> int:
        if amount < 0:
            raise ValueError(f"debit amount must be non-negative, got {amount}")
        current = self._balances.get(agent_id, 0)
        removed = min(current, amount)
        new_balance = current - removed
        self._balances[agent_id] = new_balance
        self._record(agent_id, -removed, reason, new_balance)
        logger.debug("Debited %d tokens from %s (%s) → %d", removed, agent_id, reason or "unspecified", new_balance)
        return new_balance

    def balance(self, agent_id: str) -> int:
        return self._balances.get(agent_id, 0)

    def balances(self) -> Dict[str, int]:
        return dict(self._balances)

    def transactions_for(self, agent_id: str) -> List[LedgerTransaction]:
        """All movements for one agent, newest first."""
        return sorted(
            (t for t in self.transactions if t.agent_id == agent_id),
            key=lambda t: t.timestamp,
            reverse=True,
        )

    def _record(self, agent_id: str, amount: int, reason: str, balance_after: int) -> None:
        self.transactions.append(LedgerTransaction(
            transaction_id=f"txn_{uuid.uuid4().hex[:8]}",
            agent_id=agent_id,
            amount=amount,
            reason=reason,
            balance_after=balance_after,
            timestamp=time.time(),
        ))
