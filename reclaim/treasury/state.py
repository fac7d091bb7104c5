"""
Treasury — the shared reward pool
---------------------------------

Single spendable balance from which cleanup rewards are paid. The treasury is
the only component that mutates the pool balance, and it maintains:

  • balance == total_funded - total_paid        (conservation)
  • balance >= 0                                 (payouts never overdraw)

Every movement is appended to an in-memory journal (`TreasuryEntry`) for
reconciliation. Value leaving the pool is handed to a `PayoutSink`; the default
`RecordingSink` only remembers transfers, while a deployment can plug a wallet
or bridge adapter in its place.

`debit` is internal: it is called by the claim engine and by
`emergency_withdraw`, never by external callers directly (the service facade
does not expose it).

Amounts are integer base units. A coarse `threading.RLock` protects mutations.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from threading import RLock
from typing import Dict, Iterable, List, Literal, Optional, Protocol, Tuple, runtime_checkable

from reclaim.access import AccessGuard
from reclaim.errors import InsufficientFunds, InvalidAmount, ReclaimError

log = logging.getLogger(__name__)

Amount = int
Height = int
OpName = Literal["fund", "payout", "emergency_withdraw"]


@runtime_checkable
class PayoutSink(Protocol):
    """Receives value leaving the pool (wallet/bridge adapters implement this)."""

    def pay(self, to: str, amount: Amount, *, reason: str) -> None:
        ...


@dataclass
class RecordingSink:
    """Default sink: keeps an ordered list of (to, amount, reason) transfers."""
    transfers: List[Tuple[str, Amount, str]] = field(default_factory=list)

    def pay(self, to: str, amount: Amount, *, reason: str) -> None:
        self.transfers.append((to, amount, reason))

    def total_to(self, to: str) -> Amount:
        return sum(a for t, a, _ in self.transfers if t == to)


@dataclass(frozen=True)
class TreasuryEntry:
    seq: int
    op: OpName
    amount: Amount
    counterparty: str
    height: Height
    reason: str = ""
    balance_after: Amount = 0

    def to_dict(self) -> Dict:
        return asdict(self)

    @staticmethod
    def from_dict(d: Dict) -> "TreasuryEntry":
        return TreasuryEntry(
            seq=int(d["seq"]),
            op=d["op"],
            amount=int(d["amount"]),
            counterparty=str(d["counterparty"]),
            height=int(d["height"]),
            reason=str(d.get("reason", "")),
            balance_after=int(d.get("balance_after", 0)),
        )


def _ensure_positive(x: int, name: str) -> None:
    if isinstance(x, bool) or not isinstance(x, int) or x <= 0:
        raise InvalidAmount(f"{name} must be a positive integer", details={name: x})


class Treasury:
    """
    Pool balance with fund / debit / emergency_withdraw.

    Usage:
      treasury = Treasury(guard, fund_owner_only=False)
      treasury.fund("anim1sponsor", 10_000, height=h)
      treasury.debit(250, to="anim1alice", height=h, reason="claim")
    """

    def __init__(
        self,
        guard: AccessGuard,
        *,
        fund_owner_only: bool = False,
        sink: Optional[PayoutSink] = None,
    ) -> None:
        self._guard = guard
        self._fund_owner_only = fund_owner_only
        self.sink: PayoutSink = sink if sink is not None else RecordingSink()
        self._balance: Amount = 0
        self._total_funded: Amount = 0
        self._total_paid: Amount = 0
        self._journal: List[TreasuryEntry] = []
        self._lock = RLock()

    # --- load/save ---

    def dump(self) -> Dict:
        with self._lock:
            return {
                "balance": self._balance,
                "total_funded": self._total_funded,
                "total_paid": self._total_paid,
                "journal": [e.to_dict() for e in self._journal],
            }

    @classmethod
    def load(
        cls,
        guard: AccessGuard,
        data: Dict,
        *,
        fund_owner_only: bool = False,
        sink: Optional[PayoutSink] = None,
    ) -> "Treasury":
        t = cls(guard, fund_owner_only=fund_owner_only, sink=sink)
        t._balance = int(data.get("balance", 0))
        t._total_funded = int(data.get("total_funded", 0))
        t._total_paid = int(data.get("total_paid", 0))
        t._journal = [TreasuryEntry.from_dict(e) for e in data.get("journal") or []]
        t.assert_consistent()
        return t

    # --- introspection ---

    @property
    def balance(self) -> Amount:
        return self._balance

    @property
    def total_funded(self) -> Amount:
        return self._total_funded

    @property
    def total_paid(self) -> Amount:
        return self._total_paid

    @property
    def fund_owner_only(self) -> bool:
        return self._fund_owner_only

    @property
    def lock(self):
        return self._lock

    def journal(self) -> Iterable[TreasuryEntry]:
        return tuple(self._journal)

    def can_cover(self, amount: Amount) -> bool:
        return 0 <= amount <= self._balance

    # --- mutations (all locked) ---

    def fund(self, caller: str, amount: Amount, *, height: Height) -> TreasuryEntry:
        _ensure_positive(amount, "amount")
        with self._lock:
            if self._fund_owner_only:
                self._guard.require_owner(caller)
            self._balance += amount
            self._total_funded += amount
            je = self._append("fund", amount, caller, height, "fund")
            log.info("treasury: funded by=%s amount=%d balance=%d", caller, amount, self._balance)
            return je

    def debit(self, amount: Amount, *, to: str, height: Height, reason: str) -> TreasuryEntry:
        """Pay `amount` out of the pool to `to`. Internal: claim engine and emergency path only."""
        _ensure_positive(amount, "amount")
        with self._lock:
            if amount > self._balance:
                raise InsufficientFunds(requested=amount, available=self._balance)
            self.sink.pay(to, amount, reason=reason)
            self._balance -= amount
            self._total_paid += amount
            op: OpName = "emergency_withdraw" if reason == "emergency_withdraw" else "payout"
            je = self._append(op, amount, to, height, reason)
            log.info("treasury: paid to=%s amount=%d reason=%s balance=%d", to, amount, reason, self._balance)
            return je

    def emergency_withdraw(self, caller: str, amount: Amount, *, height: Height) -> TreasuryEntry:
        """Owner-only drain of `amount` to the owner."""
        with self._lock:
            self._guard.require_owner(caller)
            _ensure_positive(amount, "amount")
            if amount > self._balance:
                raise InsufficientFunds(requested=amount, available=self._balance)
            log.warning("treasury: emergency withdrawal amount=%d by owner", amount)
            return self.debit(amount, to=self._guard.owner, height=height, reason="emergency_withdraw")

    # --- utilities ---

    def _append(self, op: OpName, amount: Amount, counterparty: str, height: Height, reason: str) -> TreasuryEntry:
        je = TreasuryEntry(
            seq=len(self._journal) + 1,
            op=op,
            amount=amount,
            counterparty=counterparty,
            height=height,
            reason=reason,
            balance_after=self._balance,
        )
        self._journal.append(je)
        return je

    def assert_consistent(self) -> None:
        with self._lock:
            if self._balance < 0:
                raise ReclaimError("treasury balance is negative", details={"balance": self._balance})
            if self._balance != self._total_funded - self._total_paid:
                raise ReclaimError(
                    "treasury conservation violated",
                    details={
                        "balance": self._balance,
                        "funded": self._total_funded,
                        "paid": self._total_paid,
                    },
                )


__all__ = ["PayoutSink", "RecordingSink", "TreasuryEntry", "Treasury"]
