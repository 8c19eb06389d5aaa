"""
Guardian-driven social recovery.

Recovery moves a wallet to a new owner when a majority of its guardians
agree. It runs in two phases separated by ``recovery_period``:

1. ``execute_recovery``: relayed with a guardian quorum. Locks the wallet for
   ``lock_period`` and records the candidate owner.
2. ``finalize_recovery``: anyone, once the recovery period is over. Sets the
   owner and lifts the recovery lock.

While pending, the owner or a guardian quorum can ``cancel_recovery``.
The recovery lock is held by this module, so the guardian LockManager
cannot lift it.

State per wallet: none -> pending -> (finalizable) -> none.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..abi import external
from ..chain import ZERO_ADDRESS, LocalChain, normalize_address
from ..config import CustodySettings
from ..events import EventType
from ..exceptions import PendingWindowViolationError, PolicyNotSatisfiedError, ValidationError
from ..guardians import GuardianStore
from ..policy import SignerPolicy, guardian_quorum
from ..registry import ModuleRegistry
from ..wallet import Wallet
from .base import BaseModule, wallet_entrypoint

logger = logging.getLogger(__name__)


class RecoveryStatus(str, Enum):
    """Recovery phase of a wallet."""
    NONE = "none"
    PENDING = "pending"  # Waiting for the recovery period to end
    FINALIZABLE = "finalizable"


@dataclass
class PendingRecovery:
    """An ongoing recovery for one wallet."""
    wallet: str
    candidate_owner: str
    execute_after: int
    guardian_count: int
    guardian_approvals: List[str] = field(default_factory=list)
    created_at: int = 0

    def is_finalizable(self, now: int) -> bool:
        return now >= self.execute_after

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RecoveryManagerState:
    recoveries: Dict[str, PendingRecovery] = field(default_factory=dict)


class RecoveryManager(BaseModule):
    """Two-phase recovery plus guardian-approved ownership transfer."""

    lock_precedence = 1

    def __init__(
        self,
        chain: LocalChain,
        registry: ModuleRegistry,
        guardian_store: GuardianStore,
        recovery_period: Optional[int] = None,
        lock_period: Optional[int] = None,
        name: str = "RecoveryManager",
        settings: Optional[CustodySettings] = None,
        address: Optional[str] = None,
    ):
        super().__init__(
            chain, registry, guardian_store, name=name, settings=settings, address=address
        )
        self.recovery_period = (
            recovery_period if recovery_period is not None else self.settings.recovery_period
        )
        self.lock_period = lock_period if lock_period is not None else self.settings.lock_period
        if self.lock_period < self.recovery_period:
            raise ValidationError("RM: insecure security periods", field="lock_period")
        self.state = RecoveryManagerState()

    def get_required_signatures(self, wallet: str, data: bytes) -> SignerPolicy:
        method = self._method_for(data)
        guardians = self.guardian_store.guardian_count(wallet)
        if method == "execute_recovery":
            return SignerPolicy.guardians_only(guardian_quorum(guardians), allowed_while_locked=True)
        if method == "finalize_recovery":
            return SignerPolicy.anyone(allowed_while_locked=True)
        if method == "cancel_recovery":
            return SignerPolicy.owner_or_guardians(
                guardian_quorum(guardians), allowed_while_locked=True
            )
        if method == "transfer_ownership":
            if guardians == 0:
                return SignerPolicy.owner_only()
            return SignerPolicy.owner_and_guardians(guardian_quorum(guardians))
        return super().get_required_signatures(wallet, data)

    def _validate_new_owner(self, wallet: str, new_owner: str) -> str:
        new_owner = normalize_address(new_owner, field="new_owner")
        if new_owner == ZERO_ADDRESS:
            raise ValidationError("RM: new owner address cannot be null", field="new_owner")
        if self.guardian_store.is_guardian(wallet, new_owner):
            raise ValidationError("RM: new owner address cannot be a guardian", field="new_owner")
        return new_owner

    def _guardian_approvals(self, wallet: str) -> List[str]:
        """Distinct guardians among the signers of the relayed call to this module."""
        remaining = self.guardian_store.get_guardians(wallet)
        approvals = []
        for signer in self.chain.authenticated_signers(self.address):
            guardian = self.guardian_store.resolve_guardian(wallet, signer, remaining)
            if guardian is not None:
                remaining.remove(guardian)
                approvals.append(guardian)
        return approvals

    def _release_lock(self, target: Wallet) -> None:
        if target.lock_holder() == self.address:
            target.clear_lock(sender=self.address)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    @external("executeRecovery(address,address)")
    @wallet_entrypoint
    def execute_recovery(self, wallet: str, recovery: str, *, sender: str) -> PendingRecovery:
        """Start recovering ``wallet`` to ``recovery`` and lock it."""
        target = self._wallet(wallet)
        self._require_module(target, sender)
        if wallet in self.state.recoveries:
            raise ValidationError("RM: there cannot be an ongoing recovery")
        recovery = self._validate_new_owner(wallet, recovery)

        guardians = self.guardian_store.get_guardians(wallet)
        approvals = self._guardian_approvals(wallet)
        if len(approvals) < guardian_quorum(len(guardians)):
            raise PolicyNotSatisfiedError(
                "RM: Wrong number of signatures",
                details={"approvals": len(approvals), "guardians": len(guardians)},
            )

        now = self.chain.now()
        pending = PendingRecovery(
            wallet=wallet,
            candidate_owner=recovery,
            execute_after=now + self.recovery_period,
            guardian_count=len(guardians),
            guardian_approvals=approvals,
            created_at=now,
        )
        self.state.recoveries[wallet] = pending
        target.set_lock(now + self.lock_period, sender=self.address)
        self.emit(
            EventType.RECOVERY_EXECUTED,
            wallet=wallet,
            recovery=recovery,
            execute_after=pending.execute_after,
        )

        logger.info(
            f"Recovery started for wallet {wallet}: candidate {recovery}, "
            f"approvals {len(approvals)}/{len(guardians)}, finalizable after {pending.execute_after}"
        )
        return pending

    @external("finalizeRecovery(address)")
    @wallet_entrypoint
    def finalize_recovery(self, wallet: str, *, sender: str) -> str:
        """Complete a recovery whose period is over. Returns the new owner."""
        target = self._wallet(wallet)
        pending = self.state.recoveries.get(wallet)
        if pending is None:
            raise ValidationError("RM: there must be an ongoing recovery")
        now = self.chain.now()
        if not pending.is_finalizable(now):
            raise PendingWindowViolationError(
                "RM: the recovery period is not over",
                now=now,
                window_start=pending.execute_after,
            )

        del self.state.recoveries[wallet]
        self._release_lock(target)
        target.set_owner(pending.candidate_owner, sender=self.address)
        self.emit(EventType.RECOVERY_FINALIZED, wallet=wallet, recovery=pending.candidate_owner)

        logger.info(f"Recovery finalized for wallet {wallet}: new owner {pending.candidate_owner}")
        return pending.candidate_owner

    @external("cancelRecovery(address)")
    @wallet_entrypoint
    def cancel_recovery(self, wallet: str, *, sender: str) -> None:
        """Discard the ongoing recovery and lift its lock."""
        target = self._wallet(wallet)
        self._require_module(target, sender)
        pending = self.state.recoveries.get(wallet)
        if pending is None:
            raise ValidationError("RM: there must be an ongoing recovery")
        owner_signed = target.owner in self.chain.authenticated_signers(self.address)
        quorum = guardian_quorum(self.guardian_store.guardian_count(wallet))
        if not owner_signed and len(self._guardian_approvals(wallet)) < quorum:
            raise PolicyNotSatisfiedError("RM: Wrong number of signatures")

        del self.state.recoveries[wallet]
        self._release_lock(target)
        self.emit(EventType.RECOVERY_CANCELED, wallet=wallet, recovery=pending.candidate_owner)

        logger.info(f"Recovery cancelled for wallet {wallet}")

    # ------------------------------------------------------------------
    # Ownership transfer
    # ------------------------------------------------------------------

    @external("transferOwnership(address,address)")
    @wallet_entrypoint
    def transfer_ownership(self, wallet: str, new_owner: str, *, sender: str) -> None:
        """Hand the wallet to ``new_owner`` with owner and guardian approval."""
        target = self._wallet(wallet)
        self._require_module(target, sender)
        self._require_unlocked(target)
        new_owner = self._validate_new_owner(wallet, new_owner)

        target.set_owner(new_owner, sender=self.address)
        self.emit(EventType.OWNERSHIP_TRANSFERRED, wallet=wallet, new_owner=new_owner)

        logger.info(f"Ownership of wallet {wallet} transferred to {new_owner}")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_recovery(self, wallet: str) -> Optional[PendingRecovery]:
        return self.state.recoveries.get(normalize_address(wallet, field="wallet"))

    def get_recovery_status(self, wallet: str) -> RecoveryStatus:
        pending = self.get_recovery(wallet)
        if pending is None:
            return RecoveryStatus.NONE
        if pending.is_finalizable(self.chain.now()):
            return RecoveryStatus.FINALIZABLE
        return RecoveryStatus.PENDING


__all__ = [
    "RecoveryStatus",
    "PendingRecovery",
    "RecoveryManagerState",
    "RecoveryManager",
]
