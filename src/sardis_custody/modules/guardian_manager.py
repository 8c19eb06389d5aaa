"""
Guardian management with commit-delay-confirm.

The first guardian of a wallet is added immediately. Every later addition,
and every revocation, is a two-step change: the owner requests it, waits
``security_period``, then confirms it within ``security_window``. A request
that is not confirmed in time simply expires; a new one can be made.

Pending changes per wallet and guardian:

    requested --(now < execute_after)--> confirm fails "Too early"
    requested --(execute_after <= now < execute_after + window)--> confirm ok
    requested --(now >= execute_after + window)--> confirm fails "Too late"
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..abi import external
from ..chain import LocalChain, normalize_address
from ..config import CustodySettings
from ..events import EventType
from ..exceptions import (
    PendingExpiredError,
    PendingWindowViolationError,
    ValidationError,
)
from ..guardians import GuardianStore
from ..policy import SignerPolicy
from ..registry import ModuleRegistry
from ..wallet import Wallet
from .base import BaseModule, wallet_entrypoint

logger = logging.getLogger(__name__)


@dataclass
class GuardianManagerState:
    # wallet -> guardian -> execute_after
    pending_additions: Dict[str, Dict[str, int]] = field(default_factory=dict)
    pending_revocations: Dict[str, Dict[str, int]] = field(default_factory=dict)


class GuardianManager(BaseModule):
    """Owner-driven guardian additions and revocations."""

    OWNER_ONLY_METHODS = frozenset({
        "add_guardian",
        "confirm_guardian_addition",
        "cancel_guardian_addition",
        "revoke_guardian",
        "confirm_guardian_revocation",
        "cancel_guardian_revocation",
    })

    def __init__(
        self,
        chain: LocalChain,
        registry: ModuleRegistry,
        guardian_store: GuardianStore,
        security_period: Optional[int] = None,
        security_window: Optional[int] = None,
        name: str = "GuardianManager",
        settings: Optional[CustodySettings] = None,
        address: Optional[str] = None,
    ):
        super().__init__(
            chain, registry, guardian_store, name=name, settings=settings, address=address
        )
        self.security_period = (
            security_period if security_period is not None else self.settings.security_period
        )
        self.security_window = (
            security_window if security_window is not None else self.settings.security_window
        )
        if self.security_window <= 0:
            raise ValidationError("GM: security window must be positive", field="security_window")
        self.state = GuardianManagerState()

    def get_required_signatures(self, wallet: str, data: bytes) -> SignerPolicy:
        if self._method_for(data) in self.OWNER_ONLY_METHODS:
            return SignerPolicy.owner_only()
        return super().get_required_signatures(wallet, data)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _is_live(self, execute_after: Optional[int]) -> bool:
        return execute_after is not None and self.chain.now() < execute_after + self.security_window

    def _check_window(self, execute_after: int, action: str) -> None:
        now = self.chain.now()
        window_end = execute_after + self.security_window
        if now < execute_after:
            raise PendingWindowViolationError(
                f"GM: Too early to confirm guardian {action}",
                now=now,
                window_start=execute_after,
                window_end=window_end,
            )
        if now >= window_end:
            raise PendingExpiredError(
                f"GM: Too late to confirm guardian {action}",
                now=now,
                window_start=execute_after,
                window_end=window_end,
            )

    def _prepare(self, wallet: str, sender: str) -> Wallet:
        target = self._wallet(wallet)
        self._require_owner_or_module(target, sender)
        self._require_unlocked(target)
        return target

    # ------------------------------------------------------------------
    # Additions
    # ------------------------------------------------------------------

    @external("addGuardian(address,address)")
    @wallet_entrypoint
    def add_guardian(self, wallet: str, guardian: str, *, sender: str) -> Optional[int]:
        """Add ``guardian`` now (first guardian) or request its addition.

        Returns the time after which the request can be confirmed, or None
        when the guardian was added immediately.
        """
        target = self._prepare(wallet, sender)
        guardian = normalize_address(guardian, field="guardian")
        if guardian == target.owner:
            raise ValidationError("GM: target guardian cannot be owner", field="guardian")
        if self.guardian_store.is_guardian(wallet, guardian):
            raise ValidationError("GM: target is already a guardian", field="guardian")
        if self.chain.is_contract(guardian) and self.chain.find_contract(guardian, Wallet) is None:
            raise ValidationError("GM: guardian must be a keypair or a wallet", field="guardian")

        if self.guardian_store.guardian_count(wallet) == 0:
            self.guardian_store.add_guardian(wallet, guardian, sender=self.address)
            self.emit(EventType.GUARDIAN_ADDED, wallet=wallet, guardian=guardian)
            logger.info(f"First guardian {guardian} added to wallet {wallet}")
            return None

        pending = self.state.pending_additions.setdefault(wallet, {})
        if self._is_live(pending.get(guardian)):
            raise ValidationError(
                "GM: addition of target as guardian is already pending", field="guardian"
            )
        execute_after = self.chain.now() + self.security_period
        pending[guardian] = execute_after
        self.emit(
            EventType.GUARDIAN_ADDITION_REQUESTED,
            wallet=wallet,
            guardian=guardian,
            execute_after=execute_after,
        )
        logger.info(
            f"Guardian addition requested for wallet {wallet}: {guardian}, "
            f"confirmable after {execute_after}"
        )
        return execute_after

    @external("confirmGuardianAddition(address,address)")
    @wallet_entrypoint
    def confirm_guardian_addition(self, wallet: str, guardian: str, *, sender: str) -> None:
        target = self._prepare(wallet, sender)
        guardian = normalize_address(guardian, field="guardian")
        pending = self.state.pending_additions.get(wallet, {})
        if guardian not in pending:
            raise ValidationError("GM: no pending addition as guardian for target", field="guardian")
        self._check_window(pending[guardian], "addition")
        if guardian == target.owner:
            raise ValidationError("GM: target guardian cannot be owner", field="guardian")

        del pending[guardian]
        self.guardian_store.add_guardian(wallet, guardian, sender=self.address)
        self.emit(EventType.GUARDIAN_ADDED, wallet=wallet, guardian=guardian)
        logger.info(f"Guardian {guardian} added to wallet {wallet}")

    @external("cancelGuardianAddition(address,address)")
    @wallet_entrypoint
    def cancel_guardian_addition(self, wallet: str, guardian: str, *, sender: str) -> None:
        self._prepare(wallet, sender)
        guardian = normalize_address(guardian, field="guardian")
        pending = self.state.pending_additions.get(wallet, {})
        if guardian not in pending:
            raise ValidationError("GM: no pending addition as guardian for target", field="guardian")

        del pending[guardian]
        self.emit(EventType.GUARDIAN_ADDITION_CANCELLED, wallet=wallet, guardian=guardian)
        logger.info(f"Guardian addition cancelled for wallet {wallet}: {guardian}")

    # ------------------------------------------------------------------
    # Revocations
    # ------------------------------------------------------------------

    @external("revokeGuardian(address,address)")
    @wallet_entrypoint
    def revoke_guardian(self, wallet: str, guardian: str, *, sender: str) -> int:
        """Request the revocation of ``guardian``. Returns its execute_after."""
        self._prepare(wallet, sender)
        guardian = normalize_address(guardian, field="guardian")
        if not self.guardian_store.is_guardian(wallet, guardian):
            raise ValidationError("GM: must be an existing guardian", field="guardian")

        pending = self.state.pending_revocations.setdefault(wallet, {})
        if self._is_live(pending.get(guardian)):
            raise ValidationError(
                "GM: revocation of target as guardian is already pending", field="guardian"
            )
        execute_after = self.chain.now() + self.security_period
        pending[guardian] = execute_after
        self.emit(
            EventType.GUARDIAN_REVOCATION_REQUESTED,
            wallet=wallet,
            guardian=guardian,
            execute_after=execute_after,
        )
        logger.info(
            f"Guardian revocation requested for wallet {wallet}: {guardian}, "
            f"confirmable after {execute_after}"
        )
        return execute_after

    @external("confirmGuardianRevocation(address,address)")
    @wallet_entrypoint
    def confirm_guardian_revocation(self, wallet: str, guardian: str, *, sender: str) -> None:
        self._prepare(wallet, sender)
        guardian = normalize_address(guardian, field="guardian")
        pending = self.state.pending_revocations.get(wallet, {})
        if guardian not in pending:
            raise ValidationError("GM: no pending guardian revocation for target", field="guardian")
        self._check_window(pending[guardian], "revocation")

        del pending[guardian]
        self.guardian_store.revoke_guardian(wallet, guardian, sender=self.address)
        self.emit(EventType.GUARDIAN_REVOKED, wallet=wallet, guardian=guardian)
        logger.info(f"Guardian {guardian} revoked from wallet {wallet}")

    @external("cancelGuardianRevocation(address,address)")
    @wallet_entrypoint
    def cancel_guardian_revocation(self, wallet: str, guardian: str, *, sender: str) -> None:
        self._prepare(wallet, sender)
        guardian = normalize_address(guardian, field="guardian")
        pending = self.state.pending_revocations.get(wallet, {})
        if guardian not in pending:
            raise ValidationError("GM: no pending guardian revocation for target", field="guardian")

        del pending[guardian]
        self.emit(EventType.GUARDIAN_REVOCATION_CANCELLED, wallet=wallet, guardian=guardian)
        logger.info(f"Guardian revocation cancelled for wallet {wallet}: {guardian}")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def guardian_count(self, wallet: str) -> int:
        return self.guardian_store.guardian_count(wallet)

    def is_guardian(self, wallet: str, guardian: str) -> bool:
        return self.guardian_store.is_guardian(wallet, guardian)

    def get_guardians(self, wallet: str) -> List[str]:
        return self.guardian_store.get_guardians(wallet)

    def pending_addition(self, wallet: str, guardian: str) -> Optional[int]:
        """execute_after of a live addition request, else None."""
        execute_after = self.state.pending_additions.get(wallet, {}).get(guardian)
        return execute_after if self._is_live(execute_after) else None

    def pending_revocation(self, wallet: str, guardian: str) -> Optional[int]:
        execute_after = self.state.pending_revocations.get(wallet, {}).get(guardian)
        return execute_after if self._is_live(execute_after) else None


__all__ = [
    "GuardianManagerState",
    "GuardianManager",
]
