"""
Guardian lock.

Lets a wallet's guardians freeze it for a fixed period, e.g. when the owner
key is lost or stolen. The lock expires on its own: ``is_locked`` compares
the release time to the current time on every read, so no transaction is
needed to unlock an expired wallet.

States per wallet: unlocked, locked by this module, or locked by another
module (recovery). The last one is read-only from here.
"""
from __future__ import annotations

import logging
from typing import Optional

from ..abi import external
from ..chain import LocalChain
from ..config import CustodySettings
from ..events import EventType
from ..exceptions import (
    LockedByOtherModuleError,
    NotLockedError,
    UnauthorizedError,
    WalletLockedError,
)
from ..guardians import GuardianStore
from ..policy import SignerPolicy
from ..registry import ModuleRegistry
from ..wallet import Wallet
from .base import BaseModule, wallet_entrypoint

logger = logging.getLogger(__name__)


class LockManager(BaseModule):
    """Guardian-controlled lock with automatic expiry."""

    def __init__(
        self,
        chain: LocalChain,
        registry: ModuleRegistry,
        guardian_store: GuardianStore,
        lock_period: Optional[int] = None,
        name: str = "LockManager",
        settings: Optional[CustodySettings] = None,
        address: Optional[str] = None,
    ):
        super().__init__(
            chain, registry, guardian_store, name=name, settings=settings, address=address
        )
        self.lock_period = lock_period if lock_period is not None else self.settings.lock_period

    def _require_guardian_or_module(self, wallet: Wallet, sender: str) -> None:
        if wallet.authorised(sender):
            return
        if self.guardian_store.is_guardian_or_guardian_signer(wallet.address, sender):
            return
        raise UnauthorizedError("LM: must be guardian or module", caller=sender)

    def get_required_signatures(self, wallet: str, data: bytes) -> SignerPolicy:
        method = self._method_for(data)
        if method == "lock":
            return SignerPolicy.guardians_only(1)
        if method == "unlock":
            return SignerPolicy.guardians_only(1, allowed_while_locked=True)
        return super().get_required_signatures(wallet, data)

    @external("lock(address)")
    @wallet_entrypoint
    def lock(self, wallet: str, *, sender: str) -> int:
        """Lock ``wallet`` for ``lock_period`` seconds. Returns the release time."""
        target = self._wallet(wallet)
        self._require_guardian_or_module(target, sender)
        if target.is_locked():
            raise WalletLockedError("LM: wallet must be unlocked")

        release_after = self.chain.now() + self.lock_period
        target.set_lock(release_after, sender=self.address)
        self.emit(EventType.LOCKED, wallet=wallet, release_after=release_after)

        logger.info(f"Wallet {wallet} locked by {sender} until {release_after}")
        return release_after

    @external("unlock(address)")
    @wallet_entrypoint
    def unlock(self, wallet: str, *, sender: str) -> None:
        """Lift a lock this module set."""
        target = self._wallet(wallet)
        self._require_guardian_or_module(target, sender)
        if not target.is_locked():
            raise NotLockedError("LM: wallet must be locked")
        holder = target.lock_holder()
        if holder != self.address:
            raise LockedByOtherModuleError(
                "LM: cannot unlock a wallet that was locked by another module",
                locked_by=holder,
            )

        target.clear_lock(sender=self.address)
        self.emit(EventType.UNLOCKED, wallet=wallet)

        logger.info(f"Wallet {wallet} unlocked by {sender}")

    def is_locked(self, wallet: str) -> bool:
        return self._wallet(wallet).is_locked()

    def get_lock(self, wallet: str) -> int:
        """Release time of the wallet's lock, or 0 when unlocked."""
        return self._wallet(wallet).get_lock()


__all__ = ["LockManager"]
