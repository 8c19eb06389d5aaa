"""
Atomic module-set upgrade.

An Upgrader is a one-shot module bound at construction to the modules it
enables and disables. Adding it to a wallet (``add_module``) triggers its
``init`` callback, which swaps the modules and then deauthorises the
upgrader itself, all inside the caller's frame. If any step would leave the
wallet with zero modules, the whole upgrade reverts.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Set, Tuple

from ..chain import LocalChain, normalize_address
from ..config import CustodySettings
from ..exceptions import RegistryViolationError, ValidationError
from ..guardians import GuardianStore
from ..registry import ModuleRegistry
from .base import BaseModule, wallet_entrypoint

logger = logging.getLogger(__name__)


@dataclass
class UpgraderState:
    applied: Set[str] = field(default_factory=set)  # wallets already upgraded


class Upgrader(BaseModule):
    """Replaces ``to_disable`` with ``to_enable`` on every wallet that adds it."""

    def __init__(
        self,
        chain: LocalChain,
        registry: ModuleRegistry,
        guardian_store: GuardianStore,
        to_disable: Iterable[str],
        to_enable: Iterable[str],
        name: str = "Upgrader",
        settings: Optional[CustodySettings] = None,
        address: Optional[str] = None,
    ):
        super().__init__(
            chain, registry, guardian_store, name=name, settings=settings, address=address
        )
        self._to_disable: Tuple[str, ...] = tuple(
            dict.fromkeys(normalize_address(m, field="to_disable") for m in to_disable)
        )
        self._to_enable: Tuple[str, ...] = tuple(
            dict.fromkeys(normalize_address(m, field="to_enable") for m in to_enable)
        )
        self.state = UpgraderState()

    @property
    def to_disable(self) -> Tuple[str, ...]:
        return self._to_disable

    @property
    def to_enable(self) -> Tuple[str, ...]:
        return self._to_enable

    @wallet_entrypoint
    def init(self, wallet: str, *, sender: str) -> None:
        self._require_wallet(wallet, sender)
        if wallet in self.state.applied:
            raise ValidationError("SU: upgrade already applied")
        if not self.registry.is_registered(self._to_enable):
            raise RegistryViolationError("SU: Not all modules are registered")

        target = self._wallet(wallet)
        for module in self._to_enable:
            target.authorise_module(module, True, sender=self.address)
        for module in self._to_disable:
            target.authorise_module(module, False, sender=self.address)
        target.authorise_module(self.address, False, sender=self.address)
        self.state.applied.add(wallet)

        logger.info(
            f"Upgraded wallet {wallet}: enabled {len(self._to_enable)}, "
            f"disabled {len(self._to_disable)} modules"
        )

    def is_applied(self, wallet: str) -> bool:
        return normalize_address(wallet, field="wallet") in self.state.applied


__all__ = [
    "UpgraderState",
    "Upgrader",
]
