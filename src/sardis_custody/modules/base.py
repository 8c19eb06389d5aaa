"""
Base class for wallet modules.

A module is a contract that wallets authorise to act on them. It exposes
``@external`` operations (reachable directly or through the relayer) and a
policy hook that tells the relayer who must sign each operation.

Every operation taking a wallet as first argument is wrapped with
``wallet_entrypoint``: it runs as one atomic frame on the chain and cannot
be re-entered for the same wallet while it is in progress.
"""
from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Optional, Set, TypeVar

from ..abi import external, method_name_for
from ..chain import Contract, LocalChain, normalize_address
from ..config import CustodySettings, load_settings
from ..exceptions import (
    ReentrancyError,
    RegistryViolationError,
    UnauthorizedError,
    WalletLockedError,
)
from ..guardians import GuardianStore
from ..policy import SignerPolicy
from ..registry import ModuleRegistry
from ..wallet import Wallet

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def wallet_entrypoint(method: F) -> F:
    """Run a module operation atomically, guarded against re-entry per wallet."""

    @wraps(method)
    def wrapper(self: "BaseModule", wallet: str, *args: Any, **kwargs: Any) -> Any:
        wallet = normalize_address(wallet, field="wallet")
        with self.chain.atomic():
            if wallet in self._entered:
                raise ReentrancyError(
                    "BM: reentrant call",
                    details={"module": self.address, "wallet": wallet},
                )
            self._entered.add(wallet)
            try:
                return method(self, wallet, *args, **kwargs)
            finally:
                self._entered.discard(wallet)

    return wrapper  # type: ignore[return-value]


class BaseModule(Contract):
    """
    Shared behaviour for all modules.

    Subclasses override ``get_required_signatures`` for their own
    operations and fall back to this class for ``add_module``.
    """

    # A module may take over a wallet lock held by a module of lower precedence
    lock_precedence: int = 0

    def __init__(
        self,
        chain: LocalChain,
        registry: ModuleRegistry,
        guardian_store: GuardianStore,
        name: Optional[str] = None,
        settings: Optional[CustodySettings] = None,
        address: Optional[str] = None,
    ):
        super().__init__(chain, name=name, address=address)
        self.registry = registry
        self.guardian_store = guardian_store
        self.settings = settings or load_settings()
        self._entered: Set[str] = set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _wallet(self, wallet: str) -> Wallet:
        return self.chain.get_contract(wallet, Wallet)

    def _require_wallet(self, wallet: str, sender: str) -> None:
        if sender != wallet:
            raise UnauthorizedError("BM: caller must be wallet", caller=sender)

    def _require_owner_or_module(self, wallet: Wallet, sender: str) -> None:
        if sender != wallet.owner and not wallet.authorised(sender):
            raise UnauthorizedError("BM: must be owner or module", caller=sender)

    def _require_module(self, wallet: Wallet, sender: str) -> None:
        if not wallet.authorised(sender) or sender == self.address:
            raise UnauthorizedError("BM: must be an authorised module", caller=sender)

    def _require_unlocked(self, wallet: Wallet) -> None:
        if wallet.is_locked():
            raise WalletLockedError(
                "BM: wallet locked",
                details={"locked_by": wallet.lock_holder(), "until": wallet.get_lock()},
            )

    def _method_for(self, data: bytes) -> Optional[str]:
        return method_name_for(self._external_methods, data)

    # ------------------------------------------------------------------
    # Module interface
    # ------------------------------------------------------------------

    def init(self, wallet: str, *, sender: str) -> None:
        """Called by a wallet right after it authorises this module."""
        self._require_wallet(wallet, sender)

    def get_required_signatures(self, wallet: str, data: bytes) -> SignerPolicy:
        """Signer policy for relaying ``data`` to this module for ``wallet``."""
        if self._method_for(data) == "add_module":
            return SignerPolicy.owner_only()
        return SignerPolicy.disabled()

    @external("addModule(address,address)")
    @wallet_entrypoint
    def add_module(self, wallet: str, module: str, *, sender: str) -> None:
        """Authorise a registered ``module`` on ``wallet``."""
        target = self._wallet(wallet)
        self._require_owner_or_module(target, sender)
        self._require_unlocked(target)
        module = normalize_address(module, field="module")
        if not self.registry.is_registered(module):
            raise RegistryViolationError("BM: module is not registered", module=module)

        target.authorise_module(module, True, sender=self.address)
        logger.info(f"{self.name}: added module {module} to wallet {wallet}")


__all__ = [
    "wallet_entrypoint",
    "BaseModule",
]
