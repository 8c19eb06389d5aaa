"""
Module-based custody wallet.

A wallet holds its owner, the set of module addresses authorised to act on
it, and an optional lock. Every mutation goes through an authorised module;
the wallet itself never decides policy. Invariants:

- After ``init`` the authorised-module set is never empty.
- A lock can only be cleared early by the module that set it; it expires on
  its own once its release time has passed (evaluated lazily on read).
- A lock held by another module can only be replaced by a module of higher
  ``lock_precedence`` (recovery over the guardian lock).
- Outbound calls may not target the wallet itself or any authorised module,
  so the management path (``authorise_module``) is the only way to
  reconfigure the wallet.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from .chain import ETH_TOKEN, ZERO_ADDRESS, Contract, LocalChain, normalize_address
from .events import EventType
from .exceptions import (
    LockedByOtherModuleError,
    RegistryViolationError,
    UnauthorizedError,
    ValidationError,
    WalletLockedError,
    ZeroModulesError,
)
from .registry import ModuleRegistry

logger = logging.getLogger(__name__)


@dataclass
class WalletLock:
    """Lock record: held by ``locked_by`` until ``until``."""
    until: int
    locked_by: str


@dataclass
class WalletState:
    owner: str = ZERO_ADDRESS
    modules: List[str] = field(default_factory=list)
    lock: Optional[WalletLock] = None
    initialised: bool = False


class Wallet(Contract):
    """
    Owner-controlled account whose behaviour is composed of modules.

    Example:
        wallet = Wallet(chain, registry)
        wallet.init(owner, [relayer.address, lock_manager.address])
        wallet.authorised(lock_manager.address)  # True
    """

    def __init__(
        self,
        chain: LocalChain,
        registry: ModuleRegistry,
        name: str = "Wallet",
        address: Optional[str] = None,
    ):
        super().__init__(chain, name=name, address=address)
        self.registry = registry
        self.state = WalletState()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def owner(self) -> str:
        return self.state.owner

    @property
    def modules(self) -> int:
        """Number of authorised modules."""
        return len(self.state.modules)

    @property
    def initialised(self) -> bool:
        return self.state.initialised

    def authorised(self, module: str) -> bool:
        return module in self.state.modules

    def authorised_modules(self) -> List[str]:
        return list(self.state.modules)

    def is_locked(self) -> bool:
        lock = self.state.lock
        return lock is not None and self.chain.now() < lock.until

    def get_lock(self) -> int:
        """Release time of the current lock, or 0 when unlocked."""
        if not self.is_locked():
            return 0
        return self.state.lock.until

    def lock_holder(self) -> Optional[str]:
        """Module holding the current lock, or None when unlocked."""
        if not self.is_locked():
            return None
        return self.state.lock.locked_by

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _require_initialised(self) -> None:
        if not self.state.initialised:
            raise ValidationError("BW: wallet not initialised")

    def _require_module(self, sender: str) -> None:
        self._require_initialised()
        if sender not in self.state.modules:
            raise UnauthorizedError("BW: must be an authorised module", caller=sender)

    def _require_unlocked_for(self, sender: str) -> None:
        holder = self.lock_holder()
        if holder is not None and holder != sender:
            raise WalletLockedError(
                "BW: wallet locked",
                details={"locked_by": holder, "until": self.state.lock.until},
            )

    def _outranks(self, module: str, holder: str) -> bool:
        def precedence(address: str) -> int:
            return getattr(self.chain.find_contract(address, Contract), "lock_precedence", 0)

        return precedence(module) > precedence(holder)

    def _notify_module(self, module: str) -> None:
        contract = self.chain.find_contract(module, Contract)
        callback = getattr(contract, "init", None) if contract is not None else None
        if callback is not None:
            callback(self.address, sender=self.address)

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def init(self, owner: str, modules: Sequence[str]) -> None:
        """One-time initialiser: set the owner and the initial module set."""
        owner = normalize_address(owner, field="owner")
        if owner == ZERO_ADDRESS:
            raise ValidationError("BW: owner cannot be null", field="owner")
        if not modules:
            raise ZeroModulesError("BW: cannot assign with less than 1 module")
        modules = [normalize_address(m, field="modules") for m in modules]
        if len(set(modules)) != len(modules):
            raise ValidationError("BW: module is already added", field="modules")

        with self.chain.atomic():
            if self.state.initialised:
                raise ValidationError("BW: wallet already initialised")
            if not self.registry.is_registered(modules):
                raise RegistryViolationError("BW: Not all modules are registered")
            self.state.owner = owner
            self.state.initialised = True
            for module in modules:
                self.state.modules.append(module)
                self.emit(EventType.AUTHORISED_MODULE, wallet=self.address, module=module, value=True)
            for module in modules:
                self._notify_module(module)

        logger.info(
            f"Wallet {self.address} initialised for owner {owner} with {len(modules)} modules"
        )

    # ------------------------------------------------------------------
    # Module management
    # ------------------------------------------------------------------

    def authorise_module(self, module: str, value: bool, *, sender: str) -> None:
        """Add (``value=True``) or remove (``value=False``) an authorised module.

        The added module's ``init`` callback runs after the authorisation
        event, so any module changes it makes are ordered after it.
        """
        self._require_module(sender)
        self._require_unlocked_for(sender)
        module = normalize_address(module, field="module")
        if self.authorised(module) == value:
            return

        with self.chain.atomic():
            if value:
                if not self.registry.is_registered(module):
                    raise RegistryViolationError("BW: Not all modules are registered", module=module)
                self.state.modules.append(module)
                self.emit(EventType.AUTHORISED_MODULE, wallet=self.address, module=module, value=True)
                self._notify_module(module)
            else:
                if len(self.state.modules) <= 1:
                    raise ZeroModulesError(
                        "BW: cannot assign with less than 1 module", module=module
                    )
                self.state.modules.remove(module)
                self.emit(EventType.AUTHORISED_MODULE, wallet=self.address, module=module, value=False)

        logger.info(
            f"Wallet {self.address}: module {module} "
            f"{'authorised' if value else 'deauthorised'} by {sender}"
        )

    # ------------------------------------------------------------------
    # Lock
    # ------------------------------------------------------------------

    def set_lock(self, until: int, *, sender: str) -> None:
        """Lock the wallet until ``until`` on behalf of the calling module."""
        self._require_module(sender)
        if until <= self.chain.now():
            raise ValidationError("BW: lock release time must be in the future", field="until")
        with self.chain.atomic():
            holder = self.lock_holder()
            if holder is not None and holder != sender and not self._outranks(sender, holder):
                raise LockedByOtherModuleError(
                    "BW: wallet locked by another module", locked_by=holder
                )
            self.state.lock = WalletLock(until=int(until), locked_by=sender)
        logger.info(f"Wallet {self.address} locked by {sender} until {until}")

    def clear_lock(self, *, sender: str) -> None:
        """Clear the lock. Only its holder may clear it before it expires."""
        self._require_module(sender)
        holder = self.lock_holder()
        if holder is not None and holder != sender:
            raise LockedByOtherModuleError(
                "BW: cannot clear a lock held by another module", locked_by=holder
            )
        with self.chain.atomic():
            self.state.lock = None
        logger.info(f"Wallet {self.address} lock cleared by {sender}")

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def set_owner(self, new_owner: str, *, sender: str) -> None:
        self._require_module(sender)
        new_owner = normalize_address(new_owner, field="new_owner")
        if new_owner == ZERO_ADDRESS:
            raise ValidationError("BW: address cannot be null", field="new_owner")
        with self.chain.atomic():
            self.state.owner = new_owner
            self.emit(EventType.OWNER_CHANGED, wallet=self.address, owner=new_owner)
        logger.info(f"Wallet {self.address} owner changed to {new_owner} by {sender}")

    # ------------------------------------------------------------------
    # Outbound calls
    # ------------------------------------------------------------------

    def execute(self, target: str, value: int = 0, data: bytes = b"", *, sender: str) -> Any:
        """Make an outbound call from the wallet on behalf of a module."""
        self._require_module(sender)
        self._require_unlocked_for(sender)
        target = normalize_address(target, field="target")
        if target == self.address or target in self.state.modules:
            raise UnauthorizedError("BW: forbidden invoke target", caller=sender)
        if value < 0:
            raise ValidationError("BW: value cannot be negative", field="value")

        with self.chain.atomic():
            result = self.chain.call(target, data, sender=self.address, value=value)
            self.emit(
                EventType.INVOKED,
                wallet=self.address,
                module=sender,
                target=target,
                value=value,
                data=bytes(data),
            )
        logger.debug(f"Wallet {self.address} invoked {target} value={value} via {sender}")
        return result

    def transfer(self, token: str, to: str, amount: int, *, sender: str) -> None:
        """Pay ``amount`` of ``token`` (native by default) out of the wallet.

        Used for relayer refunds, which are owed even while the wallet is
        locked.
        """
        self._require_module(sender)
        to = normalize_address(to, field="to")
        token = normalize_address(token or ETH_TOKEN, field="token")
        self.chain.transfer(token, self.address, to, amount)


__all__ = [
    "WalletLock",
    "WalletState",
    "Wallet",
]
