"""
Module registry.

Global catalogue of implementation addresses approved for use as wallet
modules. A module must be registered before any wallet may authorise it;
deregistering a module does not revoke it from wallets that already
authorised it. Upgraders are registered entries flagged as one-shot.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

from .chain import Contract, LocalChain, normalize_address
from .events import EventType
from .exceptions import RegistryViolationError, UnauthorizedError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ModuleEntry:
    """A registered module implementation."""
    address: str
    name: str
    upgrader: bool = False
    registered: bool = True
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, object]:
        return {
            "address": self.address,
            "name": self.name,
            "upgrader": self.upgrader,
            "registered": self.registered,
            "registered_at": self.registered_at.isoformat(),
        }


@dataclass
class RegistryState:
    entries: Dict[str, ModuleEntry] = field(default_factory=dict)


class ModuleRegistry(Contract):
    """
    Catalogue of modules wallets may authorise.

    Only the registrar may add or remove entries.
    """

    def __init__(
        self,
        chain: LocalChain,
        registrar: str,
        name: str = "ModuleRegistry",
        address: Optional[str] = None,
    ):
        super().__init__(chain, name=name, address=address)
        self.registrar = normalize_address(registrar, field="registrar")
        self.state = RegistryState()

    def _require_registrar(self, sender: str) -> None:
        if sender != self.registrar:
            raise UnauthorizedError("MR: must be registrar", caller=sender)

    def _register(self, module: str, name: str, sender: str, upgrader: bool) -> ModuleEntry:
        self._require_registrar(sender)
        module = normalize_address(module, field="module")
        if not name or not name.strip():
            raise ValidationError("MR: module name cannot be empty", field="name")
        if module in self.state.entries:
            raise RegistryViolationError("MR: module already exists", module=module)

        entry = ModuleEntry(address=module, name=name, upgrader=upgrader)
        with self.chain.atomic():
            self.state.entries[module] = entry
            self.emit(
                EventType.UPGRADER_REGISTERED if upgrader else EventType.MODULE_REGISTERED,
                module=module,
                name=name,
            )
        logger.info(
            f"Registered {'upgrader' if upgrader else 'module'} {name} at {module}"
        )
        return entry

    def register_module(self, module: str, name: str, *, sender: str) -> ModuleEntry:
        """Record ``module`` as usable by wallets."""
        return self._register(module, name, sender, upgrader=False)

    def register_upgrader(self, upgrader: str, name: str, *, sender: str) -> ModuleEntry:
        """Record a one-shot upgrader module."""
        return self._register(upgrader, name, sender, upgrader=True)

    def deregister_module(self, module: str, *, sender: str) -> None:
        """Remove an entry. Wallets that already authorised it keep it."""
        self._require_registrar(sender)
        module = normalize_address(module, field="module")
        if module not in self.state.entries:
            raise RegistryViolationError("MR: module does not exist", module=module)

        with self.chain.atomic():
            entry = self.state.entries.pop(module)
            self.emit(EventType.MODULE_DEREGISTERED, module=module, name=entry.name)
        logger.info(f"Deregistered module {entry.name} at {module}")

    def is_registered(self, modules: Union[str, Iterable[str]]) -> bool:
        """Check one module, or all of a batch (all-or-nothing)."""
        if isinstance(modules, str):
            modules = [modules]
        entries = self.state.entries
        return all(normalize_address(m, field="module") in entries for m in modules)

    def is_upgrader(self, module: str) -> bool:
        entry = self.state.entries.get(normalize_address(module, field="module"))
        return bool(entry and entry.upgrader)

    def module_info(self, module: str) -> Optional[str]:
        entry = self.state.entries.get(normalize_address(module, field="module"))
        return entry.name if entry else None

    def list_modules(self) -> List[ModuleEntry]:
        return list(self.state.entries.values())


__all__ = [
    "ModuleEntry",
    "ModuleRegistry",
]
