"""
Sardis custody core: a module-based smart wallet.

A wallet is owned by one key and composed of modules registered in a
ModuleRegistry. Guardians can lock it and recover it; the owner and
guardians authorise calls off-line and a relayer submits them.

Usage:
    from sardis_custody import LocalChain, ModuleRegistry, GuardianStore, Wallet
    from sardis_custody.modules import RelayerModule, LockManager

    chain = LocalChain()
    registry = ModuleRegistry(chain, registrar=deployer)
    store = GuardianStore(chain)
    relayer = RelayerModule(chain, registry, store)
    registry.register_module(relayer.address, "RelayerModule", sender=deployer)

    wallet = Wallet(chain, registry)
    wallet.init(owner, [relayer.address])
"""

from .abi import encode_call, external, function_selector
from .chain import (
    ETH_TOKEN,
    ZERO_ADDRESS,
    Contract,
    LocalChain,
    ManualClock,
    SystemClock,
)
from .config import CustodySettings, load_settings
from .events import Event, EventBus, EventType
from .exceptions import (
    CustodyException,
    InsufficientBalanceError,
    InvalidNonceError,
    InvalidSignaturesError,
    LockedByOtherModuleError,
    LockError,
    NotLockedError,
    PendingExpiredError,
    PendingWindowViolationError,
    PolicyNotSatisfiedError,
    ReentrancyError,
    RegistryViolationError,
    UnauthorizedError,
    ValidationError,
    WalletLockedError,
    ZeroModulesError,
)
from .guardians import GuardianStore
from .meta_tx import RefundInfo, RelayedCall
from .policy import PolicyKind, SignerPolicy, guardian_quorum
from .registry import ModuleRegistry
from .wallet import Wallet

__version__ = "0.1.0"

__all__ = [
    # Substrate
    "ETH_TOKEN",
    "ZERO_ADDRESS",
    "Contract",
    "LocalChain",
    "ManualClock",
    "SystemClock",
    "encode_call",
    "external",
    "function_selector",
    # Config
    "CustodySettings",
    "load_settings",
    # Events
    "Event",
    "EventBus",
    "EventType",
    # Exceptions
    "CustodyException",
    "InsufficientBalanceError",
    "InvalidNonceError",
    "InvalidSignaturesError",
    "LockedByOtherModuleError",
    "LockError",
    "NotLockedError",
    "PendingExpiredError",
    "PendingWindowViolationError",
    "PolicyNotSatisfiedError",
    "ReentrancyError",
    "RegistryViolationError",
    "UnauthorizedError",
    "ValidationError",
    "WalletLockedError",
    "ZeroModulesError",
    # Core
    "GuardianStore",
    "ModuleRegistry",
    "Wallet",
    "RefundInfo",
    "RelayedCall",
    "PolicyKind",
    "SignerPolicy",
    "guardian_quorum",
]
