"""Wallet modules: relayer, guardians, lock, recovery and upgrades."""

from .base import BaseModule, wallet_entrypoint
from .guardian_manager import GuardianManager
from .lock_manager import LockManager
from .recovery_manager import PendingRecovery, RecoveryManager, RecoveryStatus
from .relayer import RelayerModule
from .upgrader import Upgrader

__all__ = [
    "BaseModule",
    "wallet_entrypoint",
    "GuardianManager",
    "LockManager",
    "PendingRecovery",
    "RecoveryManager",
    "RecoveryStatus",
    "RelayerModule",
    "Upgrader",
]
