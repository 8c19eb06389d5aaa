"""
Shared guardian storage.

One GuardianStore serves every wallet. It is injected into each module that
needs guardian information, and it checks the caller's capability itself:
only a module authorised on a wallet may change that wallet's guardians.

A guardian is either a keypair address or the address of another wallet.
A wallet guardian is a capability reference only: its authority is
exercised by that wallet's own owner, resolved one level deep.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .chain import Contract, LocalChain, normalize_address
from .exceptions import UnauthorizedError, ValidationError
from .wallet import Wallet

logger = logging.getLogger(__name__)


@dataclass
class GuardianStoreState:
    guardians: Dict[str, List[str]] = field(default_factory=dict)  # wallet -> ordered guardians


class GuardianStore(Contract):
    """Per-wallet ordered guardian sets."""

    def __init__(
        self,
        chain: LocalChain,
        name: str = "GuardianStore",
        address: Optional[str] = None,
    ):
        super().__init__(chain, name=name, address=address)
        self.state = GuardianStoreState()

    def _require_module(self, wallet: str, sender: str) -> None:
        target = self.chain.get_contract(wallet, Wallet)
        if not target.authorised(sender):
            raise UnauthorizedError("GS: must be an authorised module", caller=sender)

    # ------------------------------------------------------------------
    # Mutations (authorised modules only)
    # ------------------------------------------------------------------

    def add_guardian(self, wallet: str, guardian: str, *, sender: str) -> None:
        wallet = normalize_address(wallet, field="wallet")
        self._require_module(wallet, sender)
        guardian = normalize_address(guardian, field="guardian")
        with self.chain.atomic():
            guardians = self.state.guardians.setdefault(wallet, [])
            if guardian in guardians:
                raise ValidationError("GS: guardian already added", field="guardian")
            guardians.append(guardian)
        logger.debug(f"Guardian {guardian} stored for wallet {wallet}")

    def revoke_guardian(self, wallet: str, guardian: str, *, sender: str) -> None:
        wallet = normalize_address(wallet, field="wallet")
        self._require_module(wallet, sender)
        guardian = normalize_address(guardian, field="guardian")
        with self.chain.atomic():
            guardians = self.state.guardians.get(wallet, [])
            if guardian not in guardians:
                raise ValidationError("GS: not a guardian", field="guardian")
            guardians.remove(guardian)
        logger.debug(f"Guardian {guardian} removed for wallet {wallet}")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_guardians(self, wallet: str) -> List[str]:
        return list(self.state.guardians.get(wallet, []))

    def guardian_count(self, wallet: str) -> int:
        return len(self.state.guardians.get(wallet, []))

    def is_guardian(self, wallet: str, guardian: str) -> bool:
        wallet = normalize_address(wallet, field="wallet")
        return normalize_address(guardian, field="guardian") in self.state.guardians.get(wallet, [])

    def resolve_guardian(
        self,
        wallet: str,
        signer: str,
        guardians: Optional[List[str]] = None,
    ) -> Optional[str]:
        """Return the guardian ``signer`` acts for, or None.

        ``signer`` acts for a guardian when it is that guardian, or when the
        guardian is a wallet owned by ``signer``. Wallet guardians are not
        followed any further: the guardian wallet's owner must sign itself.
        """
        candidates = self.get_guardians(wallet) if guardians is None else guardians
        if signer in candidates:
            return signer
        for guardian in candidates:
            guardian_wallet = self.chain.find_contract(guardian, Wallet)
            if guardian_wallet is not None and guardian_wallet.owner == signer:
                return guardian
        return None

    def is_guardian_or_guardian_signer(self, wallet: str, signer: str) -> bool:
        return self.resolve_guardian(wallet, signer) is not None


__all__ = [
    "GuardianStoreState",
    "GuardianStore",
]
