"""
Relayer module: executes calls authorised by off-line signatures.

Anyone can submit a relayed call. The relayer checks it against the target
module's signer policy, consumes the wallet's nonce, dispatches the call in
its own frame and refunds the submitter from the wallet.

Validation order:
0. Calldata targets the same wallet; relayer and target module authorised
1. Signer policy resolved from the target module
2. Locked wallets only accept policies allowed while locked
3. Nonce equals the wallet's next nonce
4. Signature count matches the policy; signers recovered, sorted, unique
5. Signers satisfy the policy (owner / distinct guardians)

Any failure before dispatch rejects the whole relay and leaves the nonce
untouched. A failure inside the dispatched call only rolls back that call:
the nonce stays consumed, the refund is paid and ``execute`` returns False.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..abi import first_address_argument
from ..chain import ZERO_ADDRESS, LocalChain, normalize_address
from ..config import CustodySettings
from ..events import EventType
from ..exceptions import (
    CustodyException,
    InvalidNonceError,
    InvalidSignaturesError,
    PolicyNotSatisfiedError,
    UnauthorizedError,
    ValidationError,
    WalletLockedError,
)
from ..guardians import GuardianStore
from ..logging import log_operation_sync, mask_address
from ..meta_tx import RefundInfo, RelayedCall, recover_signers, relayed_call_hash
from ..policy import PolicyKind, SignerPolicy
from ..registry import ModuleRegistry
from ..wallet import Wallet
from .base import BaseModule, wallet_entrypoint

logger = logging.getLogger(__name__)

CALLDATA_BYTE_GAS = 16


@dataclass
class RelayerState:
    nonces: Dict[str, int] = field(default_factory=dict)  # wallet -> next nonce


class RelayerModule(BaseModule):
    """
    Meta-transaction entry point for wallets.

    Example:
        call = RelayedCall(
            wallet=wallet.address,
            target_module=lock_manager.address,
            data=encode_call("lock(address)", wallet.address),
            nonce=relayer.get_nonce(wallet.address),
        ).sign([guardian_key], relayer.address, relayer.chain_id)
        relayer.relay(call, sender=relayer_account)
    """

    def __init__(
        self,
        chain: LocalChain,
        registry: ModuleRegistry,
        guardian_store: GuardianStore,
        chain_id: Optional[int] = None,
        name: str = "RelayerModule",
        settings: Optional[CustodySettings] = None,
        address: Optional[str] = None,
    ):
        super().__init__(
            chain, registry, guardian_store, name=name, settings=settings, address=address
        )
        self.chain_id = chain_id if chain_id is not None else self.settings.chain_id
        self.state = RelayerState()

    def get_nonce(self, wallet: str) -> int:
        return self.state.nonces.get(normalize_address(wallet, field="wallet"), 0)

    def get_sign_hash(
        self,
        wallet: str,
        target_module: str,
        data: bytes,
        nonce: int,
        refund: Optional[RefundInfo] = None,
    ) -> bytes:
        return relayed_call_hash(
            self.address, wallet, target_module, data, nonce, self.chain_id, refund or RefundInfo()
        )

    def relay(self, call: RelayedCall, *, sender: str) -> bool:
        """Submit a signed RelayedCall."""
        return self.execute(
            call.wallet,
            call.target_module,
            call.data,
            call.nonce,
            call.signatures,
            call.refund,
            sender=sender,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    @log_operation_sync("relay", logger=logger)
    @wallet_entrypoint
    def execute(
        self,
        wallet: str,
        target_module: str,
        data: bytes,
        nonce: int,
        signatures: Sequence[bytes],
        refund: Optional[RefundInfo] = None,
        *,
        sender: str,
    ) -> bool:
        """Validate and dispatch a relayed call. Returns the inner call's success."""
        target = self._wallet(wallet)
        target_module = normalize_address(target_module, field="target_module")
        data = bytes(data)
        refund = refund or RefundInfo()

        if first_address_argument(data) != wallet:
            raise ValidationError("RM: Target of data != wallet", field="data")
        if target_module == self.address:
            raise UnauthorizedError("RM: cannot relay to the relayer", caller=sender)
        if not target.authorised(self.address):
            raise UnauthorizedError("RM: relayer not authorised", caller=sender)
        if not target.authorised(target_module):
            raise UnauthorizedError("RM: module not authorised", caller=sender)

        module = self.chain.get_contract(target_module, BaseModule)
        policy = module.get_required_signatures(wallet, data)
        if policy.kind == PolicyKind.DISABLED:
            raise PolicyNotSatisfiedError("RM: call cannot be relayed", policy=policy.describe())
        if target.is_locked() and not policy.allowed_while_locked:
            raise WalletLockedError(
                "RM: wallet locked",
                details={"locked_by": target.lock_holder(), "until": target.get_lock()},
            )

        expected = self.state.nonces.get(wallet, 0)
        if nonce != expected:
            logger.warning(
                f"Rejected relay for wallet {mask_address(wallet)}: nonce {nonce}, expected {expected}"
            )
            raise InvalidNonceError("RM: invalid nonce", expected=expected, received=nonce)

        if len(signatures) not in policy.accepted_counts():
            raise PolicyNotSatisfiedError(
                "RM: Wrong number of signatures",
                policy=policy.describe(),
                details={"received": len(signatures)},
            )
        sign_hash = self.get_sign_hash(wallet, target_module, data, nonce, refund)
        signers = recover_signers(sign_hash, signatures)
        self._validate_signers(target, policy, signers)

        self.state.nonces[wallet] = expected + 1
        success, error = self._dispatch(target_module, data, signers)
        self._refund(target, refund, data, len(signatures), sender)

        self.emit(
            EventType.TRANSACTION_EXECUTED,
            wallet=wallet,
            success=success,
            error=error,
            sign_hash=sign_hash,
        )
        logger.info(
            f"Relayed {module.name} call for wallet {wallet} "
            f"(nonce {nonce}, policy {policy.describe()}): success={success}"
        )
        return success

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _validate_signers(self, wallet: Wallet, policy: SignerPolicy, signers: List[str]) -> None:
        owner = wallet.owner
        owner_signed = owner in signers

        if policy.kind == PolicyKind.ANYONE:
            return
        if policy.kind == PolicyKind.OWNER_ONLY:
            if signers != [owner]:
                raise InvalidSignaturesError("RM: Invalid signatures", policy=policy.describe())
            return
        if policy.kind == PolicyKind.OWNER_OR_GUARDIANS and signers == [owner]:
            return

        if policy.kind == PolicyKind.OWNER_AND_GUARDIANS:
            if not owner_signed:
                raise InvalidSignaturesError("RM: Invalid signatures", policy=policy.describe())
            guardian_signers = [s for s in signers if s != owner]
        else:
            if owner_signed:
                raise InvalidSignaturesError("RM: Invalid signatures", policy=policy.describe())
            guardian_signers = list(signers)

        if len(guardian_signers) != policy.guardians:
            raise PolicyNotSatisfiedError(
                "RM: Wrong number of signatures", policy=policy.describe()
            )

        # Each guardian may be satisfied at most once
        remaining = self.guardian_store.get_guardians(wallet.address)
        for signer in guardian_signers:
            guardian = self.guardian_store.resolve_guardian(wallet.address, signer, remaining)
            if guardian is None:
                raise InvalidSignaturesError(
                    "RM: Invalid signatures",
                    policy=policy.describe(),
                    details={"signer": signer},
                )
            remaining.remove(guardian)

    def _dispatch(
        self,
        target_module: str,
        data: bytes,
        signers: Sequence[str],
    ) -> Tuple[bool, Optional[str]]:
        try:
            with self.chain.atomic(), self.chain.signed_by(target_module, signers):
                self.chain.call(target_module, data, sender=self.address)
        except CustodyException as e:
            logger.warning(f"Relayed call to {target_module} failed: {e.message}")
            return False, e.message
        return True, None

    def _refund(
        self,
        wallet: Wallet,
        refund: RefundInfo,
        data: bytes,
        signature_count: int,
        relayer: str,
    ) -> None:
        if refund.gas_price == 0:
            return
        estimated_gas = (
            self.settings.relay_base_gas
            + CALLDATA_BYTE_GAS * len(data)
            + self.settings.signature_gas * signature_count
        )
        amount = min(estimated_gas * refund.gas_price, refund.max_refund)
        recipient = refund.refund_address
        if recipient == ZERO_ADDRESS:
            recipient = normalize_address(relayer, field="sender")

        wallet.transfer(refund.refund_token, recipient, amount, sender=self.address)
        self.emit(
            EventType.REFUND,
            wallet=wallet.address,
            refund_address=recipient,
            refund_token=refund.refund_token,
            amount=amount,
        )
        logger.debug(f"Refunded {amount} to {recipient} from wallet {wallet.address}")


__all__ = [
    "RelayerState",
    "RelayerModule",
]
