"""
Relayed-call (meta-transaction) structures and signing.

A relayer submits a call on behalf of a wallet's owner or guardians, who
authorise it by signing a canonical hash off-line:

    keccak256(0x19 || 0x00 || relayer || abi.encode(
        wallet, target_module, data, nonce, chain_id,
        gas_price, gas_limit, refund_token, refund_address))

Each signer signs that hash as an EIP-191 personal message. Signatures are
submitted sorted by increasing signer address, which lets the relayer
reject duplicates in one pass.

Flow:
1. Client builds a RelayedCall and calls ``sign(keys, relayer, chain_id)``
2. Relayer submits it with ``RelayerModule.execute(...)``
3. RelayerModule recovers signers and checks them against the target
   module's signer policy
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_checksum_address

from .chain import ETH_TOKEN, ZERO_ADDRESS
from .exceptions import InvalidSignaturesError

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65


@dataclass(frozen=True)
class RefundInfo:
    """Execution-cost metadata: who is reimbursed, in what, up to how much."""
    gas_price: int = 0
    gas_limit: int = 0
    refund_token: str = ETH_TOKEN
    refund_address: str = ZERO_ADDRESS  # Zero means the submitting relayer

    @property
    def max_refund(self) -> int:
        return self.gas_price * self.gas_limit


@dataclass
class RelayedCall:
    """A call to ``target_module`` authorised by off-line signatures."""
    wallet: str
    target_module: str
    data: bytes
    nonce: int
    signatures: List[bytes] = field(default_factory=list)
    refund: RefundInfo = field(default_factory=RefundInfo)

    def compute_hash(self, relayer: str, chain_id: int) -> bytes:
        return relayed_call_hash(
            relayer,
            self.wallet,
            self.target_module,
            self.data,
            self.nonce,
            chain_id,
            self.refund,
        )

    def sign(self, private_keys: Iterable[str], relayer: str, chain_id: int) -> "RelayedCall":
        """Sign with every key and store the signatures in canonical order."""
        message_hash = self.compute_hash(relayer, chain_id)
        self.signatures = sign_hash(message_hash, private_keys)
        logger.debug(
            f"Signed relayed call wallet={self.wallet} target={self.target_module} "
            f"nonce={self.nonce} signers={len(self.signatures)}"
        )
        return self


def relayed_call_hash(
    relayer: str,
    wallet: str,
    target_module: str,
    data: bytes,
    nonce: int,
    chain_id: int,
    refund: RefundInfo,
) -> bytes:
    """Canonical hash signed by the owner and/or guardians."""
    encoded = encode(
        [
            "address",
            "address",
            "bytes",
            "uint256",
            "uint256",
            "uint256",
            "uint256",
            "address",
            "address",
        ],
        [
            to_checksum_address(wallet),
            to_checksum_address(target_module),
            bytes(data),
            nonce,
            chain_id,
            refund.gas_price,
            refund.gas_limit,
            to_checksum_address(refund.refund_token),
            to_checksum_address(refund.refund_address),
        ],
    )
    return keccak(b"\x19\x00" + bytes.fromhex(relayer[2:]) + encoded)


def signer_sort_key(address: str) -> int:
    return int(address, 16)


def sign_hash(message_hash: bytes, private_keys: Iterable[str]) -> List[bytes]:
    """Sign ``message_hash`` with each key; result sorted by signer address."""
    message = encode_defunct(primitive=message_hash)
    signed = []
    for key in private_keys:
        account = Account.from_key(key)
        signature = Account.sign_message(message, private_key=key).signature
        signed.append((signer_sort_key(account.address), bytes(signature)))
    return [signature for _, signature in sorted(signed)]


def recover_signer(message_hash: bytes, signature: bytes) -> str:
    """Recover the address that signed ``message_hash``.

    Raises:
        InvalidSignaturesError: If the signature is malformed
    """
    if len(signature) != SIGNATURE_LENGTH:
        raise InvalidSignaturesError("RM: Invalid signatures")
    try:
        signer = Account.recover_message(
            encode_defunct(primitive=message_hash),
            signature=bytes(signature),
        )
    except Exception as e:
        logger.warning(f"Signature recovery failed: {e}")
        raise InvalidSignaturesError("RM: Invalid signatures") from e
    return to_checksum_address(signer)


def recover_signers(message_hash: bytes, signatures: Sequence[bytes]) -> List[str]:
    """Recover all signers, enforcing strictly increasing signer addresses."""
    signers: List[str] = []
    for signature in signatures:
        signer = recover_signer(message_hash, signature)
        if signers and signer_sort_key(signer) <= signer_sort_key(signers[-1]):
            raise InvalidSignaturesError(
                "RM: Invalid signatures",
                details={"reason": "signers must be sorted and unique"},
            )
        signers.append(signer)
    return signers


__all__ = [
    "SIGNATURE_LENGTH",
    "RefundInfo",
    "RelayedCall",
    "relayed_call_hash",
    "signer_sort_key",
    "sign_hash",
    "recover_signer",
    "recover_signers",
]
