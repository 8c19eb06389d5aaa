"""
Signer policies for relayed calls.

Every module classifies each of its relayable calls into a SignerPolicy.
The relayer enforces it: how many signatures are expected, whose, and
whether the call may run while the wallet is locked. Policies are
disabled while locked unless ``allowed_while_locked`` is set, which only the
unlock and recovery paths do.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class PolicyKind(str, Enum):
    """Who must sign a relayed call."""
    ANYONE = "anyone"  # No signature required
    OWNER_ONLY = "owner_only"
    OWNER_AND_GUARDIANS = "owner_and_guardians"
    GUARDIANS_ONLY = "guardians_only"
    OWNER_OR_GUARDIANS = "owner_or_guardians"
    DISABLED = "disabled"  # Never relayable


def guardian_quorum(guardian_count: int) -> int:
    """Strict majority of ``guardian_count`` (an even split needs one more)."""
    return guardian_count // 2 + 1


@dataclass(frozen=True)
class SignerPolicy:
    """Required signer set for a relayed call."""
    kind: PolicyKind
    guardians: int = 0  # Distinct guardian signatures required
    allowed_while_locked: bool = False

    @classmethod
    def anyone(cls, allowed_while_locked: bool = False) -> "SignerPolicy":
        return cls(PolicyKind.ANYONE, 0, allowed_while_locked)

    @classmethod
    def owner_only(cls, allowed_while_locked: bool = False) -> "SignerPolicy":
        return cls(PolicyKind.OWNER_ONLY, 0, allowed_while_locked)

    @classmethod
    def owner_and_guardians(cls, k: int, allowed_while_locked: bool = False) -> "SignerPolicy":
        return cls(PolicyKind.OWNER_AND_GUARDIANS, k, allowed_while_locked)

    @classmethod
    def guardians_only(cls, k: int, allowed_while_locked: bool = False) -> "SignerPolicy":
        return cls(PolicyKind.GUARDIANS_ONLY, k, allowed_while_locked)

    @classmethod
    def owner_or_guardians(cls, k: int, allowed_while_locked: bool = False) -> "SignerPolicy":
        return cls(PolicyKind.OWNER_OR_GUARDIANS, k, allowed_while_locked)

    @classmethod
    def disabled(cls) -> "SignerPolicy":
        return cls(PolicyKind.DISABLED)

    def accepted_counts(self) -> Tuple[int, ...]:
        """Signature counts that can satisfy this policy."""
        if self.kind == PolicyKind.ANYONE:
            return (0,)
        if self.kind == PolicyKind.OWNER_ONLY:
            return (1,)
        if self.kind == PolicyKind.OWNER_AND_GUARDIANS:
            return (1 + self.guardians,)
        if self.kind == PolicyKind.GUARDIANS_ONLY:
            return (self.guardians,)
        if self.kind == PolicyKind.OWNER_OR_GUARDIANS:
            return tuple(sorted({1, self.guardians}))
        return ()

    def describe(self) -> str:
        if self.kind in (
            PolicyKind.OWNER_AND_GUARDIANS,
            PolicyKind.GUARDIANS_ONLY,
            PolicyKind.OWNER_OR_GUARDIANS,
        ):
            return f"{self.kind.value}({self.guardians})"
        return self.kind.value


__all__ = [
    "PolicyKind",
    "SignerPolicy",
    "guardian_quorum",
]
