"""
Call encoding for contracts on the local chain.

Relayed calls and wallet invocations carry calldata in Solidity ABI form:
a 4-byte selector (first bytes of keccak256 of the canonical signature)
followed by the ABI-encoded arguments. Contracts expose methods for dynamic
dispatch with the ``@external`` decorator:

    class LockManager(BaseModule):
        @external("lock(address)")
        def lock(self, wallet: str, *, sender: str) -> None:
            ...

    data = encode_call("lock(address)", wallet.address)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_checksum_address

from .exceptions import ValidationError

_EXTERNAL_ATTR = "__external_signature__"


@dataclass(frozen=True)
class ExternalMethod:
    """A method reachable through calldata."""
    name: str
    signature: str
    types: Tuple[str, ...]
    selector: bytes


def function_selector(signature: str) -> bytes:
    """Return the 4-byte selector of a canonical function signature."""
    return keccak(text=signature)[:4]


def parse_signature(signature: str) -> Tuple[str, Tuple[str, ...]]:
    """Split ``name(type1,type2)`` into its name and argument types."""
    if "(" not in signature or not signature.endswith(")"):
        raise ValueError(f"Malformed function signature: {signature}")
    name, _, rest = signature.partition("(")
    args = rest[:-1]
    types = tuple(t.strip() for t in args.split(",")) if args else ()
    return name, types


def encode_call(signature: str, *args: Any) -> bytes:
    """Encode a call to ``signature`` with positional ``args``."""
    _, types = parse_signature(signature)
    if len(types) != len(args):
        raise ValueError(
            f"{signature} expects {len(types)} arguments, got {len(args)}"
        )
    return function_selector(signature) + encode(list(types), list(args))


def _normalize(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return to_checksum_address(value)
    if abi_type == "address[]":
        return [to_checksum_address(v) for v in value]
    return value


def decode_arguments(method: ExternalMethod, data: bytes) -> List[Any]:
    """Decode the arguments of ``data`` for ``method``.

    Raises:
        ValidationError: If the calldata does not match the method's types
    """
    try:
        values = decode(list(method.types), bytes(data[4:]))
    except (DecodingError, ValueError) as e:
        raise ValidationError(
            f"ABI: cannot decode arguments for {method.signature}",
            details={"reason": str(e)},
        ) from e
    return [_normalize(t, v) for t, v in zip(method.types, values)]


def first_address_argument(data: bytes) -> Optional[str]:
    """Return the first argument of ``data`` read as an address, if present."""
    if len(data) < 36:
        return None
    word = bytes(data[4:36])
    if any(word[:12]):
        return None
    return to_checksum_address(word[12:])


def external(signature: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark a contract method as callable through calldata."""
    parse_signature(signature)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        setattr(func, _EXTERNAL_ATTR, signature)
        return func

    return decorator


def collect_external_methods(cls: type) -> Dict[bytes, ExternalMethod]:
    """Build the selector table for a contract class (including inherited methods)."""
    table: Dict[bytes, ExternalMethod] = {}
    for klass in reversed(cls.__mro__):
        for attr_name, attr in vars(klass).items():
            target = getattr(attr, "__wrapped__", attr)
            signature = getattr(attr, _EXTERNAL_ATTR, None) or getattr(
                target, _EXTERNAL_ATTR, None
            )
            if signature is None:
                continue
            _, types = parse_signature(signature)
            selector = function_selector(signature)
            table[selector] = ExternalMethod(
                name=attr_name,
                signature=signature,
                types=types,
                selector=selector,
            )
    return table


def method_name_for(table: Dict[bytes, ExternalMethod], data: Sequence[int]) -> Optional[str]:
    """Resolve the method name a piece of calldata targets."""
    method = table.get(bytes(data[:4]))
    return method.name if method else None


__all__ = [
    "ExternalMethod",
    "function_selector",
    "parse_signature",
    "encode_call",
    "decode_arguments",
    "first_address_argument",
    "external",
    "collect_external_methods",
    "method_name_for",
]
