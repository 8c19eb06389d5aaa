"""
In-process execution substrate for the custody core.

The LocalChain gives wallets and modules the guarantees an on-chain
deployment would give them:

- A single global serializer: every state-mutating call runs inside an
  atomic frame guarded by a re-entrant lock, so two calls never interleave.
- Atomicity: a frame snapshots each contract's state the first time the
  frame touches it, plus all balances and the event log; an exception inside
  the frame restores the snapshot and drops contracts deployed in it.
- Dynamic dispatch: calldata is routed by selector to ``@external`` methods.
- Time: an injected clock (wall time in production, manual in tests).
- An append-only event log, published to an EventBus when the outermost
  frame commits.
"""
from __future__ import annotations

import copy
import itertools
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence, Tuple, Type, TypeVar

from eth_utils import is_address, keccak, to_checksum_address

from .abi import ExternalMethod, collect_external_methods, decode_arguments
from .events import Event, EventBus
from .exceptions import InsufficientBalanceError, ValidationError

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40
ETH_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

C = TypeVar("C", bound="Contract")


@dataclass
class _Frame:
    """Undo record of one atomic frame. Contract states are copied on first touch."""
    balances: Dict[Tuple[str, str], int]
    event_count: int
    states: Dict[str, Any] = field(default_factory=dict)
    deployed: List[str] = field(default_factory=list)


def normalize_address(value: str, field: str = "address") -> str:
    """Validate and checksum an address."""
    if not isinstance(value, str) or not is_address(value):
        raise ValidationError(f"Invalid address: {value!r}", field=field)
    return to_checksum_address(value)


class Clock(Protocol):
    """Source of the current unix timestamp."""

    def now(self) -> int:
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock that only moves when told to. Used by tests and simulations."""

    def __init__(self, start: Optional[int] = None):
        self._now = int(time.time()) if start is None else int(start)

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Cannot move the clock backwards")
        self._now += int(seconds)
        return self._now

    def set(self, timestamp: int) -> None:
        self._now = int(timestamp)


class Contract:
    """Base class for stateful components deployed on a LocalChain.

    Subclasses keep all mutable state in ``self.state`` so the chain can
    snapshot and restore it around call frames.
    """

    _external_methods: Dict[bytes, ExternalMethod] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls._external_methods = collect_external_methods(cls)

    def __init__(
        self,
        chain: "LocalChain",
        name: Optional[str] = None,
        address: Optional[str] = None,
    ):
        self.chain = chain
        self.name = name or type(self).__name__
        self._state: Any = None
        self.address = chain.deploy(self, address)

    def dispatch(self, data: bytes, sender: str) -> Any:
        """Route calldata to the matching external method."""
        method = self._external_methods.get(bytes(data[:4]))
        if method is None:
            raise ValidationError(
                f"{self.name}: unknown function selector 0x{bytes(data[:4]).hex()}"
            )
        args = decode_arguments(method, data)
        logger.debug(f"Dispatching {self.name}.{method.signature} from {sender}")
        return getattr(self, method.name)(*args, sender=sender)

    @property
    def state(self) -> Any:
        self.chain.touch(self)
        return self._state

    @state.setter
    def state(self, value: Any) -> None:
        self.chain.touch(self)
        self._state = value

    def emit(self, event: str, /, **args: Any) -> Event:
        return self.chain.emit(self.address, event, **args)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} at {self.address}>"


class LocalChain:
    """
    Execution substrate shared by every wallet and module.

    Example:
        clock = ManualClock()
        chain = LocalChain(clock=clock)
        registry = ModuleRegistry(chain, registrar=deployer)
        ...
        with chain.atomic():
            wallet.authorise_module(module, True, sender=other_module)
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.clock: Clock = clock or SystemClock()
        self.event_bus = event_bus or EventBus()

        self._contracts: Dict[str, Contract] = {}
        self._balances: Dict[Tuple[str, str], int] = {}  # (token, holder) -> amount
        self._events: List[Event] = []
        self._counter = itertools.count(1)

        self._serializer = threading.RLock()
        self._frames: List[_Frame] = []
        self._frame_thread: Optional[int] = None
        self._signer_stack: List[Tuple[str, Tuple[str, ...]]] = []  # (callee, signers)

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    def deploy(self, contract: Contract, address: Optional[str] = None) -> str:
        """Record a contract and return its address."""
        with self._serializer:
            if address is None:
                seed = f"sardis-custody:{type(contract).__name__}:{next(self._counter)}"
                address = to_checksum_address(keccak(text=seed)[12:])
            else:
                address = normalize_address(address)
            if address in self._contracts:
                raise ValidationError(f"Address already in use: {address}")
            self._contracts[address] = contract
            if self._owns_frames():
                self._frames[-1].deployed.append(address)
        logger.debug(f"Deployed {type(contract).__name__} at {address}")
        return address

    def is_contract(self, address: str) -> bool:
        return address in self._contracts

    def get_contract(self, address: str, expected: Optional[Type[C]] = None) -> C:
        """Resolve a deployed contract, optionally checking its type."""
        contract = self._contracts.get(address)
        if contract is None:
            raise ValidationError(f"No contract at {address}", field="address")
        if expected is not None and not isinstance(contract, expected):
            raise ValidationError(
                f"Contract at {address} is not a {expected.__name__}", field="address"
            )
        return contract

    def find_contract(self, address: str, expected: Type[C]) -> Optional[C]:
        contract = self._contracts.get(address)
        if isinstance(contract, expected):
            return contract
        return None

    # ------------------------------------------------------------------
    # Time
    # ------------------------------------------------------------------

    def now(self) -> int:
        return self.clock.now()

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def balance_of(self, address: str, token: str = ETH_TOKEN) -> int:
        return self._balances.get((token, address), 0)

    def fund(self, address: str, amount: int, token: str = ETH_TOKEN) -> None:
        """Credit ``amount`` to ``address`` out of thin air (tests, simulations)."""
        if amount < 0:
            raise ValidationError("Amount cannot be negative", field="amount")
        with self._serializer:
            key = (token, address)
            self._balances[key] = self._balances.get(key, 0) + amount

    def transfer(self, token: str, sender: str, to: str, amount: int) -> None:
        """Move ``amount`` of ``token`` between two holders."""
        if amount < 0:
            raise ValidationError("Amount cannot be negative", field="amount")
        if amount == 0:
            return
        with self.atomic():
            available = self.balance_of(sender, token)
            if available < amount:
                raise InsufficientBalanceError(
                    "VM: wallet balance too low",
                    available=available,
                    required=amount,
                    token=token,
                )
            self._balances[(token, sender)] = available - amount
            self._balances[(token, to)] = self.balance_of(to, token) + amount

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    def _owns_frames(self) -> bool:
        return bool(self._frames) and self._frame_thread == threading.get_ident()

    def touch(self, contract: Contract) -> None:
        """Snapshot ``contract`` in every open frame that has not seen it yet.

        Contracts only expose their state through ``Contract.state``, so any
        mutation inside a frame is preceded by a touch.
        """
        if not self._owns_frames():
            return
        address = getattr(contract, "address", None)
        if address is None:
            return
        for frame in self._frames:
            if address not in frame.states:
                frame.states[address] = copy.deepcopy(contract._state)

    def _restore(self, frame: _Frame) -> None:
        for address, state in frame.states.items():
            contract = self._contracts.get(address)
            if contract is not None:
                contract._state = state
        for address in frame.deployed:
            self._contracts.pop(address, None)
        self._balances = frame.balances
        del self._events[frame.event_count:]

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Run the enclosed block as one all-or-nothing call frame."""
        with self._serializer:
            frame = _Frame(balances=dict(self._balances), event_count=len(self._events))
            if not self._frames:
                self._frame_thread = threading.get_ident()
            self._frames.append(frame)
            try:
                yield
            except BaseException:
                self._restore(frame)
                raise
            finally:
                self._frames.pop()

            if self._frames:
                self._frames[-1].deployed.extend(frame.deployed)
            else:
                self._frame_thread = None
                committed = self._events[frame.event_count:]
                if committed:
                    self.event_bus.publish(committed)

    @property
    def in_frame(self) -> bool:
        return bool(self._frames)

    def call(self, target: str, data: bytes = b"", *, sender: str, value: int = 0) -> Any:
        """Send ``value`` and ``data`` from ``sender`` to ``target``."""
        with self.atomic():
            if value:
                self.transfer(ETH_TOKEN, sender, target, value)
            contract = self._contracts.get(target)
            if contract is None or not data:
                return None
            return contract.dispatch(bytes(data), sender)

    # ------------------------------------------------------------------
    # Relayed signers
    # ------------------------------------------------------------------

    @contextmanager
    def signed_by(self, callee: str, signers: Sequence[str]) -> Iterator[None]:
        """Expose the signers verified for a relayed call to ``callee``."""
        self._signer_stack.append((callee, tuple(signers)))
        try:
            yield
        finally:
            self._signer_stack.pop()

    def authenticated_signers(self, callee: str) -> Tuple[str, ...]:
        """Signers of the relayed call in progress, if it targets ``callee`` directly."""
        if not self._signer_stack:
            return ()
        target, signers = self._signer_stack[-1]
        if target != callee:
            return ()
        return signers

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def emit(self, emitter: str, name: str, /, **args: Any) -> Event:
        event = Event(
            name=str(getattr(name, "value", name)),
            address=emitter,
            args=dict(args),
            timestamp=self.now(),
            index=len(self._events),
        )
        self._events.append(event)
        return event

    def events(
        self,
        name: Optional[str] = None,
        address: Optional[str] = None,
        since: int = 0,
    ) -> List[Event]:
        """Committed and in-flight events, optionally filtered."""
        name = getattr(name, "value", name)
        return [
            e for e in self._events[since:]
            if (name is None or e.name == name) and (address is None or e.address == address)
        ]

    @property
    def event_count(self) -> int:
        return len(self._events)


__all__ = [
    "ZERO_ADDRESS",
    "ETH_TOKEN",
    "normalize_address",
    "Clock",
    "SystemClock",
    "ManualClock",
    "Contract",
    "LocalChain",
]
