"""
Pytest configuration for sardis-custody tests.

Every test gets a fresh LocalChain driven by a ManualClock, a registry with
the standard modules registered, and a wallet owned by ``owner`` with all of
them authorised.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import pytest
from eth_account import Account

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(package_src))

# Set test environment
os.environ.setdefault("SARDIS_CUSTODY_ENVIRONMENT", "dev")

from sardis_custody.abi import encode_call, external  # noqa: E402
from sardis_custody.chain import Contract, LocalChain, ManualClock  # noqa: E402
from sardis_custody.config import CustodySettings  # noqa: E402
from sardis_custody.exceptions import ValidationError  # noqa: E402
from sardis_custody.guardians import GuardianStore  # noqa: E402
from sardis_custody.meta_tx import RefundInfo, RelayedCall  # noqa: E402
from sardis_custody.modules import (  # noqa: E402
    BaseModule,
    GuardianManager,
    LockManager,
    RecoveryManager,
    RelayerModule,
    wallet_entrypoint,
)
from sardis_custody.policy import SignerPolicy  # noqa: E402
from sardis_custody.registry import ModuleRegistry  # noqa: E402
from sardis_custody.wallet import Wallet  # noqa: E402

START_TIME = 1_700_000_000


# ---------------------------------------------------------------------------
# Test contracts
# ---------------------------------------------------------------------------

class Counter(Contract):
    """Plain target contract for outbound wallet calls."""

    def __init__(self, chain: LocalChain):
        super().__init__(chain, name="Counter")
        self.state = {"count": 0, "last_caller": None}

    @external("increment(uint256)")
    def increment(self, amount: int, *, sender: str) -> int:
        with self.chain.atomic():
            self.state["count"] += amount
            self.state["last_caller"] = sender
        return self.state["count"]

    @external("fail(uint256)")
    def fail(self, amount: int, *, sender: str) -> None:
        raise ValidationError("Counter: always fails")


class InvokerModule(BaseModule):
    """Module that lets the owner make outbound calls from the wallet."""

    @external("invoke(address,address,uint256,bytes)")
    @wallet_entrypoint
    def invoke(self, wallet: str, target: str, value: int, data: bytes, *, sender: str):
        w = self._wallet(wallet)
        self._require_owner_or_module(w, sender)
        return w.execute(target, value, data, sender=self.address)

    @external("reenter(address)")
    @wallet_entrypoint
    def reenter(self, wallet: str, *, sender: str):
        return self.reenter(wallet, sender=sender)

    def get_required_signatures(self, wallet: str, data: bytes) -> SignerPolicy:
        if self._method_for(data) in ("invoke", "reenter"):
            return SignerPolicy.owner_only()
        return super().get_required_signatures(wallet, data)


# ---------------------------------------------------------------------------
# Accounts and time
# ---------------------------------------------------------------------------

@pytest.fixture
def accounts():
    """Ten deterministic keypairs."""
    return [Account.from_key("0x" + f"{i:064x}") for i in range(1, 11)]


@pytest.fixture
def deployer(accounts):
    return accounts[0]


@pytest.fixture
def owner(accounts):
    return accounts[1]


@pytest.fixture
def guardians(accounts):
    """Keypairs used as guardians (not yet added to any wallet)."""
    return accounts[2:7]


@pytest.fixture
def relayer_account(accounts):
    return accounts[7]


@pytest.fixture
def stranger(accounts):
    return accounts[8]


@pytest.fixture
def settings():
    return CustodySettings(_env_file=None)


@pytest.fixture
def clock():
    return ManualClock(START_TIME)


# ---------------------------------------------------------------------------
# Deployment
# ---------------------------------------------------------------------------

@pytest.fixture
def chain(clock):
    return LocalChain(clock=clock)


@pytest.fixture
def registry(chain, deployer):
    return ModuleRegistry(chain, registrar=deployer.address)


@pytest.fixture
def guardian_store(chain):
    return GuardianStore(chain)


@pytest.fixture
def relayer(chain, registry, guardian_store, settings, deployer):
    module = RelayerModule(chain, registry, guardian_store, settings=settings)
    registry.register_module(module.address, "RelayerModule", sender=deployer.address)
    return module


@pytest.fixture
def lock_manager(chain, registry, guardian_store, settings, deployer):
    module = LockManager(chain, registry, guardian_store, settings=settings)
    registry.register_module(module.address, "LockManager", sender=deployer.address)
    return module


@pytest.fixture
def guardian_manager(chain, registry, guardian_store, settings, deployer):
    module = GuardianManager(chain, registry, guardian_store, settings=settings)
    registry.register_module(module.address, "GuardianManager", sender=deployer.address)
    return module


@pytest.fixture
def recovery_manager(chain, registry, guardian_store, settings, deployer):
    module = RecoveryManager(chain, registry, guardian_store, settings=settings)
    registry.register_module(module.address, "RecoveryManager", sender=deployer.address)
    return module


@pytest.fixture
def make_invoker(chain, registry, guardian_store, settings, deployer):
    """Deploy and register another InvokerModule."""

    def _make(name: str = "InvokerModule") -> InvokerModule:
        module = InvokerModule(chain, registry, guardian_store, name=name, settings=settings)
        registry.register_module(module.address, name, sender=deployer.address)
        return module

    return _make


@pytest.fixture
def invoker(make_invoker):
    return make_invoker()


@pytest.fixture
def counter(chain):
    return Counter(chain)


@pytest.fixture
def make_wallet(chain, registry, relayer, lock_manager, guardian_manager, recovery_manager, invoker):
    """Factory for initialised wallets; all standard modules by default."""

    def _make(owner_address: str, modules: Optional[Iterable[str]] = None) -> Wallet:
        if modules is None:
            modules = [
                relayer.address,
                lock_manager.address,
                guardian_manager.address,
                recovery_manager.address,
                invoker.address,
            ]
        wallet = Wallet(chain, registry)
        wallet.init(owner_address, list(modules))
        return wallet

    return _make


@pytest.fixture
def wallet(make_wallet, owner):
    return make_wallet(owner.address)


@pytest.fixture
def add_guardians(chain, clock, guardian_manager, settings):
    """Add guardians to a wallet through the full commit-delay-confirm flow."""

    def _add(wallet: Wallet, guardian_addresses: Iterable[str]) -> None:
        for guardian in guardian_addresses:
            execute_after = guardian_manager.add_guardian(
                wallet.address, guardian, sender=wallet.owner
            )
            if execute_after is not None:
                clock.set(execute_after + 1)
                guardian_manager.confirm_guardian_addition(
                    wallet.address, guardian, sender=wallet.owner
                )

    return _add


@pytest.fixture
def relay(relayer, relayer_account):
    """Sign and submit a relayed call; returns the relayer's success flag."""

    def _relay(
        wallet: Wallet,
        module: BaseModule,
        signature: str,
        *args,
        signers: List = (),
        nonce: Optional[int] = None,
        refund: Optional[RefundInfo] = None,
        sender: Optional[str] = None,
    ) -> bool:
        call = RelayedCall(
            wallet=wallet.address,
            target_module=module.address,
            data=encode_call(signature, wallet.address, *args),
            nonce=relayer.get_nonce(wallet.address) if nonce is None else nonce,
            refund=refund or RefundInfo(),
        ).sign([s.key for s in signers], relayer.address, relayer.chain_id)
        return relayer.relay(call, sender=sender or relayer_account.address)

    return _relay


@pytest.fixture
def event_names(chain) -> Callable[..., List[str]]:
    def _names(since: int = 0, address: Optional[str] = None) -> List[str]:
        return [e.name for e in chain.events(since=since, address=address)]

    return _names
