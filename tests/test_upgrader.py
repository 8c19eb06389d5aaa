"""Tests for atomic module upgrades."""
from __future__ import annotations

import pytest

from sardis_custody.events import EventType
from sardis_custody.exceptions import (
    RegistryViolationError,
    UnauthorizedError,
    ValidationError,
    WalletLockedError,
    ZeroModulesError,
)
from sardis_custody.modules import Upgrader


@pytest.fixture
def invoker_v2(make_invoker):
    return make_invoker("InvokerModuleV2")


@pytest.fixture
def make_upgrader(chain, registry, guardian_store, settings, deployer):
    def _make(to_disable, to_enable, register=True):
        upgrader = Upgrader(chain, registry, guardian_store, to_disable, to_enable, settings=settings)
        if register:
            registry.register_upgrader(upgrader.address, "Upgrader", sender=deployer.address)
        return upgrader

    return _make


class TestUpgrade:
    def test_swaps_modules(self, wallet, relayer, invoker, invoker_v2, make_upgrader, owner, chain):
        upgrader = make_upgrader([invoker.address], [invoker_v2.address])
        since = chain.event_count

        relayer.add_module(wallet.address, upgrader.address, sender=owner.address)

        assert wallet.authorised(invoker_v2.address)
        assert not wallet.authorised(invoker.address)
        assert not wallet.authorised(upgrader.address)
        assert upgrader.is_applied(wallet.address)
        events = chain.events(EventType.AUTHORISED_MODULE, since=since)
        assert [(e["module"], e["value"]) for e in events] == [
            (upgrader.address, True),
            (invoker_v2.address, True),
            (invoker.address, False),
            (upgrader.address, False),
        ]

    def test_duplicate_modules_to_enable(self, wallet, relayer, invoker_v2, make_upgrader, owner):
        upgrader = make_upgrader([], [invoker_v2.address, invoker_v2.address])

        relayer.add_module(wallet.address, upgrader.address, sender=owner.address)

        assert upgrader.to_enable == (invoker_v2.address,)
        assert wallet.authorised_modules().count(invoker_v2.address) == 1

    def test_unregistered_module_to_enable(self, wallet, relayer, invoker, make_upgrader, owner, stranger):
        upgrader = make_upgrader([invoker.address], [stranger.address])
        modules_before = wallet.authorised_modules()

        with pytest.raises(RegistryViolationError, match="SU: Not all modules are registered"):
            relayer.add_module(wallet.address, upgrader.address, sender=owner.address)
        assert wallet.authorised_modules() == modules_before

    def test_unregistered_upgrader(self, wallet, relayer, invoker, invoker_v2, make_upgrader, owner):
        upgrader = make_upgrader([invoker.address], [invoker_v2.address], register=False)

        with pytest.raises(RegistryViolationError, match="BM: module is not registered"):
            relayer.add_module(wallet.address, upgrader.address, sender=owner.address)

    def test_applied_once_per_wallet(self, wallet, relayer, invoker, invoker_v2, make_upgrader, owner):
        upgrader = make_upgrader([invoker.address], [invoker_v2.address])
        relayer.add_module(wallet.address, upgrader.address, sender=owner.address)

        with pytest.raises(ValidationError, match="SU: upgrade already applied"):
            relayer.add_module(wallet.address, upgrader.address, sender=owner.address)
        assert not wallet.authorised(upgrader.address)

    def test_init_only_from_wallet(self, wallet, invoker, invoker_v2, make_upgrader, stranger):
        upgrader = make_upgrader([invoker.address], [invoker_v2.address])

        with pytest.raises(UnauthorizedError, match="BM: caller must be wallet"):
            upgrader.init(wallet.address, sender=stranger.address)


class TestZeroModules:
    def test_upgrade_to_zero_modules_reverts(self, make_wallet, relayer, make_upgrader, owner, chain):
        wallet = make_wallet(owner.address, [relayer.address])
        upgrader = make_upgrader([relayer.address], [])
        since = chain.event_count

        with pytest.raises(ZeroModulesError):
            relayer.add_module(wallet.address, upgrader.address, sender=owner.address)

        assert wallet.authorised_modules() == [relayer.address]
        assert chain.events(EventType.AUTHORISED_MODULE, since=since) == []
        assert not upgrader.is_applied(wallet.address)

    def test_relayed_upgrade_to_zero_modules_fails_inside(
        self, make_wallet, relayer, lock_manager, make_upgrader, owner, relay, chain
    ):
        wallet = make_wallet(owner.address, [relayer.address, lock_manager.address])
        upgrader = make_upgrader([relayer.address, lock_manager.address], [])

        assert not relay(wallet, lock_manager, "addModule(address,address)", upgrader.address, signers=[owner])

        assert wallet.authorised_modules() == [relayer.address, lock_manager.address]
        assert relayer.get_nonce(wallet.address) == 1
        assert chain.events(EventType.TRANSACTION_EXECUTED)[-1]["success"] is False


class TestLocked:
    def test_locked_wallet_cannot_upgrade(
        self, wallet, relayer, lock_manager, invoker, invoker_v2, make_upgrader, add_guardians,
        owner, guardians
    ):
        add_guardians(wallet, [guardians[0].address])
        lock_manager.lock(wallet.address, sender=guardians[0].address)
        upgrader = make_upgrader([invoker.address], [invoker_v2.address])

        with pytest.raises(WalletLockedError, match="BM: wallet locked"):
            relayer.add_module(wallet.address, upgrader.address, sender=owner.address)
        assert wallet.authorised(invoker.address)
