"""Tests for guardian additions and revocations (commit-delay-confirm)."""
from __future__ import annotations

import pytest

from sardis_custody.config import HOUR
from sardis_custody.events import EventType
from sardis_custody.exceptions import (
    InvalidSignaturesError,
    PendingExpiredError,
    PendingWindowViolationError,
    UnauthorizedError,
    ValidationError,
    WalletLockedError,
)
from sardis_custody.modules import GuardianManager

SECURITY_PERIOD = 24 * HOUR
SECURITY_WINDOW = 12 * HOUR


class TestFirstGuardian:
    def test_first_guardian_is_immediate(self, wallet, guardian_manager, owner, guardians, chain):
        result = guardian_manager.add_guardian(wallet.address, guardians[0].address, sender=owner.address)

        assert result is None
        assert guardian_manager.is_guardian(wallet.address, guardians[0].address)
        assert guardian_manager.guardian_count(wallet.address) == 1
        assert chain.events(EventType.GUARDIAN_ADDED)[-1]["guardian"] == guardians[0].address

    def test_only_owner(self, wallet, guardian_manager, guardians, stranger):
        with pytest.raises(UnauthorizedError, match="BM: must be owner or module"):
            guardian_manager.add_guardian(wallet.address, guardians[0].address, sender=stranger.address)

    def test_owner_cannot_be_guardian(self, wallet, guardian_manager, owner):
        with pytest.raises(ValidationError, match="GM: target guardian cannot be owner"):
            guardian_manager.add_guardian(wallet.address, owner.address, sender=owner.address)

    def test_duplicate_guardian(self, wallet, guardian_manager, owner, guardians):
        guardian_manager.add_guardian(wallet.address, guardians[0].address, sender=owner.address)

        with pytest.raises(ValidationError, match="GM: target is already a guardian"):
            guardian_manager.add_guardian(wallet.address, guardians[0].address, sender=owner.address)

    def test_contract_guardian_must_be_wallet(self, wallet, guardian_manager, owner, counter):
        with pytest.raises(ValidationError, match="GM: guardian must be a keypair or a wallet"):
            guardian_manager.add_guardian(wallet.address, counter.address, sender=owner.address)

    def test_wallet_can_be_guardian(self, wallet, make_wallet, guardian_manager, owner, guardians):
        guardian_wallet = make_wallet(guardians[0].address)
        guardian_manager.add_guardian(wallet.address, guardian_wallet.address, sender=owner.address)

        assert guardian_manager.is_guardian(wallet.address, guardian_wallet.address)


class TestPendingAddition:
    @pytest.fixture
    def first_added(self, wallet, guardian_manager, owner, guardians):
        guardian_manager.add_guardian(wallet.address, guardians[0].address, sender=owner.address)
        return wallet

    def test_second_guardian_is_pending(self, first_added, guardian_manager, owner, guardians, clock, chain):
        execute_after = guardian_manager.add_guardian(
            first_added.address, guardians[1].address, sender=owner.address
        )

        assert execute_after == clock.now() + SECURITY_PERIOD
        assert not guardian_manager.is_guardian(first_added.address, guardians[1].address)
        assert guardian_manager.pending_addition(first_added.address, guardians[1].address) == execute_after
        event = chain.events(EventType.GUARDIAN_ADDITION_REQUESTED)[-1]
        assert event["execute_after"] == execute_after

    def test_confirm_too_early(self, first_added, guardian_manager, owner, guardians, clock):
        guardian_manager.add_guardian(first_added.address, guardians[1].address, sender=owner.address)
        clock.advance(SECURITY_PERIOD - 1)

        with pytest.raises(PendingWindowViolationError, match="GM: Too early to confirm guardian addition"):
            guardian_manager.confirm_guardian_addition(
                first_added.address, guardians[1].address, sender=owner.address
            )
        assert not guardian_manager.is_guardian(first_added.address, guardians[1].address)

    def test_confirm_within_window(self, first_added, guardian_manager, owner, guardians, clock, chain):
        guardian_manager.add_guardian(first_added.address, guardians[1].address, sender=owner.address)
        clock.advance(SECURITY_PERIOD + 1)

        guardian_manager.confirm_guardian_addition(first_added.address, guardians[1].address, sender=owner.address)

        assert guardian_manager.is_guardian(first_added.address, guardians[1].address)
        assert guardian_manager.pending_addition(first_added.address, guardians[1].address) is None
        assert chain.events(EventType.GUARDIAN_ADDED)[-1]["guardian"] == guardians[1].address

    def test_confirm_too_late(self, first_added, guardian_manager, owner, guardians, clock):
        guardian_manager.add_guardian(first_added.address, guardians[1].address, sender=owner.address)
        clock.advance(SECURITY_PERIOD + SECURITY_WINDOW)

        with pytest.raises(PendingExpiredError, match="GM: Too late to confirm guardian addition"):
            guardian_manager.confirm_guardian_addition(
                first_added.address, guardians[1].address, sender=owner.address
            )
        assert not guardian_manager.is_guardian(first_added.address, guardians[1].address)

    def test_cannot_request_twice_while_pending(self, first_added, guardian_manager, owner, guardians):
        guardian_manager.add_guardian(first_added.address, guardians[1].address, sender=owner.address)

        with pytest.raises(ValidationError, match="GM: addition of target as guardian is already pending"):
            guardian_manager.add_guardian(first_added.address, guardians[1].address, sender=owner.address)

    def test_can_request_again_after_expiry(self, first_added, guardian_manager, owner, guardians, clock):
        guardian_manager.add_guardian(first_added.address, guardians[1].address, sender=owner.address)
        clock.advance(SECURITY_PERIOD + SECURITY_WINDOW + 1)

        execute_after = guardian_manager.add_guardian(
            first_added.address, guardians[1].address, sender=owner.address
        )
        assert execute_after == clock.now() + SECURITY_PERIOD

    def test_confirm_without_request(self, first_added, guardian_manager, owner, guardians):
        with pytest.raises(ValidationError, match="GM: no pending addition as guardian for target"):
            guardian_manager.confirm_guardian_addition(
                first_added.address, guardians[1].address, sender=owner.address
            )

    def test_cancel_addition(self, first_added, guardian_manager, owner, guardians, clock, chain):
        guardian_manager.add_guardian(first_added.address, guardians[1].address, sender=owner.address)
        guardian_manager.cancel_guardian_addition(first_added.address, guardians[1].address, sender=owner.address)

        assert chain.events(EventType.GUARDIAN_ADDITION_CANCELLED)[-1]["guardian"] == guardians[1].address
        clock.advance(SECURITY_PERIOD + 1)
        with pytest.raises(ValidationError, match="GM: no pending addition as guardian for target"):
            guardian_manager.confirm_guardian_addition(
                first_added.address, guardians[1].address, sender=owner.address
            )

    def test_locked_wallet_rejects_changes(self, first_added, guardian_manager, lock_manager, owner, guardians):
        lock_manager.lock(first_added.address, sender=guardians[0].address)

        with pytest.raises(WalletLockedError, match="BM: wallet locked"):
            guardian_manager.add_guardian(first_added.address, guardians[1].address, sender=owner.address)


class TestRevocation:
    @pytest.fixture
    def two_guardians(self, wallet, guardians, add_guardians):
        add_guardians(wallet, [guardians[0].address, guardians[1].address])
        return wallet

    def test_revoke_flow(self, two_guardians, guardian_manager, owner, guardians, clock, chain):
        execute_after = guardian_manager.revoke_guardian(
            two_guardians.address, guardians[0].address, sender=owner.address
        )
        assert guardian_manager.is_guardian(two_guardians.address, guardians[0].address)
        assert guardian_manager.pending_revocation(two_guardians.address, guardians[0].address) == execute_after

        clock.set(execute_after)
        guardian_manager.confirm_guardian_revocation(two_guardians.address, guardians[0].address, sender=owner.address)

        assert not guardian_manager.is_guardian(two_guardians.address, guardians[0].address)
        assert guardian_manager.get_guardians(two_guardians.address) == [guardians[1].address]
        assert chain.events(EventType.GUARDIAN_REVOKED)[-1]["guardian"] == guardians[0].address

    def test_revoke_non_guardian(self, two_guardians, guardian_manager, owner, stranger):
        with pytest.raises(ValidationError, match="GM: must be an existing guardian"):
            guardian_manager.revoke_guardian(two_guardians.address, stranger.address, sender=owner.address)

    def test_confirm_revocation_too_early(self, two_guardians, guardian_manager, owner, guardians):
        guardian_manager.revoke_guardian(two_guardians.address, guardians[0].address, sender=owner.address)

        with pytest.raises(PendingWindowViolationError, match="GM: Too early to confirm guardian revocation"):
            guardian_manager.confirm_guardian_revocation(
                two_guardians.address, guardians[0].address, sender=owner.address
            )

    def test_confirm_revocation_too_late(self, two_guardians, guardian_manager, owner, guardians, clock):
        guardian_manager.revoke_guardian(two_guardians.address, guardians[0].address, sender=owner.address)
        clock.advance(SECURITY_PERIOD + SECURITY_WINDOW)

        with pytest.raises(PendingExpiredError, match="GM: Too late to confirm guardian revocation"):
            guardian_manager.confirm_guardian_revocation(
                two_guardians.address, guardians[0].address, sender=owner.address
            )

    def test_cancel_revocation(self, two_guardians, guardian_manager, owner, guardians, chain):
        guardian_manager.revoke_guardian(two_guardians.address, guardians[0].address, sender=owner.address)
        guardian_manager.cancel_guardian_revocation(two_guardians.address, guardians[0].address, sender=owner.address)

        assert chain.events(EventType.GUARDIAN_REVOCATION_CANCELLED)[-1]["guardian"] == guardians[0].address
        assert guardian_manager.pending_revocation(two_guardians.address, guardians[0].address) is None

    def test_revoking_last_guardian_is_allowed(self, wallet, guardian_manager, add_guardians, owner, guardians, clock):
        add_guardians(wallet, [guardians[0].address])
        execute_after = guardian_manager.revoke_guardian(wallet.address, guardians[0].address, sender=owner.address)
        clock.set(execute_after + 1)

        guardian_manager.confirm_guardian_revocation(wallet.address, guardians[0].address, sender=owner.address)
        assert guardian_manager.guardian_count(wallet.address) == 0


class TestRelayed:
    def test_owner_adds_guardian_through_relayer(self, wallet, guardian_manager, owner, guardians, relay):
        assert relay(wallet, guardian_manager, "addGuardian(address,address)", guardians[0].address,
                     signers=[owner])
        assert guardian_manager.is_guardian(wallet.address, guardians[0].address)

    def test_guardian_cannot_relay_guardian_changes(
        self, wallet, guardian_manager, add_guardians, guardians, relay
    ):
        add_guardians(wallet, [guardians[0].address])

        with pytest.raises(InvalidSignaturesError, match="RM: Invalid signatures"):
            relay(wallet, guardian_manager, "addGuardian(address,address)", guardians[1].address,
                  signers=[guardians[0]])


class TestConfiguration:
    def test_window_must_be_positive(self, chain, registry, guardian_store, settings):
        with pytest.raises(ValidationError):
            GuardianManager(chain, registry, guardian_store, security_window=0, settings=settings)


class TestGuardianStoreAddresses:
    def test_lowercase_lookup_and_revoke(self, wallet, guardian_store, guardian_manager, owner, guardians):
        guardian_manager.add_guardian(wallet.address, guardians[0].address, sender=owner.address)

        assert guardian_store.is_guardian(wallet.address.lower(), guardians[0].address.lower())

        guardian_store.revoke_guardian(
            wallet.address.lower(), guardians[0].address.lower(), sender=guardian_manager.address
        )
        assert guardian_store.guardian_count(wallet.address) == 0
