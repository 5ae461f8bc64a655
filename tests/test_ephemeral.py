"""
tests/test_ephemeral.py -- Ephemeral token store lifecycle against a real SQLite schema.

Coverage:
  - create(): 256-bit URL-safe token, expiry = now + ttl, prior tokens left valid
  - lookup() / consume(): consume is single-shot, lookup after consume is NotFound
  - redeem(): Expired at exactly expires_at with the row left in place, NotFound on reuse
  - create_invite(): role and manager carried through the round trip
  - purge_expired(): removes only rows at or past expiry
  - ON DELETE CASCADE from users to owned token tables
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import delete

from auth.ephemeral import EphemeralTokenStore, generate_token
from auth.errors import Expired, NotFound
from auth.models import Identity, Role, TokenKind
from auth.schema import users
from auth.store import IdentityStore
from conftest import NOW, make_identity

DAY = timedelta(hours=24)


@pytest.fixture
def alice(identity_store: IdentityStore) -> Identity:
    return make_identity(identity_store, "alice@example.com", verified=False)


class TestCreate:
    def test_token_shape_and_expiry(self, verification_store: EphemeralTokenStore, alice: Identity) -> None:
        record = verification_store.create(alice, NOW, DAY)
        assert record.kind is TokenKind.VERIFICATION
        assert record.user_id == alice.id
        assert record.expires_at == NOW + DAY
        # 32 random bytes, base64url without padding
        assert len(record.token) == 43
        assert "=" not in record.token

    def test_lookup_returns_stored_record(self, verification_store: EphemeralTokenStore, alice: Identity) -> None:
        record = verification_store.create(alice, NOW, DAY)
        assert verification_store.lookup(record.token) == record

    def test_expiry_truncated_to_milliseconds(self, verification_store: EphemeralTokenStore, alice: Identity) -> None:
        record = verification_store.create(alice, NOW + timedelta(microseconds=1_999), DAY)
        assert record.expires_at == NOW + timedelta(milliseconds=1) + DAY
        assert verification_store.lookup(record.token).expires_at == record.expires_at

    def test_reissue_leaves_prior_token_valid(self, verification_store: EphemeralTokenStore, alice: Identity) -> None:
        first = verification_store.create(alice, NOW, DAY)
        second = verification_store.create(alice, NOW, DAY)
        assert first.token != second.token
        assert verification_store.redeem(first.token, NOW).user_id == alice.id
        assert verification_store.redeem(second.token, NOW).user_id == alice.id

    def test_unsaved_identity_rejected(self, verification_store: EphemeralTokenStore) -> None:
        with pytest.raises(ValueError):
            verification_store.create(Identity(username="ghost", hashed_password="x", role=Role.USER), NOW, DAY)

    def test_non_positive_ttl_rejected(self, verification_store: EphemeralTokenStore, alice: Identity) -> None:
        with pytest.raises(ValueError):
            verification_store.create(alice, NOW, timedelta(0))

    def test_invite_store_requires_create_invite(self, invite_store: EphemeralTokenStore, alice: Identity) -> None:
        with pytest.raises(ValueError):
            invite_store.create(alice, NOW, DAY)

    def test_create_invite_only_on_invite_store(self, verification_store: EphemeralTokenStore) -> None:
        with pytest.raises(ValueError):
            verification_store.create_invite("m@example.com", Role.MANAGER, 7, NOW, DAY)

    def test_generated_tokens_are_unique(self) -> None:
        tokens = {generate_token() for _ in range(200)}
        assert len(tokens) == 200


class TestConsume:
    def test_consume_is_single_shot(self, reset_store: EphemeralTokenStore, alice: Identity) -> None:
        record = reset_store.create(alice, NOW, DAY)
        assert reset_store.consume(record) is True
        assert reset_store.consume(record) is False

    def test_lookup_after_consume_not_found(self, reset_store: EphemeralTokenStore, alice: Identity) -> None:
        record = reset_store.create(alice, NOW, DAY)
        reset_store.consume(record)
        with pytest.raises(NotFound):
            reset_store.lookup(record.token)

    def test_unknown_token_not_found(self, reset_store: EphemeralTokenStore) -> None:
        with pytest.raises(NotFound):
            reset_store.lookup("no-such-token")
        with pytest.raises(NotFound):
            reset_store.redeem("no-such-token", NOW)

    def test_kinds_do_not_share_tokens(
        self,
        verification_store: EphemeralTokenStore,
        reset_store: EphemeralTokenStore,
        alice: Identity,
    ) -> None:
        record = verification_store.create(alice, NOW, DAY)
        with pytest.raises(NotFound):
            reset_store.redeem(record.token, NOW)
        assert verification_store.lookup(record.token) == record


class TestRedeem:
    def test_alice_verification_scenario(self, verification_store: EphemeralTokenStore, alice: Identity) -> None:
        """24h token redeemed after 1h succeeds; a second redemption is NotFound."""
        record = verification_store.create(alice, NOW, DAY)
        redeemed = verification_store.redeem(record.token, NOW + timedelta(hours=1))
        assert redeemed.user_id == alice.id
        with pytest.raises(NotFound):
            verification_store.redeem(record.token, NOW + timedelta(hours=1))

    def test_valid_one_millisecond_before_expiry(self, verification_store: EphemeralTokenStore, alice: Identity) -> None:
        record = verification_store.create(alice, NOW, DAY)
        verification_store.redeem(record.token, NOW + DAY - timedelta(milliseconds=1))

    def test_expired_at_exact_expiry_and_not_deleted(self, reset_store: EphemeralTokenStore, alice: Identity) -> None:
        record = reset_store.create(alice, NOW, timedelta(hours=1))
        with pytest.raises(Expired):
            reset_store.redeem(record.token, NOW + timedelta(hours=1))
        # The row survives the failed redemption and can still be deleted.
        assert reset_store.lookup(record.token) == record
        assert reset_store.consume(record) is True

    def test_expired_stays_expired(self, reset_store: EphemeralTokenStore, alice: Identity) -> None:
        record = reset_store.create(alice, NOW, timedelta(hours=1))
        for _ in range(2):
            with pytest.raises(Expired):
                reset_store.redeem(record.token, NOW + timedelta(hours=2))

    def test_lost_race_reports_not_found(
        self, reset_store: EphemeralTokenStore, alice: Identity, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """If another caller deletes the row between lookup and consume, this caller gets NotFound."""
        record = reset_store.create(alice, NOW, DAY)
        real_lookup = reset_store.lookup

        def lookup_then_lose(token: str):
            found = real_lookup(token)
            reset_store.consume(found)
            return found

        monkeypatch.setattr(reset_store, "lookup", lookup_then_lose)
        with pytest.raises(NotFound):
            reset_store.redeem(record.token, NOW)


class TestInvite:
    def test_invite_round_trip(self, invite_store: EphemeralTokenStore) -> None:
        record = invite_store.create_invite("mgr@example.com", Role.MANAGER, 42, NOW, DAY)
        stored = invite_store.lookup(record.token)
        assert stored == record
        assert stored.user_id is None
        assert (stored.username, stored.role, stored.manager_id) == ("mgr@example.com", Role.MANAGER, 42)

    def test_invite_redeemed_once(self, invite_store: EphemeralTokenStore) -> None:
        record = invite_store.create_invite("mgr@example.com", Role.MANAGER, 42, NOW, DAY)
        assert invite_store.redeem(record.token, NOW).manager_id == 42
        with pytest.raises(NotFound):
            invite_store.redeem(record.token, NOW)


class TestPurgeAndCascade:
    def test_purge_removes_only_expired(self, reset_store: EphemeralTokenStore, alice: Identity) -> None:
        short = reset_store.create(alice, NOW, timedelta(hours=1))
        long = reset_store.create(alice, NOW, DAY)

        assert reset_store.purge_expired(NOW + timedelta(hours=1)) == 1
        with pytest.raises(NotFound):
            reset_store.lookup(short.token)
        assert reset_store.redeem(long.token, NOW + timedelta(hours=1)) == long

    def test_purge_with_nothing_expired(self, reset_store: EphemeralTokenStore, alice: Identity) -> None:
        reset_store.create(alice, NOW, DAY)
        assert reset_store.purge_expired(NOW) == 0

    def test_deleting_identity_cascades(
        self,
        engine,
        verification_store: EphemeralTokenStore,
        reset_store: EphemeralTokenStore,
        alice: Identity,
    ) -> None:
        verification = verification_store.create(alice, NOW, DAY)
        reset = reset_store.create(alice, NOW, DAY)

        with engine.begin() as conn:
            conn.execute(delete(users).where(users.c.id == alice.id))

        with pytest.raises(NotFound):
            verification_store.lookup(verification.token)
        with pytest.raises(NotFound):
            reset_store.lookup(reset.token)
