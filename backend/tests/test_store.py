"""
Tests for SqlIdentityStore

Runs against in-memory SQLite (aiosqlite) with the real unique indexes,
so DuplicateRecord comes from the database, not from the store code.

Run with: pytest tests/test_store.py -v
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from identity.exceptions import AlreadyOwned, DuplicateRecord, StoreUnavailable
from identity.models import IdentityProvider
from identity.reconciler import FederatedIdentityReconciler
from identity.resolver import PolicyResolver
from identity.schemas import ProviderProfile
from identity.store import SqlIdentityStore


def facebook_profile(user_id="fb-1", email=None):
    return ProviderProfile(
        provider=IdentityProvider.FACEBOOK,
        provider_user_id=user_id,
        display_name="Bob",
        email=email
    )


class TestSqlIdentityStoreHolders:

    @pytest.mark.asyncio
    async def test_create_and_find_federated_holder(self, sql_store):
        created = await sql_store.create_federated_holder(facebook_profile())

        found = await sql_store.find_holder_by_provider(IdentityProvider.FACEBOOK, "fb-1")

        assert found.policy_holder_id == created.policy_holder_id
        assert found.confirmed is True
        assert found.federated_identities[0].provider_user_id == "fb-1"

    @pytest.mark.asyncio
    async def test_find_by_provider_accepts_plain_string(self, sql_store):
        created = await sql_store.create_federated_holder(facebook_profile())

        found = await sql_store.find_holder_by_provider("facebook", "fb-1")

        assert found.policy_holder_id == created.policy_holder_id

    @pytest.mark.asyncio
    async def test_find_unknown_returns_none(self, sql_store):
        assert await sql_store.find_holder("missing") is None
        assert await sql_store.find_holder_by_provider(IdentityProvider.GOOGLE, "missing") is None
        assert await sql_store.find_local_login("missing@example.com") is None

    @pytest.mark.asyncio
    async def test_duplicate_federated_identity(self, sql_store):
        await sql_store.create_federated_holder(facebook_profile())

        with pytest.raises(DuplicateRecord):
            await sql_store.create_federated_holder(facebook_profile())

    @pytest.mark.asyncio
    async def test_store_usable_after_duplicate(self, sql_store):
        await sql_store.create_federated_holder(facebook_profile())
        with pytest.raises(DuplicateRecord):
            await sql_store.create_federated_holder(facebook_profile())

        other = await sql_store.create_federated_holder(facebook_profile(user_id="fb-2"))

        assert other.federated_identities[0].provider_user_id == "fb-2"

    @pytest.mark.asyncio
    async def test_local_holder_and_login(self, sql_store):
        created = await sql_store.create_local_holder("Carol@Example.com", "hashed", "Carol")

        login = await sql_store.find_local_login("carol@example.com")

        assert created.confirmed is False
        assert login.holder.policy_holder_id == created.policy_holder_id
        assert login.password_hash == "hashed"

    @pytest.mark.asyncio
    async def test_duplicate_local_email(self, sql_store):
        await sql_store.create_local_holder("carol@example.com", "hashed")

        with pytest.raises(DuplicateRecord):
            await sql_store.create_local_holder("carol@example.com", "other")

    @pytest.mark.asyncio
    async def test_local_and_federated_share_email_without_merge(self, sql_store):
        local = await sql_store.create_local_holder("bob@example.com", "hashed")

        federated = await sql_store.create_federated_holder(facebook_profile(email="bob@example.com"))

        assert local.policy_holder_id != federated.policy_holder_id

    @pytest.mark.asyncio
    async def test_mark_confirmed_is_idempotent(self, sql_store):
        created = await sql_store.create_local_holder("dave@example.com", "hashed")

        first = await sql_store.mark_confirmed(created.policy_holder_id)
        second = await sql_store.mark_confirmed(created.policy_holder_id)

        assert first.confirmed is True
        assert second.confirmed is True
        assert (await sql_store.find_holder(created.policy_holder_id)).confirmed is True

    @pytest.mark.asyncio
    async def test_mark_confirmed_unknown_holder(self, sql_store):
        assert await sql_store.mark_confirmed("missing") is None


class TestSqlIdentityStorePolicies:

    @pytest.mark.asyncio
    async def test_create_and_find_policy(self, sql_store):
        holder = await sql_store.create_local_holder("erin@example.com", "hashed")

        created = await sql_store.create_policy(holder.internal_id, "0xE", {"plan": "gold"})
        found = await sql_store.find_policy_by_owner(holder.internal_id)

        assert found.policy_id == created.policy_id
        assert found.ethereum_address == "0xE"
        assert found.attributes == {"plan": "gold"}

    @pytest.mark.asyncio
    async def test_second_policy_for_owner_rejected(self, sql_store):
        holder = await sql_store.create_local_holder("erin@example.com", "hashed")
        first = await sql_store.create_policy(holder.internal_id, "0x1")

        with pytest.raises(DuplicateRecord):
            await sql_store.create_policy(holder.internal_id, "0x2")

        found = await sql_store.find_policy_by_owner(holder.internal_id)
        assert found.policy_id == first.policy_id
        assert found.ethereum_address == "0x1"

    @pytest.mark.asyncio
    async def test_update_address_without_policy(self, sql_store):
        holder = await sql_store.create_local_holder("erin@example.com", "hashed")

        assert await sql_store.update_ethereum_address(holder.internal_id, "0xE") is None
        assert await sql_store.find_policy_by_owner(holder.internal_id) is None

    @pytest.mark.asyncio
    async def test_update_address(self, sql_store):
        holder = await sql_store.create_local_holder("erin@example.com", "hashed")
        await sql_store.create_policy(holder.internal_id)

        updated = await sql_store.update_ethereum_address(holder.internal_id, "0xF00")

        assert updated.ethereum_address == "0xF00"


class TestSqlIdentityStoreWithCore:

    @pytest.mark.asyncio
    async def test_reconciler_repeat_login(self, sql_store):
        reconciler = FederatedIdentityReconciler(sql_store)

        first = await reconciler.reconcile(facebook_profile())
        second = await reconciler.reconcile(facebook_profile())

        assert first == second

    @pytest.mark.asyncio
    async def test_reconciler_recovers_from_lost_race(self, sql_store):
        """Another request created the identity between lookup and insert."""
        await sql_store.create_federated_holder(facebook_profile())
        winner = await sql_store.find_holder_by_provider(IdentityProvider.FACEBOOK, "fb-1")

        original_find = sql_store.find_holder_by_provider
        calls = []

        async def stale_then_real(provider, provider_user_id):
            calls.append(provider_user_id)
            if len(calls) == 1:
                return None
            return await original_find(provider, provider_user_id)

        sql_store.find_holder_by_provider = stale_then_real

        holder_id = await FederatedIdentityReconciler(sql_store).reconcile(facebook_profile())

        assert holder_id == winner.policy_holder_id
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_resolver_create_twice(self, sql_store):
        holder = await sql_store.create_local_holder("erin@example.com", "hashed")
        resolver = PolicyResolver(sql_store)

        await resolver.create_policy(holder.policy_holder_id, {"ethereum_address": "0x1"})

        with pytest.raises(AlreadyOwned):
            await resolver.create_policy(holder.policy_holder_id, {})


class TestSqlIdentityStoreFailures:

    @pytest.fixture
    def broken_session(self):
        session = MagicMock()
        session.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("connection refused")))
        session.rollback = AsyncMock()
        session.commit = AsyncMock()
        return session

    @pytest.mark.asyncio
    async def test_read_failure_is_store_unavailable(self, broken_session):
        store = SqlIdentityStore(broken_session)

        with pytest.raises(StoreUnavailable):
            await store.find_holder("anyone")

        broken_session.rollback.assert_awaited()

    @pytest.mark.asyncio
    async def test_write_failure_is_store_unavailable(self, broken_session):
        broken_session.commit.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))
        store = SqlIdentityStore(broken_session)

        with pytest.raises(StoreUnavailable):
            await store.create_local_holder("frank@example.com", "hashed")

    @pytest.mark.asyncio
    async def test_store_unavailable_is_retryable(self, broken_session):
        store = SqlIdentityStore(broken_session)

        with pytest.raises(StoreUnavailable) as exc_info:
            await store.find_policy_by_owner("anyone")

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 503
