"""
Shared fixtures for the identity core tests.

Provides:
- FrozenClock and a CredentialIssuer bound to it
- InMemoryIdentityStore: IdentityStore double with the same
  create-if-absent contract as the SQL store
- sql_store: SqlIdentityStore on in-memory SQLite (aiosqlite)
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from identity.exceptions import DuplicateRecord
from identity.models import Base
from identity.schemas import PolicyHolder, Policy, FederatedIdentity, ProviderProfile
from identity.store import IdentityStore, LocalLogin, SqlIdentityStore
from services.auth import CredentialIssuer

TEST_SECRET = "test-secret-key-for-testing-only-0123456789"


class FrozenClock:
    """Clock returning a fixed instant until advanced."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryIdentityStore(IdentityStore):
    """
    Dict-backed IdentityStore.

    Each method yields to the event loop once, so concurrent callers
    interleave the way they would against a real store.
    """

    def __init__(self):
        self.holders: Dict[str, Dict[str, Any]] = {}          # internal_id -> row
        self.identities: Dict[tuple, str] = {}                # (provider, user_id) -> internal_id
        self.local: Dict[str, Dict[str, str]] = {}            # email -> {holder, hash}
        self.policies: Dict[str, Policy] = {}                 # internal_id -> Policy
        self.writes = 0

    def _holder(self, internal_id: str) -> PolicyHolder:
        return PolicyHolder(**self.holders[internal_id])

    async def find_holder(self, policy_holder_id: str) -> Optional[PolicyHolder]:
        await asyncio.sleep(0)
        for internal_id, row in self.holders.items():
            if row["policy_holder_id"] == policy_holder_id:
                return self._holder(internal_id)
        return None

    async def find_holder_by_provider(self, provider, provider_user_id: str) -> Optional[PolicyHolder]:
        await asyncio.sleep(0)
        internal_id = self.identities.get((getattr(provider, "value", provider), provider_user_id))
        return self._holder(internal_id) if internal_id else None

    async def find_local_login(self, email: str) -> Optional[LocalLogin]:
        await asyncio.sleep(0)
        entry = self.local.get(email.lower().strip())
        if entry is None:
            return None
        return LocalLogin(holder=self._holder(entry["holder"]), password_hash=entry["hash"])

    async def create_federated_holder(self, profile: ProviderProfile) -> PolicyHolder:
        await asyncio.sleep(0)
        key = (profile.provider.value, profile.provider_user_id)
        if key in self.identities:
            raise DuplicateRecord()
        internal_id = str(uuid.uuid4())
        self.holders[internal_id] = {
            "policy_holder_id": str(uuid.uuid4()),
            "internal_id": internal_id,
            "email": profile.email,
            "display_name": profile.display_name,
            "confirmed": True,
            "federated_identities": [FederatedIdentity(**profile.model_dump())],
        }
        self.identities[key] = internal_id
        self.writes += 1
        return self._holder(internal_id)

    async def create_local_holder(self, email: str, password_hash: str, display_name: Optional[str] = None) -> PolicyHolder:
        await asyncio.sleep(0)
        email = email.lower().strip()
        if email in self.local:
            raise DuplicateRecord()
        internal_id = str(uuid.uuid4())
        self.holders[internal_id] = {
            "policy_holder_id": str(uuid.uuid4()),
            "internal_id": internal_id,
            "email": email,
            "display_name": display_name,
            "confirmed": False,
            "federated_identities": [],
        }
        self.local[email] = {"holder": internal_id, "hash": password_hash}
        self.writes += 1
        return self._holder(internal_id)

    async def mark_confirmed(self, policy_holder_id: str) -> Optional[PolicyHolder]:
        await asyncio.sleep(0)
        for internal_id, row in self.holders.items():
            if row["policy_holder_id"] == policy_holder_id:
                if not row["confirmed"]:
                    row["confirmed"] = True
                    self.writes += 1
                return self._holder(internal_id)
        return None

    async def find_policy_by_owner(self, owner_ref: str) -> Optional[Policy]:
        await asyncio.sleep(0)
        policy = self.policies.get(owner_ref)
        return policy.model_copy(deep=True) if policy else None

    async def create_policy(self, owner_ref: str, ethereum_address: Optional[str] = None, attributes=None) -> Policy:
        await asyncio.sleep(0)
        if owner_ref in self.policies:
            raise DuplicateRecord()
        now = datetime.now(timezone.utc)
        policy = Policy(
            policy_id=str(uuid.uuid4()),
            owner_ref=owner_ref,
            ethereum_address=ethereum_address,
            attributes=dict(attributes or {}),
            created_at=now,
            updated_at=now
        )
        self.policies[owner_ref] = policy
        self.writes += 1
        return policy.model_copy(deep=True)

    async def update_ethereum_address(self, owner_ref: str, ethereum_address: str) -> Optional[Policy]:
        await asyncio.sleep(0)
        policy = self.policies.get(owner_ref)
        if policy is None:
            return None
        policy.ethereum_address = ethereum_address
        policy.updated_at = datetime.now(timezone.utc)
        self.writes += 1
        return policy.model_copy(deep=True)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def issuer(clock):
    return CredentialIssuer(
        secret_key=TEST_SECRET,
        access_ttl=timedelta(minutes=60),
        confirmation_ttl=timedelta(hours=48),
        clock=clock
    )


@pytest.fixture
def memory_store():
    return InMemoryIdentityStore()


@pytest_asyncio.fixture
async def async_engine():
    """In-memory SQLite engine with the identity tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def async_session(async_engine):
    session_maker = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


@pytest.fixture
def sql_store(async_session):
    return SqlIdentityStore(async_session)
