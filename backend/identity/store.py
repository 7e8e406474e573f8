"""
Identity Core - Identity Store

Contract for the durable store of policy holders and policies, plus the
SQLAlchemy implementation used by the gateway.

Contract rules every implementation must honor:
- creates are atomic create-if-absent; a unique-index rejection raises
  DuplicateRecord and leaves nothing behind
- every write is one transaction touching one logical record
- infrastructure faults raise StoreUnavailable
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, DBAPIError, OperationalError, InterfaceError
from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import DuplicateRecord, StoreUnavailable
from .models import PolicyHolderDB, FederatedIdentityDB, LocalCredentialDB, PolicyDB
from .schemas import PolicyHolder, Policy, FederatedIdentity, ProviderProfile

logger = logging.getLogger(__name__)


@dataclass
class LocalLogin:
    """Holder plus the stored password hash for a local email"""
    holder: PolicyHolder
    password_hash: str


class IdentityStore(ABC):
    """Point lookups and create-if-absent writes for holders and policies."""

    # ---------- holders ----------

    @abstractmethod
    async def find_holder(self, policy_holder_id: str) -> Optional[PolicyHolder]:
        ...

    @abstractmethod
    async def find_holder_by_provider(self, provider: str, provider_user_id: str) -> Optional[PolicyHolder]:
        ...

    @abstractmethod
    async def find_local_login(self, email: str) -> Optional[LocalLogin]:
        ...

    @abstractmethod
    async def create_federated_holder(self, profile: ProviderProfile) -> PolicyHolder:
        """Create a confirmed holder with the profile's identity attached."""

    @abstractmethod
    async def create_local_holder(
        self,
        email: str,
        password_hash: str,
        display_name: Optional[str] = None
    ) -> PolicyHolder:
        """Create an unconfirmed holder with a local credential."""

    @abstractmethod
    async def mark_confirmed(self, policy_holder_id: str) -> Optional[PolicyHolder]:
        """Set confirmed once; a no-op for holders already confirmed."""

    # ---------- policies ----------

    @abstractmethod
    async def find_policy_by_owner(self, owner_ref: str) -> Optional[Policy]:
        ...

    @abstractmethod
    async def create_policy(
        self,
        owner_ref: str,
        ethereum_address: Optional[str] = None,
        attributes: Optional[Dict[str, Any]] = None
    ) -> Policy:
        ...

    @abstractmethod
    async def update_ethereum_address(self, owner_ref: str, ethereum_address: str) -> Optional[Policy]:
        """Returns None when the owner has no policy (nothing written)."""


# ==================== CONVERSION ====================

def _to_holder(row: PolicyHolderDB) -> PolicyHolder:
    return PolicyHolder(
        policy_holder_id=row.policy_holder_id,
        internal_id=row.id,
        email=row.email,
        display_name=row.display_name,
        confirmed=bool(row.confirmed),
        federated_identities=[
            FederatedIdentity(
                provider=fi.provider,
                provider_user_id=fi.provider_user_id,
                display_name=fi.display_name,
                email=fi.email
            )
            for fi in row.federated_identities
        ]
    )


def _provider_value(provider) -> str:
    return getattr(provider, "value", provider)


def _to_policy(row: PolicyDB) -> Policy:
    return Policy(
        policy_id=row.policy_id,
        owner_ref=row.owner_id,
        ethereum_address=row.ethereum_address,
        attributes=dict(row.attributes or {}),
        created_at=row.created_at,
        updated_at=row.updated_at
    )


# ==================== SQLALCHEMY STORE ====================

class SqlIdentityStore(IdentityStore):
    """
    IdentityStore backed by an AsyncSession.

    Unique indexes on the tables provide the create-if-absent semantics;
    IntegrityError is translated to DuplicateRecord after rollback.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _guard(self, operation: str):
        try:
            yield
        except IntegrityError as e:
            await self.db.rollback()
            logger.info(f"Store uniqueness violation during {operation}")
            raise DuplicateRecord() from e
        except (OperationalError, InterfaceError, DBAPIError, OSError) as e:
            logger.error(f"Store unavailable during {operation}: {type(e).__name__}")
            try:
                await self.db.rollback()
            except (DBAPIError, OSError):
                logger.warning(f"Rollback failed after store error during {operation}")
            raise StoreUnavailable() from e

    async def _select_holder(self, *criteria) -> Optional[PolicyHolderDB]:
        result = await self.db.execute(
            select(PolicyHolderDB)
            .where(*criteria)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _select_policy(self, owner_ref: str) -> Optional[PolicyDB]:
        result = await self.db.execute(
            select(PolicyDB)
            .where(PolicyDB.owner_id == owner_ref)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ---------- holders ----------

    async def find_holder(self, policy_holder_id: str) -> Optional[PolicyHolder]:
        async with self._guard("find_holder"):
            row = await self._select_holder(PolicyHolderDB.policy_holder_id == policy_holder_id)
        return _to_holder(row) if row else None

    async def find_holder_by_provider(self, provider: str, provider_user_id: str) -> Optional[PolicyHolder]:
        async with self._guard("find_holder_by_provider"):
            result = await self.db.execute(
                select(FederatedIdentityDB.holder_id).where(
                    FederatedIdentityDB.provider == _provider_value(provider),
                    FederatedIdentityDB.provider_user_id == provider_user_id
                )
            )
            holder_id = result.scalar_one_or_none()
            if holder_id is None:
                return None
            row = await self._select_holder(PolicyHolderDB.id == holder_id)
        return _to_holder(row) if row else None

    async def find_local_login(self, email: str) -> Optional[LocalLogin]:
        async with self._guard("find_local_login"):
            result = await self.db.execute(
                select(LocalCredentialDB).where(LocalCredentialDB.email == email.lower().strip())
            )
            credential = result.scalar_one_or_none()
            if credential is None:
                return None
            row = await self._select_holder(PolicyHolderDB.id == credential.holder_id)
        if row is None:
            return None
        return LocalLogin(holder=_to_holder(row), password_hash=credential.password_hash)

    async def create_federated_holder(self, profile: ProviderProfile) -> PolicyHolder:
        provider = _provider_value(profile.provider)
        async with self._guard("create_federated_holder"):
            holder = PolicyHolderDB(
                email=profile.email,
                display_name=profile.display_name,
                confirmed=True,
                confirmed_at=datetime.now(timezone.utc)
            )
            identity = FederatedIdentityDB(
                provider=provider,
                provider_user_id=profile.provider_user_id,
                display_name=profile.display_name,
                email=profile.email
            )
            holder.federated_identities = [identity]
            self.db.add(holder)
            await self.db.commit()
        logger.info(f"Created policy holder {holder.policy_holder_id} via {provider}")
        return _to_holder(holder)

    async def create_local_holder(
        self,
        email: str,
        password_hash: str,
        display_name: Optional[str] = None
    ) -> PolicyHolder:
        email = email.lower().strip()
        async with self._guard("create_local_holder"):
            holder = PolicyHolderDB(
                email=email,
                display_name=display_name,
                confirmed=False
            )
            holder.federated_identities = []
            holder.local_credential = LocalCredentialDB(email=email, password_hash=password_hash)
            self.db.add(holder)
            await self.db.commit()
        logger.info(f"Created unconfirmed policy holder {holder.policy_holder_id}")
        return _to_holder(holder)

    async def mark_confirmed(self, policy_holder_id: str) -> Optional[PolicyHolder]:
        async with self._guard("mark_confirmed"):
            result = await self.db.execute(
                update(PolicyHolderDB)
                .where(
                    PolicyHolderDB.policy_holder_id == policy_holder_id,
                    PolicyHolderDB.confirmed.is_(False)
                )
                .values(confirmed=True, confirmed_at=datetime.now(timezone.utc))
            )
            await self.db.commit()
            if result.rowcount:
                logger.info(f"Confirmed policy holder {policy_holder_id}")
            row = await self._select_holder(PolicyHolderDB.policy_holder_id == policy_holder_id)
        return _to_holder(row) if row else None

    # ---------- policies ----------

    async def find_policy_by_owner(self, owner_ref: str) -> Optional[Policy]:
        async with self._guard("find_policy_by_owner"):
            row = await self._select_policy(owner_ref)
        return _to_policy(row) if row else None

    async def create_policy(
        self,
        owner_ref: str,
        ethereum_address: Optional[str] = None,
        attributes: Optional[Dict[str, Any]] = None
    ) -> Policy:
        async with self._guard("create_policy"):
            policy = PolicyDB(
                owner_id=owner_ref,
                ethereum_address=ethereum_address,
                attributes=attributes or {}
            )
            self.db.add(policy)
            await self.db.commit()
        return _to_policy(policy)

    async def update_ethereum_address(self, owner_ref: str, ethereum_address: str) -> Optional[Policy]:
        async with self._guard("update_ethereum_address"):
            result = await self.db.execute(
                update(PolicyDB)
                .where(PolicyDB.owner_id == owner_ref)
                .values(ethereum_address=ethereum_address, updated_at=datetime.now(timezone.utc))
            )
            if not result.rowcount:
                await self.db.rollback()
                return None
            await self.db.commit()
            row = await self._select_policy(owner_ref)
        return _to_policy(row) if row else None
