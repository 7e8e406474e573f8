"""
Identity Core - Access-Gated Policy Resolver

Every policy read and write is scoped to the holder named by a validated
credential. Policy IDs are never accepted from callers: the policy is
always found through the ownership relation, so foreign records cannot be
enumerated through URLs, caches or logs.
"""

import logging
from typing import Optional, Dict, Any

from .exceptions import AlreadyOwned, DuplicateRecord, InvalidAddress, NoPolicy, NoPolicyHolder, StoreUnavailable
from .schemas import Policy, PolicyHolder
from .store import IdentityStore

logger = logging.getLogger(__name__)


class PolicyResolver:
    """Zero-or-one owned policy per holder."""

    def __init__(self, store: IdentityStore):
        self.store = store

    async def _holder(self, policy_holder_id: str) -> Optional[PolicyHolder]:
        return await self.store.find_holder(policy_holder_id)

    async def get_owned_policy(self, policy_holder_id: str) -> Optional[Policy]:
        """
        Return the holder's policy, or None when they own none yet.

        None is a normal state, not an error.
        """
        holder = await self._holder(policy_holder_id)
        if holder is None:
            logger.warning(f"Policy read for unknown holder {policy_holder_id}")
            return None
        return await self.store.find_policy_by_owner(holder.internal_id)

    async def create_policy(
        self,
        policy_holder_id: str,
        initial_attrs: Optional[Dict[str, Any]] = None
    ) -> Policy:
        """
        Create the holder's policy.

        initial_attrs may carry "ethereum_address" and "attributes".

        Raises:
            AlreadyOwned: the holder already owns a policy (left untouched)
            NoPolicyHolder: the holder does not exist
            StoreUnavailable: the insert was rejected as a duplicate but no
                policy can be read back
        """
        initial_attrs = dict(initial_attrs or {})
        holder = await self._holder(policy_holder_id)
        if holder is None:
            raise NoPolicyHolder()

        existing = await self.store.find_policy_by_owner(holder.internal_id)
        if existing:
            logger.info(f"Policy create rejected, holder {policy_holder_id} already owns {existing.policy_id}")
            raise AlreadyOwned()

        address = initial_attrs.get("ethereum_address")
        if isinstance(address, str):
            address = address.strip() or None

        try:
            policy = await self.store.create_policy(
                owner_ref=holder.internal_id,
                ethereum_address=address,
                attributes=initial_attrs.get("attributes") or {}
            )
        except DuplicateRecord:
            # Lost a race with a concurrent create for the same holder
            winner = await self.store.find_policy_by_owner(holder.internal_id)
            if winner is None:
                logger.error(f"Policy vanished after uniqueness violation for holder {policy_holder_id}")
                raise StoreUnavailable()
            logger.info(f"Concurrent policy create detected for holder {policy_holder_id}, kept {winner.policy_id}")
            raise AlreadyOwned()

        logger.info(f"Created policy {policy.policy_id} for holder {policy_holder_id}")
        return policy

    async def set_ethereum_address(self, policy_holder_id: str, new_address: str) -> Policy:
        """
        Update the owned policy's Ethereum address.

        Only non-empty is checked here; checksum validation belongs to
        the caller.

        Raises:
            InvalidAddress: address is empty
            NoPolicy: the holder owns no policy (nothing written)
        """
        address = (new_address or "").strip()
        if not address:
            raise InvalidAddress()

        holder = await self._holder(policy_holder_id)
        if holder is None:
            raise NoPolicy()

        policy = await self.store.update_ethereum_address(holder.internal_id, address)
        if policy is None:
            raise NoPolicy()

        logger.info(f"Updated Ethereum address on policy {policy.policy_id}")
        return policy
