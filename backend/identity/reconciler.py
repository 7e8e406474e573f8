"""
Identity Core - Federated Identity Reconciler

Turns a verified provider profile into the policy_holder_id a credential
is issued for.

Rules:
- Existing (provider, provider_user_id) link: return its holder unchanged
- No link: create a holder with the identity attached (signup via federation)
- Never merge on email. A local signup sharing the provider's email
  stays a separate holder; merging would allow account takeover by email.
"""

import logging

from .exceptions import DuplicateRecord, InvalidProfile, StoreUnavailable
from .schemas import ProviderProfile
from .store import IdentityStore

logger = logging.getLogger(__name__)


class FederatedIdentityReconciler:
    """
    Resolve a provider profile to exactly one policy holder.

    At most one create per call. Repeating a call with the same provider
    identity is a pure lookup.
    """

    def __init__(self, store: IdentityStore):
        self.store = store

    async def reconcile(self, profile: ProviderProfile) -> str:
        """
        Args:
            profile: pre-verified provider profile

        Returns:
            policy_holder_id of the linked (or newly created) holder

        Raises:
            InvalidProfile: provider_user_id missing
            StoreUnavailable: store could not be reached
        """
        provider_user_id = (profile.provider_user_id or "").strip()
        if not provider_user_id:
            logger.warning(f"Rejected {profile.provider.value} profile without provider user ID")
            raise InvalidProfile()
        if provider_user_id != profile.provider_user_id:
            profile = profile.model_copy(update={"provider_user_id": provider_user_id})

        holder = await self.store.find_holder_by_provider(profile.provider, provider_user_id)
        if holder:
            logger.info(f"Federated login matched holder {holder.policy_holder_id} via {profile.provider.value}")
            return holder.policy_holder_id

        try:
            holder = await self.store.create_federated_holder(profile)
        except DuplicateRecord:
            # A concurrent login linked this identity first
            holder = await self.store.find_holder_by_provider(profile.provider, provider_user_id)
            if holder is None:
                logger.error(f"Identity link vanished after uniqueness violation ({profile.provider.value})")
                raise StoreUnavailable()
            logger.info(f"Federated login joined concurrent signup for holder {holder.policy_holder_id}")
            return holder.policy_holder_id

        logger.info(f"Federated signup created holder {holder.policy_holder_id} via {profile.provider.value}")
        return holder.policy_holder_id
