"""
Identity Core - Gateway Context

Explicitly constructed holder of the per-request collaborators (store
handle and credential issuer). Components receive it at construction;
there is no process-wide store or secret.
"""

from dataclasses import dataclass

from services.auth import CredentialIssuer

from .reconciler import FederatedIdentityReconciler
from .resolver import PolicyResolver
from .store import IdentityStore


@dataclass(frozen=True)
class GatewayContext:
    store: IdentityStore
    issuer: CredentialIssuer

    def reconciler(self) -> FederatedIdentityReconciler:
        return FederatedIdentityReconciler(self.store)

    def resolver(self) -> PolicyResolver:
        return PolicyResolver(self.store)
