"""
Identity Core Module

Links policy holders to their login methods and gates access to the
single policy each holder owns.

Features:
- Local signup with idempotent confirmation
- Federated login (Google, Facebook) with no merge on email
- Access credential issuance (see services.auth)
- Ownership-scoped policy read / create / address update
"""

from .models import (
    PolicyHolderDB,
    FederatedIdentityDB,
    LocalCredentialDB,
    PolicyDB,
    IdentityProvider
)
from .schemas import PolicyHolder, Policy, ProviderProfile, Credential
from .store import IdentityStore, SqlIdentityStore

__all__ = [
    'PolicyHolderDB',
    'FederatedIdentityDB',
    'LocalCredentialDB',
    'PolicyDB',
    'IdentityProvider',
    'PolicyHolder',
    'Policy',
    'ProviderProfile',
    'Credential',
    'IdentityStore',
    'SqlIdentityStore'
]
