"""
Identity Core - Schemas

Typed records passed between the store, the core components and the
router. Request/response models for each gateway operation live here too,
so the router validates input before anything reaches the core.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field, EmailStr, field_validator

from .models import IdentityProvider


# ==================== DOMAIN RECORDS ====================

class FederatedIdentity(BaseModel):
    provider: IdentityProvider
    provider_user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None


class PolicyHolder(BaseModel):
    """Internal identity record for a person"""
    policy_holder_id: str
    internal_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    confirmed: bool = False
    federated_identities: List[FederatedIdentity] = Field(default_factory=list)


class Policy(BaseModel):
    """The single policy owned by a holder (owner_ref is the holder's internal ID)"""
    policy_id: str
    owner_ref: str
    ethereum_address: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProviderProfile(BaseModel):
    """
    Profile asserted by an external identity provider.

    Precondition: the profile is pre-verified. The provider assertion was
    checked before this object was built (see services.providers); the
    identity core never re-verifies it.
    """
    provider: IdentityProvider
    provider_user_id: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None


class Credential(BaseModel):
    """Signed, time-bounded bearer token asserting a policy holder ID"""
    token: str
    subject: str
    issued_at: datetime
    expires_at: datetime
    token_type: str = "bearer"

    @property
    def expires_in(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())


# ==================== REQUEST MODELS ====================

class SignupRequest(BaseModel):
    email: EmailStr = Field(..., description="Contact address to confirm")
    password: str = Field(..., min_length=8, max_length=72)
    display_name: Optional[str] = Field(None, max_length=255)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class GoogleLoginRequest(BaseModel):
    id_token: str = Field(..., min_length=1, description="Google ID token")


class FacebookLoginRequest(BaseModel):
    access_token: str = Field(..., min_length=1, description="Facebook user access token")


class CreatePolicyRequest(BaseModel):
    ethereum_address: Optional[str] = Field(None, max_length=255)
    attributes: Dict[str, Any] = Field(default_factory=dict)


class SetEthereumAddressRequest(BaseModel):
    ethereum_address: str = Field(..., max_length=255)

    @field_validator("ethereum_address")
    @classmethod
    def strip_address(cls, v):
        return v.strip()


# ==================== RESPONSE MODELS ====================

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    policy_holder_id: str
    has_policy: bool = False

    @classmethod
    def from_credential(cls, credential: Credential, has_policy: bool = False) -> "TokenResponse":
        return cls(
            access_token=credential.token,
            token_type=credential.token_type,
            expires_in=credential.expires_in,
            policy_holder_id=credential.subject,
            has_policy=has_policy,
        )


class SignupResponse(BaseModel):
    policy_holder_id: str
    email: Optional[str] = None
    confirmed: bool
    confirmation_token: str


class ConfirmResponse(BaseModel):
    policy_holder_id: str
    confirmed: bool = True


class PolicyResponse(BaseModel):
    policy_id: str
    ethereum_address: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_policy(cls, policy: Policy) -> "PolicyResponse":
        return cls(
            policy_id=policy.policy_id,
            ethereum_address=policy.ethereum_address,
            attributes=policy.attributes,
        )


class OwnedPolicyResponse(BaseModel):
    has_policy: bool
    policy: Optional[PolicyResponse] = None
