"""
Authentication Middleware and Dependencies

Provides:
- get_credential_issuer: the issuer built at startup
- get_current_holder: validate the bearer token and return the holder ID
"""

import logging

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from identity.exceptions import InvalidCredential
from logging_config import set_request_context
from services.auth import CredentialIssuer

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


class AuthenticatedHolder(BaseModel):
    """Caller identity taken from a validated access credential"""
    policy_holder_id: str


def get_credential_issuer(request: Request) -> CredentialIssuer:
    return request.app.state.credential_issuer


async def get_current_holder(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    issuer: CredentialIssuer = Depends(get_credential_issuer)
) -> AuthenticatedHolder:
    """
    Extract the policy holder from the bearer token.

    Raises:
        InvalidCredential: no token, or the token does not validate
            (reported as 401 by the IdentityError handler)
    """
    if not credentials:
        logger.debug("Request without bearer token")
        raise InvalidCredential("Not authenticated")

    policy_holder_id = issuer.validate(credentials.credentials)

    set_request_context(policy_holder_id=policy_holder_id)
    return AuthenticatedHolder(policy_holder_id=policy_holder_id)
