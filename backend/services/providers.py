"""
Federated Provider Verification

Verifies a provider assertion over HTTPS and turns it into a
ProviderProfile for the identity core:
- Google: ID token checked against the tokeninfo endpoint (audience + issuer)
- Facebook: token's app checked via /app, then exchanged for /me

Failures are logged with the provider's detail and raised as
ProviderVerificationFailed, whose message never carries that detail.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from identity.exceptions import ProviderVerificationFailed
from identity.models import IdentityProvider
from identity.schemas import ProviderProfile

logger = logging.getLogger(__name__)

GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")
FACEBOOK_GRAPH_URL = "https://graph.facebook.com"


async def _get_json(client: httpx.AsyncClient, provider: str, url: str, params: Dict[str, str]) -> Dict[str, Any]:
    try:
        response = await client.get(url, params=params)
    except httpx.HTTPError as e:
        logger.warning(f"{provider} verification request failed: {type(e).__name__}")
        raise ProviderVerificationFailed() from e

    if response.status_code != 200:
        logger.warning(f"{provider} verification rejected: HTTP {response.status_code} {response.text[:200]}")
        raise ProviderVerificationFailed()

    try:
        data = response.json()
    except ValueError as e:
        logger.warning(f"{provider} verification returned invalid JSON")
        raise ProviderVerificationFailed() from e

    if not isinstance(data, dict):
        logger.warning(f"{provider} verification returned unexpected payload")
        raise ProviderVerificationFailed()
    return data


class GoogleTokenVerifier:
    """Verify a Google ID token issued for this application's client ID."""

    def __init__(self, client: httpx.AsyncClient, client_id: str):
        self.client = client
        self.client_id = client_id

    async def verify(self, id_token: str) -> ProviderProfile:
        if not self.client_id:
            logger.error("Google login attempted but GOOGLE_CLIENT_ID is not configured")
            raise ProviderVerificationFailed()

        data = await _get_json(self.client, "google", GOOGLE_TOKENINFO_URL, {"id_token": id_token})

        if data.get("aud") != self.client_id:
            logger.warning("Google token audience mismatch")
            raise ProviderVerificationFailed()
        if data.get("iss") not in GOOGLE_ISSUERS:
            logger.warning(f"Google token issuer mismatch: {data.get('iss')}")
            raise ProviderVerificationFailed()

        email: Optional[str] = data.get("email")
        if email and str(data.get("email_verified", "")).lower() != "true":
            email = None

        return ProviderProfile(
            provider=IdentityProvider.GOOGLE,
            provider_user_id=data.get("sub"),
            display_name=data.get("name"),
            email=email
        )


class FacebookTokenVerifier:
    """Verify a Facebook user access token and read the user's profile."""

    def __init__(self, client: httpx.AsyncClient, app_id: Optional[str] = None):
        self.client = client
        self.app_id = app_id

    async def verify(self, access_token: str) -> ProviderProfile:
        if not self.app_id:
            logger.error("Facebook login attempted but FACEBOOK_APP_ID is not configured")
            raise ProviderVerificationFailed()

        app = await _get_json(
            self.client, "facebook", f"{FACEBOOK_GRAPH_URL}/app", {"access_token": access_token}
        )
        if str(app.get("id")) != str(self.app_id):
            logger.warning("Facebook token issued for a different app")
            raise ProviderVerificationFailed()

        data = await _get_json(
            self.client,
            "facebook",
            f"{FACEBOOK_GRAPH_URL}/me",
            {"fields": "id,name,email", "access_token": access_token}
        )

        return ProviderProfile(
            provider=IdentityProvider.FACEBOOK,
            provider_user_id=str(data["id"]) if data.get("id") else None,
            display_name=data.get("name"),
            email=data.get("email")
        )
