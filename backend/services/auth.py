"""
Credential Issuer for the Policy Holder Gateway

Implements:
- Signed, time-bounded access tokens (JWT, HS256 by default)
- Confirmation tokens using the same signing mechanism with a distinct
  claim type, so one can never be replayed as the other
- Password hashing with bcrypt

Tokens are stateless: there is no revocation list, a token expires by
time only. Validation fails when now > exp; no clock skew leeway.
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from identity.exceptions import InvalidCredential
from identity.schemas import Credential

logger = logging.getLogger(__name__)

# Defaults (overridden from Settings when the app starts)
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60  # 1 hour
CONFIRMATION_TOKEN_EXPIRE_HOURS = 48

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ==================== ENUMS ====================

class TokenType(str, Enum):
    access = "access"
    confirmation = "confirmation"


# ==================== MODELS ====================

class TokenData(BaseModel):
    """Claims extracted from a verified token"""
    subject: str
    token_type: TokenType
    issued_at: Optional[datetime] = None
    expires_at: datetime


# ==================== PASSWORD UTILITIES ====================

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError) as e:
        logger.error(f"Password verification error: {e}")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def dummy_verify_password() -> bool:
    """
    Spend one bcrypt verification without a stored hash, so an unknown
    email takes as long to reject as a wrong password.
    """
    return pwd_context.dummy_verify()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==================== CREDENTIAL ISSUER ====================

class CredentialIssuer:
    """
    Mints and validates bearer tokens bound to a policy holder ID.

    Purely functional over its signing secret: no store access, no
    side effects. The clock is injectable for expiry tests.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = ALGORITHM,
        access_ttl: timedelta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
        confirmation_ttl: timedelta = timedelta(hours=CONFIRMATION_TOKEN_EXPIRE_HOURS),
        clock: Callable[[], datetime] = _utcnow
    ):
        if not secret_key:
            raise ValueError("A signing secret is required")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.confirmation_ttl = confirmation_ttl
        self.clock = clock

    def _now(self) -> datetime:
        # JWT NumericDate claims carry whole seconds
        return self.clock().replace(microsecond=0)

    def _encode(self, subject: str, token_type: TokenType, ttl: timedelta) -> Credential:
        if not subject:
            raise ValueError("Credential subject must not be empty")

        issued_at = self._now()
        expires_at = issued_at + ttl
        to_encode = {
            "sub": subject,
            "type": token_type.value,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp())
        }
        token = jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

        return Credential(
            token=token,
            subject=subject,
            issued_at=issued_at,
            expires_at=expires_at
        )

    def decode(self, token: str) -> TokenData:
        """
        Verify signature and expiry and return the claims.

        Raises:
            InvalidCredential: bad signature, malformed token, missing
                claims, or now > exp
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False}
            )
        except JWTError as e:
            logger.warning(f"JWT decode error: {e}")
            raise InvalidCredential() from e

        subject = payload.get("sub")
        exp = payload.get("exp")
        raw_type = payload.get("type")
        if not subject or not isinstance(exp, (int, float)) or raw_type not in TokenType._value2member_map_:
            logger.warning("JWT missing required claims")
            raise InvalidCredential()

        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        if self.clock() > expires_at:
            raise InvalidCredential("Credential has expired")

        iat = payload.get("iat")
        return TokenData(
            subject=subject,
            token_type=TokenType(raw_type),
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc) if isinstance(iat, (int, float)) else None,
            expires_at=expires_at
        )

    # ---------- access tokens ----------

    def issue(self, subject: str) -> Credential:
        """Create an access credential for a policy holder ID"""
        return self._encode(subject, TokenType.access, self.access_ttl)

    def validate(self, token: str) -> str:
        """Return the subject of a valid access token"""
        data = self.decode(token)
        if data.token_type != TokenType.access:
            logger.warning(f"Rejected {data.token_type.value} token used as access credential")
            raise InvalidCredential("Invalid token type")
        return data.subject

    # ---------- confirmation tokens ----------

    def issue_confirmation(self, subject: str) -> Credential:
        """Create a signup confirmation token for a policy holder ID"""
        return self._encode(subject, TokenType.confirmation, self.confirmation_ttl)

    def validate_confirmation(self, token: str) -> str:
        """Return the subject of a valid confirmation token"""
        data = self.decode(token)
        if data.token_type != TokenType.confirmation:
            logger.warning(f"Rejected {data.token_type.value} token used as confirmation token")
            raise InvalidCredential("Invalid token type")
        return data.subject
