"""
Identity Core - Exceptions

Error taxonomy shared by the credential issuer, the federated identity
reconciler, the policy resolver and the store.

Each error carries a stable ``error`` code and the HTTP status the gateway
reports it with. Only ``StoreUnavailable`` is retryable.
"""

from typing import Optional


class IdentityError(Exception):
    """Base exception for identity and policy access errors"""
    error_code = "identity_error"
    status_code = 400
    retryable = False
    default_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ==================== CREDENTIALS ====================

class InvalidCredential(IdentityError):
    """Token is malformed, has a bad signature, the wrong type, or expired"""
    error_code = "invalid_credential"
    status_code = 401
    default_message = "Invalid or expired credential"


class ConfirmationPending(IdentityError):
    """Local login attempted before the signup was confirmed"""
    error_code = "confirmation_pending"
    status_code = 403
    default_message = "Signup has not been confirmed yet"


class EmailAlreadyRegistered(IdentityError):
    error_code = "email_already_registered"
    status_code = 409
    default_message = "Email is already registered"


# ==================== FEDERATED LOGIN ====================

class InvalidProfile(IdentityError):
    """Provider profile is missing the provider user ID"""
    error_code = "invalid_profile"
    status_code = 400
    default_message = "Provider profile is incomplete"


class ProviderVerificationFailed(IdentityError):
    """Provider assertion could not be verified (detail is logged, not returned)"""
    error_code = "federated_login_failed"
    status_code = 401
    default_message = "Federated login failed"


# ==================== POLICY ====================

class AlreadyOwned(IdentityError):
    error_code = "already_owned"
    status_code = 409
    default_message = "Policy holder already owns a policy"


class NoPolicy(IdentityError):
    error_code = "no_policy"
    status_code = 404
    default_message = "Policy holder does not own a policy"


class NoPolicyHolder(IdentityError):
    error_code = "no_policy_holder"
    status_code = 404
    default_message = "Policy holder not found"


class InvalidAddress(IdentityError):
    error_code = "invalid_address"
    status_code = 422
    default_message = "Ethereum address must not be empty"


# ==================== STORE ====================

class StoreUnavailable(IdentityError):
    """Identity store could not be reached; callers may retry with backoff"""
    error_code = "store_unavailable"
    status_code = 503
    retryable = True
    default_message = "Service temporarily unavailable"


class DuplicateRecord(IdentityError):
    """
    Raised by the store when a unique index rejects a create.

    Means another request created the record first. Callers re-read
    instead of surfacing it.
    """
    error_code = "duplicate_record"
    status_code = 409
    default_message = "Record already exists"
