"""
Identity Core - Database Models

SQLAlchemy models for policy holders, their linked identities and the
single policy each holder may own.

Uniqueness is enforced by the database and is the only serialization
point for concurrent signups and policy creation:
- (provider, provider_user_id) maps to at most one holder
- a holder has at most one identity per provider
- a holder owns at most one policy
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, Any
from enum import Enum

from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.ext.declarative import declarative_base

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdentityProvider(str, Enum):
    """Supported federated identity providers"""
    GOOGLE = "google"
    FACEBOOK = "facebook"


class PolicyHolderDB(Base):
    """
    Policy Holder - Central Identity Table

    One row per person, independent of the login method used.
    policy_holder_id is assigned on creation and never changes.
    Email is not unique: a federated login never merges into a local
    signup that shares the address.
    """
    __tablename__ = "policy_holder"

    id = Column(String(36), primary_key=True, default=_new_id)
    policy_holder_id = Column(String(36), unique=True, nullable=False, index=True, default=_new_id)
    email = Column(String(255), index=True)
    display_name = Column(String(255))
    confirmed = Column(Boolean, nullable=False, default=False)
    confirmed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    federated_identities = relationship(
        "FederatedIdentityDB", back_populates="holder", lazy="selectin"
    )
    local_credential = relationship(
        "LocalCredentialDB", back_populates="holder", uselist=False, lazy="selectin"
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "policy_holder_id": self.policy_holder_id,
            "email": self.email,
            "display_name": self.display_name,
            "confirmed": self.confirmed,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "federated_identities": [fi.to_dict() for fi in self.federated_identities],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class FederatedIdentityDB(Base):
    """
    Federated Identity - (provider, provider_user_id) linked to a holder

    Added by the reconciler, never removed.
    """
    __tablename__ = "federated_identity"
    __table_args__ = (
        UniqueConstraint("provider", "provider_user_id", name="uq_federated_identity_provider_user"),
        UniqueConstraint("holder_id", "provider", name="uq_federated_identity_holder_provider"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    holder_id = Column(String(36), ForeignKey("policy_holder.id", ondelete="CASCADE"), nullable=False)
    provider = Column(String(30), nullable=False)
    provider_user_id = Column(String(255), nullable=False)
    display_name = Column(String(255))
    email = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    holder = relationship("PolicyHolderDB", back_populates="federated_identities")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "provider_user_id": self.provider_user_id,
            "display_name": self.display_name,
            "email": self.email,
        }


class LocalCredentialDB(Base):
    """
    Local Credential - email/password login for holders created by signup
    """
    __tablename__ = "local_credential"

    id = Column(String(36), primary_key=True, default=_new_id)
    holder_id = Column(String(36), ForeignKey("policy_holder.id", ondelete="CASCADE"), nullable=False, unique=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    holder = relationship("PolicyHolderDB", back_populates="local_credential")


class PolicyDB(Base):
    """
    Policy - the single resource owned by a holder

    owner_id is unique, so a second insert for the same holder is
    rejected by the database.
    """
    __tablename__ = "policy"

    id = Column(String(36), primary_key=True, default=_new_id)
    policy_id = Column(String(36), unique=True, nullable=False, default=_new_id)
    owner_id = Column(String(36), ForeignKey("policy_holder.id", ondelete="CASCADE"), nullable=False, unique=True)
    ethereum_address = Column(String(255))
    attributes = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
