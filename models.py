import uuid

from sqlalchemy import Column, String, DateTime, Text, UniqueConstraint
from sqlalchemy.sql import func

from database import Base
from verification import Provenance, StoredCredential, from_stored


class Account(Base):
    """
    One account in the password manager.

    `password` holds the image-derived credential; `type` says which
    verification formula applies to it. Neither changes after creation.
    """

    __tablename__ = "accounts"
    __table_args__ = (UniqueConstraint("name", name="uq_account_name"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(128), nullable=False, index=True)
    username = Column(String(128), nullable=False)
    password = Column(String(64), nullable=False)
    notes = Column(Text, nullable=False, default="")
    type = Column(String(16), nullable=False, default=Provenance.UPLOADED.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def stored_credential(self) -> StoredCredential:
        return from_stored(self.password, self.type)

    def to_dict(self) -> dict:
        """Public view of the account; the credential is left out."""
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "notes": self.notes or "",
            "type": self.type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
