"""Lead model.

A lead is one contact record owned by a workspace. Its hash_key is the
identity fingerprint computed at ingestion time; the unique constraint on it
is what makes two concurrent uploads of the same person resolve to a single
row.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from leadmarket.database import Base
from leadmarket.db_types import UUIDType


class Lead(Base):
    """Persisted contact record carrying its identity fingerprint."""
    __tablename__ = "leads"
    __table_args__ = (
        UniqueConstraint("hash_key", name="uq_leads_hash_key"),
        Index('ix_leads_workspace_hash', 'workspace_id', 'hash_key'),
        Index('ix_leads_partner_created', 'partner_id', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    workspace_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    partner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("partners.id", ondelete="SET NULL"),
        nullable=True,
        comment="Uploading partner; NULL for platform-owned leads"
    )
    upload_batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Contact
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    company_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    job_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Identity fingerprint, never changed after insert
    hash_key: Mapped[str] = mapped_column(String(64), nullable=False)

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<Lead(id={self.id}, email={self.email}, hash_key={self.hash_key[:12]}...)>"


class PartnerUploadBatch(Base):
    """Outcome counts of one partner upload, kept for duplicate statistics."""
    __tablename__ = "partner_upload_batches"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("partners.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    workspace_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)

    total_rows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    inserted_rows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duplicate_rows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rejected_rows: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Every rejected row, duplicates included"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<PartnerUploadBatch(id={self.id}, partner={self.partner_id}, duplicates={self.duplicate_rows})>"
