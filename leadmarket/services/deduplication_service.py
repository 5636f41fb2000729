"""
Lead Deduplication Service

Gate between raw contact data and persisted leads:
- Fingerprint every incoming record (identity_resolution.calculate_hash_key)
- Partition a batch into new vs. duplicate against the known fingerprints
- Classify duplicates for the partner's rejection log
- Insert new leads with ON CONFLICT (hash_key) DO NOTHING

The existence check only decides what to report up front. Whether a lead is
actually created is decided by the unique constraint on leads.hash_key, so
two uploads racing on the same person cannot both insert it.
"""

import csv
import io
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from leadmarket.config import settings
from leadmarket.models.lead import Lead, PartnerUploadBatch
from leadmarket.services.identity_resolution import RawContactRecord, hash_record, normalize_email

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Contact details a partner may refresh by uploading a lead again
UPDATABLE_LEAD_FIELDS = ("first_name", "last_name", "phone", "company_name", "job_title", "city", "state")

# Chunk size for company-name IN (...) lookups
NAME_MATCH_CHUNK_SIZE = 50


class DedupScope(str, Enum):
    """Which known fingerprints a batch is checked against."""
    WORKSPACE = "WORKSPACE"        # Leads already in the target workspace
    MARKETPLACE = "MARKETPLACE"    # Every lead on the platform, any partner


class RejectionReason(str, Enum):
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    DUPLICATE_SAME_PARTNER = "DUPLICATE_SAME_PARTNER"      # Same partner, same lead
    DUPLICATE_CROSS_PARTNER = "DUPLICATE_CROSS_PARTNER"    # Another partner already owns it
    PLATFORM_OWNED_LEAD = "PLATFORM_OWNED_LEAD"            # Seed/platform lead, no partner
    DUPLICATE_IN_BATCH = "DUPLICATE_IN_BATCH"              # Repeated within the same upload


DUPLICATE_REASONS = frozenset({
    RejectionReason.DUPLICATE_SAME_PARTNER,
    RejectionReason.DUPLICATE_CROSS_PARTNER,
    RejectionReason.PLATFORM_OWNED_LEAD,
    RejectionReason.DUPLICATE_IN_BATCH,
})


def duplicate_percentage(duplicates: int, total: int) -> Decimal:
    """Percent of a batch that was duplicate, two decimals."""
    if not total:
        return Decimal("0.00")
    return (Decimal(duplicates) * 100 / Decimal(total)).quantize(Decimal("0.01"))


@dataclass
class FingerprintedRecord:
    row_number: int
    record: RawContactRecord
    hash_key: str
    first_row: Optional[int] = None  # Set for in-batch duplicates


@dataclass
class DuplicateCheckResult:
    new: List[FingerprintedRecord] = field(default_factory=list)
    duplicates: List[FingerprintedRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.new) + len(self.duplicates)

    @property
    def new_count(self) -> int:
        return len(self.new)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)

    @property
    def unique_hashes(self) -> set:
        return {item.hash_key for item in self.new}

    @property
    def duplicate_rate(self) -> Decimal:
        return duplicate_percentage(self.duplicate_count, self.total)

    def summary(self) -> str:
        return f"{self.duplicate_count} of {self.total} already existed"


@dataclass
class ExistingLeadRef:
    lead_id: uuid.UUID
    partner_id: Optional[uuid.UUID]
    hash_key: str


@dataclass
class RejectionLogEntry:
    row_number: int
    reason: RejectionReason
    message: str
    field: Optional[str] = None
    value: Optional[str] = None
    existing_lead_id: Optional[uuid.UUID] = None
    existing_partner_id: Optional[uuid.UUID] = None


@dataclass
class BatchCheckResult:
    partition: DuplicateCheckResult
    rejections: List[RejectionLogEntry]


@dataclass
class InsertResult:
    inserted: bool
    lead_id: Optional[uuid.UUID] = None


@dataclass
class IngestResult:
    total: int = 0
    inserted_lead_ids: List[uuid.UUID] = field(default_factory=list)
    updated_lead_ids: List[uuid.UUID] = field(default_factory=list)  # Same-partner re-uploads
    rejections: List[RejectionLogEntry] = field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_lead_ids)

    @property
    def duplicate_count(self) -> int:
        rejected = sum(1 for r in self.rejections if r.reason in DUPLICATE_REASONS)
        return rejected + len(self.updated_lead_ids)

    @property
    def rejected_count(self) -> int:
        return len(self.rejections)

    @property
    def duplicate_rate(self) -> Decimal:
        return duplicate_percentage(self.duplicate_count, self.total)


@dataclass
class PartnerDuplicateStats:
    partner_id: uuid.UUID
    total_leads: int
    duplicates_rejected: int

    @property
    def duplicate_rate(self) -> Decimal:
        """Share of everything the partner submitted that was a duplicate."""
        return duplicate_percentage(
            self.duplicates_rejected, self.total_leads + self.duplicates_rejected
        )


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class DuplicateDetector:
    """
    In-memory partition of a batch against a fingerprint index.

    The index is the set of fingerprints known before the batch started and
    is never mutated here. Repeats inside the batch are tracked separately;
    the first occurrence is kept as new.
    """

    def __init__(self, known_hashes: Iterable[str] = ()):
        self.known_hashes = set(known_hashes)

    def partition(
        self,
        records: Iterable[RawContactRecord],
        start_row: int = 1,
        seen: Optional[Dict[str, int]] = None,
        row_numbers: Optional[Sequence[int]] = None,
    ) -> DuplicateCheckResult:
        """
        Args:
            records: Raw records in upload order
            start_row: Row number of the first record (for rejection logs)
            seen: hash_key -> first row, shared across chunks of one batch
            row_numbers: Explicit row number per record, overrides start_row

        Returns:
            DuplicateCheckResult with records in upload order
        """
        if seen is None:
            seen = {}
        result = DuplicateCheckResult()

        numbered = zip(row_numbers, records) if row_numbers is not None else enumerate(records, start=start_row)
        for row_number, record in numbered:
            hash_key = hash_record(record)
            item = FingerprintedRecord(row_number=row_number, record=record, hash_key=hash_key)

            first_row = seen.get(hash_key)
            if first_row is not None:
                item.first_row = first_row
                result.duplicates.append(item)
            elif hash_key in self.known_hashes:
                result.duplicates.append(item)
            else:
                seen[hash_key] = row_number
                result.new.append(item)

        return result

    def partition_in_chunks(
        self,
        records: Sequence[RawContactRecord],
        chunk_size: int,
    ) -> DuplicateCheckResult:
        """Partition a large batch chunk by chunk with a shared in-batch index."""
        seen: Dict[str, int] = {}
        combined = DuplicateCheckResult()
        for index, chunk in enumerate(chunked(records, chunk_size)):
            part = self.partition(chunk, start_row=index * chunk_size + 1, seen=seen)
            combined.new.extend(part.new)
            combined.duplicates.extend(part.duplicates)
        return combined


def classify_duplicate(
    item: FingerprintedRecord,
    existing: Optional[ExistingLeadRef],
    partner_id: Optional[uuid.UUID],
) -> RejectionLogEntry:
    """Turn a duplicate into a rejection log entry with attribution."""
    if item.first_row is not None:
        return RejectionLogEntry(
            row_number=item.row_number,
            reason=RejectionReason.DUPLICATE_IN_BATCH,
            field="email",
            value=item.record.email,
            message=f"Duplicate of row {item.first_row} in this upload",
        )

    if existing is None or existing.partner_id is None:
        return RejectionLogEntry(
            row_number=item.row_number,
            reason=RejectionReason.PLATFORM_OWNED_LEAD,
            field="email",
            value=item.record.email,
            existing_lead_id=existing.lead_id if existing else None,
            message="Lead already exists on the platform",
        )

    if existing.partner_id == partner_id:
        return RejectionLogEntry(
            row_number=item.row_number,
            reason=RejectionReason.DUPLICATE_SAME_PARTNER,
            field="email",
            value=item.record.email,
            existing_lead_id=existing.lead_id,
            existing_partner_id=existing.partner_id,
            message="You already uploaded this lead",
        )

    return RejectionLogEntry(
        row_number=item.row_number,
        reason=RejectionReason.DUPLICATE_CROSS_PARTNER,
        field="email",
        value=item.record.email,
        existing_lead_id=existing.lead_id,
        existing_partner_id=existing.partner_id,
        message="Lead already supplied by another partner",
    )


def _name_key(record: RawContactRecord) -> Optional[Tuple[str, str, str]]:
    """(first, last, company) lowercased, or None unless all three are present."""
    parts = tuple((value or "").strip().lower() for value in (record.first_name, record.last_name, record.company_name))
    if not all(parts):
        return None
    return parts


def build_rejection_log(rejections: List[RejectionLogEntry]) -> str:
    """Render rejections as a downloadable CSV. Empty string when none."""
    if not rejections:
        return ""

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(["Row", "Reason", "Field", "Value", "Message"])
    for entry in rejections:
        writer.writerow([
            entry.row_number,
            entry.reason.value,
            entry.field or "",
            entry.value or "",
            entry.message,
        ])
    return buffer.getvalue().rstrip("\n")


class DeduplicationService:
    """Database-backed duplicate detection and conflict-safe lead insertion."""

    def __init__(self, db: AsyncSession, chunk_size: Optional[int] = None):
        self.db = db
        self.chunk_size = chunk_size or settings.DEDUP_QUERY_CHUNK_SIZE

    # ========================================================================
    # Lookups
    # ========================================================================

    async def find_existing(
        self,
        hash_keys: Iterable[str],
        scope: DedupScope = DedupScope.MARKETPLACE,
        workspace_id: Optional[uuid.UUID] = None,
        include_deleted: bool = False,
    ) -> Dict[str, ExistingLeadRef]:
        """Fetch known leads for the given fingerprints, chunked IN (...) queries."""
        if scope == DedupScope.WORKSPACE and workspace_id is None:
            raise ValueError("workspace_id is required for workspace-scoped deduplication")

        unique_keys = list(dict.fromkeys(hash_keys))
        found: Dict[str, ExistingLeadRef] = {}

        for chunk in chunked(unique_keys, self.chunk_size):
            stmt = select(Lead.id, Lead.partner_id, Lead.hash_key).where(Lead.hash_key.in_(chunk))
            if not include_deleted:
                stmt = stmt.where(Lead.is_deleted.is_(False))
            if scope == DedupScope.WORKSPACE:
                stmt = stmt.where(Lead.workspace_id == workspace_id)

            result = await self.db.execute(stmt)
            for row in result.all():
                found[row.hash_key] = ExistingLeadRef(
                    lead_id=row.id,
                    partner_id=row.partner_id,
                    hash_key=row.hash_key,
                )

        return found

    async def check_batch(
        self,
        records: Sequence[RawContactRecord],
        partner_id: Optional[uuid.UUID] = None,
        workspace_id: Optional[uuid.UUID] = None,
        scope: DedupScope = DedupScope.MARKETPLACE,
        start_row: int = 1,
        seen: Optional[Dict[str, int]] = None,
        row_numbers: Optional[Sequence[int]] = None,
    ) -> BatchCheckResult:
        """Partition a batch and explain every duplicate."""
        hash_keys = [hash_record(r) for r in records]
        existing = await self.find_existing(hash_keys, scope=scope, workspace_id=workspace_id)

        partition = DuplicateDetector(existing.keys()).partition(
            records, start_row=start_row, seen=seen, row_numbers=row_numbers
        )
        rejections = [
            classify_duplicate(item, existing.get(item.hash_key), partner_id)
            for item in partition.duplicates
        ]
        return BatchCheckResult(partition=partition, rejections=rejections)

    # ========================================================================
    # Insertion
    # ========================================================================

    def _insert_statement(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(Lead)
        if dialect == "sqlite":
            return sqlite.insert(Lead)
        raise NotImplementedError(f"ON CONFLICT insert not supported for dialect {dialect}")

    async def insert_lead_if_fingerprint_absent(self, lead: Lead) -> InsertResult:
        """
        Insert a lead unless its hash_key is already stored.

        A conflict is a normal outcome (inserted=False), not an error.
        """
        values = {
            column.key: getattr(lead, column.key)
            for column in Lead.__table__.columns
            if getattr(lead, column.key) is not None
        }
        stmt = (
            self._insert_statement()
            .values(**values)
            .on_conflict_do_nothing(index_elements=[Lead.hash_key])
            .returning(Lead.id)
        )
        result = await self.db.execute(stmt)
        row = result.first()
        if row is None:
            return InsertResult(inserted=False)
        return InsertResult(inserted=True, lead_id=row[0])

    async def ingest_batch(
        self,
        records: Sequence[RawContactRecord],
        workspace_id: uuid.UUID,
        partner_id: Optional[uuid.UUID] = None,
        upload_batch_id: Optional[uuid.UUID] = None,
        scope: DedupScope = DedupScope.MARKETPLACE,
        chunk_size: Optional[int] = None,
    ) -> IngestResult:
        """
        Deduplicate and persist a batch, committing after every chunk.

        Ingestion is always marketplace-wide: hash_key is unique across the
        platform, so a lead known in another workspace can never be inserted
        again. Re-uploads by the owning partner refresh the stored lead.
        Aborting between chunks leaves only whole, committed chunks behind.

        Raises:
            ValueError: scope is WORKSPACE
        """
        if scope != DedupScope.MARKETPLACE:
            raise ValueError(
                "Leads are unique across the marketplace; ingest with MARKETPLACE scope "
                "and use check_workspace_duplicates for workspace-only checks"
            )

        chunk_size = chunk_size or settings.UPLOAD_CHUNK_SIZE
        outcome = IngestResult(total=len(records))
        seen: Dict[str, int] = {}

        for index, chunk in enumerate(chunked(records, chunk_size)):
            start_row = index * chunk_size + 1

            # Rows without an email never take part in deduplication
            valid_rows: List[int] = []
            valid_records: List[RawContactRecord] = []
            for row_number, record in enumerate(chunk, start=start_row):
                if normalize_email(record.email):
                    valid_rows.append(row_number)
                    valid_records.append(record)
                    continue
                outcome.rejections.append(RejectionLogEntry(
                    row_number=row_number,
                    reason=RejectionReason.MISSING_REQUIRED_FIELD,
                    field="email",
                    value=record.email,
                    message="Email is required",
                ))

            check = await self.check_batch(
                valid_records,
                partner_id=partner_id,
                workspace_id=workspace_id,
                scope=scope,
                seen=seen,
                row_numbers=valid_rows,
            )
            for item, rejection in zip(check.partition.duplicates, check.rejections):
                await self._settle_duplicate(item.record, rejection, outcome)

            for item in check.partition.new:
                record = item.record
                lead = Lead(
                    workspace_id=workspace_id,
                    partner_id=partner_id,
                    upload_batch_id=upload_batch_id,
                    email=record.email.strip(),
                    first_name=record.first_name,
                    last_name=record.last_name,
                    phone=record.phone,
                    company_name=record.company_name,
                    company_domain=record.company_domain,
                    job_title=record.job_title,
                    city=record.city,
                    state=record.state,
                    hash_key=item.hash_key,
                )
                insert = await self.insert_lead_if_fingerprint_absent(lead)
                if insert.inserted:
                    outcome.inserted_lead_ids.append(insert.lead_id)
                    continue

                # Lost the race to a concurrent upload, or the lead is soft-deleted
                existing = await self.find_existing(
                    [item.hash_key], scope=scope, workspace_id=workspace_id, include_deleted=True
                )
                rejection = classify_duplicate(item, existing.get(item.hash_key), partner_id)
                await self._settle_duplicate(record, rejection, outcome)

            await self.db.commit()

        outcome.rejections.sort(key=lambda r: r.row_number)
        if partner_id is not None:
            await self._record_upload_batch(outcome, workspace_id, partner_id, upload_batch_id)

        logger.info(
            f"Ingested batch {upload_batch_id}: {outcome.inserted_count} inserted, "
            f"{len(outcome.updated_lead_ids)} updated, "
            f"{outcome.duplicate_count} of {outcome.total} already existed"
        )
        return outcome

    async def _settle_duplicate(
        self,
        record: RawContactRecord,
        rejection: RejectionLogEntry,
        outcome: IngestResult,
    ) -> None:
        if (
            rejection.reason == RejectionReason.DUPLICATE_SAME_PARTNER
            and await self.update_existing_lead(rejection.existing_lead_id, record)
        ):
            outcome.updated_lead_ids.append(rejection.existing_lead_id)
            return
        outcome.rejections.append(rejection)

    async def _record_upload_batch(
        self,
        outcome: IngestResult,
        workspace_id: uuid.UUID,
        partner_id: uuid.UUID,
        upload_batch_id: Optional[uuid.UUID],
    ) -> PartnerUploadBatch:
        batch = None
        if upload_batch_id is not None:
            batch = await self.db.get(PartnerUploadBatch, upload_batch_id)
        if batch is None:
            batch = PartnerUploadBatch(
                id=upload_batch_id or uuid.uuid4(),
                partner_id=partner_id,
                workspace_id=workspace_id,
                total_rows=0,
                inserted_rows=0,
                duplicate_rows=0,
                rejected_rows=0,
            )
            self.db.add(batch)

        # Same batch id ingested in several calls accumulates
        batch.total_rows += outcome.total
        batch.inserted_rows += outcome.inserted_count
        batch.duplicate_rows += outcome.duplicate_count
        batch.rejected_rows += outcome.rejected_count
        await self.db.commit()
        return batch

    # ========================================================================
    # Same-partner updates & reporting
    # ========================================================================

    async def update_existing_lead(self, lead_id: uuid.UUID, record: RawContactRecord) -> bool:
        """
        Refresh a live lead with the non-empty fields of a re-upload.

        Identity fields (email, company_domain) and hash_key are left alone.
        Does not commit. Returns False when nothing was updated.
        """
        values = {}
        for name in UPDATABLE_LEAD_FIELDS:
            value = getattr(record, name)
            if value and value.strip():
                values[name] = value.strip()
        if not values:
            return False

        result = await self.db.execute(
            update(Lead)
            .where(Lead.id == lead_id, Lead.is_deleted.is_(False))
            .values(**values)
            .returning(Lead.id)
            .execution_options(synchronize_session="fetch")
        )
        return result.first() is not None

    async def get_partner_duplicate_stats(self, partner_id: uuid.UUID) -> PartnerDuplicateStats:
        """Leads a partner owns against duplicates rejected across its uploads."""
        total_leads = await self.db.scalar(
            select(func.count(Lead.id)).where(Lead.partner_id == partner_id)
        )
        duplicates = await self.db.scalar(
            select(func.coalesce(func.sum(PartnerUploadBatch.duplicate_rows), 0))
            .where(PartnerUploadBatch.partner_id == partner_id)
        )
        return PartnerDuplicateStats(
            partner_id=partner_id,
            total_leads=total_leads or 0,
            duplicates_rejected=int(duplicates or 0),
        )

    async def check_workspace_duplicates(
        self,
        workspace_id: uuid.UUID,
        candidates: Sequence[RawContactRecord],
    ) -> Set[int]:
        """
        Indexes of candidates that look like leads already in a workspace.

        Looser than the fingerprint check, for imports into a single
        workspace: a candidate matches on email (case-insensitive) or on
        first name, last name and company together. Repeats within the
        candidates are flagged after their first occurrence.
        """
        duplicates: Set[int] = set()

        emails = {
            index: candidate.email.strip().lower()
            for index, candidate in enumerate(candidates)
            if candidate.email and candidate.email.strip()
        }
        known_emails: Set[str] = set()
        for chunk in chunked(list(dict.fromkeys(emails.values())), self.chunk_size):
            result = await self.db.execute(
                select(func.lower(Lead.email)).where(
                    Lead.workspace_id == workspace_id,
                    Lead.is_deleted.is_(False),
                    func.lower(Lead.email).in_(chunk),
                )
            )
            known_emails.update(row[0] for row in result.all())
        duplicates.update(index for index, email in emails.items() if email in known_emails)

        name_keys: Dict[int, Tuple[str, str, str]] = {}
        for index, candidate in enumerate(candidates):
            key = _name_key(candidate)
            if key is not None and index not in duplicates:
                name_keys[index] = key
        companies = list(dict.fromkeys(key[2] for key in name_keys.values()))
        known_names: Set[Tuple[str, str, str]] = set()
        for chunk in chunked(companies, NAME_MATCH_CHUNK_SIZE):
            result = await self.db.execute(
                select(Lead.first_name, Lead.last_name, Lead.company_name).where(
                    Lead.workspace_id == workspace_id,
                    Lead.is_deleted.is_(False),
                    func.lower(func.trim(Lead.company_name)).in_(chunk),
                )
            )
            for row in result.all():
                key = _name_key(RawContactRecord(
                    email=None,
                    first_name=row.first_name,
                    last_name=row.last_name,
                    company_name=row.company_name,
                ))
                if key is not None:
                    known_names.add(key)
        duplicates.update(index for index, key in name_keys.items() if key in known_names)

        seen_emails: Set[str] = set()
        seen_names: Set[Tuple[str, str, str]] = set()
        for index, candidate in enumerate(candidates):
            if index in duplicates:
                continue
            email = emails.get(index)
            if email is not None:
                if email in seen_emails:
                    duplicates.add(index)
                    continue
                seen_emails.add(email)
            key = _name_key(candidate)
            if key is not None:
                if key in seen_names:
                    duplicates.add(index)
                    continue
                seen_names.add(key)

        if duplicates:
            logger.info(f"Workspace {workspace_id}: {len(duplicates)} of {len(candidates)} candidates already present")
        return duplicates
