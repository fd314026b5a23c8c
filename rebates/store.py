"""
Directories

The narrow interfaces the operations consume, backed by SQLAlchemy tables.
Every method runs in its own session scope and returns detached domain
dataclasses, so callers only change state through an explicit write.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from .database import Database
from .models import (
    Agency,
    Customer,
    CustomerRebate,
    CustomerTalentRelation,
    CurrentRebate,
    LedgerKey,
    RateLibraryImport,
    RateLibraryRow,
    RebateConfigRecord,
    RecordStatus,
    Talent,
)
from .tables import (
    AgencyRow,
    CustomerRow,
    CustomerTalentRow,
    LibraryEntryRow,
    LibraryImportRow,
    RebateConfigRow,
    TalentRow,
)

logger = logging.getLogger(__name__)


@dataclass
class BulkWriteResult:
    """Outcome of an unordered bulk write: failed ops do not stop others."""

    matched: int = 0
    errors: list[dict] = field(default_factory=list)


@dataclass
class TalentUpdate:
    """Partial update of one talent, keyed by (one_id, platform)."""

    one_id: str
    platform: str
    fields: dict


@dataclass
class RelationUpdate:
    key: tuple[str, str, str]
    customer_rebate: CustomerRebate | None


# =============================================================================
# ROW <-> MODEL
# =============================================================================


def _talent(row: TalentRow) -> Talent:
    rebate = None
    if row.rate_source is not None or row.current_rate is not None:
        rebate = CurrentRebate(row.current_rate, row.rate_source, row.rate_effective_date, row.rate_updated_at)
    return Talent(
        one_id=row.one_id,
        platform=row.platform,
        name=row.name or "",
        agency_id=row.agency_id,
        rebate_mode=row.rebate_mode,
        current_rebate=rebate,
        platform_account_id=row.platform_account_id,
        last_rebate_sync_at=row.last_rebate_sync_at,
        updated_at=row.updated_at,
    )


def _set_current_rebate(row: TalentRow, rebate: CurrentRebate | None) -> None:
    row.current_rate = rebate.rate if rebate else None
    row.rate_source = rebate.source if rebate else None
    row.rate_effective_date = rebate.effective_date if rebate else None
    row.rate_updated_at = rebate.last_updated if rebate else None


def _agency(row: AgencyRow) -> Agency:
    rates = {platform: Decimal(str(rate)) for platform, rate in (row.base_rebates or {}).items() if rate is not None}
    return Agency(id=row.id, name=row.name, base_rebates=rates)


def _relation(row: CustomerTalentRow) -> CustomerTalentRelation:
    rebate = None
    if row.rebate_enabled is not None:
        rebate = CustomerRebate(
            enabled=row.rebate_enabled,
            rate=row.rebate_rate,
            effective_date=row.rebate_effective_date,
            last_updated_at=row.rebate_updated_at,
            updated_by=row.rebate_updated_by or "system",
            notes=row.rebate_notes,
        )
    return CustomerTalentRelation(row.customer_id, row.talent_one_id, row.platform, row.status, rebate)


def _set_customer_rebate(row: CustomerTalentRow, rebate: CustomerRebate | None) -> None:
    row.rebate_enabled = rebate.enabled if rebate else None
    row.rebate_rate = rebate.rate if rebate else None
    row.rebate_effective_date = rebate.effective_date if rebate else None
    row.rebate_updated_at = rebate.last_updated_at if rebate else None
    row.rebate_updated_by = rebate.updated_by if rebate else None
    row.rebate_notes = rebate.notes if rebate else None


def _config_record(row: RebateConfigRow) -> RebateConfigRecord:
    return RebateConfigRecord(
        config_id=row.config_id,
        target_type=row.target_type,
        target_id=row.target_id,
        platform=row.platform,
        rebate_rate=row.rebate_rate,
        previous_rate=row.previous_rate,
        effective_date=row.effective_date,
        created_at=row.created_at,
        change_source=row.change_source,
        created_by=row.created_by,
        expiry_date=row.expiry_date,
        status=row.status,
        metadata=dict(row.details or {}),
    )


def _config_row(record: RebateConfigRecord) -> RebateConfigRow:
    return RebateConfigRow(
        config_id=record.config_id,
        target_type=record.target_type,
        target_id=record.target_id,
        platform=record.platform,
        rebate_rate=record.rebate_rate,
        previous_rate=record.previous_rate,
        effective_date=record.effective_date,
        expiry_date=record.expiry_date,
        status=record.status,
        created_by=record.created_by,
        created_at=record.created_at,
        change_source=record.change_source,
        details=dict(record.metadata),
    )


def _library_import(row: LibraryImportRow) -> RateLibraryImport:
    return RateLibraryImport(
        import_id=row.import_id,
        file_name=row.file_name,
        record_count=row.record_count,
        imported_at=row.imported_at,
        is_default=row.is_default,
        note=row.note,
    )


def _key_filter(key: LedgerKey):
    return (
        RebateConfigRow.target_type == key.target_type,
        RebateConfigRow.target_id == key.target_id,
        RebateConfigRow.platform == key.platform,
    )


# =============================================================================
# DIRECTORIES
# =============================================================================


class TalentDirectory:
    """Bulk lookup and bulk conditional update of talents."""

    UPDATABLE_FIELDS = ("agency_id", "rebate_mode", "current_rebate", "last_rebate_sync_at", "updated_at")

    def __init__(self, db: Database):
        self.db = db

    def add(self, talent: Talent) -> None:
        row = TalentRow(
            one_id=talent.one_id,
            platform=talent.platform,
            name=talent.name,
            platform_account_id=talent.platform_account_id,
            agency_id=talent.agency_id,
            rebate_mode=talent.rebate_mode,
            last_rebate_sync_at=talent.last_rebate_sync_at,
            updated_at=talent.updated_at,
        )
        _set_current_rebate(row, talent.current_rebate)
        with self.db.session() as session:
            session.merge(row)

    def find_one(self, one_id: str, platform: str) -> Talent | None:
        with self.db.session() as session:
            row = session.get(TalentRow, (one_id, platform))
            return _talent(row) if row is not None else None

    def find_many(self, one_ids: list[str], platform: str) -> dict[str, Talent]:
        if not one_ids:
            return {}
        with self.db.session() as session:
            rows = session.scalars(
                select(TalentRow).where(TalentRow.platform == platform, TalentRow.one_id.in_(sorted(set(one_ids))))
            )
            return {row.one_id: _talent(row) for row in rows}

    def find_by_account_ids(self, account_ids: list[str], platform: str) -> list[Talent]:
        if not account_ids:
            return []
        with self.db.session() as session:
            rows = session.scalars(
                select(TalentRow)
                .where(TalentRow.platform == platform, TalentRow.platform_account_id.in_(sorted(set(account_ids))))
                .order_by(TalentRow.one_id)
            )
            return [_talent(row) for row in rows]

    def find_by_names(self, names: list[str], platform: str) -> list[Talent]:
        """Case-insensitive exact name match."""
        lowered = {name.lower() for name in names if name}
        if not lowered:
            return []
        with self.db.session() as session:
            rows = session.scalars(
                select(TalentRow)
                .where(TalentRow.platform == platform, func.lower(TalentRow.name).in_(sorted(lowered)))
                .order_by(TalentRow.one_id)
            )
            return [_talent(row) for row in rows]

    def list_by_platform(self, platform: str) -> list[Talent]:
        with self.db.session() as session:
            rows = session.scalars(
                select(TalentRow).where(TalentRow.platform == platform).order_by(TalentRow.one_id)
            )
            return [_talent(row) for row in rows]

    def bulk_update(self, updates: list[TalentUpdate]) -> BulkWriteResult:
        result = BulkWriteResult()
        with self.db.session() as session:
            for update_ in updates:
                unknown = set(update_.fields) - set(self.UPDATABLE_FIELDS)
                row = session.get(TalentRow, (update_.one_id, update_.platform))
                if row is None or unknown:
                    reason = "talent not found" if row is None else f"unknown fields: {sorted(unknown)}"
                    result.errors.append({"oneId": update_.one_id, "reason": reason})
                    continue
                for name, value in update_.fields.items():
                    if name == "current_rebate":
                        _set_current_rebate(row, value)
                    else:
                        setattr(row, name, value)
                result.matched += 1
        if result.errors:
            logger.warning(f"Talent bulk write finished with {len(result.errors)} failed operations")
        return result


class AgencyDirectory:
    def __init__(self, db: Database):
        self.db = db

    def add(self, agency: Agency) -> None:
        rates = {platform: str(rate) for platform, rate in agency.base_rebates.items()}
        with self.db.session() as session:
            session.merge(AgencyRow(id=agency.id, name=agency.name, base_rebates=rates))

    def get(self, agency_id: str) -> Agency | None:
        with self.db.session() as session:
            row = session.get(AgencyRow, agency_id)
            return _agency(row) if row is not None else None

    def list_all(self) -> list[Agency]:
        with self.db.session() as session:
            return [_agency(row) for row in session.scalars(select(AgencyRow).order_by(AgencyRow.id))]


class CustomerDirectory:
    def __init__(self, db: Database):
        self.db = db

    def add(self, customer: Customer) -> None:
        with self.db.session() as session:
            session.merge(CustomerRow(id=customer.id, code=customer.code, name=customer.name))

    def resolve(self, code_or_id: str) -> Customer | None:
        """Find a customer by its code first, then by its id."""
        with self.db.session() as session:
            row = session.scalars(select(CustomerRow).where(CustomerRow.code == code_or_id)).first()
            if row is None:
                row = session.get(CustomerRow, code_or_id)
            return Customer(row.id, row.code, row.name) if row is not None else None


class CustomerTalentRelationStore:
    def __init__(self, db: Database):
        self.db = db

    def add(self, relation: CustomerTalentRelation) -> None:
        row = CustomerTalentRow(
            customer_id=relation.customer_id,
            talent_one_id=relation.talent_one_id,
            platform=relation.platform,
            status=relation.status,
        )
        _set_customer_rebate(row, relation.customer_rebate)
        with self.db.session() as session:
            session.merge(row)

    def find_one(self, customer_id: str, talent_one_id: str, platform: str,
                 status: str | None = None) -> CustomerTalentRelation | None:
        with self.db.session() as session:
            row = session.get(CustomerTalentRow, (customer_id, talent_one_id, platform))
            if row is None or (status is not None and row.status != status):
                return None
            return _relation(row)

    def find_many(self, customer_id: str, platform: str, talent_one_ids: list[str],
                  status: str | None = None) -> dict[str, CustomerTalentRelation]:
        if not talent_one_ids:
            return {}
        query = select(CustomerTalentRow).where(
            CustomerTalentRow.customer_id == customer_id,
            CustomerTalentRow.platform == platform,
            CustomerTalentRow.talent_one_id.in_(sorted(set(talent_one_ids))),
        )
        if status is not None:
            query = query.where(CustomerTalentRow.status == status)
        with self.db.session() as session:
            return {row.talent_one_id: _relation(row) for row in session.scalars(query)}

    def update_rebate(self, key: tuple[str, str, str], customer_rebate: CustomerRebate | None) -> bool:
        with self.db.session() as session:
            return self._update(session, key, customer_rebate)

    def bulk_update(self, updates: list[RelationUpdate]) -> BulkWriteResult:
        result = BulkWriteResult()
        with self.db.session() as session:
            for update_ in updates:
                if self._update(session, update_.key, update_.customer_rebate):
                    result.matched += 1
                else:
                    result.errors.append({"talentOneId": update_.key[1], "reason": "relation not found"})
        return result

    def _update(self, session: Session, key: tuple[str, str, str], customer_rebate: CustomerRebate | None) -> bool:
        row = session.get(CustomerTalentRow, key)
        if row is None:
            return False
        _set_customer_rebate(row, customer_rebate)
        return True


class RebateConfigStore:
    """The ledger table, indexed on (target_type, target_id, platform, status)."""

    def __init__(self, db: Database):
        self.db = db

    def insert(self, record: RebateConfigRecord) -> None:
        with self.db.session() as session:
            session.add(_config_row(record))

    def record(self, record: RebateConfigRecord, expiry_date: datetime) -> int:
        """
        Insert `record` as the active row of its key and expire the key's
        other active rows, in one transaction. Returns the expired count.
        """
        key = record.key
        with self.db.session() as session:
            session.add(_config_row(record))
            session.flush()
            expired = session.execute(
                update(RebateConfigRow)
                .where(
                    *_key_filter(key),
                    RebateConfigRow.status == RecordStatus.ACTIVE,
                    RebateConfigRow.config_id != record.config_id,
                )
                .values(status=RecordStatus.EXPIRED, expiry_date=expiry_date)
            )
            return expired.rowcount

    def find(self, key: LedgerKey, status: str | None = None) -> list[RebateConfigRecord]:
        query = select(RebateConfigRow).where(*_key_filter(key))
        if status is not None:
            query = query.where(RebateConfigRow.status == status)
        with self.db.session() as session:
            return [_config_record(row) for row in session.scalars(query.order_by(RebateConfigRow.id))]

    def history(self, key: LedgerKey, limit: int, offset: int) -> tuple[int, list[RebateConfigRecord]]:
        with self.db.session() as session:
            total = session.scalar(select(func.count(RebateConfigRow.id)).where(*_key_filter(key)))
            # Row id breaks ties between rows created in the same instant
            rows = session.scalars(
                select(RebateConfigRow)
                .where(*_key_filter(key))
                .order_by(RebateConfigRow.created_at.desc(), RebateConfigRow.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return total or 0, [_config_record(row) for row in rows]


class RateLibraryImportStore:
    """Versions of the external rate library and their rows."""

    def __init__(self, db: Database):
        self.db = db

    def get_import(self, import_id: str) -> RateLibraryImport | None:
        with self.db.session() as session:
            row = session.get(LibraryImportRow, import_id)
            return _library_import(row) if row is not None else None

    def get_default_import(self) -> RateLibraryImport | None:
        with self.db.session() as session:
            row = session.scalars(select(LibraryImportRow).where(LibraryImportRow.is_default.is_(True))).first()
            return _library_import(row) if row is not None else None

    def list_imports(self) -> list[RateLibraryImport]:
        with self.db.session() as session:
            rows = session.scalars(
                select(LibraryImportRow).order_by(LibraryImportRow.imported_at.desc(), LibraryImportRow.import_id.desc())
            )
            return [_library_import(row) for row in rows]

    def insert_import(self, version: RateLibraryImport, rows: list[RateLibraryRow]) -> None:
        with self.db.session() as session:
            session.add(LibraryImportRow(
                import_id=version.import_id,
                file_name=version.file_name,
                record_count=version.record_count,
                imported_at=version.imported_at,
                is_default=version.is_default,
                note=version.note,
            ))
            session.add_all(
                LibraryEntryRow(
                    import_id=row.import_id,
                    account_id=row.account_id,
                    nickname=row.nickname,
                    mcn=row.mcn,
                    rebate_rate=row.rebate_rate,
                    raw_remark=row.raw_remark,
                )
                for row in rows
            )

    def set_default(self, import_id: str) -> None:
        with self.db.session() as session:
            session.execute(update(LibraryImportRow).values(is_default=False))
            session.execute(
                update(LibraryImportRow).where(LibraryImportRow.import_id == import_id).values(is_default=True)
            )

    def delete_import(self, import_id: str) -> int:
        """Remove a version and its rows. Returns the number of rows deleted."""
        with self.db.session() as session:
            deleted = session.execute(delete(LibraryEntryRow).where(LibraryEntryRow.import_id == import_id))
            session.execute(delete(LibraryImportRow).where(LibraryImportRow.import_id == import_id))
            return deleted.rowcount

    def rows_by_account(self, import_id: str, account_ids: list[str]) -> dict[str, list[RateLibraryRow]]:
        if not account_ids:
            return {}
        grouped: dict[str, list[RateLibraryRow]] = {}
        with self.db.session() as session:
            rows = session.scalars(
                select(LibraryEntryRow)
                .where(LibraryEntryRow.import_id == import_id, LibraryEntryRow.account_id.in_(sorted(set(account_ids))))
                .order_by(LibraryEntryRow.id)
            )
            for row in rows:
                grouped.setdefault(row.account_id, []).append(RateLibraryRow(
                    import_id=row.import_id,
                    account_id=row.account_id,
                    nickname=row.nickname,
                    mcn=row.mcn,
                    rebate_rate=row.rebate_rate,
                    raw_remark=row.raw_remark,
                ))
        return grouped
