"""
Domain Models for the Talent Rebate Engine

These dataclasses provide type-safe representations of all business entities.
All rates use Decimal for precision and are percentages in [0, 100].
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

INDIVIDUAL = "individual"
PLATFORMS = ("douyin", "xiaohongshu", "bilibili", "kuaishou")


class RebateMode:
    SYNC = "sync"
    INDEPENDENT = "independent"


class RebateSource:
    AGENCY = "agency"
    PERSONAL = "personal"
    DEFAULT = "default"
    CUSTOMER = "customer"


class ChangeSource:
    AGENCY_BIND = "agency_bind"
    AGENCY_UNBIND = "agency_unbind"
    AGENCY_SYNC = "agency_sync"
    SET_INDEPENDENT = "set_independent"
    CUSTOMER_OVERRIDE = "customer_override"


class TargetType:
    TALENT = "talent"
    CUSTOMER_TALENT = "customer_talent"


class RecordStatus:
    ACTIVE = "active"
    EXPIRED = "expired"


class RelationStatus:
    ACTIVE = "active"
    REMOVED = "removed"


def to_decimal(value) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


def to_rate(value: Decimal | None) -> float | None:
    """Convert a Decimal rate to a float with 2 decimal places."""
    if value is None:
        return None
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_datetime(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


# =============================================================================
# AFFILIATION
# =============================================================================


@dataclass(frozen=True)
class Unaffiliated:
    """A talent that belongs to no agency."""


@dataclass(frozen=True)
class AgencyAffiliation:
    """A talent bound to one agency."""

    agency_id: str


Affiliation = Union[Unaffiliated, AgencyAffiliation]


def affiliation_from_agency_id(agency_id: str | None) -> Affiliation:
    """Translate a stored agencyId (None or 'individual' = unaffiliated)."""
    if not agency_id or agency_id == INDIVIDUAL:
        return Unaffiliated()
    return AgencyAffiliation(agency_id)


def agency_id_from_affiliation(affiliation: Affiliation) -> str:
    if isinstance(affiliation, AgencyAffiliation):
        return affiliation.agency_id
    return INDIVIDUAL


# =============================================================================
# CURRENT STATE MODELS
# =============================================================================


@dataclass
class CurrentRebate:
    """The rate currently applied to a talent (authoritative state)."""

    rate: Decimal | None
    source: str = RebateSource.DEFAULT
    effective_date: str | None = None
    last_updated: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "CurrentRebate":
        return cls(
            rate=to_decimal(data.get("rate")),
            source=data.get("source", RebateSource.DEFAULT),
            effective_date=data.get("effectiveDate"),
            last_updated=parse_datetime(data.get("lastUpdated")),
        )

    def to_dict(self) -> dict:
        return {
            "rate": to_rate(self.rate),
            "source": self.source,
            "effectiveDate": self.effective_date,
            "lastUpdated": to_iso(self.last_updated),
        }


@dataclass
class Talent:
    """A creator account on one platform, keyed by (one_id, platform)."""

    one_id: str
    platform: str
    name: str = ""
    agency_id: str = INDIVIDUAL
    rebate_mode: str = RebateMode.SYNC
    current_rebate: CurrentRebate | None = None
    platform_account_id: str | None = None
    last_rebate_sync_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def affiliation(self) -> Affiliation:
        return affiliation_from_agency_id(self.agency_id)

    @property
    def current_rate(self) -> Decimal | None:
        return self.current_rebate.rate if self.current_rebate else None

    @classmethod
    def from_dict(cls, data: dict) -> "Talent":
        rebate = data.get("currentRebate")
        return cls(
            one_id=data["oneId"],
            platform=data["platform"],
            name=data.get("name", ""),
            agency_id=data.get("agencyId") or INDIVIDUAL,
            rebate_mode=data.get("rebateMode") or RebateMode.SYNC,
            current_rebate=CurrentRebate.from_dict(rebate) if rebate else None,
            platform_account_id=data.get("platformAccountId"),
            last_rebate_sync_at=parse_datetime(data.get("lastRebateSyncAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
        )

    def to_dict(self) -> dict:
        return {
            "oneId": self.one_id,
            "platform": self.platform,
            "name": self.name,
            "platformAccountId": self.platform_account_id,
            "agencyId": self.agency_id,
            "rebateMode": self.rebate_mode,
            "currentRebate": self.current_rebate.to_dict() if self.current_rebate else None,
            "lastRebateSyncAt": to_iso(self.last_rebate_sync_at),
            "updatedAt": to_iso(self.updated_at),
        }


@dataclass
class Agency:
    """An MCN/agency with per-platform base rates. Read-only here."""

    id: str
    name: str
    base_rebates: dict[str, Decimal] = field(default_factory=dict)

    def base_rebate(self, platform: str) -> Decimal | None:
        return self.base_rebates.get(platform)

    @classmethod
    def from_dict(cls, data: dict) -> "Agency":
        platforms = (data.get("rebateConfig") or {}).get("platforms") or {}
        rates = {}
        for platform, config in platforms.items():
            if config and config.get("baseRebate") is not None:
                rates[platform] = Decimal(str(config["baseRebate"]))
        return cls(id=data["id"], name=data["name"], base_rebates=rates)


@dataclass
class Customer:
    id: str
    code: str
    name: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Customer":
        return cls(id=data["id"], code=data.get("code") or data["id"], name=data.get("name", ""))


@dataclass
class CustomerRebate:
    """Customer-specific override stored on a customer/talent relation."""

    enabled: bool
    rate: Decimal | None = None
    effective_date: str | None = None
    last_updated_at: datetime | None = None
    updated_by: str = "system"
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "CustomerRebate":
        return cls(
            enabled=bool(data.get("enabled", False)),
            rate=to_decimal(data.get("rate")),
            effective_date=data.get("effectiveDate"),
            last_updated_at=parse_datetime(data.get("lastUpdatedAt")),
            updated_by=data.get("updatedBy", "system"),
            notes=data.get("notes"),
        )

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "rate": to_rate(self.rate),
            "effectiveDate": self.effective_date,
            "lastUpdatedAt": to_iso(self.last_updated_at),
            "updatedBy": self.updated_by,
            "notes": self.notes,
        }


@dataclass
class CustomerTalentRelation:
    """Membership of a talent in a customer's talent pool."""

    customer_id: str
    talent_one_id: str
    platform: str
    status: str = RelationStatus.ACTIVE
    customer_rebate: CustomerRebate | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.customer_id, self.talent_one_id, self.platform)

    @property
    def is_active(self) -> bool:
        return self.status == RelationStatus.ACTIVE

    @classmethod
    def from_dict(cls, data: dict) -> "CustomerTalentRelation":
        rebate = data.get("customerRebate")
        return cls(
            customer_id=data["customerId"],
            talent_one_id=data["talentOneId"],
            platform=data["platform"],
            status=data.get("status", RelationStatus.ACTIVE),
            customer_rebate=CustomerRebate.from_dict(rebate) if rebate else None,
        )


# =============================================================================
# LEDGER MODELS
# =============================================================================


@dataclass(frozen=True)
class LedgerKey:
    """Identifies the subject of ledger rows: (target_type, target_id, platform)."""

    target_type: str
    target_id: str
    platform: str

    @classmethod
    def for_talent(cls, one_id: str, platform: str) -> "LedgerKey":
        return cls(TargetType.TALENT, one_id, platform)

    @classmethod
    def for_customer_talent(cls, customer_code: str, one_id: str, platform: str) -> "LedgerKey":
        return cls(TargetType.CUSTOMER_TALENT, f"{customer_code}:{one_id}", platform)


@dataclass
class RebateConfigRecord:
    """One rate-setting event. Only status/expiry_date ever change."""

    config_id: str
    target_type: str
    target_id: str
    platform: str
    rebate_rate: Decimal
    previous_rate: Decimal | None
    effective_date: str
    created_at: datetime
    change_source: str
    created_by: str = "system"
    expiry_date: datetime | None = None
    status: str = RecordStatus.ACTIVE
    metadata: dict = field(default_factory=dict)

    @property
    def key(self) -> LedgerKey:
        return LedgerKey(self.target_type, self.target_id, self.platform)

    def to_dict(self) -> dict:
        return {
            "configId": self.config_id,
            "targetType": self.target_type,
            "targetId": self.target_id,
            "platform": self.platform,
            "rebateRate": to_rate(self.rebate_rate),
            "previousRate": to_rate(self.previous_rate),
            "effectiveDate": self.effective_date,
            "expiryDate": to_iso(self.expiry_date),
            "status": self.status,
            "createdBy": self.created_by,
            "createdAt": to_iso(self.created_at),
            "changeSource": self.change_source,
            "metadata": self.metadata,
        }


# =============================================================================
# RATE LIBRARY MODELS
# =============================================================================


@dataclass
class RateLibraryImport:
    """One imported version of the external company rate library."""

    import_id: str
    file_name: str
    record_count: int
    imported_at: datetime
    is_default: bool = False
    note: str | None = None

    def to_dict(self) -> dict:
        return {
            "importId": self.import_id,
            "fileName": self.file_name,
            "recordCount": self.record_count,
            "importedAt": to_iso(self.imported_at),
            "isDefault": self.is_default,
            "note": self.note,
        }


@dataclass
class RateLibraryRow:
    import_id: str
    account_id: str
    nickname: str
    mcn: str
    rebate_rate: Decimal
    raw_remark: str | None = None


# =============================================================================
# RESULT MODELS
# =============================================================================


@dataclass(frozen=True)
class ResolvedRate:
    """The effective rate and the tier it came from."""

    rate: Decimal
    source: str

    def to_dict(self) -> dict:
        return {"rate": to_rate(self.rate), "source": self.source}


class ItemStatus:
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemResult:
    """Outcome of one item in a batch request."""

    key: str
    status: str
    reason: str | None = None
    details: dict = field(default_factory=dict)
    is_error: bool = False


@dataclass
class BatchResult:
    """
    Shared result of every batch mutator.

    `success_status` names the succeeded state in responses ("bound",
    "unbound", "updated"). Skipped items count as skipped whether or not they
    are also reported in `errors`.
    """

    success_status: str = ItemStatus.SUCCEEDED
    key_field: str = "oneId"
    items: list[ItemResult] = field(default_factory=list)

    def succeed(self, key: str, **details) -> ItemResult:
        return self._add(ItemResult(key, ItemStatus.SUCCEEDED, details=details))

    def skip(self, key: str, reason: str | None = None, report: bool = False, **details) -> ItemResult:
        return self._add(ItemResult(key, ItemStatus.SKIPPED, reason, details, is_error=report))

    def fail(self, key: str, reason: str, **details) -> ItemResult:
        return self._add(ItemResult(key, ItemStatus.FAILED, reason, details, is_error=True))

    def _add(self, item: ItemResult) -> ItemResult:
        self.items.append(item)
        return item

    def mark_failed(self, key: str, reason: str) -> None:
        """Turn a succeeded item into a failure, e.g. when its bulk write op failed."""
        for item in self.items:
            if item.key == key and item.status == ItemStatus.SUCCEEDED:
                item.status = ItemStatus.FAILED
                item.reason = reason
                item.is_error = True

    def _count(self, status: str) -> int:
        return sum(1 for item in self.items if item.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(ItemStatus.SUCCEEDED)

    @property
    def skipped(self) -> int:
        return self._count(ItemStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(ItemStatus.FAILED)

    @property
    def errors(self) -> list[ItemResult]:
        return [item for item in self.items if item.is_error]

    def _status_label(self, item: ItemResult) -> str:
        if item.status == ItemStatus.SUCCEEDED:
            return self.success_status
        return item.status

    def to_dict(self) -> dict:
        results = []
        for item in self.items:
            entry = {self.key_field: item.key, "status": self._status_label(item)}
            if item.reason:
                entry["reason"] = item.reason
            entry.update(item.details)
            results.append(entry)

        errors = []
        for item in self.errors:
            entry = {self.key_field: item.key, "reason": item.reason}
            entry.update(item.details)
            errors.append(entry)

        return {
            self.success_status: self.succeeded,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": errors,
            "results": results,
        }
