"""
Comparison Engine

Read-only reconciliation of talent rates against an imported company rate
library. Library rows name their organization as free text (the "MCN"
column); `affiliations_from_library_label` is the only place that text is
interpreted.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from ..errors import NotFoundError
from ..models import (
    Affiliation,
    AgencyAffiliation,
    RateLibraryRow,
    Talent,
    Unaffiliated,
    agency_id_from_affiliation,
    to_rate,
)
from ..store import AgencyDirectory, RateLibraryImportStore, TalentDirectory
from .resolver import RateResolver

logger = logging.getLogger(__name__)

UNAFFILIATED_KEYWORDS = frozenset({"野生", "个人", "无", "", "individual"})
UNAFFILIATED_MARKER = "野生"


def affiliations_from_library_label(
    label: str | None, agency_ids_by_name: dict[str, set[str]]
) -> frozenset[Affiliation]:
    """
    Translate a library MCN label into the affiliations it can stand for.

    Wildcard keywords mean an unaffiliated talent. Anything else names every
    agency carrying that name (case-insensitive, names are not unique);
    unknown names give an empty set and never match a talent's context.
    """
    normalized = (label or "").strip().casefold()
    if normalized in UNAFFILIATED_KEYWORDS or UNAFFILIATED_MARKER in normalized:
        return frozenset({Unaffiliated()})
    return frozenset(AgencyAffiliation(agency_id) for agency_id in agency_ids_by_name.get(normalized, ()))


class DiffType:
    NO_MATCH = "noMatch"
    COMPANY_HIGHER = "companyHigher"
    AW_HIGHER = "awHigher"
    EQUAL = "equal"


@dataclass
class LibraryMatch:
    mcn: str
    rebate_rate: Decimal
    is_same_agency: bool

    def to_dict(self) -> dict:
        return {"mcn": self.mcn, "rebateRate": to_rate(self.rebate_rate), "isSameAgency": self.is_same_agency}


@dataclass
class ComparisonRow:
    talent: Talent
    agency_name: str | None
    current_rate: Decimal
    matches: list[LibraryMatch]
    max_company_rebate: Decimal | None
    same_agency_rebate: Decimal | None
    diff_type: str

    @property
    def can_sync(self) -> bool:
        return self.same_agency_rebate is not None and self.same_agency_rebate > self.current_rate

    @property
    def has_reference_only(self) -> bool:
        """A cross-context row beats the current rate but cannot be synced."""
        if self.can_sync:
            return False
        return any(not m.is_same_agency and m.rebate_rate > self.current_rate for m in self.matches)

    def to_dict(self) -> dict:
        return {
            "talentId": self.talent.one_id,
            "talentName": self.talent.name,
            "platformAccountId": self.talent.platform_account_id,
            "awAgencyId": agency_id_from_affiliation(self.talent.affiliation),
            "awAgencyName": self.agency_name,
            "awRebate": to_rate(self.current_rate),
            "rebateMode": self.talent.rebate_mode,
            "companyRecords": [match.to_dict() for match in self.matches],
            "maxCompanyRebate": to_rate(self.max_company_rebate),
            "sameAgencyRebate": to_rate(self.same_agency_rebate),
            "canSync": self.can_sync,
            "syncRebate": to_rate(self.same_agency_rebate) if self.can_sync else None,
            "diffType": self.diff_type,
        }


@dataclass
class ComparisonSummary:
    total: int = 0
    matched: int = 0
    unmatched: int = 0
    can_sync: int = 0
    reference_only: int = 0
    company_higher: int = 0
    aw_higher: int = 0
    equal: int = 0

    def add(self, row: ComparisonRow) -> None:
        self.total += 1
        if not row.matches:
            self.unmatched += 1
            return
        self.matched += 1
        if row.can_sync:
            self.can_sync += 1
        if row.has_reference_only:
            self.reference_only += 1
        if row.diff_type == DiffType.COMPANY_HIGHER:
            self.company_higher += 1
        elif row.diff_type == DiffType.AW_HIGHER:
            self.aw_higher += 1
        elif row.diff_type == DiffType.EQUAL:
            self.equal += 1

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "canSync": self.can_sync,
            "referenceOnly": self.reference_only,
            "companyHigher": self.company_higher,
            "awHigher": self.aw_higher,
            "equal": self.equal,
        }


class ComparisonEngine:
    """Compares every talent of a platform with one library version."""

    # Rate assumed for a talent that has never had one
    DEFAULT_AW_REBATE = Decimal("5")

    def __init__(
        self,
        talents: TalentDirectory,
        agencies: AgencyDirectory,
        library: RateLibraryImportStore,
        resolver: RateResolver,
    ):
        self.talents = talents
        self.agencies = agencies
        self.library = library
        self.resolver = resolver

    def compare(self, platform: str, import_id: str | None = None) -> dict:
        import_id = self._resolve_import_id(import_id)

        all_agencies = self.agencies.list_all()
        agency_names = {agency.id: agency.name for agency in all_agencies}
        agency_ids_by_name: dict[str, set[str]] = {}
        for agency in all_agencies:
            agency_ids_by_name.setdefault(agency.name.strip().casefold(), set()).add(agency.id)

        talents = self.talents.list_by_platform(platform)
        account_ids = [t.platform_account_id for t in talents if t.platform_account_id]
        rows_by_account = self.library.rows_by_account(import_id, account_ids)

        summary = ComparisonSummary()
        comparisons = []
        for talent in talents:
            rows = rows_by_account.get(talent.platform_account_id, []) if talent.platform_account_id else []
            row = self._compare_talent(talent, rows, agency_names, agency_ids_by_name)
            summary.add(row)
            comparisons.append(row.to_dict())

        logger.info(
            f"compare {platform} against {import_id}: matched={summary.matched} "
            f"unmatched={summary.unmatched} canSync={summary.can_sync}"
        )
        return {"importId": import_id, "comparisons": comparisons, "summary": summary.to_dict()}

    def _resolve_import_id(self, import_id: str | None) -> str:
        """Explicit version if given, otherwise the version flagged default."""
        if import_id:
            if self.library.get_import(import_id) is None:
                raise NotFoundError(f"Library version not found: {import_id}")
            return import_id

        default = self.library.get_default_import()
        if default is None:
            raise NotFoundError("No rate library version available, import one first")
        return default.import_id

    def _compare_talent(
        self,
        talent: Talent,
        rows: list[RateLibraryRow],
        agency_names: dict[str, str],
        agency_ids_by_name: dict[str, set[str]],
    ) -> ComparisonRow:
        affiliation = talent.affiliation
        agency_name = None
        if isinstance(affiliation, AgencyAffiliation):
            agency_name = agency_names.get(affiliation.agency_id, "unknown agency")
        current_rate = self._current_rate(talent)

        matches = [
            LibraryMatch(
                mcn=row.mcn,
                rebate_rate=row.rebate_rate,
                is_same_agency=affiliation in affiliations_from_library_label(row.mcn, agency_ids_by_name),
            )
            for row in rows
        ]
        if not matches:
            return ComparisonRow(talent, agency_name, current_rate, [], None, None, DiffType.NO_MATCH)

        max_company_rebate = max(match.rebate_rate for match in matches)
        same_context = [match.rebate_rate for match in matches if match.is_same_agency]
        same_agency_rebate = max(same_context) if same_context else None

        if same_agency_rebate is None:
            diff_type = DiffType.NO_MATCH
        elif same_agency_rebate > current_rate:
            diff_type = DiffType.COMPANY_HIGHER
        elif same_agency_rebate < current_rate:
            diff_type = DiffType.AW_HIGHER
        else:
            diff_type = DiffType.EQUAL

        return ComparisonRow(
            talent, agency_name, current_rate, matches, max_company_rebate, same_agency_rebate, diff_type
        )

    def _current_rate(self, talent: Talent) -> Decimal:
        if talent.current_rate is None:
            return self.DEFAULT_AW_REBATE
        return self.resolver.resolve(talent).rate
