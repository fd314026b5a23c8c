"""
Agency Binding Coordinator

Batch bind/unbind of talents to agencies, with rate synchronization.

Items are processed sequentially. Ledger rows are written per item as the
loop goes; talent writes are collected and submitted as one unordered bulk
write at the end, so a failed write for one talent never blocks the others.
"""

import logging
from datetime import date, datetime, timezone

from ..errors import NotFoundError, ValidationError
from ..models import (
    INDIVIDUAL,
    Agency,
    AgencyAffiliation,
    BatchResult,
    ChangeSource,
    CurrentRebate,
    LedgerKey,
    RebateMode,
    RebateSource,
    Talent,
    Unaffiliated,
    agency_id_from_affiliation,
    to_rate,
)
from ..store import AgencyDirectory, TalentDirectory, TalentUpdate
from ..validators import RequestValidator
from .ledger import AuditLedger

logger = logging.getLogger(__name__)


def normalize_agency_name(name) -> str:
    return str(name).strip().casefold()


class MatchStatus:
    FOUND = "found"
    NOT_FOUND = "not_found"
    MULTIPLE_FOUND = "multiple_found"


def group_agencies_by_name(agencies: list[Agency]) -> dict[str, list[Agency]]:
    """Normalized name -> every agency carrying it. Names are not unique."""
    grouped: dict[str, list[Agency]] = {}
    for agency in agencies:
        grouped.setdefault(normalize_agency_name(agency.name), []).append(agency)
    return grouped


class AgencyBindingCoordinator:
    """Binds talents to agencies (by id or by name) and unbinds them."""

    MAX_BATCH_SIZE = 500
    UNKNOWN_AGENCY_NAME = "unknown agency"
    UNAFFILIATED_NAME = "independent talent"

    def __init__(self, talents: TalentDirectory, agencies: AgencyDirectory, ledger: AuditLedger):
        self.talents = talents
        self.agencies = agencies
        self.ledger = ledger
        self.validator = RequestValidator()

    # -------------------------------------------------------------------------
    # match preview
    # -------------------------------------------------------------------------

    def match_talents(self, platform: str, talents: list[dict]) -> dict:
        """
        Resolve `{platformAccountId?, name?}` inputs to talents before binding.

        The account id is tried first; when it finds nothing the name is
        matched exactly, ignoring case. Read-only.
        """
        self.validator.validate_batch(talents, self.MAX_BATCH_SIZE)
        agency_names = {agency.id: agency.name for agency in self.agencies.list_all()}

        matched = []
        summary = {"total": len(talents), "found": 0, "notFound": 0, "multipleFound": 0}
        for item in talents:
            account_id = item.get("platformAccountId")
            name = (item.get("name") or "").strip()
            if not account_id and not name:
                matched.append({"input": item, "talent": None, "status": MatchStatus.NOT_FOUND,
                                "message": "missing platformAccountId or name"})
                summary["notFound"] += 1
                continue

            candidates = self.talents.find_by_account_ids([account_id], platform) if account_id else []
            if not candidates and name:
                candidates = self.talents.find_by_names([name], platform)

            if not candidates:
                matched.append({"input": item, "talent": None, "status": MatchStatus.NOT_FOUND,
                                "message": "no matching talent"})
                summary["notFound"] += 1
            elif len(candidates) == 1:
                matched.append({"input": item, "talent": self._match_entry(candidates[0], agency_names),
                                "status": MatchStatus.FOUND})
                summary["found"] += 1
            else:
                matched.append({
                    "input": item,
                    "talent": None,
                    "status": MatchStatus.MULTIPLE_FOUND,
                    "message": f"{len(candidates)} talents match, pick one",
                    "candidates": [self._match_entry(talent, agency_names) for talent in candidates],
                })
                summary["multipleFound"] += 1

        logger.info(
            f"matchTalents {platform}: found={summary['found']} notFound={summary['notFound']} "
            f"multipleFound={summary['multipleFound']}"
        )
        return {"matched": matched, "summary": summary}

    def _match_entry(self, talent: Talent, agency_names: dict[str, str]) -> dict:
        affiliation = talent.affiliation
        if isinstance(affiliation, AgencyAffiliation):
            agency_name = agency_names.get(affiliation.agency_id, self.UNKNOWN_AGENCY_NAME)
        else:
            agency_name = self.UNAFFILIATED_NAME
        return {
            "oneId": talent.one_id,
            "name": talent.name,
            "platformAccountId": talent.platform_account_id,
            "platform": talent.platform,
            "agencyId": agency_id_from_affiliation(affiliation),
            "agencyName": agency_name,
        }

    # -------------------------------------------------------------------------
    # bind
    # -------------------------------------------------------------------------

    def bind_by_id(
        self,
        platform: str,
        agency_id: str,
        talents: list[dict],
        overwrite_existing: bool = False,
        created_by: str = "system",
    ) -> dict:
        """Bind a batch of talents to one agency. Unknown agency is a 404 for the whole request."""
        if not agency_id:
            raise ValidationError("Missing required parameter: agencyId")
        self.validator.validate_batch(talents, self.MAX_BATCH_SIZE)
        one_ids = self.validator.validate_one_ids(talents)

        target = self.agencies.get(agency_id)
        if target is None:
            raise NotFoundError(f"Agency not found: {agency_id}")

        agency_names = {agency.id: agency.name for agency in self.agencies.list_all()}
        existing = self.talents.find_many(one_ids, platform)

        result = BatchResult(success_status="bound")
        updates: list[TalentUpdate] = []
        for item in talents:
            one_id = item.get("oneId")
            if not one_id:
                result.fail("N/A", "missing oneId")
                continue
            self._bind_one(result, updates, existing.get(one_id), one_id, platform, target,
                           agency_names, overwrite_existing, created_by)

        self._flush(updates, result)
        logger.info(
            f"bindAgency {platform} -> {target.id}: bound={result.succeeded} "
            f"skipped={result.skipped} failed={result.failed}"
        )
        data = result.to_dict()
        data["targetAgency"] = {"id": target.id, "name": target.name}
        return data

    def bind_by_name(
        self,
        platform: str,
        talents: list[dict],
        overwrite_existing: bool = False,
        created_by: str = "system",
    ) -> dict:
        """
        Bind each talent to the agency named on its own item.

        Names match case-insensitively against one lookup table built for the
        whole request. An unknown name, or one shared by several agencies,
        fails only that item.
        """
        self.validator.validate_batch(talents, self.MAX_BATCH_SIZE)
        one_ids = self.validator.validate_one_ids(talents)

        all_agencies = self.agencies.list_all()
        agencies_by_name = group_agencies_by_name(all_agencies)
        agency_names = {agency.id: agency.name for agency in all_agencies}
        existing = self.talents.find_many(one_ids, platform)

        result = BatchResult(success_status="bound")
        updates: list[TalentUpdate] = []
        for item in talents:
            one_id = item.get("oneId")
            agency_name = item.get("agencyName")
            if not one_id:
                result.fail("N/A", "missing oneId", agencyName=agency_name)
                continue
            if not agency_name:
                result.fail(one_id, "missing agencyName", agencyName=None)
                continue

            candidates = agencies_by_name.get(normalize_agency_name(agency_name), [])
            if not candidates:
                result.fail(one_id, f"agency not found: {agency_name}", agencyName=agency_name)
                continue
            if len(candidates) > 1:
                result.fail(
                    one_id,
                    f"ambiguous agency name: {agency_name}",
                    agencyName=agency_name,
                    candidateAgencyIds=[agency.id for agency in candidates],
                )
                continue
            target = candidates[0]

            self._bind_one(result, updates, existing.get(one_id), one_id, platform, target,
                           agency_names, overwrite_existing, created_by, agencyName=agency_name)

        self._flush(updates, result)
        logger.info(
            f"bindAgencyByName {platform}: bound={result.succeeded} "
            f"skipped={result.skipped} failed={result.failed}"
        )
        return result.to_dict()

    def _bind_one(
        self,
        result: BatchResult,
        updates: list[TalentUpdate],
        talent: Talent | None,
        one_id: str,
        platform: str,
        target: Agency,
        agency_names: dict[str, str],
        overwrite_existing: bool,
        created_by: str,
        **extra,
    ) -> None:
        """Apply the per-item binding policy to one talent."""
        if talent is None:
            result.fail(one_id, "talent not found", **extra)
            return

        current = talent.affiliation
        if current == AgencyAffiliation(target.id):
            result.skip(one_id, "already bound to this agency", **extra)
            return

        if isinstance(current, AgencyAffiliation) and not overwrite_existing:
            logger.warning(f"Talent {one_id} already bound to {current.agency_id}, not overwriting")
            result.skip(
                one_id,
                "already bound to another agency",
                report=True,
                currentAgencyId=current.agency_id,
                currentAgencyName=agency_names.get(current.agency_id, self.UNKNOWN_AGENCY_NAME),
                talentName=talent.name,
                **extra,
            )
            return

        now = datetime.now(timezone.utc)
        fields = {"agency_id": target.id, "rebate_mode": RebateMode.SYNC, "updated_at": now}
        details = {"agencyId": target.id, "talentName": talent.name}

        # Without a configured agency rate only the binding changes.
        rate = target.base_rebate(platform)
        if rate is not None:
            previous_rate = talent.current_rate
            fields["current_rebate"] = CurrentRebate(rate, RebateSource.AGENCY, date.today().isoformat(), now)
            fields["last_rebate_sync_at"] = now
            record = self.ledger.record_change(
                LedgerKey.for_talent(one_id, platform),
                rate,
                previous_rate,
                ChangeSource.AGENCY_BIND,
                metadata={
                    "agencyId": target.id,
                    "agencyName": target.name,
                    "previousAgencyId": agency_id_from_affiliation(current),
                    "talentName": talent.name,
                },
                created_by=created_by,
            )
            details.update(rebateRate=to_rate(rate), previousRate=to_rate(previous_rate), configId=record.config_id)

        _apply(talent, fields)
        updates.append(TalentUpdate(one_id, platform, fields))
        result.succeed(one_id, **details, **extra)

    # -------------------------------------------------------------------------
    # unbind
    # -------------------------------------------------------------------------

    def unbind(
        self,
        platform: str,
        talents: list[dict],
        new_rebate_rate=None,
        created_by: str = "system",
    ) -> dict:
        """
        Return talents to unaffiliated status with a personal rate.

        `new_rebate_rate` is mandatory: an unbound talent no longer has an
        agency rate to fall back on.
        """
        if new_rebate_rate is None:
            raise ValidationError("Missing required parameter: newRebateRate")
        rate = self.validator.validate_rate(new_rebate_rate, "newRebateRate")
        self.validator.validate_batch(talents, self.MAX_BATCH_SIZE)
        one_ids = self.validator.validate_one_ids(talents)

        existing = self.talents.find_many(one_ids, platform)

        result = BatchResult(success_status="unbound")
        updates: list[TalentUpdate] = []
        for item in talents:
            one_id = item.get("oneId")
            if not one_id:
                result.fail("N/A", "missing oneId")
                continue

            talent = existing.get(one_id)
            if talent is None:
                result.fail(one_id, "talent not found")
                continue

            current = talent.affiliation
            if isinstance(current, Unaffiliated):
                result.skip(one_id, "not bound to any agency")
                continue

            now = datetime.now(timezone.utc)
            previous_rate = talent.current_rate
            fields = {
                "agency_id": INDIVIDUAL,
                "rebate_mode": RebateMode.INDEPENDENT,
                "current_rebate": CurrentRebate(rate, RebateSource.PERSONAL, date.today().isoformat(), now),
                "updated_at": now,
            }
            record = self.ledger.record_change(
                LedgerKey.for_talent(one_id, platform),
                rate,
                previous_rate,
                ChangeSource.AGENCY_UNBIND,
                metadata={
                    "previousAgencyId": current.agency_id,
                    "previousRebateMode": talent.rebate_mode,
                    "talentName": talent.name,
                },
                created_by=created_by,
            )

            _apply(talent, fields)
            updates.append(TalentUpdate(one_id, platform, fields))
            result.succeed(
                one_id,
                previousAgencyId=current.agency_id,
                rebateRate=to_rate(rate),
                previousRate=to_rate(previous_rate),
                configId=record.config_id,
            )

        self._flush(updates, result)
        logger.info(
            f"unbindAgency {platform}: unbound={result.succeeded} "
            f"skipped={result.skipped} failed={result.failed}"
        )
        return result.to_dict()

    # -------------------------------------------------------------------------
    # single-talent resync
    # -------------------------------------------------------------------------

    def sync_agency_rebate(self, platform: str, one_id: str, created_by: str = "system") -> dict:
        """Copy the bound agency's base rate onto one talent and switch it to sync mode."""
        if not one_id:
            raise ValidationError("Missing required parameter: oneId")

        talent = self.talents.find_one(one_id, platform)
        if talent is None:
            raise NotFoundError(f"Talent not found: oneId={one_id}, platform={platform}")

        affiliation = talent.affiliation
        if not isinstance(affiliation, AgencyAffiliation):
            raise ValidationError("Talent is not bound to any agency, cannot sync agency rebate")

        agency = self.agencies.get(affiliation.agency_id)
        if agency is None:
            raise NotFoundError(f"Agency not found: {affiliation.agency_id}")

        rate = agency.base_rebate(platform)
        if rate is None:
            raise ValidationError(f"Agency {agency.name} has no rebate configured for {platform}")

        now = datetime.now(timezone.utc)
        previous_rate = talent.current_rate
        fields = {
            "rebate_mode": RebateMode.SYNC,
            "current_rebate": CurrentRebate(rate, RebateSource.AGENCY, date.today().isoformat(), now),
            "last_rebate_sync_at": now,
            "updated_at": now,
        }
        self.talents.bulk_update([TalentUpdate(one_id, platform, fields)])
        record = self.ledger.record_change(
            LedgerKey.for_talent(one_id, platform),
            rate,
            previous_rate,
            ChangeSource.AGENCY_SYNC,
            metadata={
                "agencyId": agency.id,
                "agencyName": agency.name,
                "previousRebateMode": talent.rebate_mode,
                "talentName": talent.name,
            },
            created_by=created_by,
        )

        logger.info(f"syncAgencyRebate {platform}/{one_id}: {previous_rate} -> {rate} from {agency.id}")
        return {
            "oneId": one_id,
            "agencyId": agency.id,
            "agencyName": agency.name,
            "rebateMode": RebateMode.SYNC,
            "syncedRate": to_rate(rate),
            "previousRate": to_rate(previous_rate),
            "configId": record.config_id,
        }

    def _flush(self, updates: list[TalentUpdate], result: BatchResult) -> None:
        """Submit the collected talent writes as one unordered bulk write."""
        if not updates:
            return
        write = self.talents.bulk_update(updates)
        for error in write.errors:
            result.mark_failed(error["oneId"], f"write failed: {error['reason']}")


def _apply(talent: Talent, fields: dict) -> None:
    """Mirror a pending update on the local copy so repeated ids see the new state."""
    for name, value in fields.items():
        setattr(talent, name, value)
