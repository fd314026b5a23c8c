"""
Independent Rate Setter

Moves talents to a personal rate that no longer follows their agency.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from ..errors import ValidationError
from ..models import BatchResult, ChangeSource, CurrentRebate, LedgerKey, RebateMode, RebateSource, to_rate
from ..store import TalentDirectory, TalentUpdate
from ..validators import RequestValidator
from .ledger import AuditLedger

logger = logging.getLogger(__name__)


class IndependentRateSetter:
    """Batch transition of talents to independent mode."""

    MAX_BATCH_SIZE = 500

    def __init__(self, talents: TalentDirectory, ledger: AuditLedger):
        self.talents = talents
        self.ledger = ledger
        self.validator = RequestValidator()

    def set_independent(self, platform: str, talents: list[dict], created_by: str = "system") -> dict:
        """
        Set a personal rate for each `{oneId, rebateRate}` item.

        Validation is all-or-nothing: one malformed item rejects the request
        before anything is read or written. Repeating the current independent
        rate is a no-op reported as skipped.
        """
        items = self._validate(talents)
        existing = self.talents.find_many([one_id for one_id, _ in items], platform)

        result = BatchResult(success_status="updated")
        updates: list[TalentUpdate] = []
        for one_id, rate in items:
            talent = existing.get(one_id)
            if talent is None:
                result.fail(one_id, "talent not found")
                continue

            previous_rate = talent.current_rate
            if talent.rebate_mode == RebateMode.INDEPENDENT and previous_rate == rate:
                result.skip(one_id, "rate unchanged", rebateRate=to_rate(rate))
                continue

            now = datetime.now(timezone.utc)
            fields = {
                "rebate_mode": RebateMode.INDEPENDENT,
                "current_rebate": CurrentRebate(rate, RebateSource.PERSONAL, date.today().isoformat(), now),
                "updated_at": now,
            }
            record = self.ledger.record_change(
                LedgerKey.for_talent(one_id, platform),
                rate,
                previous_rate,
                ChangeSource.SET_INDEPENDENT,
                metadata={"previousRebateMode": talent.rebate_mode, "talentName": talent.name},
                created_by=created_by,
            )

            for name, value in fields.items():
                setattr(talent, name, value)
            updates.append(TalentUpdate(one_id, platform, fields))
            result.succeed(
                one_id,
                rebateRate=to_rate(rate),
                previousRate=to_rate(previous_rate),
                configId=record.config_id,
            )

        if updates:
            write = self.talents.bulk_update(updates)
            for error in write.errors:
                result.mark_failed(error["oneId"], f"write failed: {error['reason']}")

        logger.info(
            f"setIndependentRebate {platform}: updated={result.succeeded} "
            f"skipped={result.skipped} failed={result.failed}"
        )
        return result.to_dict()

    def _validate(self, talents) -> list[tuple[str, Decimal]]:
        """Validate every item up front. Returns (oneId, rate) pairs in request order."""
        self.validator.validate_batch(talents, self.MAX_BATCH_SIZE)
        items = []
        for index, item in enumerate(talents):
            one_id = item.get("oneId")
            if not one_id:
                raise ValidationError(f"talents[{index}] is missing oneId")
            items.append((one_id, self.validator.validate_rate(item.get("rebateRate"), f"talents[{index}].rebateRate")))
        return items
