"""
Customer Override Manager

Customer-specific rate overrides stored on customer/talent relations.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from ..errors import NotFoundError, ValidationError
from ..models import (
    BatchResult,
    ChangeSource,
    Customer,
    CustomerRebate,
    CustomerTalentRelation,
    LedgerKey,
    RebateConfigRecord,
    RelationStatus,
    to_rate,
)
from ..store import CustomerDirectory, CustomerTalentRelationStore, RelationUpdate, TalentDirectory
from ..validators import RequestValidator
from .ledger import AuditLedger
from .resolver import RateResolver

logger = logging.getLogger(__name__)


class CustomerOverrideManager:
    """Reads and writes `customerRebate` on active customer/talent relations."""

    MAX_BATCH_SIZE = 100
    HISTORY_LIMIT = 50

    def __init__(
        self,
        customers: CustomerDirectory,
        relations: CustomerTalentRelationStore,
        talents: TalentDirectory,
        ledger: AuditLedger,
        resolver: RateResolver,
    ):
        self.customers = customers
        self.relations = relations
        self.talents = talents
        self.ledger = ledger
        self.resolver = resolver
        self.validator = RequestValidator()

    def get_customer_rebate(self, customer_id: str, talent_one_id: str, platform: str) -> dict:
        """Current override, talent rate, effective rate and override history."""
        self._require_ids(customer_id, talent_one_id)
        customer = self._resolve_customer(customer_id)
        relation = self._active_relation(customer, talent_one_id, platform)

        talent = self.talents.find_one(talent_one_id, platform)
        if talent is None:
            raise NotFoundError(f"Talent not found: oneId={talent_one_id}, platform={platform}")

        effective = self.resolver.resolve(talent, customer_rebate=relation.customer_rebate)
        history = self.ledger.history(
            LedgerKey.for_customer_talent(customer.code, talent_one_id, platform), limit=self.HISTORY_LIMIT
        )
        return {
            "customerId": customer.code,
            "talentOneId": talent_one_id,
            "platform": platform,
            "customerRebate": relation.customer_rebate.to_dict() if relation.customer_rebate else None,
            "talentRebate": talent.current_rebate.to_dict() if talent.current_rebate else None,
            "effectiveRebate": effective.to_dict(),
            "history": history["records"],
        }

    def update_customer_rebate(
        self,
        customer_id: str,
        talent_one_id: str,
        platform: str,
        enabled,
        rate=None,
        notes: str | None = None,
        updated_by: str = "system",
    ) -> dict:
        """
        Replace the relation's override wholesale.

        A ledger row is written only when the override is enabled and its
        rate differs from the previously enabled rate.
        """
        self._require_ids(customer_id, talent_one_id)
        enabled = self.validator.parse_bool(enabled, "enabled")
        parsed_rate = self._validate_rate(enabled, rate)

        customer = self._resolve_customer(customer_id)
        relation = self._active_relation(customer, talent_one_id, platform)

        customer_rebate = self._build_rebate(enabled, parsed_rate, notes, updated_by)
        previous_rate = _enabled_rate(relation.customer_rebate)
        record = self._record(customer, relation, customer_rebate, previous_rate, updated_by)
        self.relations.update_rebate(relation.key, customer_rebate)

        logger.info(
            f"updateCustomerRebate {customer.code}/{talent_one_id}/{platform}: "
            f"enabled={enabled} rate={parsed_rate} ledger={'yes' if record else 'no'}"
        )
        return {
            "customerId": customer.code,
            "talentOneId": talent_one_id,
            "platform": platform,
            "customerRebate": customer_rebate.to_dict(),
            "previousRate": to_rate(previous_rate),
            "ledgerRecorded": record is not None,
            "configId": record.config_id if record else None,
        }

    def batch_update_customer_rebate(
        self,
        customer_id: str,
        platform: str,
        talents: list[dict],
        updated_by: str = "system",
    ) -> dict:
        """
        Apply `{talentOneId, rate, enabled?, notes?}` items for one customer.

        Unlike the talent batches, validation here is per item, and an
        unexpected exception in one item is reported as that item's failure.
        """
        if not customer_id:
            raise ValidationError("Missing required parameter: customerId")
        self.validator.validate_batch(talents, self.MAX_BATCH_SIZE)

        customer = self._resolve_customer(customer_id)
        one_ids = [item.get("talentOneId") for item in talents if item.get("talentOneId")]
        relations = self.relations.find_many(customer.code, platform, one_ids)

        result = BatchResult(success_status="updated", key_field="talentOneId")
        updates: list[RelationUpdate] = []
        for item in talents:
            one_id = item.get("talentOneId") or "N/A"
            try:
                self._update_item(customer, item, relations, updates, result, updated_by)
            except ValidationError as e:
                result.fail(one_id, str(e))
            except Exception as e:
                logger.error(f"Customer rebate update failed for {customer.code}/{one_id}: {e}", exc_info=True)
                result.fail(one_id, f"unexpected error: {e}")

        if updates:
            write = self.relations.bulk_update(updates)
            for error in write.errors:
                result.mark_failed(error["talentOneId"], f"write failed: {error['reason']}")

        logger.info(
            f"batchUpdateCustomerRebate {customer.code}/{platform}: updated={result.succeeded} "
            f"failed={result.failed}"
        )
        data = result.to_dict()
        data["customerId"] = customer.code
        return data

    def _update_item(
        self,
        customer: Customer,
        item: dict,
        relations: dict[str, CustomerTalentRelation],
        updates: list[RelationUpdate],
        result: BatchResult,
        updated_by: str,
    ) -> None:
        one_id = item.get("talentOneId")
        if not one_id:
            raise ValidationError("missing talentOneId")
        enabled = self.validator.parse_bool(item.get("enabled"), "enabled", default=True)
        rate = self._validate_rate(enabled, item.get("rate"))

        relation = relations.get(one_id)
        if relation is None or not relation.is_active:
            result.fail(one_id, "customer talent relation not found or not active")
            return

        customer_rebate = self._build_rebate(enabled, rate, item.get("notes"), updated_by)
        previous_rate = _enabled_rate(relation.customer_rebate)
        record = self._record(customer, relation, customer_rebate, previous_rate, updated_by)

        relation.customer_rebate = customer_rebate
        updates.append(RelationUpdate(relation.key, customer_rebate))
        result.succeed(
            one_id,
            enabled=enabled,
            rate=to_rate(rate),
            previousRate=to_rate(previous_rate),
            ledgerRecorded=record is not None,
        )

    def _record(
        self,
        customer: Customer,
        relation: CustomerTalentRelation,
        customer_rebate: CustomerRebate,
        previous_rate: Decimal | None,
        updated_by: str,
    ) -> RebateConfigRecord | None:
        """Write a ledger row unless the save is a no-op or a disable."""
        if not customer_rebate.enabled or customer_rebate.rate == previous_rate:
            return None
        return self.ledger.record_change(
            LedgerKey.for_customer_talent(customer.code, relation.talent_one_id, relation.platform),
            customer_rebate.rate,
            previous_rate,
            ChangeSource.CUSTOMER_OVERRIDE,
            metadata={
                "customerId": customer.code,
                "talentOneId": relation.talent_one_id,
                "notes": customer_rebate.notes,
            },
            created_by=updated_by,
        )

    def _build_rebate(self, enabled: bool, rate: Decimal | None, notes, updated_by: str) -> CustomerRebate:
        return CustomerRebate(
            enabled=enabled,
            rate=rate,
            effective_date=date.today().isoformat(),
            last_updated_at=datetime.now(timezone.utc),
            updated_by=updated_by or "system",
            notes=notes or None,
        )

    def _validate_rate(self, enabled: bool, rate) -> Decimal | None:
        if enabled:
            if rate is None:
                raise ValidationError("rate is required when enabled=true")
            return self.validator.validate_rate(rate, "rate")
        return self.validator.validate_rate(rate, "rate") if rate is not None else None

    def _require_ids(self, customer_id, talent_one_id) -> None:
        if not customer_id:
            raise ValidationError("Missing required parameter: customerId")
        if not talent_one_id:
            raise ValidationError("Missing required parameter: talentOneId")

    def _resolve_customer(self, customer_id: str) -> Customer:
        customer = self.customers.resolve(customer_id)
        if customer is None:
            raise NotFoundError(f"Customer not found: {customer_id}")
        return customer

    def _active_relation(self, customer: Customer, talent_one_id: str, platform: str) -> CustomerTalentRelation:
        relation = self.relations.find_one(customer.code, talent_one_id, platform, status=RelationStatus.ACTIVE)
        if relation is None:
            raise NotFoundError(
                f"Customer talent relation not found or not active: "
                f"{customer.code}/{talent_one_id}/{platform}"
            )
        return relation


def _enabled_rate(customer_rebate: CustomerRebate | None) -> Decimal | None:
    if customer_rebate is None or not customer_rebate.enabled:
        return None
    return customer_rebate.rate
