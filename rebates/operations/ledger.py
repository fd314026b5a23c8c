"""
Audit Ledger

Append-mostly history of rate changes. Every mutator records through
`record_change`, which inserts the new active row and then expires the
previous active rows of the same key.

Both steps run in one database transaction. Concurrent writers to the same
key can still each leave an active row; the next write of that key expires
the extras, and the talent and relation rows stay authoritative.
"""

import logging
import secrets
import string
import time
from datetime import date, datetime, timezone
from decimal import Decimal

from ..models import LedgerKey, RebateConfigRecord, RecordStatus
from ..store import RebateConfigStore

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_config_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"rebate_config_{int(time.time() * 1000)}_{suffix}"


class AuditLedger:
    """Writes and reads RebateConfigRecord rows."""

    DEFAULT_HISTORY_LIMIT = 20
    MAX_HISTORY_LIMIT = 100

    def __init__(self, configs: RebateConfigStore):
        self.configs = configs

    def record_change(
        self,
        key: LedgerKey,
        new_rate: Decimal,
        previous_rate: Decimal | None,
        change_source: str,
        metadata: dict | None = None,
        created_by: str = "system",
    ) -> RebateConfigRecord:
        """Insert the new active row, then expire the key's other active rows."""
        now = datetime.now(timezone.utc)
        record = RebateConfigRecord(
            config_id=generate_config_id(),
            target_type=key.target_type,
            target_id=key.target_id,
            platform=key.platform,
            rebate_rate=new_rate,
            previous_rate=previous_rate,
            effective_date=date.today().isoformat(),
            created_at=now,
            change_source=change_source,
            created_by=created_by or "system",
            metadata=dict(metadata or {}),
        )
        expired = self.configs.record(record, expiry_date=now)
        logger.info(
            f"Ledger {change_source}: {key.target_type}/{key.target_id}/{key.platform} "
            f"-> {new_rate} (expired {expired})"
        )
        return record

    def active_records(self, key: LedgerKey) -> list[RebateConfigRecord]:
        return self.configs.find(key, status=RecordStatus.ACTIVE)

    def history(self, key: LedgerKey, limit: int | None = None, offset: int = 0) -> dict:
        """Newest-first page of a key's rows. Out-of-range paging falls back to defaults."""
        if limit is None or limit < 1 or limit > self.MAX_HISTORY_LIMIT:
            limit = self.DEFAULT_HISTORY_LIMIT
        if offset < 0:
            offset = 0

        total, records = self.configs.history(key, limit, offset)
        return {
            "total": total,
            "limit": limit,
            "offset": offset,
            "records": [record.to_dict() for record in records],
        }
