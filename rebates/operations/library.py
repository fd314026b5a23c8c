"""
Rate Library Manager

Stores already-parsed company rate library records as numbered versions.
"""

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from ..errors import NotFoundError, ValidationError
from ..models import RateLibraryImport, RateLibraryRow
from ..store import RateLibraryImportStore

logger = logging.getLogger(__name__)


def generate_import_id(existing_ids: list[str], now: datetime) -> str:
    """
    import_YYYYMM for the first version of a month, then import_YYYYMM_2,
    import_YYYYMM_3, ...
    """
    base_id = f"import_{now:%Y%m}"
    same_month = [i for i in existing_ids if i == base_id or i.startswith(f"{base_id}_")]
    if not same_month:
        return base_id

    max_seq = 0
    for import_id in same_month:
        if import_id == base_id:
            max_seq = max(max_seq, 1)
            continue
        match = re.search(r"_(\d+)$", import_id)
        if match:
            max_seq = max(max_seq, int(match.group(1)))
    return f"{base_id}_{max_seq + 1}"


class RateLibraryManager:
    """Import, list, promote and delete library versions."""

    def __init__(self, library: RateLibraryImportStore):
        self.library = library

    def import_records(self, records, file_name: str | None, note: str | None = None) -> dict:
        if not isinstance(records, list) or len(records) == 0:
            raise ValidationError("records must be a non-empty array")
        if not file_name:
            raise ValidationError("Missing required parameter: fileName")

        existing_ids = [version.import_id for version in self.library.list_imports()]
        now = datetime.now(timezone.utc)
        import_id = generate_import_id(existing_ids, now)

        rows = self._unique_rows(import_id, records)
        if not rows:
            raise ValidationError("No valid records to import")

        version = RateLibraryImport(
            import_id=import_id,
            file_name=file_name,
            record_count=len(rows),
            imported_at=now,
            is_default=not existing_ids,
            note=note or None,
        )
        self.library.insert_import(version, rows)

        logger.info(f"Imported rate library {import_id}: {len(rows)} of {len(records)} records kept")
        return {
            "importId": import_id,
            "importedCount": len(rows),
            "importedAt": now.isoformat(),
            "isDefault": version.is_default,
        }

    def list_versions(self) -> dict:
        return {"versions": [version.to_dict() for version in self.library.list_imports()]}

    def set_default_version(self, import_id: str | None) -> dict:
        self._require_version(import_id)
        self.library.set_default(import_id)
        logger.info(f"Rate library default version is now {import_id}")
        return {"importId": import_id, "isDefault": True}

    def delete_version(self, import_id: str | None) -> dict:
        version = self._require_version(import_id)
        if version.is_default and len(self.library.list_imports()) > 1:
            raise ValidationError("Cannot delete the default version, set another version as default first")

        deleted = self.library.delete_import(import_id)
        logger.info(f"Deleted rate library version {import_id} ({deleted} rows)")
        return {"importId": import_id, "deletedCount": deleted}

    def _require_version(self, import_id: str | None) -> RateLibraryImport:
        if not import_id:
            raise ValidationError("Missing required parameter: importId")
        version = self.library.get_import(import_id)
        if version is None:
            raise NotFoundError(f"Library version not found: {import_id}")
        return version

    def _unique_rows(self, import_id: str, records: list) -> list[RateLibraryRow]:
        """Drop incomplete records and duplicates on (accountId, mcn, rate)."""
        rows = []
        seen = set()
        for record in records:
            if not isinstance(record, dict):
                continue
            account_id = record.get("accountId")
            nickname = record.get("nickname")
            mcn = record.get("mcn")
            raw_rate = record.get("rebateRate")
            if not account_id or not nickname or not mcn or raw_rate is None:
                continue
            try:
                rate = Decimal(str(raw_rate))
            except InvalidOperation:
                continue
            if not rate.is_finite():
                continue

            key = (str(account_id), str(mcn), rate)
            if key in seen:
                continue
            seen.add(key)

            raw_remark = record.get("rawRemark")
            rows.append(
                RateLibraryRow(
                    import_id=import_id,
                    account_id=str(account_id),
                    nickname=str(nickname),
                    mcn=str(mcn),
                    rebate_rate=rate,
                    raw_remark=str(raw_remark) if raw_remark else None,
                )
            )
        return rows
