"""
Unit Tests for Audit Ledger

Tests verify the insert-then-expire discipline and history paging.
"""

import re
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from rebates.database import Database
from rebates.operations.ledger import AuditLedger, generate_config_id
from rebates.models import LedgerKey, RebateConfigRecord
from rebates.store import RebateConfigStore


class TestRecordChange:
    """Test the one-active-row discipline."""

    @pytest.fixture
    def ledger(self, database):
        return AuditLedger(RebateConfigStore(database))

    @pytest.fixture
    def key(self):
        return LedgerKey.for_talent('T1', 'douyin')

    def test_first_record_is_active(self, ledger, key):
        record = ledger.record_change(key, Decimal('8'), None, 'agency_bind')

        assert record.status == 'active'
        assert record.expiry_date is None
        assert record.previous_rate is None
        assert [r.config_id for r in ledger.active_records(key)] == [record.config_id]

    def test_new_record_expires_previous_active(self, ledger, key):
        first = ledger.record_change(key, Decimal('8'), None, 'agency_bind')
        second = ledger.record_change(key, Decimal('10'), Decimal('8'), 'set_independent')

        active = ledger.active_records(key)
        assert [r.config_id for r in active] == [second.config_id]

        expired = [r for r in ledger.configs.find(key) if r.config_id == first.config_id][0]
        assert expired.status == 'expired'
        assert expired.expiry_date is not None

    def test_new_record_never_expires_itself(self, ledger, key):
        """The just-inserted row is excluded from the expire pass."""
        record = ledger.record_change(key, Decimal('8'), None, 'agency_bind')

        stored = ledger.configs.find(key)[0]
        assert stored.config_id == record.config_id
        assert stored.status == 'active'

    def test_heals_multiple_active_rows(self, ledger, key):
        """Stale duplicates left behind by a race are expired by the next write."""
        for config_id in ('stale_1', 'stale_2'):
            ledger.configs.insert(RebateConfigRecord(
                config_id=config_id, target_type='talent', target_id='T1', platform='douyin',
                rebate_rate=Decimal('5'), previous_rate=None, effective_date='2026-01-01',
                created_at=datetime.now(timezone.utc),
                change_source='agency_bind',
            ))
        assert len(ledger.active_records(key)) == 2

        ledger.record_change(key, Decimal('9'), Decimal('5'), 'set_independent')

        assert len(ledger.active_records(key)) == 1

    def test_failed_insert_leaves_active_row_in_place(self, ledger, key):
        """Insert and expire share one transaction; a failed insert expires nothing."""
        first = ledger.record_change(key, Decimal('8'), None, 'agency_bind')
        duplicate = RebateConfigRecord(
            config_id=first.config_id, target_type='talent', target_id='T1', platform='douyin',
            rebate_rate=Decimal('10'), previous_rate=Decimal('8'), effective_date='2026-01-01',
            created_at=datetime.now(timezone.utc),
            change_source='set_independent',
        )

        with pytest.raises(IntegrityError):
            ledger.configs.record(duplicate, expiry_date=datetime.now(timezone.utc))

        active = ledger.active_records(key)
        assert [r.config_id for r in active] == [first.config_id]
        assert active[0].rebate_rate == Decimal('8')

    def test_other_keys_are_untouched(self, ledger, key):
        other = LedgerKey.for_talent('T1', 'kuaishou')
        ledger.record_change(other, Decimal('3'), None, 'agency_bind')
        ledger.record_change(key, Decimal('8'), None, 'agency_bind')

        assert len(ledger.active_records(other)) == 1

    def test_customer_talent_key(self):
        key = LedgerKey.for_customer_talent('C001', 'T1', 'douyin')

        assert key.target_type == 'customer_talent'
        assert key.target_id == 'C001:T1'

    def test_record_carries_metadata_and_operator(self, ledger, key):
        record = ledger.record_change(
            key, Decimal('8'), Decimal('5'), 'agency_bind',
            metadata={'agencyId': 'MCN-A'}, created_by='ops',
        )

        data = record.to_dict()
        assert data['rebateRate'] == 8.0
        assert data['previousRate'] == 5.0
        assert data['changeSource'] == 'agency_bind'
        assert data['metadata'] == {'agencyId': 'MCN-A'}
        assert data['createdBy'] == 'ops'

    def test_config_id_format(self):
        assert re.fullmatch(r'rebate_config_\d+_[a-z0-9]{9}', generate_config_id())


class TestHistory:

    @pytest.fixture
    def ledger(self, database):
        return AuditLedger(RebateConfigStore(database))

    @pytest.fixture
    def key(self):
        return LedgerKey.for_talent('T1', 'douyin')

    def test_newest_first(self, ledger, key):
        for rate in ('5', '6', '7'):
            ledger.record_change(key, Decimal(rate), None, 'set_independent')

        history = ledger.history(key)

        assert history['total'] == 3
        assert [r['rebateRate'] for r in history['records']] == [7.0, 6.0, 5.0]
        assert history['records'][0]['status'] == 'active'

    def test_paging(self, ledger, key):
        for rate in ('5', '6', '7'):
            ledger.record_change(key, Decimal(rate), None, 'set_independent')

        history = ledger.history(key, limit=1, offset=1)

        assert history['limit'] == 1
        assert [r['rebateRate'] for r in history['records']] == [6.0]

    @pytest.mark.parametrize("limit, offset, expected_limit, expected_offset", [
        (0, 0, 20, 0),
        (101, 0, 20, 0),
        (None, -5, 20, 0),
        (100, 3, 100, 3),
    ])
    def test_out_of_range_paging_falls_back(self, ledger, key, limit, offset, expected_limit, expected_offset):
        history = ledger.history(key, limit=limit, offset=offset)

        assert history['limit'] == expected_limit
        assert history['offset'] == expected_offset


class TestLedgerTable:

    def test_key_and_status_index(self, database):
        indexes = {index['name']: index['column_names'] for index in inspect(database.engine).get_indexes('rebate_configs')}

        assert indexes['idx_rebate_configs_target_status'] == ['target_type', 'target_id', 'platform', 'status']

    def test_rows_survive_a_new_connection(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'rebates.db'}"
        key = LedgerKey.for_talent('T1', 'douyin')

        first = Database(url)
        first.create_all()
        record = AuditLedger(RebateConfigStore(first)).record_change(key, Decimal('8'), None, 'agency_bind')
        first.close()

        second = Database(url)
        try:
            active = AuditLedger(RebateConfigStore(second)).active_records(key)
        finally:
            second.close()

        assert [r.config_id for r in active] == [record.config_id]
        assert active[0].rebate_rate == Decimal('8')
