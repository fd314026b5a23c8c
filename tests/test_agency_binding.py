"""
Unit Tests for Agency Binding

Tests verify bind by id, bind by name, unbind and single-talent resync.
"""

import pytest
from decimal import Decimal
from rebates.errors import NotFoundError, ValidationError
from rebates.models import INDIVIDUAL, RebateMode, RebateSource


class TestBindById:
    """Test binding a batch of talents to one agency."""

    def test_bind_individual_talent_syncs_agency_rate(self, service, seed, talent_rows):
        seed.agency('MCN-A', douyin=8)
        seed.talent('T1', rate=5, source=RebateSource.PERSONAL)

        result = service.binding.bind_by_id('douyin', 'MCN-A', [{'oneId': 'T1'}])

        assert result['bound'] == 1
        assert result['targetAgency'] == {'id': 'MCN-A', 'name': 'MCN-A'}

        talent = service.talents.find_one('T1', 'douyin')
        assert talent.agency_id == 'MCN-A'
        assert talent.rebate_mode == RebateMode.SYNC
        assert talent.current_rebate.rate == Decimal('8')
        assert talent.current_rebate.source == RebateSource.AGENCY
        assert talent.last_rebate_sync_at is not None

        rows = talent_rows('T1')
        assert len(rows) == 1
        assert rows[0].status == 'active'
        assert rows[0].previous_rate == Decimal('5')
        assert rows[0].change_source == 'agency_bind'
        assert rows[0].metadata['previousAgencyId'] == INDIVIDUAL

    def test_item_details(self, service, seed):
        seed.agency('MCN-A', douyin=8)
        seed.talent('T1', rate=5, source=RebateSource.PERSONAL)

        result = service.binding.bind_by_id('douyin', 'MCN-A', [{'oneId': 'T1'}])

        item = result['results'][0]
        assert item['status'] == 'bound'
        assert item['rebateRate'] == 8.0
        assert item['previousRate'] == 5.0
        assert item['configId'].startswith('rebate_config_')

    def test_agency_without_platform_rate_binds_without_rate_change(self, service, seed, talent_rows):
        seed.agency('MCN-A', kuaishou=3)
        seed.talent('T1', rate=5, source=RebateSource.PERSONAL, mode=RebateMode.INDEPENDENT)

        result = service.binding.bind_by_id('douyin', 'MCN-A', [{'oneId': 'T1'}])

        assert result['bound'] == 1
        talent = service.talents.find_one('T1', 'douyin')
        assert talent.agency_id == 'MCN-A'
        assert talent.rebate_mode == RebateMode.SYNC
        assert talent.current_rebate.rate == Decimal('5')
        assert talent_rows('T1') == []

    def test_same_agency_is_skipped(self, service, seed, talent_rows):
        seed.agency('MCN-A', douyin=8)
        seed.talent('T1', agency_id='MCN-A', rate=8, source=RebateSource.AGENCY)

        result = service.binding.bind_by_id('douyin', 'MCN-A', [{'oneId': 'T1'}])

        assert result['bound'] == 0
        assert result['skipped'] == 1
        assert result['errors'] == []
        assert talent_rows('T1') == []

    def test_bound_elsewhere_without_overwrite_is_reported(self, service, seed, talent_rows):
        seed.agency('MCN-A', douyin=8)
        seed.agency('MCN-B', name='Beta Media', douyin=6)
        seed.talent('T1', agency_id='MCN-B', rate=6, source=RebateSource.AGENCY)

        result = service.binding.bind_by_id('douyin', 'MCN-A', [{'oneId': 'T1'}])

        assert result['bound'] == 0
        assert result['skipped'] == 1
        assert len(result['errors']) == 1
        error = result['errors'][0]
        assert error['oneId'] == 'T1'
        assert error['currentAgencyId'] == 'MCN-B'
        assert error['currentAgencyName'] == 'Beta Media'
        assert error['talentName'] == 'Talent T1'

        talent = service.talents.find_one('T1', 'douyin')
        assert talent.agency_id == 'MCN-B'
        assert talent.current_rebate.rate == Decimal('6')
        assert talent_rows('T1') == []

    def test_bound_elsewhere_with_overwrite_rebinds(self, service, seed, talent_rows):
        seed.agency('MCN-A', douyin=8)
        seed.agency('MCN-B', douyin=6)
        seed.talent('T1', agency_id='MCN-B', rate=6, source=RebateSource.AGENCY)

        result = service.binding.bind_by_id('douyin', 'MCN-A', [{'oneId': 'T1'}], overwrite_existing=True)

        assert result['bound'] == 1
        assert service.talents.find_one('T1', 'douyin').agency_id == 'MCN-A'
        assert talent_rows('T1')[0].metadata['previousAgencyId'] == 'MCN-B'

    def test_missing_talent_fails_only_that_item(self, service, seed):
        seed.agency('MCN-A', douyin=8)
        seed.talent('T1')

        result = service.binding.bind_by_id('douyin', 'MCN-A', [{'oneId': 'T1'}, {'oneId': 'GHOST'}])

        assert result['bound'] == 1
        assert result['failed'] == 1
        assert result['errors'] == [{'oneId': 'GHOST', 'reason': 'talent not found'}]

    def test_item_without_one_id_fails(self, service, seed):
        seed.agency('MCN-A', douyin=8)
        seed.talent('T1')

        result = service.binding.bind_by_id('douyin', 'MCN-A', [{'oneId': 'T1'}, {'name': 'x'}])

        assert result['failed'] == 1
        assert result['errors'][0]['oneId'] == 'N/A'

    def test_unknown_agency_is_not_found(self, service, seed):
        seed.talent('T1')

        with pytest.raises(NotFoundError):
            service.binding.bind_by_id('douyin', 'NOPE', [{'oneId': 'T1'}])

    def test_missing_agency_id(self, service):
        with pytest.raises(ValidationError, match="agencyId"):
            service.binding.bind_by_id('douyin', '', [{'oneId': 'T1'}])

    def test_batch_limit(self, service, seed):
        seed.agency('MCN-A', douyin=8)
        talents = [{'oneId': f'T{i}'} for i in range(501)]

        with pytest.raises(ValidationError, match="500"):
            service.binding.bind_by_id('douyin', 'MCN-A', talents)

    def test_ledger_operator(self, service, seed, talent_rows):
        seed.agency('MCN-A', douyin=8)
        seed.talent('T1')

        service.binding.bind_by_id('douyin', 'MCN-A', [{'oneId': 'T1'}], created_by='ops-lead')

        assert talent_rows('T1')[0].created_by == 'ops-lead'


class TestBindByName:
    """Each item names its own agency."""

    def test_names_match_case_insensitively(self, service, seed):
        seed.agency('MCN-A', name='Alpha Media', douyin=8)
        seed.agency('MCN-B', name='Beta Media', douyin=6)
        seed.talent('T1')
        seed.talent('T2')

        result = service.binding.bind_by_name('douyin', [
            {'oneId': 'T1', 'agencyName': ' alpha media '},
            {'oneId': 'T2', 'agencyName': 'BETA MEDIA'},
        ])

        assert result['bound'] == 2
        assert service.talents.find_one('T1', 'douyin').agency_id == 'MCN-A'
        assert service.talents.find_one('T2', 'douyin').agency_id == 'MCN-B'
        assert result['results'][0]['agencyName'] == ' alpha media '

    def test_unknown_name_fails_only_that_item(self, service, seed):
        seed.agency('MCN-A', name='Alpha Media', douyin=8)
        seed.talent('T1')
        seed.talent('T2')

        result = service.binding.bind_by_name('douyin', [
            {'oneId': 'T1', 'agencyName': 'Alpha Media'},
            {'oneId': 'T2', 'agencyName': 'Gamma'},
        ])

        assert result['bound'] == 1
        assert result['failed'] == 1
        assert result['errors'][0]['oneId'] == 'T2'
        assert result['errors'][0]['agencyName'] == 'Gamma'
        assert service.talents.find_one('T2', 'douyin').agency_id == INDIVIDUAL

    def test_ambiguous_agency_name_fails_only_that_item(self, service, seed):
        seed.agency('MCN-T1', name='Twin Media', douyin=4)
        seed.agency('MCN-T2', name='twin media', douyin=6)
        seed.agency('MCN-A', name='Alpha Media', douyin=8)
        seed.talent('T1')
        seed.talent('T2')

        result = service.binding.bind_by_name('douyin', [
            {'oneId': 'T1', 'agencyName': 'Twin Media'},
            {'oneId': 'T2', 'agencyName': 'Alpha Media'},
        ])

        assert result['bound'] == 1
        assert result['failed'] == 1
        error = result['errors'][0]
        assert error['oneId'] == 'T1'
        assert error['reason'] == 'ambiguous agency name: Twin Media'
        assert sorted(error['candidateAgencyIds']) == ['MCN-T1', 'MCN-T2']
        assert service.talents.find_one('T1', 'douyin').agency_id == INDIVIDUAL

    def test_missing_agency_name_fails(self, service, seed):
        seed.talent('T1')

        result = service.binding.bind_by_name('douyin', [{'oneId': 'T1'}])

        assert result['failed'] == 1
        assert result['errors'][0]['reason'] == 'missing agencyName'


class TestUnbind:
    """Test returning talents to unaffiliated status."""

    def test_unbind_sets_personal_rate(self, service, seed, talent_rows):
        seed.agency('MCN-A', douyin=8)
        seed.talent('T1', agency_id='MCN-A', rate=8, source=RebateSource.AGENCY)

        result = service.binding.unbind('douyin', [{'oneId': 'T1'}], new_rebate_rate=4.5)

        assert result['unbound'] == 1
        talent = service.talents.find_one('T1', 'douyin')
        assert talent.agency_id == INDIVIDUAL
        assert talent.rebate_mode == RebateMode.INDEPENDENT
        assert talent.current_rebate.rate == Decimal('4.5')
        assert talent.current_rebate.source == RebateSource.PERSONAL

        rows = talent_rows('T1')
        assert len(rows) == 1
        assert rows[0].change_source == 'agency_unbind'
        assert rows[0].previous_rate == Decimal('8')
        assert rows[0].metadata['previousAgencyId'] == 'MCN-A'

    def test_missing_new_rate_rejects_request_without_writes(self, service, seed, ledger_rows):
        seed.talent('T1', agency_id='MCN-A', rate=8, source=RebateSource.AGENCY)

        with pytest.raises(ValidationError, match="newRebateRate"):
            service.binding.unbind('douyin', [{'oneId': 'T1'}])

        assert service.talents.find_one('T1', 'douyin').agency_id == 'MCN-A'
        assert ledger_rows() == []

    def test_out_of_range_new_rate_is_rejected(self, service, seed):
        seed.talent('T1', agency_id='MCN-A')

        with pytest.raises(ValidationError):
            service.binding.unbind('douyin', [{'oneId': 'T1'}], new_rebate_rate=120)

    def test_unaffiliated_talent_is_skipped(self, service, seed, talent_rows):
        seed.talent('T1', rate=5, source=RebateSource.PERSONAL)

        result = service.binding.unbind('douyin', [{'oneId': 'T1'}], new_rebate_rate=3)

        assert result['unbound'] == 0
        assert result['skipped'] == 1
        assert result['results'][0]['reason'] == 'not bound to any agency'
        assert talent_rows('T1') == []


class TestSyncAgencyRebate:

    def test_resync_restores_agency_rate(self, service, seed, talent_rows):
        seed.agency('MCN-A', name='Alpha Media', douyin=8)
        seed.talent('T1', agency_id='MCN-A', rate=11, source=RebateSource.PERSONAL, mode=RebateMode.INDEPENDENT)

        result = service.binding.sync_agency_rebate('douyin', 'T1')

        assert result['syncedRate'] == 8.0
        assert result['previousRate'] == 11.0
        assert result['agencyName'] == 'Alpha Media'
        talent = service.talents.find_one('T1', 'douyin')
        assert talent.rebate_mode == RebateMode.SYNC
        assert talent.current_rebate.source == RebateSource.AGENCY
        assert talent_rows('T1')[0].change_source == 'agency_sync'

    def test_unaffiliated_talent_cannot_sync(self, service, seed):
        seed.talent('T1')

        with pytest.raises(ValidationError, match="not bound"):
            service.binding.sync_agency_rebate('douyin', 'T1')

    def test_agency_without_platform_rate(self, service, seed):
        seed.agency('MCN-A', kuaishou=3)
        seed.talent('T1', agency_id='MCN-A')

        with pytest.raises(ValidationError, match="no rebate configured"):
            service.binding.sync_agency_rebate('douyin', 'T1')

    def test_unknown_talent(self, service):
        with pytest.raises(NotFoundError):
            service.binding.sync_agency_rebate('douyin', 'GHOST')


class TestMatchTalents:
    """Preview of which talents a list of accounts or names resolves to."""

    @pytest.fixture
    def talents(self, seed):
        seed.agency('MCN-A', name='Alpha Media', douyin=8)
        seed.talent('T1', agency_id='MCN-A', account_id='acc-1', name='Luna')
        seed.talent('T2', account_id='acc-2', name='Nova')
        seed.talent('T3', agency_id='MCN-GONE', account_id='acc-3', name='Nova')
        seed.talent('T4', platform='kuaishou', account_id='acc-4', name='Luna')

    def test_account_id_is_tried_first(self, service, talents):
        result = service.binding.match_talents('douyin', [{'platformAccountId': 'acc-1', 'name': 'Nova'}])

        entry = result['matched'][0]
        assert entry['status'] == 'found'
        assert entry['talent'] == {
            'oneId': 'T1',
            'name': 'Luna',
            'platformAccountId': 'acc-1',
            'platform': 'douyin',
            'agencyId': 'MCN-A',
            'agencyName': 'Alpha Media',
        }

    def test_name_matches_exactly_ignoring_case(self, service, talents):
        result = service.binding.match_talents('douyin', [
            {'platformAccountId': 'acc-missing', 'name': '  LUNA '},
            {'name': 'Lun'},
        ])

        found, partial = result['matched']
        assert found['status'] == 'found'
        assert found['talent']['oneId'] == 'T1'
        assert partial['status'] == 'not_found'
        assert partial['talent'] is None

    def test_shared_name_lists_candidates(self, service, talents):
        result = service.binding.match_talents('douyin', [{'name': 'nova'}])

        entry = result['matched'][0]
        assert entry['status'] == 'multiple_found'
        assert entry['talent'] is None
        candidates = {c['oneId']: c['agencyName'] for c in entry['candidates']}
        assert candidates == {'T2': 'independent talent', 'T3': 'unknown agency'}

    def test_other_platforms_are_ignored(self, service, talents):
        result = service.binding.match_talents('douyin', [{'platformAccountId': 'acc-4'}])

        assert result['matched'][0]['status'] == 'not_found'

    def test_item_without_account_or_name(self, service, talents):
        result = service.binding.match_talents('douyin', [{'name': '   '}])

        entry = result['matched'][0]
        assert entry['status'] == 'not_found'
        assert entry['message'] == 'missing platformAccountId or name'

    def test_summary_counts_every_outcome(self, service, talents):
        result = service.binding.match_talents('douyin', [
            {'platformAccountId': 'acc-2'},
            {'name': 'Nova'},
            {'name': 'Nobody'},
            {},
        ])

        assert result['summary'] == {'total': 4, 'found': 1, 'notFound': 2, 'multipleFound': 1}

    def test_nothing_is_written(self, service, talents, ledger_rows):
        service.binding.match_talents('douyin', [{'platformAccountId': 'acc-2'}])

        assert service.talents.find_one('T2', 'douyin').agency_id == INDIVIDUAL
        assert ledger_rows() == []

    def test_empty_list_is_rejected(self, service):
        with pytest.raises(ValidationError):
            service.binding.match_talents('douyin', [])
