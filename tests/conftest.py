"""
Shared fixtures: a fresh in-memory SQLite database per test and a seeding
helper.
"""

import os
from decimal import Decimal

import pytest
from sqlalchemy import select

# Keep the module-level services of lambda_handler and main off disk
os.environ.setdefault("DATABASE_URL", "sqlite://")

from rebates import Database, RebateService  # noqa: E402
from rebates.models import (  # noqa: E402
    INDIVIDUAL,
    Agency,
    CurrentRebate,
    Customer,
    CustomerRebate,
    CustomerTalentRelation,
    LedgerKey,
    RebateMode,
    RebateSource,
    RelationStatus,
    Talent,
)
from rebates.tables import LibraryEntryRow, RebateConfigRow  # noqa: E402


class Seeder:
    """Writes fixture documents straight into the service's directories."""

    def __init__(self, service: RebateService):
        self.service = service

    def agency(self, agency_id: str, name: str | None = None, **rates) -> Agency:
        agency = Agency(
            id=agency_id,
            name=name or agency_id,
            base_rebates={platform: Decimal(str(rate)) for platform, rate in rates.items()},
        )
        self.service.agencies.add(agency)
        return agency

    def talent(
        self,
        one_id: str,
        platform: str = "douyin",
        agency_id: str = INDIVIDUAL,
        rate=None,
        source: str = RebateSource.DEFAULT,
        mode: str = RebateMode.SYNC,
        account_id: str | None = None,
        name: str | None = None,
    ) -> Talent:
        talent = Talent(
            one_id=one_id,
            platform=platform,
            name=name or f"Talent {one_id}",
            agency_id=agency_id,
            rebate_mode=mode,
            current_rebate=CurrentRebate(Decimal(str(rate)), source) if rate is not None else None,
            platform_account_id=account_id,
        )
        self.service.talents.add(talent)
        return talent

    def customer(self, code: str, customer_id: str | None = None) -> Customer:
        customer = Customer(id=customer_id or f"id-{code}", code=code, name=f"Customer {code}")
        self.service.customers.add(customer)
        return customer

    def relation(
        self,
        customer_code: str,
        one_id: str,
        platform: str = "douyin",
        status: str = RelationStatus.ACTIVE,
        enabled: bool | None = None,
        rate=None,
    ) -> CustomerTalentRelation:
        rebate = None
        if enabled is not None:
            rebate = CustomerRebate(enabled=enabled, rate=Decimal(str(rate)) if rate is not None else None)
        relation = CustomerTalentRelation(customer_code, one_id, platform, status, rebate)
        self.service.relations.add(relation)
        return relation


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.close()


@pytest.fixture
def service(database):
    return RebateService(database)


@pytest.fixture
def seed(service):
    return Seeder(service)


@pytest.fixture
def ledger_rows(database):
    """Every ledger row, oldest first."""

    def rows():
        with database.session() as session:
            return list(session.scalars(select(RebateConfigRow).order_by(RebateConfigRow.id)))

    return rows


@pytest.fixture
def library_rows(database):
    def rows():
        with database.session() as session:
            return list(session.scalars(select(LibraryEntryRow).order_by(LibraryEntryRow.id)))

    return rows


@pytest.fixture
def talent_rows(service):
    """All ledger rows of one talent key."""

    def rows(one_id: str, platform: str = "douyin"):
        return service.ledger.configs.find(LedgerKey.for_talent(one_id, platform))

    return rows
