"""
Table definitions.

Rows mirror the domain dataclasses in models.py; store.py converts between
the two so the operations never see a session.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .models import INDIVIDUAL, RebateMode, RecordStatus, RelationStatus

RATE = Numeric(5, 2)


class TalentRow(Base):
    __tablename__ = "talents"

    one_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    platform: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), default="")
    platform_account_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    agency_id: Mapped[str] = mapped_column(String(64), default=INDIVIDUAL, index=True)
    rebate_mode: Mapped[str] = mapped_column(String(16), default=RebateMode.SYNC)

    # currentRebate, flattened
    current_rate: Mapped[Optional[Decimal]] = mapped_column(RATE, nullable=True)
    rate_source: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    rate_effective_date: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    rate_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    last_rebate_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_talents_platform_account", "platform", "platform_account_id"),
    )


class AgencyRow(Base):
    __tablename__ = "agencies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256))
    # {platform: "8.5"}; strings keep the rates exact inside JSON
    base_rebates: Mapped[dict] = mapped_column(JSON, default=dict)


class CustomerRow(Base):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(256), default="")


class CustomerTalentRow(Base):
    """customer_id holds the customer code."""

    __tablename__ = "customer_talents"

    customer_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    talent_one_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    platform: Mapped[str] = mapped_column(String(32), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), default=RelationStatus.ACTIVE)

    # customerRebate, flattened; rebate_enabled is NULL when no override exists
    rebate_enabled: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    rebate_rate: Mapped[Optional[Decimal]] = mapped_column(RATE, nullable=True)
    rebate_effective_date: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    rebate_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rebate_updated_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    rebate_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class RebateConfigRow(Base):
    """The audit ledger."""

    __tablename__ = "rebate_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    config_id: Mapped[str] = mapped_column(String(64), unique=True)
    target_type: Mapped[str] = mapped_column(String(32))
    target_id: Mapped[str] = mapped_column(String(160))
    platform: Mapped[str] = mapped_column(String(32))
    rebate_rate: Mapped[Decimal] = mapped_column(RATE)
    previous_rate: Mapped[Optional[Decimal]] = mapped_column(RATE, nullable=True)
    effective_date: Mapped[str] = mapped_column(String(10))
    expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=RecordStatus.ACTIVE)
    created_by: Mapped[str] = mapped_column(String(128), default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    change_source: Mapped[str] = mapped_column(String(32))
    # "metadata" is reserved on declarative classes
    details: Mapped[dict] = mapped_column("metadata", JSON, default=dict)

    __table_args__ = (
        Index("idx_rebate_configs_target_status", "target_type", "target_id", "platform", "status"),
        Index("idx_rebate_configs_target_created", "target_type", "target_id", "platform", "created_at"),
    )


class LibraryImportRow(Base):
    __tablename__ = "rate_library_imports"

    import_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    file_name: Mapped[str] = mapped_column(String(256))
    record_count: Mapped[int] = mapped_column(Integer)
    imported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class LibraryEntryRow(Base):
    __tablename__ = "rate_library_rows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    import_id: Mapped[str] = mapped_column(String(32))
    account_id: Mapped[str] = mapped_column(String(128))
    nickname: Mapped[str] = mapped_column(String(256))
    mcn: Mapped[str] = mapped_column(String(256))
    rebate_rate: Mapped[Decimal] = mapped_column(Numeric(10, 4))
    raw_remark: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_rate_library_rows_import_account", "import_id", "account_id"),
    )
