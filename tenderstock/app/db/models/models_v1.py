from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    ForeignKeyConstraint,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tenderstock.app.db.base import Base
from tenderstock.app.db.models.core_types import PricingMode

# BIGINT en prod (Postgres), INTEGER sous SQLite pour garder l'autoincrement
PK = BigInteger().with_variant(Integer, "sqlite")


# ---------- TENDER (fourni par le module appels d'offres) ----------
class Tender(Base):
    __tablename__ = "tenders"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    reference_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    title: Mapped[str | None] = mapped_column(String(255))

    pricing_mode: Mapped[PricingMode] = mapped_column(
        Enum(PricingMode, name="pricing_mode"),
        default=PricingMode.individual,
        nullable=False,
    )
    total_actual_price: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))

    # plus haut numéro de livraison jamais attribué (jamais réutilisé)
    last_sequence_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_finalized: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finalized_by: Mapped[str | None] = mapped_column(String(128))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    items: Mapped[list["TenderItem"]] = relationship(back_populates="tender", cascade="all, delete-orphan")
    deliveries: Mapped[list["Delivery"]] = relationship(back_populates="tender", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("total_actual_price IS NULL OR total_actual_price >= 0", name="ck_tender_total_price_nonneg"),
        CheckConstraint("last_sequence_number >= 0", name="ck_tender_last_sequence_nonneg"),
    )


class TenderItem(Base):
    __tablename__ = "tender_items"
    tender_id: Mapped[int] = mapped_column(ForeignKey("tenders.id", ondelete="CASCADE"), primary_key=True)
    item_master_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    nomenclature: Mapped[str] = mapped_column(String(255), nullable=False)
    ordered_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    estimated_unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    actual_unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    tender: Mapped[Tender] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("ordered_quantity > 0", name="ck_tender_item_qty_pos"),
        CheckConstraint("estimated_unit_price >= 0", name="ck_tender_item_estimate_nonneg"),
        CheckConstraint("actual_unit_price IS NULL OR actual_unit_price >= 0", name="ck_tender_item_actual_nonneg"),
    )


class ItemExclusion(Base):
    """Marque "non acheté", séparée de tender_items : on ne touche jamais à la base commandée."""

    __tablename__ = "item_exclusions"
    tender_id: Mapped[int] = mapped_column(ForeignKey("tenders.id", ondelete="CASCADE"), primary_key=True)
    item_master_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    excluded: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )


# ---------- RECEPTIONS ("visites") ----------
class Delivery(Base):
    __tablename__ = "deliveries"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    tender_id: Mapped[int] = mapped_column(
        ForeignKey("tenders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    personnel: Mapped[str] = mapped_column(String(200), nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    chalan_reference: Mapped[str | None] = mapped_column(String(128))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    tender: Mapped[Tender] = relationship(back_populates="deliveries")
    lines: Mapped[list["DeliveryLine"]] = relationship(back_populates="delivery", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("tender_id", "sequence_number", name="uq_delivery_tender_sequence"),
        CheckConstraint("sequence_number > 0", name="ck_delivery_sequence_pos"),
    )


class DeliveryLine(Base):
    __tablename__ = "delivery_lines"
    delivery_id: Mapped[int] = mapped_column(ForeignKey("deliveries.id", ondelete="CASCADE"), primary_key=True)
    item_master_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    delivered_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    delivery: Mapped[Delivery] = relationship(back_populates="lines")
    serial_numbers: Mapped[list["DeliverySerialNumber"]] = relationship(
        back_populates="line",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("delivered_qty > 0", name="ck_delivery_line_qty_pos"),
        CheckConstraint("unit_price IS NULL OR unit_price >= 0", name="ck_delivery_line_price_nonneg"),
    )


class DeliverySerialNumber(Base):
    __tablename__ = "delivery_serial_numbers"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    delivery_id: Mapped[int] = mapped_column(PK, nullable=False)
    item_master_id: Mapped[str] = mapped_column(String(64), nullable=False)
    serial_number: Mapped[str] = mapped_column(String(128), nullable=False)
    # version minuscule : unicité insensible à la casse par ligne de livraison
    serial_key: Mapped[str] = mapped_column(String(128), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    line: Mapped[DeliveryLine] = relationship(back_populates="serial_numbers")

    __table_args__ = (
        ForeignKeyConstraint(
            ["delivery_id", "item_master_id"],
            ["delivery_lines.delivery_id", "delivery_lines.item_master_id"],
            ondelete="CASCADE",
            name="fk_serial_delivery_line",
        ),
        UniqueConstraint("delivery_id", "item_master_id", "serial_key", name="uq_serial_per_delivery_line"),
        Index("ix_serial_numbers_line", "delivery_id", "item_master_id"),
    )


# ---------- AUDIT ----------
class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    actor: Mapped[str | None] = mapped_column(String(128))
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    meta: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("ix_audit_entity", "entity_type", "entity_id"),)
