"""
Collaborateur de persistance.

Store est le contrat attendu par les commandes ; SqlAlchemyStore
l'implémente sur une Session. Une opération = une transaction ; toute
SQLAlchemyError est rollback puis remontée en PersistenceFailure.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Mapping, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from tenderstock.app.db.models import models_v1 as m
from tenderstock.services.errors import PersistenceFailure, TenderNotFound
from tenderstock.services.state import (
    Delivery,
    DeliveryLine,
    LineKey,
    PricingState,
    SerialNumberEntry,
    TenderLineItem,
    TenderState,
)

logger = logging.getLogger(__name__)

SerialRows = Mapping[str, Sequence[tuple[str, str | None]]]


class Store(Protocol):
    def load(self, tender_id: int) -> TenderState: ...

    def insert_delivery(
        self, delivery: Delivery, serials: SerialRows
    ) -> tuple[Delivery, tuple[SerialNumberEntry, ...]]: ...

    def replace_delivery(self, delivery: Delivery, dropped_serials: Sequence[LineKey]) -> Delivery: ...

    def delete_delivery(self, delivery_id: int) -> None: ...

    def replace_serials(
        self, key: LineKey, entries: Sequence[SerialNumberEntry]
    ) -> tuple[SerialNumberEntry, ...]: ...

    def set_exclusion(self, tender_id: int, item_master_id: str, excluded: bool) -> None: ...

    def save_pricing(self, tender_id: int, pricing: PricingState) -> None: ...

    def finalize(self, tender_id: int, finalized_by: str, finalized_at: datetime) -> None: ...


# ---------- ORM -> structures du moteur ----------
def _to_delivery(row: m.Delivery) -> Delivery:
    return Delivery(
        id=int(row.id),
        tender_id=int(row.tender_id),
        sequence_number=row.sequence_number,
        personnel=row.personnel,
        delivery_date=row.delivery_date,
        notes=row.notes,
        chalan_reference=row.chalan_reference,
        lines=tuple(
            DeliveryLine(item_master_id=ln.item_master_id, delivered_qty=ln.delivered_qty, unit_price=ln.unit_price)
            for ln in sorted(row.lines, key=lambda ln: ln.item_master_id)
        ),
    )


def _to_serial(row: m.DeliverySerialNumber) -> SerialNumberEntry:
    return SerialNumberEntry(
        id=int(row.id),
        serial_number=row.serial_number,
        owner=LineKey(int(row.delivery_id), row.item_master_id),
        notes=row.notes,
    )


class SqlAlchemyStore:
    def __init__(self, db: Session, *, actor: str | None = None):
        self.db = db
        self.actor = actor

    @contextmanager
    def _write(self, action: str, entity_type: str) -> Iterator[m.AuditLog]:
        entry = m.AuditLog(actor=self.actor, action=action, entity_type=entity_type, entity_id="")
        try:
            yield entry
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Persistence failure during %s: %s", action, exc)
            raise PersistenceFailure(str(exc)) from exc

    def _tender(self, tender_id: int) -> m.Tender:
        tender = self.db.get(m.Tender, tender_id)
        if not tender:
            raise TenderNotFound(tender_id)
        return tender

    # ---------- Lecture ----------
    def load(self, tender_id: int) -> TenderState:
        try:
            tender = self._tender(tender_id)
            items = (
                self.db.execute(
                    select(m.TenderItem)
                    .where(m.TenderItem.tender_id == tender_id)
                    .order_by(m.TenderItem.item_master_id)
                )
                .scalars()
                .all()
            )
            excluded = (
                self.db.execute(
                    select(m.ItemExclusion.item_master_id)
                    .where(m.ItemExclusion.tender_id == tender_id)
                    .where(m.ItemExclusion.excluded.is_(True))
                )
                .scalars()
                .all()
            )
            deliveries = (
                self.db.execute(
                    select(m.Delivery)
                    .where(m.Delivery.tender_id == tender_id)
                    .options(selectinload(m.Delivery.lines))
                    .order_by(m.Delivery.sequence_number.asc())
                )
                .scalars()
                .all()
            )
            serials = (
                self.db.execute(
                    select(m.DeliverySerialNumber)
                    .join(m.Delivery, m.Delivery.id == m.DeliverySerialNumber.delivery_id)
                    .where(m.Delivery.tender_id == tender_id)
                    .order_by(m.DeliverySerialNumber.id.asc())
                )
                .scalars()
                .all()
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceFailure(str(exc)) from exc

        return TenderState(
            tender_id=int(tender.id),
            reference_number=tender.reference_number,
            items=tuple(
                TenderLineItem(
                    item_master_id=i.item_master_id,
                    nomenclature=i.nomenclature,
                    ordered_quantity=i.ordered_quantity,
                    estimated_unit_price=i.estimated_unit_price,
                )
                for i in items
            ),
            deliveries=tuple(_to_delivery(d) for d in deliveries),
            excluded=frozenset(excluded),
            pricing=PricingState(
                mode=tender.pricing_mode,
                actual_unit_prices={i.item_master_id: i.actual_unit_price for i in items if i.actual_unit_price is not None},
                total_actual_price=tender.total_actual_price,
            ),
            serials=tuple(_to_serial(s) for s in serials),
            last_sequence_number=tender.last_sequence_number,
            is_finalized=tender.is_finalized,
            finalized_by=tender.finalized_by,
            finalized_at=tender.finalized_at,
        )

    # ---------- Livraisons ----------
    def insert_delivery(
        self, delivery: Delivery, serials: SerialRows
    ) -> tuple[Delivery, tuple[SerialNumberEntry, ...]]:
        with self._write("DELIVERY_CREATE", "delivery") as audit:
            tender = self._tender(delivery.tender_id)
            row = m.Delivery(
                tender_id=delivery.tender_id,
                sequence_number=delivery.sequence_number,
                personnel=delivery.personnel,
                delivery_date=delivery.delivery_date,
                notes=delivery.notes,
                chalan_reference=delivery.chalan_reference,
            )
            row.lines = [
                m.DeliveryLine(item_master_id=ln.item_master_id, delivered_qty=ln.delivered_qty, unit_price=ln.unit_price)
                for ln in delivery.lines
            ]
            self.db.add(row)
            tender.last_sequence_number = max(tender.last_sequence_number, delivery.sequence_number)
            self.db.flush()  # get row.id

            serial_rows = [
                m.DeliverySerialNumber(
                    delivery_id=row.id,
                    item_master_id=pid,
                    serial_number=serial,
                    serial_key=serial.lower(),
                    notes=notes,
                )
                for pid, entries in serials.items()
                for serial, notes in entries
            ]
            self.db.add_all(serial_rows)
            self.db.flush()

            audit.entity_id = str(row.id)
            audit.meta = json.dumps(
                {
                    "tender_id": delivery.tender_id,
                    "sequence_number": delivery.sequence_number,
                    "lines": [[ln.item_master_id, ln.delivered_qty] for ln in delivery.lines],
                    "serials": sum(len(v) for v in serials.values()),
                }
            )
            saved = _to_delivery(row)
            saved_serials = tuple(_to_serial(s) for s in serial_rows)
        return saved, saved_serials

    def replace_delivery(self, delivery: Delivery, dropped_serials: Sequence[LineKey]) -> Delivery:
        with self._write("DELIVERY_UPDATE", "delivery") as audit:
            row = self.db.get(m.Delivery, delivery.id)
            if row is None:
                raise PersistenceFailure(f"Delivery {delivery.id} no longer exists")

            row.personnel = delivery.personnel
            row.delivery_date = delivery.delivery_date
            row.notes = delivery.notes
            row.chalan_reference = delivery.chalan_reference

            wanted = {ln.item_master_id: ln for ln in delivery.lines}
            existing = {ln.item_master_id: ln for ln in row.lines}
            dropped = {k.item_master_id for k in dropped_serials if k.delivery_id == delivery.id}

            for pid, ln_row in existing.items():
                if pid not in wanted:
                    row.lines.remove(ln_row)
                elif pid in dropped:
                    ln_row.serial_numbers.clear()
            for pid, ln in wanted.items():
                ln_row = existing.get(pid)
                if ln_row is None:
                    row.lines.append(
                        m.DeliveryLine(item_master_id=pid, delivered_qty=ln.delivered_qty, unit_price=ln.unit_price)
                    )
                else:
                    ln_row.delivered_qty = ln.delivered_qty
                    ln_row.unit_price = ln.unit_price
            self.db.flush()

            audit.entity_id = str(row.id)
            audit.meta = json.dumps(
                {
                    "lines": [[ln.item_master_id, ln.delivered_qty] for ln in delivery.lines],
                    "serials_cleared": sorted(dropped),
                }
            )
            saved = _to_delivery(row)
        return saved

    def delete_delivery(self, delivery_id: int) -> None:
        with self._write("DELIVERY_DELETE", "delivery") as audit:
            row = self.db.get(m.Delivery, delivery_id)
            if row is None:
                raise PersistenceFailure(f"Delivery {delivery_id} no longer exists")
            tender = self._tender(row.tender_id)
            tender.last_sequence_number = max(tender.last_sequence_number, row.sequence_number)

            audit.entity_id = str(delivery_id)
            audit.meta = json.dumps({"tender_id": int(row.tender_id), "sequence_number": row.sequence_number})
            # cascade ORM : lignes + numéros de série
            self.db.delete(row)

    # ---------- Numéros de série ----------
    def replace_serials(
        self, key: LineKey, entries: Sequence[SerialNumberEntry]
    ) -> tuple[SerialNumberEntry, ...]:
        with self._write("SERIALS_SAVE", "delivery_line") as audit:
            line = self.db.get(m.DeliveryLine, (key.delivery_id, key.item_master_id))
            if line is None:
                raise PersistenceFailure(f"Delivery line {key.delivery_id}/{key.item_master_id} no longer exists")

            line.serial_numbers.clear()
            # les suppressions doivent partir avant les insertions (contrainte d'unicité)
            self.db.flush()

            rows = [
                m.DeliverySerialNumber(
                    serial_number=e.serial_number,
                    serial_key=e.serial_number.lower(),
                    notes=e.notes,
                )
                for e in entries
            ]
            line.serial_numbers.extend(rows)
            self.db.flush()

            audit.entity_id = f"{key.delivery_id}:{key.item_master_id}"
            audit.meta = json.dumps({"count": len(rows)})
            saved = tuple(_to_serial(r) for r in rows)
        return saved

    # ---------- Exclusion / prix / finalisation ----------
    def set_exclusion(self, tender_id: int, item_master_id: str, excluded: bool) -> None:
        with self._write("ITEM_EXCLUDE" if excluded else "ITEM_RESTORE", "tender_item") as audit:
            mark = self.db.get(m.ItemExclusion, (tender_id, item_master_id))
            if mark is None:
                self.db.add(m.ItemExclusion(tender_id=tender_id, item_master_id=item_master_id, excluded=excluded))
            else:
                mark.excluded = excluded
            audit.entity_id = f"{tender_id}:{item_master_id}"

    def save_pricing(self, tender_id: int, pricing: PricingState) -> None:
        with self._write("PRICING_UPDATE", "tender") as audit:
            tender = self._tender(tender_id)
            tender.pricing_mode = pricing.mode
            tender.total_actual_price = pricing.total_actual_price

            items = self.db.execute(select(m.TenderItem).where(m.TenderItem.tender_id == tender_id)).scalars().all()
            for item in items:
                item.actual_unit_price = pricing.actual_unit_prices.get(item.item_master_id)

            audit.entity_id = str(tender_id)
            audit.meta = json.dumps({"mode": pricing.mode.value, "total": pricing.total_actual_price}, default=str)

    def finalize(self, tender_id: int, finalized_by: str, finalized_at: datetime) -> None:
        with self._write("TENDER_FINALIZE", "tender") as audit:
            tender = self._tender(tender_id)
            tender.is_finalized = True
            tender.finalized_by = finalized_by
            tender.finalized_at = finalized_at
            audit.entity_id = str(tender_id)
