"""
Allocation des numéros de série d'une ligne de livraison.

Le brouillon (SerialDraft) est un tampon d'édition transitoire ; seul un
jeu complet (exactement delivered_qty numéros non vides, sans doublon)
peut être enregistré via CommitSerials.
"""

from __future__ import annotations

import csv
import io
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Iterable, Sequence

from tenderstock.app.db.models.core_types import SerialDraftState
from tenderstock.services.errors import (
    DuplicateSerial,
    LimitExceeded,
    QuantityMismatch,
    ValidationError,
)
from tenderstock.services.state import LineKey, SerialNumberEntry, TenderState, require_open

if TYPE_CHECKING:
    from tenderstock.services.store import Store

logger = logging.getLogger(__name__)

CSV_HEADER = ("Serial Number", "Notes")


@dataclass
class DraftEntry:
    id: str
    serial_number: str
    notes: str = ""

    @property
    def key(self) -> str:
        return self.serial_number.strip().lower()


@dataclass(frozen=True)
class BulkAddOutcome:
    accepted: tuple[DraftEntry, ...] = ()
    duplicates: tuple[str, ...] = ()
    limit_exceeded: tuple[str, ...] = ()
    limit: int = 0

    @property
    def accepted_count(self) -> int:
        return len(self.accepted)

    def errors(self) -> list[DuplicateSerial | LimitExceeded]:
        """Raisons des rejets, à remonter à l'utilisateur (rien n'est fatal)."""
        found: list[DuplicateSerial | LimitExceeded] = []
        if self.duplicates:
            found.append(DuplicateSerial(self.duplicates))
        if self.limit_exceeded:
            found.append(LimitExceeded(self.limit_exceeded, limit=self.limit))
        return found


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


@dataclass
class SerialDraft:
    required_quantity: int
    entries: list[DraftEntry] = field(default_factory=list)

    @classmethod
    def from_saved(cls, required_quantity: int, saved: Iterable[SerialNumberEntry]) -> "SerialDraft":
        return cls(
            required_quantity=required_quantity,
            entries=[
                DraftEntry(id=f"saved-{s.id}", serial_number=s.serial_number, notes=s.notes or "")
                for s in saved
            ],
        )

    # ---------- Lecture ----------
    @property
    def valid_entries(self) -> list[DraftEntry]:
        return [e for e in self.entries if e.serial_number.strip()]

    @property
    def valid_count(self) -> int:
        return len(self.valid_entries)

    @property
    def available_slots(self) -> int:
        return max(self.required_quantity - self.valid_count, 0)

    @property
    def state(self) -> SerialDraftState:
        count = self.valid_count
        if count == 0:
            return SerialDraftState.empty
        if count == self.required_quantity and not self.duplicate_serials():
            return SerialDraftState.complete
        return SerialDraftState.drafting

    def duplicate_serials(self) -> list[str]:
        seen: set[str] = set()
        dups: list[str] = []
        for e in self.valid_entries:
            if e.key in seen:
                dups.append(e.serial_number.strip())
            seen.add(e.key)
        return dups

    def _contains(self, serial: str) -> bool:
        key = serial.strip().lower()
        return any(e.key == key for e in self.valid_entries)

    # ---------- Saisie ----------
    def add_single(self, serial: str, notes: str | None = None) -> DraftEntry:
        serial = (serial or "").strip()
        if not serial:
            raise ValidationError("Please enter a serial number", field="serial_number")
        if self.valid_count >= self.required_quantity:
            raise LimitExceeded([serial], limit=self.required_quantity)
        if self._contains(serial):
            raise DuplicateSerial([serial])

        entry = DraftEntry(id=_new_id("new"), serial_number=serial, notes=(notes or "").strip())
        self.entries.append(entry)
        return entry

    def _add_many(self, candidates: Iterable[tuple[str, str]], prefix: str) -> BulkAddOutcome:
        slots = self.available_slots
        seen = {e.key for e in self.valid_entries}
        accepted: list[DraftEntry] = []
        duplicates: list[str] = []
        limit_exceeded: list[str] = []

        for serial, notes in candidates:
            serial = serial.strip()
            if not serial:
                continue
            key = serial.lower()
            if key in seen:
                duplicates.append(serial)
            elif len(accepted) >= slots:
                limit_exceeded.append(serial)
            else:
                accepted.append(DraftEntry(id=_new_id(prefix), serial_number=serial, notes=notes.strip()))
                seen.add(key)

        self.entries.extend(accepted)
        if duplicates or limit_exceeded:
            logger.info(
                "Serial import: %d accepted, %d duplicates skipped, %d over limit %d",
                len(accepted),
                len(duplicates),
                len(limit_exceeded),
                self.required_quantity,
            )
        return BulkAddOutcome(
            accepted=tuple(accepted),
            duplicates=tuple(duplicates),
            limit_exceeded=tuple(limit_exceeded),
            limit=self.required_quantity,
        )

    def add_bulk(self, text: str) -> BulkAddOutcome:
        """Un numéro par ligne ; doublons et dépassements sont écartés un par un."""
        if not (text or "").strip():
            raise ValidationError("Please enter serial numbers", field="bulk_input")
        return self._add_many(((line, "") for line in text.splitlines()), "bulk")

    def import_tabular(self, rows: Sequence[Sequence[str]]) -> BulkAddOutcome:
        """Deux colonnes (Serial Number, Notes) ; la première ligne est un en-tête."""
        rows = [r for r in rows if any((c or "").strip() for c in r)]
        if len(rows) < 2:
            raise ValidationError("File must have at least a header and one data row", field="rows")

        def candidates():
            for row in rows[1:]:
                serial = row[0] if len(row) > 0 else ""
                notes = row[1] if len(row) > 1 else ""
                yield serial or "", notes or ""

        return self._add_many(candidates(), "csv")

    def import_csv(self, text: str) -> BulkAddOutcome:
        return self.import_tabular(list(csv.reader(io.StringIO(text))))

    # ---------- Édition ----------
    def _find(self, entry_id: str) -> DraftEntry:
        for e in self.entries:
            if e.id == entry_id:
                return e
        raise ValidationError(f"Unknown serial entry {entry_id}", field="entry_id")

    def update(self, entry_id: str, *, serial: str | None = None, notes: str | None = None) -> DraftEntry:
        entry = self._find(entry_id)
        if serial is not None:
            entry.serial_number = serial
        if notes is not None:
            entry.notes = notes
        return entry

    def remove(self, entry_id: str) -> DraftEntry:
        entry = self._find(entry_id)
        self.entries.remove(entry)
        return entry

    # ---------- Validation finale ----------
    def commit(self, delivered_qty: int | None = None) -> tuple[DraftEntry, ...]:
        """
        Égalité stricte : ni moins, ni plus que la quantité livrée.
        Les entrées vides sont ignorées.
        """
        expected = self.required_quantity if delivered_qty is None else delivered_qty
        valid = self.valid_entries
        if len(valid) != expected:
            raise QuantityMismatch(expected=expected, actual=len(valid))
        dups = self.duplicate_serials()
        if dups:
            raise DuplicateSerial(dups)
        return tuple(
            DraftEntry(id=e.id, serial_number=e.serial_number.strip(), notes=e.notes.strip())
            for e in valid
        )


def export_delimited(entries: Iterable[DraftEntry | SerialNumberEntry]) -> str:
    """Export CSV "Serial Number","Notes" ; formatage pur, aucune validation."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for e in entries:
        writer.writerow([e.serial_number, e.notes or ""])
    return buf.getvalue()


@dataclass(frozen=True)
class CommitSerials:
    delivery_id: int
    item_master_id: str
    draft: SerialDraft
    name = "commit_serials"

    def execute(self, state: TenderState, store: "Store") -> TenderState:
        require_open(state)
        delivery = state.delivery(self.delivery_id)
        if delivery is None:
            raise ValidationError(f"Delivery {self.delivery_id} not found", field="delivery_id")
        line = delivery.line_for(self.item_master_id)
        if line is None:
            raise ValidationError(
                f"Delivery #{delivery.sequence_number} has no line for item {self.item_master_id}",
                field="item_master_id",
            )

        entries = self.draft.commit(line.delivered_qty)
        key = LineKey(self.delivery_id, self.item_master_id)
        saved = store.replace_serials(
            key,
            [SerialNumberEntry(id=None, serial_number=e.serial_number, owner=key, notes=e.notes or None) for e in entries],
        )
        logger.info(
            "Saved %d serial numbers for delivery #%s item %s",
            len(saved),
            delivery.sequence_number,
            self.item_master_id,
        )
        others = tuple(s for s in state.serials if s.owner != key)
        return replace(state, serials=others + tuple(saved))
