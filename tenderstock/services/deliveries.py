from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Mapping

from tenderstock.services.errors import ValidationError
from tenderstock.services.reconciliation import compute_state
from tenderstock.services.serials import SerialDraft
from tenderstock.services.state import (
    Delivery,
    DeliveryLine,
    LineKey,
    SerialNumberEntry,
    TenderState,
    require_open,
)

if TYPE_CHECKING:
    from tenderstock.services.store import Store

logger = logging.getLogger(__name__)


def validate_lines(
    state: TenderState,
    lines: Iterable[DeliveryLine],
    *,
    replacing: int | None = None,
) -> tuple[DeliveryLine, ...]:
    """
    Bornes par ligne, évaluées sur le registre AVANT l'opération.

    En édition (`replacing`), la contribution de la livraison éditée est
    retirée d'abord : elle ne compte pas contre elle-même.
    Une ligne d'item exclu n'est acceptée qu'à l'identique de la ligne stockée.
    Plafond strict : delivered_qty <= remaining_qty.
    """
    lines = tuple(lines)
    if not lines:
        raise ValidationError("Please enter quantities for at least one item", field="lines")

    ledger = [d for d in state.deliveries if d.id != replacing]
    recon = compute_state(state.items, ledger, state.excluded)
    current = state.delivery(replacing) if replacing is not None else None

    seen: set[str] = set()
    for ln in lines:
        pid = ln.item_master_id
        if state.item(pid) is None:
            raise ValidationError(f"Item {pid} is not part of tender {state.reference_number}", field="item_master_id")
        if pid in seen:
            raise ValidationError(f"Item {pid} appears more than once in the delivery", field="item_master_id")
        seen.add(pid)
        if pid in state.excluded:
            # item exclu : seule une ligne déjà enregistrée, inchangée, est conservée
            if current is None or current.line_for(pid) != ln:
                raise ValidationError(f"Item {pid} is excluded from this tender", field="item_master_id")
            continue

        qty = ln.delivered_qty
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            raise ValidationError(f"Delivered quantity for item {pid} must be a positive integer", field="delivered_qty")
        if ln.unit_price is not None and ln.unit_price < 0:
            raise ValidationError(f"Unit price for item {pid} must be non-negative", field="unit_price")

        remaining = recon[pid].remaining_qty
        if qty > remaining:
            raise ValidationError(
                f"Delivered quantity {qty} for item {pid} exceeds remaining quantity {max(remaining, 0)}",
                field="delivered_qty",
            )
    return lines


def _require_personnel(personnel: str | None) -> str:
    personnel = (personnel or "").strip()
    if not personnel:
        raise ValidationError("Please fill in delivery personnel name", field="personnel")
    return personnel


@dataclass
class DeliveryDraft:
    """Tampon de composition d'une livraison : aucune écriture dans le registre."""

    quantities: dict[str, int] = field(default_factory=dict)
    unit_prices: dict[str, Decimal] = field(default_factory=dict)
    serials: dict[str, SerialDraft] = field(default_factory=dict)

    @classmethod
    def from_delivery(cls, delivery: Delivery) -> "DeliveryDraft":
        return cls(
            quantities={ln.item_master_id: ln.delivered_qty for ln in delivery.lines},
            unit_prices={ln.item_master_id: ln.unit_price for ln in delivery.lines if ln.unit_price is not None},
        )

    def set_quantity(self, item_master_id: str, qty: int, unit_price: Decimal | None = None) -> None:
        if qty <= 0:
            self.remove_line(item_master_id)
            return
        self.quantities[item_master_id] = qty
        if unit_price is not None:
            self.unit_prices[item_master_id] = unit_price
        draft = self.serials.get(item_master_id)
        if draft is not None:
            draft.required_quantity = qty

    def serial_draft(self, item_master_id: str) -> SerialDraft:
        if item_master_id not in self.quantities:
            raise ValidationError(f"Item {item_master_id} has no quantity in this draft", field="item_master_id")
        draft = self.serials.get(item_master_id)
        if draft is None:
            draft = self.serials[item_master_id] = SerialDraft(required_quantity=self.quantities[item_master_id])
        return draft

    def remove_line(self, item_master_id: str) -> None:
        # quantité, prix et série partent ensemble
        self.quantities.pop(item_master_id, None)
        self.unit_prices.pop(item_master_id, None)
        self.serials.pop(item_master_id, None)

    def to_lines(self) -> tuple[DeliveryLine, ...]:
        return tuple(
            DeliveryLine(item_master_id=pid, delivered_qty=qty, unit_price=self.unit_prices.get(pid))
            for pid, qty in self.quantities.items()
            if qty > 0
        )


@dataclass(frozen=True)
class CreateDelivery:
    personnel: str
    delivery_date: date
    lines: tuple[DeliveryLine, ...]
    notes: str | None = None
    chalan_reference: str | None = None
    # séries saisies avant l'enregistrement : item_master_id -> brouillon complet
    serials: Mapping[str, SerialDraft] = field(default_factory=dict)
    name = "create_delivery"

    @classmethod
    def from_draft(cls, draft: DeliveryDraft, *, personnel: str, delivery_date: date, **meta) -> "CreateDelivery":
        serials = {pid: s for pid, s in draft.serials.items() if s.valid_count}
        return cls(personnel=personnel, delivery_date=delivery_date, lines=draft.to_lines(), serials=serials, **meta)

    def execute(self, state: TenderState, store: "Store") -> TenderState:
        require_open(state)
        personnel = _require_personnel(self.personnel)
        lines = validate_lines(state, self.lines)

        by_item = {ln.item_master_id: ln for ln in lines}
        pending_serials: dict[str, tuple[tuple[str, str | None], ...]] = {}
        for pid, draft in self.serials.items():
            if pid not in by_item:
                raise ValidationError(f"Serial numbers given for item {pid} which is not delivered", field="serials")
            entries = draft.commit(by_item[pid].delivered_qty)
            pending_serials[pid] = tuple((e.serial_number, e.notes or None) for e in entries)

        seq = state.next_sequence_number()
        delivery = Delivery(
            id=None,
            tender_id=state.tender_id,
            sequence_number=seq,
            personnel=personnel,
            delivery_date=self.delivery_date,
            lines=lines,
            notes=self.notes,
            chalan_reference=self.chalan_reference,
        )
        saved, serials = store.insert_delivery(delivery, pending_serials)
        logger.info(
            "Delivery #%s created for tender %s with %d lines",
            saved.sequence_number,
            state.reference_number,
            len(saved.lines),
        )
        return replace(
            state,
            deliveries=state.deliveries + (saved,),
            serials=state.serials + tuple(serials),
            last_sequence_number=seq,
        )


@dataclass(frozen=True)
class EditDelivery:
    """Remplace l'ensemble des lignes d'une livraison (et ses métadonnées si fournies)."""

    delivery_id: int
    lines: tuple[DeliveryLine, ...]
    personnel: str | None = None
    delivery_date: date | None = None
    notes: str | None = None
    chalan_reference: str | None = None
    name = "edit_delivery"

    def execute(self, state: TenderState, store: "Store") -> TenderState:
        require_open(state)
        current = state.delivery(self.delivery_id)
        if current is None:
            raise ValidationError(f"Delivery {self.delivery_id} not found", field="delivery_id")

        personnel = current.personnel if self.personnel is None else _require_personnel(self.personnel)
        lines = validate_lines(state, self.lines, replacing=self.delivery_id)

        # séries devenues incohérentes : ligne retirée ou quantité modifiée
        dropped: list[LineKey] = []
        for old in current.lines:
            new = next((ln for ln in lines if ln.item_master_id == old.item_master_id), None)
            if new is None or new.delivered_qty != old.delivered_qty:
                dropped.append(LineKey(current.id, old.item_master_id))

        updated = replace(
            current,
            personnel=personnel,
            delivery_date=self.delivery_date or current.delivery_date,
            notes=current.notes if self.notes is None else self.notes,
            chalan_reference=current.chalan_reference if self.chalan_reference is None else self.chalan_reference,
            lines=lines,
        )
        saved = store.replace_delivery(updated, dropped)
        if dropped:
            logger.info(
                "Delivery #%s edited: serial numbers cleared for %s",
                current.sequence_number,
                ", ".join(k.item_master_id for k in dropped),
            )
        kept: tuple[SerialNumberEntry, ...] = tuple(s for s in state.serials if s.owner not in dropped)
        return replace(
            state,
            deliveries=tuple(saved if d.id == current.id else d for d in state.deliveries),
            serials=kept,
        )


@dataclass(frozen=True)
class DeleteDelivery:
    """Seule suppression destructive du moteur : l'appelant doit confirmer."""

    delivery_id: int
    confirmed: bool = False
    name = "delete_delivery"

    def execute(self, state: TenderState, store: "Store") -> TenderState:
        require_open(state)
        current = state.delivery(self.delivery_id)
        if current is None:
            raise ValidationError(f"Delivery {self.delivery_id} not found", field="delivery_id")
        if not self.confirmed:
            raise ValidationError("Deleting a delivery must be confirmed", field="confirmed")

        store.delete_delivery(current.id)
        logger.info("Delivery #%s deleted from tender %s", current.sequence_number, state.reference_number)
        return replace(
            state,
            deliveries=tuple(d for d in state.deliveries if d.id != current.id),
            serials=tuple(s for s in state.serials if s.owner.delivery_id != current.id),
            # le numéro reste consommé
            last_sequence_number=max(state.last_sequence_number, current.sequence_number),
        )
