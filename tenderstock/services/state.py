"""
Structures de données du moteur (indépendantes de l'ORM).

TenderState est un snapshot immuable : chaque commande réussie en produit
un nouveau, une commande en échec laisse l'ancien en place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Mapping, NamedTuple

from tenderstock.app.db.models.core_types import PricingMode
from tenderstock.services.errors import TenderLocked


class LineKey(NamedTuple):
    """Identifiant d'une ligne de livraison : (delivery_id, item_master_id)."""

    delivery_id: int
    item_master_id: str


@dataclass(frozen=True)
class TenderLineItem:
    item_master_id: str
    nomenclature: str
    ordered_quantity: int
    estimated_unit_price: Decimal = Decimal("0")


@dataclass(frozen=True)
class DeliveryLine:
    item_master_id: str
    delivered_qty: int
    unit_price: Decimal | None = None


@dataclass(frozen=True)
class Delivery:
    id: int | None
    tender_id: int
    sequence_number: int
    personnel: str
    delivery_date: date
    lines: tuple[DeliveryLine, ...]
    notes: str | None = None
    chalan_reference: str | None = None

    def line_for(self, item_master_id: str) -> DeliveryLine | None:
        for line in self.lines:
            if line.item_master_id == item_master_id:
                return line
        return None


@dataclass(frozen=True)
class SerialNumberEntry:
    id: int | None
    serial_number: str
    owner: LineKey
    notes: str | None = None


@dataclass(frozen=True)
class PricingState:
    mode: PricingMode = PricingMode.individual
    actual_unit_prices: Mapping[str, Decimal] = field(default_factory=dict)
    total_actual_price: Decimal | None = None


@dataclass(frozen=True)
class TenderState:
    tender_id: int
    reference_number: str
    items: tuple[TenderLineItem, ...]
    deliveries: tuple[Delivery, ...] = ()
    excluded: frozenset[str] = frozenset()
    pricing: PricingState = field(default_factory=PricingState)
    serials: tuple[SerialNumberEntry, ...] = ()
    last_sequence_number: int = 0
    is_finalized: bool = False
    finalized_by: str | None = None
    finalized_at: datetime | None = None

    def item(self, item_master_id: str) -> TenderLineItem | None:
        for item in self.items:
            if item.item_master_id == item_master_id:
                return item
        return None

    def delivery(self, delivery_id: int) -> Delivery | None:
        for d in self.deliveries:
            if d.id == delivery_id:
                return d
        return None

    def active_items(self) -> tuple[TenderLineItem, ...]:
        return tuple(i for i in self.items if i.item_master_id not in self.excluded)

    def excluded_items(self) -> tuple[TenderLineItem, ...]:
        return tuple(i for i in self.items if i.item_master_id in self.excluded)

    def serials_for(self, key: LineKey) -> tuple[SerialNumberEntry, ...]:
        return tuple(s for s in self.serials if s.owner == key)

    def next_sequence_number(self) -> int:
        # max(existant) + 1, sans jamais redescendre sous le plus haut numéro déjà attribué
        highest = max((d.sequence_number for d in self.deliveries), default=0)
        return max(highest, self.last_sequence_number) + 1


def require_open(state: TenderState) -> None:
    if state.is_finalized:
        raise TenderLocked(state.reference_number)
