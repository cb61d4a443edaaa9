from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from tenderstock.app.db.models.core_types import FulfillmentStatus
from tenderstock.services.errors import OrphanedReference
from tenderstock.services.state import Delivery, TenderLineItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemReconciliation:
    item_master_id: str
    ordered_quantity: int
    delivered_qty: int
    remaining_qty: int
    status: FulfillmentStatus


@dataclass(frozen=True)
class UnmatchedDeliveryLine:
    delivery_id: int | None
    sequence_number: int
    item_master_id: str
    delivered_qty: int

    def as_error(self) -> OrphanedReference:
        return OrphanedReference(self.item_master_id, self.delivery_id, self.sequence_number)


@dataclass(frozen=True)
class Reconciliation:
    """Résultat de compute_state : uniquement les items actifs (non exclus)."""

    items: Mapping[str, ItemReconciliation]
    unmatched: tuple[UnmatchedDeliveryLine, ...] = ()

    def __getitem__(self, item_master_id: str) -> ItemReconciliation:
        return self.items[item_master_id]

    def __contains__(self, item_master_id: object) -> bool:
        return item_master_id in self.items

    def orphaned_references(self) -> list[OrphanedReference]:
        return [u.as_error() for u in self.unmatched]


def classify_status(delivered_qty: int, ordered_quantity: int) -> FulfillmentStatus:
    if delivered_qty <= 0:
        return FulfillmentStatus.pending
    if delivered_qty >= ordered_quantity:
        return FulfillmentStatus.complete
    return FulfillmentStatus.partial


def compute_state(
    items: Iterable[TenderLineItem],
    deliveries: Iterable[Delivery],
    excluded: Iterable[str] = (),
) -> Reconciliation:
    """
    Reconstruit l'état de réception à partir du registre des livraisons.

    Règle métier :
        delivered_qty = SUM(delivered_qty des lignes de livraison de l'item)
        remaining_qty = ordered_quantity - delivered_qty

    Propriétés :
    - pure, déterministe
    - indépendante de l'ordre des livraisons
    - les items exclus sont omis (leurs lignes restent dans le registre)
    - une ligne qui ne correspond à aucun item est remontée dans `unmatched`,
      jamais ignorée silencieusement
    """
    excluded = set(excluded)
    ordered = {i.item_master_id: i for i in items}

    delivered: dict[str, int] = defaultdict(int)
    unmatched: list[UnmatchedDeliveryLine] = []

    for delivery in deliveries:
        for line in delivery.lines:
            pid = line.item_master_id
            if pid not in ordered:
                unmatched.append(
                    UnmatchedDeliveryLine(
                        delivery_id=delivery.id,
                        sequence_number=delivery.sequence_number,
                        item_master_id=pid,
                        delivered_qty=line.delivered_qty,
                    )
                )
                continue
            if pid in excluded:
                continue
            delivered[pid] += line.delivered_qty

    result: dict[str, ItemReconciliation] = {}
    for pid, item in ordered.items():
        if pid in excluded:
            continue
        qty = delivered.get(pid, 0)
        result[pid] = ItemReconciliation(
            item_master_id=pid,
            ordered_quantity=item.ordered_quantity,
            delivered_qty=qty,
            remaining_qty=item.ordered_quantity - qty,
            status=classify_status(qty, item.ordered_quantity),
        )

    for u in unmatched:
        logger.warning(
            "Unmatched delivery line: delivery #%s references unknown item %s (qty=%s)",
            u.sequence_number,
            u.item_master_id,
            u.delivered_qty,
        )

    return Reconciliation(items=result, unmatched=tuple(unmatched))


def status_counts(reconciliation: Reconciliation) -> dict[FulfillmentStatus, int]:
    counts = {status: 0 for status in FulfillmentStatus}
    for state in reconciliation.items.values():
        counts[state.status] += 1
    return counts


def delivery_eligible_items(
    items: Iterable[TenderLineItem],
    reconciliation: Reconciliation,
) -> list[TenderLineItem]:
    """Items actifs pour lesquels il reste quelque chose à recevoir."""
    return [
        i
        for i in items
        if i.item_master_id in reconciliation and reconciliation[i.item_master_id].remaining_qty > 0
    ]


def attention_order(
    items: Iterable[TenderLineItem],
    reconciliation: Reconciliation,
    prices: Mapping[str, Decimal],
) -> list[TenderLineItem]:
    """
    Ordre de revue des items actifs :
    1. en attente et sans prix
    2. complets mais sans prix
    3. partiels
    4. le reste (ordre d'origine conservé, tri stable)
    """

    def rank(item: TenderLineItem) -> int:
        state = reconciliation[item.item_master_id]
        priced = bool(prices.get(item.item_master_id))
        if state.status is FulfillmentStatus.pending and not priced:
            return 0
        if state.status is FulfillmentStatus.complete and not priced:
            return 1
        if state.status is FulfillmentStatus.partial:
            return 2
        return 3

    active = [i for i in items if i.item_master_id in reconciliation]
    return sorted(active, key=rank)
