from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Iterable

from tenderstock.app.db.models.core_types import FulfillmentStatus, PricingMode
from tenderstock.services.errors import ValidationError
from tenderstock.services.reconciliation import Reconciliation
from tenderstock.services.state import PricingState, TenderLineItem, TenderState, require_open

if TYPE_CHECKING:
    from tenderstock.services.store import Store

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class PricingSummary:
    mode: PricingMode
    # None en mode TOTAL : pas de valeur par item
    per_item: dict[str, Decimal] | None
    tender_total: Decimal
    # items complets sans prix réel : comptés à 0 mais signalés
    price_required: tuple[str, ...] = ()


def compute_actual_value(
    items: Iterable[TenderLineItem],
    reconciliation: Reconciliation,
    pricing: PricingState,
) -> PricingSummary:
    """
    Valeur réelle du tender.

    INDIVIDUAL : value(item) = actual_unit_price * ordered_quantity,
                 total = somme sur les items actifs (ceux présents dans la réconciliation).
    TOTAL      : total = total_actual_price saisi au niveau tender ;
                 les prix individuels restent stockés mais ne comptent pas.
    """
    if pricing.mode is PricingMode.total:
        return PricingSummary(
            mode=pricing.mode,
            per_item=None,
            tender_total=pricing.total_actual_price if pricing.total_actual_price is not None else ZERO,
        )

    per_item: dict[str, Decimal] = {}
    price_required: list[str] = []
    for item in items:
        pid = item.item_master_id
        if pid not in reconciliation:
            continue
        price = pricing.actual_unit_prices.get(pid)
        if price is None:
            per_item[pid] = ZERO
            if reconciliation[pid].status is FulfillmentStatus.complete:
                price_required.append(pid)
            continue
        per_item[pid] = price * item.ordered_quantity

    return PricingSummary(
        mode=pricing.mode,
        per_item=per_item,
        tender_total=sum(per_item.values(), ZERO),
        price_required=tuple(price_required),
    )


def _to_amount(value: object, field: str) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field) from None
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{field} must be a non-negative amount", field=field)
    return amount


@dataclass(frozen=True)
class SetPricingMode:
    """Changement de mode : métadonnée pure, aucune donnée de prix n'est effacée."""

    mode: PricingMode
    name = "set_pricing_mode"

    def execute(self, state: TenderState, store: "Store") -> TenderState:
        require_open(state)
        if state.pricing.mode is self.mode:
            return state

        pricing = replace(state.pricing, mode=self.mode)
        store.save_pricing(state.tender_id, pricing)
        logger.info("Tender %s switched to %s pricing", state.reference_number, self.mode.value)
        return replace(state, pricing=pricing)


@dataclass(frozen=True)
class SetActualUnitPrice:
    item_master_id: str
    price: Decimal | None
    name = "set_actual_unit_price"

    def execute(self, state: TenderState, store: "Store") -> TenderState:
        require_open(state)
        if state.pricing.mode is PricingMode.total:
            raise ValidationError(
                "Individual prices cannot be changed in Total pricing mode",
                field="actual_unit_price",
            )
        if state.item(self.item_master_id) is None:
            raise ValidationError(f"Unknown item {self.item_master_id}", field="item_master_id")

        prices = dict(state.pricing.actual_unit_prices)
        if self.price is None:
            prices.pop(self.item_master_id, None)
        else:
            prices[self.item_master_id] = _to_amount(self.price, "actual_unit_price")

        pricing = replace(state.pricing, actual_unit_prices=prices)
        store.save_pricing(state.tender_id, pricing)
        return replace(state, pricing=pricing)


@dataclass(frozen=True)
class SetTotalActualPrice:
    amount: Decimal | None
    name = "set_total_actual_price"

    def execute(self, state: TenderState, store: "Store") -> TenderState:
        require_open(state)
        if state.pricing.mode is not PricingMode.total:
            raise ValidationError(
                "Total actual price can only be set in Total pricing mode",
                field="total_actual_price",
            )
        amount = None if self.amount is None else _to_amount(self.amount, "total_actual_price")

        pricing = replace(state.pricing, total_actual_price=amount)
        store.save_pricing(state.tender_id, pricing)
        return replace(state, pricing=pricing)

@dataclass(frozen=True)
class SetPricing:
    """
    Mode et total en une seule écriture.

    Le total n'est accepté que si le mode résultant est TOTAL ; rien n'est
    persisté si l'une des deux valeurs est refusée.
    """

    mode: PricingMode | None = None
    total_actual_price: Decimal | None = None
    name = "set_pricing"

    def execute(self, state: TenderState, store: "Store") -> TenderState:
        require_open(state)
        mode = state.pricing.mode if self.mode is None else self.mode
        pricing = replace(state.pricing, mode=mode)
        if self.total_actual_price is not None:
            if mode is not PricingMode.total:
                raise ValidationError(
                    "Total actual price can only be set in Total pricing mode",
                    field="total_actual_price",
                )
            pricing = replace(pricing, total_actual_price=_to_amount(self.total_actual_price, "total_actual_price"))

        if pricing == state.pricing:
            return state

        store.save_pricing(state.tender_id, pricing)
        if mode is not state.pricing.mode:
            logger.info("Tender %s switched to %s pricing", state.reference_number, mode.value)
        return replace(state, pricing=pricing)
