from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel

from tenderstock.app.db.models.core_types import FulfillmentStatus, PricingMode
from tenderstock.services.acquisition import AcquisitionSummary


class DeliveryLineRead(BaseModel):
    item_master_id: str
    delivered_qty: int
    unit_price: Decimal | None = None

    class Config:
        from_attributes = True


class DeliveryRead(BaseModel):
    id: int
    sequence_number: int
    personnel: str
    delivery_date: date
    notes: str | None = None
    chalan_reference: str | None = None
    lines: list[DeliveryLineRead]

    class Config:
        from_attributes = True


class SerialNumberRead(BaseModel):
    id: int | None
    serial_number: str
    notes: str | None = None

    class Config:
        from_attributes = True


class ItemAcquisitionRead(BaseModel):
    item_master_id: str
    nomenclature: str
    ordered_quantity: int
    estimated_unit_price: Decimal
    delivered_qty: int
    remaining_qty: int
    status: FulfillmentStatus
    actual_unit_price: Decimal | None = None
    actual_value: Decimal | None = None  # None en mode TOTAL
    price_required: bool = False


class UnmatchedLineRead(BaseModel):
    delivery_id: int | None
    sequence_number: int
    item_master_id: str
    delivered_qty: int

    class Config:
        from_attributes = True


class AcquisitionRead(BaseModel):
    tender_id: int
    reference_number: str
    is_finalized: bool
    finalized_by: str | None = None
    finalized_at: datetime | None = None

    pricing_mode: PricingMode
    total_actual_price: Decimal | None = None
    tender_total: Decimal
    price_required: list[str]

    status_counts: dict[FulfillmentStatus, int]
    items: list[ItemAcquisitionRead]
    excluded_items: list[str]
    delivery_eligible: list[str]
    unmatched_lines: list[UnmatchedLineRead]
    deliveries: list[DeliveryRead]


def build_acquisition_read(summary: AcquisitionSummary) -> AcquisitionRead:
    state = summary.state
    recon = summary.reconciliation
    pricing = summary.pricing
    required = set(pricing.price_required)

    items = []
    for item in summary.active_items:
        r = recon[item.item_master_id]
        items.append(
            ItemAcquisitionRead(
                item_master_id=item.item_master_id,
                nomenclature=item.nomenclature,
                ordered_quantity=item.ordered_quantity,
                estimated_unit_price=item.estimated_unit_price,
                delivered_qty=r.delivered_qty,
                remaining_qty=r.remaining_qty,
                status=r.status,
                actual_unit_price=state.pricing.actual_unit_prices.get(item.item_master_id),
                actual_value=None if pricing.per_item is None else pricing.per_item.get(item.item_master_id),
                price_required=item.item_master_id in required,
            )
        )

    return AcquisitionRead(
        tender_id=state.tender_id,
        reference_number=state.reference_number,
        is_finalized=state.is_finalized,
        finalized_by=state.finalized_by,
        finalized_at=state.finalized_at,
        pricing_mode=state.pricing.mode,
        total_actual_price=state.pricing.total_actual_price,
        tender_total=pricing.tender_total,
        price_required=list(pricing.price_required),
        status_counts=summary.status_counts,
        items=items,
        excluded_items=[i.item_master_id for i in summary.excluded_items],
        delivery_eligible=[i.item_master_id for i in summary.delivery_eligible],
        unmatched_lines=[UnmatchedLineRead.model_validate(u) for u in recon.unmatched],
        deliveries=[DeliveryRead.model_validate(d) for d in state.deliveries],
    )
