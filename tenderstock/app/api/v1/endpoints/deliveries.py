from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tenderstock.app.api.deps import get_actor, get_db, run, service_for_delivery, tender_service
from tenderstock.app.schemas.acquisition import DeliveryRead
from tenderstock.services.acquisition import AcquisitionService
from tenderstock.services.deliveries import CreateDelivery, DeleteDelivery, EditDelivery
from tenderstock.services.state import DeliveryLine

router = APIRouter()


class DeliveryLineCreate(BaseModel):
    item_master_id: str = Field(min_length=1, max_length=64)
    delivered_qty: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)


class DeliveryCreate(BaseModel):
    personnel: str = Field(max_length=200)
    delivery_date: date
    notes: str | None = None
    chalan_reference: str | None = Field(default=None, max_length=128)
    lines: list[DeliveryLineCreate] = Field(default_factory=list)


class DeliveryUpdate(BaseModel):
    personnel: str | None = Field(default=None, max_length=200)
    delivery_date: date | None = None
    notes: str | None = None
    chalan_reference: str | None = Field(default=None, max_length=128)
    lines: list[DeliveryLineCreate] = Field(default_factory=list)


def _lines(payload: DeliveryCreate | DeliveryUpdate) -> tuple[DeliveryLine, ...]:
    return tuple(
        DeliveryLine(item_master_id=ln.item_master_id, delivered_qty=ln.delivered_qty, unit_price=ln.unit_price)
        for ln in payload.lines
    )


@router.get("/tenders/{tender_id}/deliveries", response_model=list[DeliveryRead])
def list_deliveries(service: AcquisitionService = Depends(tender_service)):
    return [DeliveryRead.model_validate(d) for d in service.state.deliveries]


@router.post("/tenders/{tender_id}/deliveries", response_model=DeliveryRead)
def create_delivery(payload: DeliveryCreate, service: AcquisitionService = Depends(tender_service)):
    state = run(
        service,
        CreateDelivery(
            personnel=payload.personnel,
            delivery_date=payload.delivery_date,
            lines=_lines(payload),
            notes=payload.notes,
            chalan_reference=payload.chalan_reference,
        ),
    )
    return DeliveryRead.model_validate(state.deliveries[-1])


@router.put("/deliveries/{delivery_id}", response_model=DeliveryRead)
def update_delivery(
    delivery_id: int,
    payload: DeliveryUpdate,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    service = service_for_delivery(db, delivery_id, actor)
    state = run(
        service,
        EditDelivery(
            delivery_id=delivery_id,
            lines=_lines(payload),
            personnel=payload.personnel,
            delivery_date=payload.delivery_date,
            notes=payload.notes,
            chalan_reference=payload.chalan_reference,
        ),
    )
    return DeliveryRead.model_validate(state.delivery(delivery_id))


@router.delete("/deliveries/{delivery_id}")
def delete_delivery(
    delivery_id: int,
    confirm: bool = False,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    if not confirm:
        raise HTTPException(status_code=400, detail="Deleting a delivery requires confirm=true")
    service = service_for_delivery(db, delivery_id, actor)
    run(service, DeleteDelivery(delivery_id, confirmed=True))
    return {"id": delivery_id, "deleted": True}
