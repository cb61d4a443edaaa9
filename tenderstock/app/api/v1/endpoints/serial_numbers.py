from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tenderstock.app.api.deps import get_actor, get_db, http_error, run, service_for_delivery
from tenderstock.app.schemas.acquisition import SerialNumberRead
from tenderstock.services.errors import AcquisitionError
from tenderstock.services.serials import CommitSerials, DraftEntry, SerialDraft, export_delimited
from tenderstock.services.state import LineKey

router = APIRouter(prefix="/deliveries/{delivery_id}/items/{item_master_id}/serial-numbers")


class SerialNumberIn(BaseModel):
    serial_number: str = Field(max_length=128)
    notes: str | None = None


class SerialNumberSet(BaseModel):
    serial_numbers: list[SerialNumberIn] = Field(default_factory=list)


@router.get("", response_model=list[SerialNumberRead])
def list_serial_numbers(delivery_id: int, item_master_id: str, db: Session = Depends(get_db)):
    service = service_for_delivery(db, delivery_id)
    saved = service.state.serials_for(LineKey(delivery_id, item_master_id))
    return [SerialNumberRead.model_validate(s) for s in saved]


@router.put("", response_model=list[SerialNumberRead])
def save_serial_numbers(
    delivery_id: int,
    item_master_id: str,
    payload: SerialNumberSet,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    """Enregistre un jeu complet : exactement delivered_qty numéros, sans doublon."""
    service = service_for_delivery(db, delivery_id, actor)
    try:
        line_draft = service.serial_draft(delivery_id, item_master_id)
    except AcquisitionError as exc:
        raise http_error(exc)

    draft = SerialDraft(required_quantity=line_draft.required_quantity)
    for i, sn in enumerate(payload.serial_numbers):
        draft.entries.append(DraftEntry(id=f"api-{i}", serial_number=sn.serial_number, notes=sn.notes or ""))

    state = run(service, CommitSerials(delivery_id, item_master_id, draft))
    return [SerialNumberRead.model_validate(s) for s in state.serials_for(LineKey(delivery_id, item_master_id))]


@router.get("/export", response_class=PlainTextResponse)
def export_serial_numbers(delivery_id: int, item_master_id: str, db: Session = Depends(get_db)):
    service = service_for_delivery(db, delivery_id)
    saved = service.state.serials_for(LineKey(delivery_id, item_master_id))
    return PlainTextResponse(export_delimited(saved), media_type="text/csv")
