from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from tenderstock.app.api.deps import run, tender_service
from tenderstock.app.schemas.acquisition import AcquisitionRead, build_acquisition_read
from tenderstock.services.acquisition import AcquisitionService, summarize
from tenderstock.services.exclusion import ExcludeItem, RestoreItem
from tenderstock.services.pricing import SetActualUnitPrice

router = APIRouter(prefix="/tenders/{tender_id}/items")


class ActualPriceUpdate(BaseModel):
    actual_unit_price: Decimal | None = Field(default=None, ge=0)


@router.post("/{item_master_id}/exclude", response_model=AcquisitionRead)
def exclude_item(item_master_id: str, service: AcquisitionService = Depends(tender_service)):
    state = run(service, ExcludeItem(item_master_id))
    return build_acquisition_read(summarize(state))


@router.post("/{item_master_id}/restore", response_model=AcquisitionRead)
def restore_item(item_master_id: str, service: AcquisitionService = Depends(tender_service)):
    state = run(service, RestoreItem(item_master_id))
    return build_acquisition_read(summarize(state))


@router.put("/{item_master_id}/actual-price", response_model=AcquisitionRead)
def set_actual_price(
    item_master_id: str,
    payload: ActualPriceUpdate,
    service: AcquisitionService = Depends(tender_service),
):
    state = run(service, SetActualUnitPrice(item_master_id, payload.actual_unit_price))
    return build_acquisition_read(summarize(state))
