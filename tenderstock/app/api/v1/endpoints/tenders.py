from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from tenderstock.app.api.deps import run, tender_service
from tenderstock.app.db.models.core_types import PricingMode
from tenderstock.app.schemas.acquisition import AcquisitionRead, build_acquisition_read
from tenderstock.services.acquisition import AcquisitionService, FinalizeTender, summarize
from tenderstock.services.pricing import SetPricing

router = APIRouter(prefix="/tenders")


class PricingUpdate(BaseModel):
    mode: PricingMode | None = None
    total_actual_price: Decimal | None = Field(default=None, ge=0)


class FinalizeRequest(BaseModel):
    finalized_by: str = Field(min_length=1, max_length=128)


@router.get("/{tender_id}/acquisition", response_model=AcquisitionRead)
def get_acquisition(service: AcquisitionService = Depends(tender_service)):
    """
    Etat de réception (READ ONLY)
    - quantités livrées / restantes recalculées à chaque lecture
    - lignes orphelines remontées dans unmatched_lines
    """
    return build_acquisition_read(service.summary())


@router.put("/{tender_id}/pricing", response_model=AcquisitionRead)
def update_pricing(payload: PricingUpdate, service: AcquisitionService = Depends(tender_service)):
    state = run(service, SetPricing(payload.mode, payload.total_actual_price))
    return build_acquisition_read(summarize(state))


@router.post("/{tender_id}/finalize", response_model=AcquisitionRead)
def finalize_tender(payload: FinalizeRequest, service: AcquisitionService = Depends(tender_service)):
    state = run(service, FinalizeTender(payload.finalized_by))
    return build_acquisition_read(summarize(state))
