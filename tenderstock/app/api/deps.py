from __future__ import annotations

from typing import Generator

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from tenderstock.app.db.models.models_v1 import Delivery
from tenderstock.app.db.session import SessionLocal
from tenderstock.services.acquisition import AcquisitionService
from tenderstock.services.commands import Command
from tenderstock.services.errors import AcquisitionError
from tenderstock.services.state import TenderState
from tenderstock.services.store import SqlAlchemyStore

STATUS_BY_CODE = {
    "validation_error": 400,
    "tender_not_found": 404,
    "tender_locked": 409,
    "quantity_mismatch": 422,
    "duplicate_serial": 422,
    "limit_exceeded": 422,
    "orphaned_reference": 422,
    "persistence_failure": 503,
}


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor(actor: str | None = Header(default=None, alias="X-Actor")) -> str | None:
    return actor.strip() if actor and actor.strip() else None


def http_error(exc: AcquisitionError) -> HTTPException:
    return HTTPException(status_code=STATUS_BY_CODE.get(exc.code, 400), detail=exc.to_dict())


def load_service(db: Session, tender_id: int, actor: str | None = None) -> AcquisitionService:
    try:
        return AcquisitionService(SqlAlchemyStore(db, actor=actor), tender_id)
    except AcquisitionError as exc:
        raise http_error(exc)


def service_for_delivery(db: Session, delivery_id: int, actor: str | None = None) -> AcquisitionService:
    row = db.get(Delivery, delivery_id)
    if not row:
        raise HTTPException(status_code=404, detail="Delivery not found")
    return load_service(db, int(row.tender_id), actor)


def run(service: AcquisitionService, command: Command) -> TenderState:
    result = service.apply(command)
    if not result.ok:
        raise http_error(result.error)
    return result.state


def tender_service(
    tender_id: int,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
) -> AcquisitionService:
    return load_service(db, tender_id, actor)
