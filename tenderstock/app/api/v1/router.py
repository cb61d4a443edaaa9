from fastapi import APIRouter

from tenderstock.app.api.v1.endpoints.health import router as health_router
from tenderstock.app.api.v1.endpoints.tenders import router as tenders_router
from tenderstock.app.api.v1.endpoints.items import router as items_router
from tenderstock.app.api.v1.endpoints.deliveries import router as deliveries_router
from tenderstock.app.api.v1.endpoints.serial_numbers import router as serial_numbers_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(tenders_router, tags=["tenders"])
router.include_router(items_router, tags=["items"])
router.include_router(deliveries_router, tags=["deliveries"])
router.include_router(serial_numbers_router, tags=["serial_numbers"])
