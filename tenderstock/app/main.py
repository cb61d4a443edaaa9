import logging

from fastapi import FastAPI

from tenderstock.app.api.v1.router import router as v1_router
from tenderstock.app.core.config import get_settings

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="TENDERSTOCK", version="0.1.0")
app.include_router(v1_router, prefix="/v1")
