# ================================================================
# SERVIX CMMS - Report Service
# ================================================================
# Run with:  uvicorn main:app
# ================================================================

import logging
import os

from fastapi import FastAPI

from app.reporting import register_reporting_routes

logging.basicConfig(
    level=os.environ.get("SERVIX_LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# ================================================================
# FASTAPI APP
# ================================================================

app = FastAPI(title="Servix CMMS Reports")

register_reporting_routes(app)


@app.get("/health")
async def health():
    return {"ok": True}
