# payout_recon/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from payout_recon import models  # noqa: F401  (registers tables on Base)
from payout_recon.db import Base, db_ping, engine
from payout_recon.payout_routes import router as payout_router
from payout_recon.price_routes import router as price_router
from payout_recon.settings import CORS_ORIGINS, configure_logging
from payout_recon.supplier_routes import router as supplier_router
from payout_recon.upload_routes import router as upload_router

configure_logging()
logger = logging.getLogger(__name__)

# ensure tables exist (simple dev-mode migration)
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Supplier Payout Reconciliation API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(upload_router)
app.include_router(price_router)
app.include_router(supplier_router)
app.include_router(payout_router)


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------
@app.get("/")
def home():
    return {"status": "ok", "message": "Payout reconciliation backend is running"}


@app.get("/health")
def health():
    try:
        db_ping()
        return {"status": "ok", "database": "ok"}
    except Exception as e:
        logger.warning("Health check: database unreachable: %s", e)
        return {"status": "degraded", "database": str(e)}
