import os

# must be set before payout_recon.settings is imported
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from payout_recon import models, payout_routes, price_routes, supplier_routes, upload_routes
from payout_recon.db import Base
from payout_recon.job_store import file_cache, progress_store

ROUTE_MODULES = (upload_routes, price_routes, supplier_routes, payout_routes)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture(autouse=True)
def clean_stores():
    file_cache.clear()
    progress_store.clear()
    yield
    file_cache.clear()
    progress_store.clear()


@pytest.fixture
def client(session_factory, monkeypatch):
    for mod in ROUTE_MODULES:
        monkeypatch.setattr(mod, "SessionLocal", session_factory)

    from payout_recon.main import app

    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# Unsaved model instances for the pure calculators
# ---------------------------------------------------------------------------

@pytest.fixture
def make_supplier():
    def _make(id, name, **kw):
        kw.setdefault("created_at", datetime(2024, 1, 1))
        return models.Supplier(id=id, name=name, **kw)

    return _make


@pytest.fixture
def make_order():
    counter = {"n": 0}

    def _make(supplier_id, product_name, status="Delivered", qty=1, **kw):
        counter["n"] += 1
        kw.setdefault("id", f"o{counter['n']:04d}")
        kw.setdefault("awb_no", f"AWB{counter['n']:06d}")
        kw.setdefault("currency", "INR")
        kw.setdefault("created_at", datetime(2024, 6, 1))
        return models.Order(
            supplier_id=supplier_id,
            product_name=product_name,
            status=status,
            qty=qty,
            **kw,
        )

    return _make


@pytest.fixture
def make_price():
    counter = {"n": 0}

    def _make(supplier_id, product_name, price, gst_rate=18.0, price_before_gst=None, **kw):
        counter["n"] += 1
        kw.setdefault("id", f"p{counter['n']:04d}")
        kw.setdefault("effective_from", datetime(2024, 1, 1))
        kw.setdefault("hsn", "6109")
        if price_before_gst is None:
            price_before_gst = round(price / (1 + gst_rate / 100), 2)
        return models.PriceEntry(
            supplier_id=supplier_id,
            product_name=product_name,
            price=price,
            price_before_gst=price_before_gst,
            gst_rate=gst_rate,
            currency=kw.pop("currency", "INR"),
            **kw,
        )

    return _make
