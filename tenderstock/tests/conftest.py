import os
from datetime import date
from decimal import Decimal

# avant tout import de l'app : session.py construit son engine à l'import
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tenderstock.app.db.base import Base
from tenderstock.app.db.models import models_v1 as m
from tenderstock.services.acquisition import AcquisitionService
from tenderstock.services.state import Delivery, DeliveryLine, TenderLineItem, TenderState
from tenderstock.services.store import SqlAlchemyStore

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+pysqlite://")


@pytest.fixture(scope="function")
def engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        eng = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        @event.listens_for(eng, "connect")
        def _fk_on(dbapi_conn, _):
            dbapi_conn.execute("PRAGMA foreign_keys=ON")

    else:
        eng = create_engine(TEST_DATABASE_URL)

    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Session:
    """
    Session DB isolée par test.

    Base neuve à chaque test (SQLite en mémoire par défaut) :
    les commit() du store sont réels, rien ne fuit d'un test à l'autre.
    """
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tender(db_session):
    """
    Tender T-2024-017, trois items :
    - LAP-01 : 100 laptops à 950
    - MON-01 : 50 écrans à 180
    - KBD-01 : 40 claviers à 25
    """
    t = m.Tender(reference_number="T-2024-017", title="IT equipment 2024")
    t.items = [
        m.TenderItem(item_master_id="LAP-01", nomenclature="Laptop 14in", ordered_quantity=100, estimated_unit_price=Decimal("950")),
        m.TenderItem(item_master_id="MON-01", nomenclature="Monitor 24in", ordered_quantity=50, estimated_unit_price=Decimal("180")),
        m.TenderItem(item_master_id="KBD-01", nomenclature="Keyboard", ordered_quantity=40, estimated_unit_price=Decimal("25")),
    ]
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture
def store(db_session):
    return SqlAlchemyStore(db_session, actor="tester")


@pytest.fixture
def service(store, tender):
    return AcquisitionService(store, tender.id)


def make_state(items, deliveries=(), **kwargs) -> TenderState:
    """Snapshot en mémoire, sans base : items = [(id, qty)], deliveries = [(seq, [(id, qty)])]."""
    return TenderState(
        tender_id=1,
        reference_number="T-MEM",
        items=tuple(TenderLineItem(pid, f"Item {pid}", qty) for pid, qty in items),
        deliveries=tuple(
            Delivery(
                id=seq,
                tender_id=1,
                sequence_number=seq,
                personnel="Store keeper",
                delivery_date=date(2024, 3, seq),
                lines=tuple(DeliveryLine(pid, qty) for pid, qty in lines),
            )
            for seq, lines in deliveries
        ),
        **kwargs,
    )


@pytest.fixture
def state_factory():
    return make_state


@pytest.fixture
def fail_commits(db_session, monkeypatch):
    """
    Active l'échec de chaque commit() de la session (base verrouillée).
    monkeypatch.undo() rétablit le commit réel.
    """

    def boom():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    def enable():
        monkeypatch.setattr(db_session, "commit", boom)

    return enable
