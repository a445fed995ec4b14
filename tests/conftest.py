import os
import tempfile
from collections.abc import Generator
from decimal import Decimal
from typing import Dict, Iterable

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_commerce.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-commerce-core-suite")

import app.models  # noqa: F401
from app.api.deps import get_catalogue
from app.core.security import create_access_token
from app.db.base_class import Base
from app.db.session import get_db
from app.main import app
from app.services.catalogue import CatalogueEntry


class FakeCatalogue:
    """In-memory catalogue whose prices tests may change between calls."""

    def __init__(self):
        self.products = {
            "p1": ("Canvas Tote Bag", Decimal("10.00")),
            "p2": ("Enamel Pin", Decimal("5.00")),
        }
        self.lookups = 0

    def set_price(self, product_id: str, price: str) -> None:
        title, _ = self.products[product_id]
        self.products[product_id] = (title, Decimal(price))

    def lookup(self, db: Session, product_ids: Iterable[str]) -> Dict[str, CatalogueEntry]:
        self.lookups += 1
        entries = {}
        for product_id in set(product_ids):
            if product_id in self.products:
                title, price = self.products[product_id]
                entries[product_id] = CatalogueEntry(product_id=product_id, title=title, price=price)
        return entries


@pytest.fixture()
def session_factory() -> Generator[sessionmaker, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def catalogue() -> FakeCatalogue:
    return FakeCatalogue()


@pytest.fixture()
def client(db_session: Session, catalogue: FakeCatalogue) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_catalogue] = lambda: catalogue
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(owner_id: str, role: str = "customer") -> dict:
    token = create_access_token({"sub": owner_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


def guest_headers(session_key: str) -> dict:
    return {"X-Guest-Session": session_key}
