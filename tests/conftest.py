import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_casebilling.db")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from fastapi.testclient import TestClient  # noqa: E402
import pytest  # noqa: E402

from app.auth.utils import create_access_token  # noqa: E402
from app.database import Base, SessionLocal, engine  # noqa: E402
from app.models import Firm, User, UserRole, UserStatus  # noqa: E402
from main import app  # noqa: E402

DEFAULT_RATES = {"partner": "450.00", "associate": "300.00", "paralegal": "150.00"}


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


def _create_firm(db, name, rates=None) -> Firm:
    firm = Firm(name=name, default_rates=dict(rates or DEFAULT_RATES))
    db.add(firm)
    db.commit()
    db.refresh(firm)
    return firm


@pytest.fixture()
def firm(db) -> Firm:
    return _create_firm(db, "Keller & Roth")


@pytest.fixture()
def other_firm(db) -> Firm:
    return _create_firm(db, "Abbott Lindqvist")


@pytest.fixture()
def make_firm(db):
    def _make(name="Vance Partners", rates=None):
        return _create_firm(db, name, rates)
    return _make


@pytest.fixture()
def make_user(db):
    def _make(firm: Firm, role: UserRole, name: str) -> User:
        user = User(
            firm_id=firm.id,
            name=name,
            email=f"{name.lower().replace(' ', '.')}@{firm.id[:8]}.test",
            role=role,
            status=UserStatus.ACTIVE,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture()
def partner(firm, make_user) -> User:
    return make_user(firm, UserRole.PARTNER, "Petra Keller")


@pytest.fixture()
def second_partner(firm, make_user) -> User:
    return make_user(firm, UserRole.PARTNER, "Jonas Roth")


@pytest.fixture()
def business_owner(firm, make_user) -> User:
    return make_user(firm, UserRole.BUSINESS_OWNER, "Maren Ostrowski")


@pytest.fixture()
def associate(firm, make_user) -> User:
    return make_user(firm, UserRole.ASSOCIATE, "Aiden Brandt")


@pytest.fixture()
def second_associate(firm, make_user) -> User:
    return make_user(firm, UserRole.ASSOCIATE, "Lena Fischer")


@pytest.fixture()
def paralegal(firm, make_user) -> User:
    return make_user(firm, UserRole.PARALEGAL, "Noor Haddad")


@pytest.fixture()
def outside_partner(other_firm, make_user) -> User:
    return make_user(other_firm, UserRole.PARTNER, "Olive Abbott")


@pytest.fixture()
def auth_headers():
    def _headers(user: User) -> dict:
        token = create_access_token({"sub": user.email})
        return {"Authorization": f"Bearer {token}"}
    return _headers
