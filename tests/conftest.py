from datetime import timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

from staffvote.auth import get_password_hash
from staffvote.config import Settings
from staffvote.main import create_app
from staffvote.services import CampaignService, StaffService, VoteService
from staffvote.stores.mongo import build_mongo_stores_from_db
from staffvote.stores.sql import build_sql_stores
from staffvote.timeutils import utcnow

# bcrypt is slow on purpose; hash the shared test PIN once
TEST_PIN = "1234"
TEST_PIN_HASH = get_password_hash(TEST_PIN)


class FrozenClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now=None):
        self.now = (now or utcnow()).replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def sql_stores(tmp_path):
    stores = build_sql_stores(f"sqlite:///{tmp_path / 'staffvote.db'}")
    yield stores
    stores.close()


@pytest.fixture
def mongo_stores():
    db = mongomock.MongoClient()["staffvote_test"]
    return build_mongo_stores_from_db(db)


@pytest.fixture(params=["sql", "mongo"])
def stores(request):
    return request.getfixturevalue(f"{request.param}_stores")


@pytest.fixture
def campaign_service(stores, clock):
    return CampaignService(stores.campaigns, stores.votes, clock=clock)


@pytest.fixture
def vote_service(stores, clock):
    return VoteService(stores.campaigns, stores.staff, stores.votes, clock=clock)


@pytest.fixture
def staff_service(stores):
    return StaffService(stores.staff)


@pytest.fixture
def add_staff(stores):
    """Insert a staff member straight into the store with the shared test PIN."""

    def _add(staff_id, name, position="Server", department="Front of House", active=True):
        member = stores.staff.create(
            staff_id=staff_id,
            pin_hash=TEST_PIN_HASH,
            name=name,
            position=position,
            department=department,
        )
        if not active:
            member = stores.staff.update(
                member.id, name, position, department, None, None, is_active=False
            )
        return member

    return _add


@pytest.fixture
def open_campaign(campaign_service, clock):
    """A published campaign that starts in an hour and runs a week; opens once the clock moves."""

    def _open(title="Employee of the Month", publish=True, start_in=timedelta(hours=1)):
        campaign = campaign_service.create(
            title=title,
            description=None,
            start_date=clock() + start_in,
            end_date=clock() + start_in + timedelta(days=7),
        )
        if publish:
            campaign = campaign_service.set_published(campaign.id, True)
        return campaign

    return _open


@pytest.fixture
def api_settings(tmp_path):
    return Settings(
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'api.db'}",
        SECRET_KEY="test-secret",
        DEFAULT_ADMIN_USERNAME="admin",
        DEFAULT_ADMIN_PASSWORD="admin-pass",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def app(api_settings, clock):
    return create_app(api_settings, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers(client):
    response = client.post("/auth/admin/login", data={"username": "admin", "password": "admin-pass"})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
