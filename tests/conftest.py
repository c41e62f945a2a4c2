from contextlib import asynccontextmanager
from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from tortoise import Tortoise, connections

from deps import get_current_user
from main import app, TORTOISE_MODULES
from models import User, WaterMember, WaterMeter, ROLE_ADMIN, ROLE_BILL_OFFICER, ROLE_METER_READER
from services.settings_provider import load_settings, seed_settings_if_empty


@pytest.fixture(autouse=True)
async def db():
    """Fresh in-memory database with default settings and tariffs for every test."""
    await Tortoise.init(db_url="sqlite://:memory:", modules=TORTOISE_MODULES)
    await Tortoise.generate_schemas()
    await seed_settings_if_empty(logger=lambda *_: None)
    yield
    await connections.close_all()


@pytest.fixture
async def settings():
    return await load_settings()


async def make_member(
    account_no: str = "PN-001",
    classification: str = "residential",
    meters=("M-001",),
    multiplier=Decimal("1"),
    **kwargs,
) -> WaterMember:
    kwargs.setdefault("account_name", f"Member {account_no}")
    member = await WaterMember.create(account_no=account_no, classification=classification, **kwargs)
    for mn in meters:
        await WaterMeter.create(member=member, meter_number=mn, multiplier=multiplier)
    return member


@pytest.fixture
async def member():
    return await make_member()


class Line:
    """Duck-typed reading line, same attributes as schemas.ReadingLineIn."""
    def __init__(self, meter_number, present_reading, previous_reading=None, multiplier=None):
        self.meter_number = meter_number
        self.present_reading = Decimal(str(present_reading))
        self.previous_reading = None if previous_reading is None else Decimal(str(previous_reading))
        self.multiplier = None if multiplier is None else Decimal(str(multiplier))


class Row(Line):
    def __init__(self, account_no, meter_number, present_reading, previous_reading=None, multiplier=None):
        super().__init__(meter_number, present_reading, previous_reading, multiplier)
        self.account_no = account_no


@asynccontextmanager
async def client_as(user: User):
    app.dependency_overrides[get_current_user] = lambda: user
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture
async def admin():
    return await User.create(username="admin", full_name="Admin", hashed_password="-", role=ROLE_ADMIN)


@pytest.fixture
async def officer():
    return await User.create(username="officer", hashed_password="-", role=ROLE_BILL_OFFICER)


@pytest.fixture
async def reader():
    return await User.create(username="reader", hashed_password="-", role=ROLE_METER_READER)


@pytest.fixture
async def client(admin):
    async with client_as(admin) as c:
        yield c
