import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from leadmarket.database import build_engine, build_session_factory, init_db
from leadmarket.models import Lead, MarketplacePurchaseItem, Partner
from leadmarket.services.identity_resolution import calculate_hash_key

# Wednesday; the payout week starts on 2026-03-02
NOW = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)
WORKSPACE_ID = uuid.UUID("00000000-0000-0000-0000-00000000a001")


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'leadmarket-test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def make_partner(session_factory):
    async def _make(**fields) -> uuid.UUID:
        fields.setdefault("name", "Acme Data")
        partner = Partner(id=uuid.uuid4(), **fields)
        async with session_factory() as session:
            session.add(partner)
            await session.commit()
        return partner.id
    return _make


@pytest.fixture
def make_lead(session_factory):
    async def _make(email: str, partner_id=None, created_at=NOW, **fields) -> uuid.UUID:
        lead = Lead(
            id=uuid.uuid4(),
            workspace_id=fields.pop("workspace_id", WORKSPACE_ID),
            partner_id=partner_id,
            email=email,
            hash_key=calculate_hash_key(email, fields.get("company_domain"), fields.get("phone")),
            created_at=created_at,
            **fields,
        )
        async with session_factory() as session:
            session.add(lead)
            await session.commit()
        return lead.id
    return _make


@pytest.fixture
def make_purchase_item(session_factory):
    async def _make(price=Decimal("100.00"), lead_id=None, **fields) -> uuid.UUID:
        item = MarketplacePurchaseItem(id=uuid.uuid4(), price=price, lead_id=lead_id, **fields)
        async with session_factory() as session:
            session.add(item)
            await session.commit()
        return item.id
    return _make


@pytest.fixture
def get_partner(session_factory):
    async def _get(partner_id: uuid.UUID) -> Partner:
        async with session_factory() as session:
            return await session.get(Partner, partner_id)
    return _get


@pytest.fixture
def get_item(session_factory):
    async def _get(item_id: uuid.UUID) -> MarketplacePurchaseItem:
        async with session_factory() as session:
            return await session.get(MarketplacePurchaseItem, item_id)
    return _get
