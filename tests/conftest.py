import os
import tempfile

# server.py reads these at import time
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.mkdtemp(), "api.db"),
)
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["PUBLIC_BASE_URL"] = ""
os.environ["TELEGRAM_WEBHOOK_SECRET"] = ""
os.environ["INTERACTION_BACKEND"] = "sql"
os.environ["LOG_JSON"] = "0"

import pytest  # noqa: E402

from boxoffice.gateway import ConfirmationGateway  # noqa: E402
from boxoffice.infra.sql import make_async_engine  # noqa: E402
from boxoffice.lifecycle import OrderLifecycle  # noqa: E402
from boxoffice.model.catalogue import CatalogueStore  # noqa: E402
from boxoffice.model.db import Base  # noqa: E402
from boxoffice.model.interactions._sql import InteractionStore  # noqa: E402
from boxoffice.notify.dispatcher import NotificationDispatcher  # noqa: E402

from fakes import RecordingTransport  # noqa: E402

ADMIN_CHAT = "-100"
CHANNEL = "@sales"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def database(tmp_path):
    engine, sessions, gated = make_async_engine(
        f"sqlite:///{tmp_path / 'test.db'}"
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield sessions, gated
    await engine.dispose()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def dispatcher(transport):
    return NotificationDispatcher(
        transport, admin_chat_id=ADMIN_CHAT, channel_id=CHANNEL,
        tz="UTC",
    )


@pytest.fixture
async def lifecycle(database, dispatcher):
    sessions, gated = database
    lc = OrderLifecycle(sessions, gated, dispatcher)
    yield lc
    await lc.drain()


@pytest.fixture
def gateway(database, lifecycle, dispatcher):
    sessions, gated = database
    return ConfirmationGateway(
        lifecycle, dispatcher,
        InteractionStore(sessions=sessions, gated=gated),
    )


@pytest.fixture
def make_event(database):
    sessions, _ = database

    async def _make(seats=5, price=1000, name="Swan Lake", city="Moscow"):
        async with sessions() as db:
            async with db.begin():
                ev = await CatalogueStore(db).create_event(
                    name=name, price=price, available_seats=seats,
                    date="2026-12-01", time="19:00", city=city,
                    admin_id="admin",
                )
                return ev.id
    return _make


@pytest.fixture
def make_link(database):
    sessions, _ = database

    async def _make(seats=100, price=2990, active=True):
        async with sessions() as db:
            async with db.begin():
                catalogue = CatalogueStore(db)
                tpl = await catalogue.create_template(name="Stand-up night")
                link = await catalogue.create_link(
                    event_template_id=tpl.id, price=price,
                    available_seats=seats, city="Kazan",
                    event_date="2026-11-20", event_time="20:00",
                )
                if not active:
                    await catalogue.toggle_link(link.link_code)
                return link.id, link.link_code
    return _make


@pytest.fixture
def seats_left(database):
    from boxoffice.model.inventory import InventoryLedger, ItemRef

    sessions, _ = database

    async def _left(kind, item_id):
        async with sessions() as db:
            return await InventoryLedger(db).available(ItemRef(kind, item_id))
    return _left
