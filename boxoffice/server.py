from __future__ import annotations
import sys
import logging
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import ORJSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .auth import bearer, issue_token, verify_token
from .errors import BoxOfficeError, DeliveryFailed, NotFound, Unauthorized
from .gateway import ConfirmationGateway
from .helpers import ct_equal, to_iso
from .infra.logs import setup_logging
from .infra.sql import make_async_engine
from .lifecycle import OrderLifecycle, OrderRequest
from .model.catalogue import CatalogueStore, OrderView
from .model.db import Base, PAYMENT_CONFIRMED
from .model.interactions import BACKEND as INTERACTION_BACKEND, new_store
from .model.orders import OrderStore
from .notify.dispatcher import NotificationDispatcher
from .notify.telegram import TelegramTransport
from .schemas import (
    EventIn, EventUpdateIn, LinkIn, LoginIn, MarkPaidIn, OrderIn,
    PaymentSettingsIn, TemplateIn, TemplateUpdateIn,
)

setup_logging(config.LOG_LEVEL, config.LOG_JSON)
logger = logging.getLogger(__name__)

if config.DATABASE_URL is None:
    logger.critical("DATABASE_URL is not set")
    sys.exit(1)

engine, SessionAsync, gated = make_async_engine(config.DATABASE_URL)


async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session


app = FastAPI(
    title="BoxOffice",
    default_response_class=ORJSONResponse,
)


@app.exception_handler(BoxOfficeError)
async def _boxoffice_error(request: Request, exc: BoxOfficeError):
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
    )


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    logger.info(
        "BoxOffice is starting up",
        extra={
            "bot": "on" if config.TELEGRAM_BOT_TOKEN else "off",
            "interactions_backend": INTERACTION_BACKEND,
            "release_on_reject": config.RELEASE_ON_REJECT,
        },
    )


@app.on_event("startup")
async def _db_init():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=config.TELEGRAM_TIMEOUT,
        limits=httpx.Limits(
            max_connections=64, max_keepalive_connections=16
        ),
    )


@app.on_event("startup")
async def _redis_start():
    app.state.redis = None
    if INTERACTION_BACKEND == "redis":
        app.state.redis = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("startup")
async def _core_start():
    transport = None
    if config.TELEGRAM_BOT_TOKEN:
        transport = TelegramTransport(
            config.TELEGRAM_BOT_TOKEN, app.state.http,
            api_url=config.TELEGRAM_API_URL,
        )
    else:
        logger.error("TELEGRAM_BOT_TOKEN not configured, "
                     "notifications are disabled")
    app.state.transport = transport
    app.state.dispatcher = NotificationDispatcher(
        transport,
        admin_chat_id=config.TELEGRAM_ADMIN_CHAT_ID,
        channel_id=config.TELEGRAM_CHANNEL_ID,
        currency=config.CURRENCY,
        tz=config.DISPLAY_TZ,
    )
    app.state.lifecycle = OrderLifecycle(
        SessionAsync, gated, app.state.dispatcher,
        release_on_reject=config.RELEASE_ON_REJECT,
    )
    if INTERACTION_BACKEND == "redis":
        seen = new_store(r=app.state.redis)
    else:
        seen = new_store(sessions=SessionAsync, gated=gated)
    app.state.gateway = ConfirmationGateway(
        app.state.lifecycle, app.state.dispatcher, seen
    )


@app.on_event("startup")
async def _webhook_register():
    transport: Optional[TelegramTransport] = app.state.transport
    if transport is None or not config.PUBLIC_BASE_URL:
        return
    url = f"{config.PUBLIC_BASE_URL.rstrip('/')}/webhooks/telegram/action"
    try:
        await transport.set_webhook(url, config.TELEGRAM_WEBHOOK_SECRET)
    except DeliveryFailed as e:
        logger.warning("webhook registration failed: %s", e.message)


@app.on_event("shutdown")
async def _drain_notifications():
    lifecycle: Optional[OrderLifecycle] = getattr(app.state, "lifecycle",
                                                  None)
    if lifecycle is not None:
        await lifecycle.drain()


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_stop():
    await engine.dispose()


# ----------------------------
# Dependencies
# ----------------------------
def lifecycle(request: Request) -> OrderLifecycle:
    return request.app.state.lifecycle


def gateway(request: Request) -> ConfirmationGateway:
    return request.app.state.gateway


def require_admin(authorization: Optional[str] = Header(None)) -> str:
    return verify_token(bearer(authorization), config.ADMIN_TOKEN_SECRET)


def _clamp(limit: int, ceiling: int) -> int:
    return max(1, min(limit, ceiling))


def public_order(o: OrderView) -> dict:
    return {
        "id": o.id,
        "order_code": o.order_code,
        "event_name": o.event_name,
        "event_date": o.event_date,
        "event_time": o.event_time,
        "customer_name": o.customer_name,
        "seats_count": o.seats_count,
        "total_price": o.total_price,
        "status": o.status,
        "payment_status": o.payment_status,
    }


# ----------------------------
# Health
# ----------------------------
@app.get("/health")
async def health():
    return {"status": "ok"}


# ----------------------------
# Catalogue
# ----------------------------
@app.get("/api/events")
async def list_events(db: AsyncSession = Depends(get_db)):
    async with gated():
        return {"events": await CatalogueStore(db).list_events()}


@app.get("/api/events/{slug}")
async def get_event(slug: str, db: AsyncSession = Depends(get_db)):
    async with gated():
        return await CatalogueStore(db).event_by_slug(slug)


@app.get("/api/links/{code}")
async def get_link(code: str, db: AsyncSession = Depends(get_db)):
    async with gated():
        return await CatalogueStore(db).link_dict(code)


# ----------------------------
# Orders
# ----------------------------
@app.post("/api/orders")
async def create_order(payload: OrderIn,
                       lc: OrderLifecycle = Depends(lifecycle)):
    view = await lc.create_order(OrderRequest(**payload.model_dump()))
    return {
        "success": True,
        "order_code": view.order_code,
        "order": public_order(view),
    }


@app.get("/api/orders/{code}")
async def get_order(code: str, lc: OrderLifecycle = Depends(lifecycle)):
    return public_order(await lc.get_order(code))


@app.get("/api/orders/{code}/payment-settings")
async def order_payment_settings(code: str,
                                 db: AsyncSession = Depends(get_db)):
    async with gated():
        order = await OrderStore(db).get(code)
        if order is None:
            raise NotFound("order not found")
        # link orders are paid to the global account
        admin_id = order.admin_id if order.event_id is not None else None
        return await CatalogueStore(db).payment_settings(admin_id)


@app.post("/api/orders/{code}/mark-paid")
async def mark_paid(code: str, payload: Optional[MarkPaidIn] = None,
                    lc: OrderLifecycle = Depends(lifecycle)):
    proof = payload.screenshot if payload is not None else None
    result = await lc.mark_paid(code, proof)
    return {
        "success": True,
        "status": result.order.status,
        "changed": result.applied,
    }


@app.get("/api/tickets/{code}")
async def get_ticket(code: str, lc: OrderLifecycle = Depends(lifecycle)):
    o = await lc.get_order(code)
    if o.payment_status != PAYMENT_CONFIRMED:
        return {"success": True, "pending": True,
                "message": "payment pending confirmation"}
    return {
        "success": True,
        "ticket": {
            "order_code": o.order_code,
            "event_name": o.event_name,
            "event_date": o.event_date,
            "event_time": o.event_time,
            "city_name": o.city_name,
            "customer_name": o.customer_name,
            "seats_count": o.seats_count,
            "total_price": o.total_price,
            "confirmed_at": to_iso(o.decided_at),
        },
    }


# ----------------------------
# Telegram webhook (admin buttons)
# ----------------------------
@app.post("/webhooks/telegram/action")
async def telegram_action(
    request: Request,
    gw: ConfirmationGateway = Depends(gateway),
    x_telegram_bot_api_secret_token: Optional[str] = Header(None),
):
    if config.TELEGRAM_WEBHOOK_SECRET and not ct_equal(
        x_telegram_bot_api_secret_token or "",
        config.TELEGRAM_WEBHOOK_SECRET,
    ):
        return PlainTextResponse("forbidden", status_code=403)
    try:
        update = await request.json()
    except ValueError:
        logger.warning("telegram webhook: body is not JSON")
        return PlainTextResponse("OK")
    if isinstance(update, dict):
        await gw.handle_interaction(update)
    # Telegram redelivers anything that is not a 200
    return PlainTextResponse("OK")


# ----------------------------
# Admin
# ----------------------------
@app.post("/api/admin/login")
async def admin_login(payload: LoginIn):
    ok_user = ct_equal(payload.username.strip(), config.ADMIN_USERNAME)
    ok_pass = ct_equal(payload.password, config.ADMIN_PASSWORD)
    if not (ok_user and ok_pass):
        raise Unauthorized("invalid credentials")
    admin_id = payload.username.strip()
    token = issue_token(admin_id, config.ADMIN_TOKEN_SECRET,
                        config.ADMIN_TOKEN_TTL_SECONDS)
    return {"success": True, "token": token, "admin": {"id": admin_id}}


@app.get("/api/admin/verify")
async def admin_verify(admin_id: str = Depends(require_admin)):
    return {"success": True, "admin": {"id": admin_id}}


@app.post("/api/admin/events")
async def admin_create_event(payload: EventIn,
                             admin_id: str = Depends(require_admin),
                             db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            catalogue = CatalogueStore(db)
            ev = await catalogue.create_event(
                **payload.model_dump(), admin_id=admin_id
            )
            out = await catalogue.event_dict(ev)
    return {"success": True, "event": out}


@app.post("/api/admin/templates")
async def admin_create_template(payload: TemplateIn,
                                admin_id: str = Depends(require_admin),
                                db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            tpl = await CatalogueStore(db).create_template(
                **payload.model_dump()
            )
            tpl_id = tpl.id
    return {"success": True, "id": tpl_id}


@app.post("/api/admin/links")
async def admin_create_link(payload: LinkIn,
                            admin_id: str = Depends(require_admin),
                            db: AsyncSession = Depends(get_db)):
    fields = payload.model_dump()
    if fields["price"] is None:
        fields["price"] = config.LINK_UNIT_PRICE
    async with gated():
        async with db.begin():
            link = await CatalogueStore(db).create_link(**fields)
            code = link.link_code
    return {"success": True, "link_code": code}


@app.post("/api/admin/links/{code}/toggle")
async def admin_toggle_link(code: str,
                            admin_id: str = Depends(require_admin),
                            db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            active = await CatalogueStore(db).toggle_link(code)
    return {"success": True, "is_active": active}


@app.get("/api/admin/orders")
async def admin_orders(limit: int = 200,
                       admin_id: str = Depends(require_admin),
                       db: AsyncSession = Depends(get_db)):
    limit = _clamp(limit, 500)
    async with gated():
        orders = await OrderStore(db).list_recent(limit)
        catalogue = CatalogueStore(db)
        items = [(await catalogue.describe(o)).as_dict() for o in orders]
    return {"items": items, "limit": limit}


@app.get("/api/admin/events")
async def admin_events(admin_id: str = Depends(require_admin),
                       db: AsyncSession = Depends(get_db)):
    async with gated():
        return {"events": await CatalogueStore(db).admin_events(admin_id)}


@app.put("/api/admin/events/{event_id}")
async def admin_update_event(event_id: int, payload: EventUpdateIn,
                             admin_id: str = Depends(require_admin),
                             db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            catalogue = CatalogueStore(db)
            ev = await catalogue.update_event(
                event_id, admin_id,
                **payload.model_dump(exclude_unset=True, exclude_none=True),
            )
            out = await catalogue.event_dict(ev)
    return {"success": True, "event": out}


@app.delete("/api/admin/events/{event_id}")
async def admin_delete_event(event_id: int,
                             admin_id: str = Depends(require_admin),
                             db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            await CatalogueStore(db).delete_event(event_id, admin_id)
    return {"success": True}


@app.get("/api/admin/templates")
async def admin_templates(admin_id: str = Depends(require_admin),
                          db: AsyncSession = Depends(get_db)):
    async with gated():
        return {"templates": await CatalogueStore(db).list_templates()}


@app.put("/api/admin/templates/{template_id}")
async def admin_update_template(template_id: int, payload: TemplateUpdateIn,
                                admin_id: str = Depends(require_admin),
                                db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            tpl = await CatalogueStore(db).update_template(
                template_id, **payload.model_dump(exclude_none=True)
            )
            out = CatalogueStore.template_dict(tpl)
    return {"success": True, "template": out}


@app.post("/api/admin/templates/{template_id}/toggle")
async def admin_toggle_template(template_id: int,
                                admin_id: str = Depends(require_admin),
                                db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            active = await CatalogueStore(db).toggle_template(template_id)
    return {"success": True, "is_active": active}


@app.get("/api/admin/links")
async def admin_links(limit: int = 50,
                      admin_id: str = Depends(require_admin),
                      db: AsyncSession = Depends(get_db)):
    limit = _clamp(limit, 500)
    async with gated():
        links = await CatalogueStore(db).list_links(limit)
    return {"links": links, "limit": limit}


@app.delete("/api/admin/links/{code}")
async def admin_delete_link(code: str,
                            admin_id: str = Depends(require_admin),
                            db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            await CatalogueStore(db).delete_link(code)
    return {"success": True}


@app.put("/api/admin/payment-settings")
async def admin_payment_settings(payload: PaymentSettingsIn,
                                 admin_id: str = Depends(require_admin),
                                 db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            await CatalogueStore(db).set_payment_settings(
                None if payload.is_global else admin_id,
                card_number=payload.card_number,
                card_holder_name=payload.card_holder_name,
                bank_name=payload.bank_name,
            )
    return {"success": True}
