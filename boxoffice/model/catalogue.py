from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import Conflict, NotFound
from ..helpers import new_link_code, now_ts, slugify, to_iso
from .db import (
    City, Event, EventTemplate, GeneratedLink, Order, PaymentSettings,
)
from .inventory import ItemRef, EVENT, LINK


@dataclass
class SellableItem:
    ref: ItemRef
    name: str
    unit_price: int
    date: Optional[str] = None
    time: Optional[str] = None
    city_name: Optional[str] = None
    admin_id: Optional[str] = None
    event_template_id: Optional[int] = None


@dataclass
class OrderView:
    """Everything a notification or ticket needs about one order."""
    id: int
    order_code: str
    status: str
    payment_status: str
    event_name: str
    event_date: str
    event_time: str
    city_name: str
    customer_name: str
    customer_phone: str
    customer_email: Optional[str]
    seats_count: int
    total_price: int
    decided_by: Optional[str] = None
    decided_at: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


_EVENT_EDITABLE = frozenset(
    {"name", "description", "date", "time", "price", "is_published"}
)


class CatalogueStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ---
    # cities
    # ---
    async def city_id(self, name: Optional[str]) -> Optional[int]:
        if not name:
            return None
        city = (await self.db.execute(
            select(City).where(City.name == name)
        )).scalars().first()
        if city is None:
            city = City(name=name)
            self.db.add(city)
            await self.db.flush()
        return city.id

    async def _city_name(self, city_id: Optional[int]) -> Optional[str]:
        if city_id is None:
            return None
        city = await self.db.get(City, city_id)
        return city.name if city else None

    # ---
    # sellable items
    # ---
    async def resolve(
        self, *, event_id: Optional[int] = None,
        event_slug: Optional[str] = None,
        link_code: Optional[str] = None,
    ) -> SellableItem:
        if link_code:
            link = (await self.db.execute(
                select(GeneratedLink).where(
                    GeneratedLink.link_code == link_code
                )
            )).scalars().first()
            if link is None or not link.is_active:
                raise NotFound("link not found or inactive")
            tpl = await self.db.get(EventTemplate, link.event_template_id)
            return SellableItem(
                ref=ItemRef(LINK, link.id),
                name=tpl.name if tpl else "Event",
                unit_price=link.price,
                date=link.event_date,
                time=link.event_time,
                city_name=await self._city_name(link.city_id),
                event_template_id=link.event_template_id,
            )

        if event_id is not None:
            ev = await self.db.get(Event, event_id)
        elif event_slug:
            ev = (await self.db.execute(
                select(Event).where(Event.slug == event_slug)
            )).scalars().first()
        else:
            raise NotFound("no event or link given")
        if ev is None or not ev.is_published:
            raise NotFound("event not found")
        return SellableItem(
            ref=ItemRef(EVENT, ev.id),
            name=ev.name,
            unit_price=ev.price,
            date=ev.date,
            time=ev.time,
            city_name=await self._city_name(ev.city_id),
            admin_id=ev.admin_id,
        )

    async def describe(self, order: Order) -> OrderView:
        if order.event_id is not None:
            ev = await self.db.get(Event, order.event_id)
            name, date, time_ = (
                (ev.name, ev.date, ev.time) if ev else ("Event", None, None)
            )
            city = await self._city_name(ev.city_id if ev else None)
        else:
            link = await self.db.get(GeneratedLink, order.link_id)
            tpl = (
                await self.db.get(EventTemplate, link.event_template_id)
                if link else None
            )
            name = tpl.name if tpl else "Event"
            date = link.event_date if link else None
            time_ = link.event_time if link else None
            city = await self._city_name(link.city_id if link else None)
        return OrderView(
            id=order.id,
            order_code=order.order_code,
            status=order.status,
            payment_status=order.payment_status,
            event_name=name,
            event_date=date or "",
            event_time=time_ or "",
            city_name=city or "",
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            customer_email=order.customer_email,
            seats_count=order.seats_count,
            total_price=order.total_price,
            decided_by=order.decided_by,
            decided_at=order.decided_at,
        )

    # ---
    # events
    # ---
    async def create_event(
        self, *, name: str, price: int, available_seats: int,
        date: Optional[str] = None, time: Optional[str] = None,
        city: Optional[str] = None, description: Optional[str] = None,
        admin_id: Optional[str] = None,
    ) -> Event:
        ev = Event(
            slug=slugify(name),
            name=name,
            description=description,
            city_id=await self.city_id(city),
            date=date,
            time=time,
            price=price,
            available_seats=available_seats,
            admin_id=admin_id,
            is_published=True,
            created_at=now_ts(),
        )
        self.db.add(ev)
        await self.db.flush()
        return ev

    async def list_events(self) -> List[Dict[str, Any]]:
        rows = (await self.db.execute(
            select(Event).where(Event.is_published.is_(True))
            .order_by(Event.date, Event.time, Event.id)
        )).scalars().all()
        return [await self.event_dict(e) for e in rows]

    async def event_by_slug(self, slug: str) -> Dict[str, Any]:
        ev = (await self.db.execute(
            select(Event).where(Event.slug == slug)
        )).scalars().first()
        if ev is None or not ev.is_published:
            raise NotFound("event not found")
        return await self.event_dict(ev)

    async def event_dict(self, ev: Event) -> Dict[str, Any]:
        return {
            "id": ev.id,
            "slug": ev.slug,
            "name": ev.name,
            "description": ev.description,
            "city_name": await self._city_name(ev.city_id),
            "date": ev.date,
            "time": ev.time,
            "price": ev.price,
            "available_seats": ev.available_seats,
            "is_published": ev.is_published,
        }

    async def _has_orders(self, *where) -> bool:
        row = (await self.db.execute(
            select(Order.id).where(*where).limit(1)
        )).first()
        return row is not None

    async def _owned_event(self, event_id: int, admin_id: str) -> Event:
        ev = await self.db.get(Event, event_id)
        # another admin's event looks exactly like a missing one
        if ev is None or (ev.admin_id is not None
                          and ev.admin_id != admin_id):
            raise NotFound("event not found")
        return ev

    async def admin_events(self, admin_id: str) -> List[Dict[str, Any]]:
        """Every event owned by `admin_id`, unpublished ones included."""
        rows = (await self.db.execute(
            select(Event).where(Event.admin_id == admin_id)
            .order_by(Event.created_at.desc(), Event.id.desc())
        )).scalars().all()
        return [await self.event_dict(e) for e in rows]

    async def update_event(
        self, event_id: int, admin_id: str, *,
        city: Optional[str] = None, **fields: Any,
    ) -> Event:
        """
        Edit what the buyer sees. Seat counts are not editable here: they
        only move through InventoryLedger. The slug stays as issued so
        shared links keep working.
        """
        unknown = set(fields) - _EVENT_EDITABLE
        if unknown:
            raise ValueError(f"not editable: {sorted(unknown)}")
        ev = await self._owned_event(event_id, admin_id)
        if city is not None:
            ev.city_id = await self.city_id(city)
        for name, value in fields.items():
            setattr(ev, name, value)
        await self.db.flush()
        return ev

    async def delete_event(self, event_id: int, admin_id: str) -> None:
        ev = await self._owned_event(event_id, admin_id)
        if await self._has_orders(Order.event_id == ev.id):
            raise Conflict("event has orders, unpublish it instead")
        await self.db.delete(ev)
        await self.db.flush()

    # ---
    # templates & generated links
    # ---
    async def create_template(
        self, *, name: str, description: Optional[str] = None
    ) -> EventTemplate:
        tpl = EventTemplate(
            name=name, description=description, is_active=True,
            created_at=now_ts(),
        )
        self.db.add(tpl)
        await self.db.flush()
        return tpl

    async def _template(self, template_id: int) -> EventTemplate:
        tpl = await self.db.get(EventTemplate, template_id)
        if tpl is None:
            raise NotFound("event template not found")
        return tpl

    @staticmethod
    def template_dict(tpl: EventTemplate) -> Dict[str, Any]:
        return {
            "id": tpl.id,
            "name": tpl.name,
            "description": tpl.description,
            "is_active": tpl.is_active,
        }

    async def list_templates(self) -> List[Dict[str, Any]]:
        rows = (await self.db.execute(
            select(EventTemplate).order_by(EventTemplate.name,
                                           EventTemplate.id)
        )).scalars().all()
        return [self.template_dict(t) for t in rows]

    async def update_template(
        self, template_id: int, *, name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> EventTemplate:
        tpl = await self._template(template_id)
        if name is not None:
            tpl.name = name
        if description is not None:
            tpl.description = description
        await self.db.flush()
        return tpl

    async def toggle_template(self, template_id: int) -> bool:
        """Inactive templates can not be turned into new links."""
        tpl = await self._template(template_id)
        tpl.is_active = not tpl.is_active
        await self.db.flush()
        return tpl.is_active

    async def create_link(
        self, *, event_template_id: int, price: int, available_seats: int,
        city: Optional[str] = None, event_date: Optional[str] = None,
        event_time: Optional[str] = None,
        venue_address: Optional[str] = None,
    ) -> GeneratedLink:
        tpl = await self.db.get(EventTemplate, event_template_id)
        if tpl is None or not tpl.is_active:
            raise NotFound("event template not found or inactive")
        link = GeneratedLink(
            link_code=new_link_code(),
            event_template_id=event_template_id,
            city_id=await self.city_id(city),
            event_date=event_date,
            event_time=event_time,
            venue_address=venue_address,
            price=price,
            available_seats=available_seats,
            is_active=True,
            created_at=now_ts(),
        )
        self.db.add(link)
        await self.db.flush()
        return link

    async def _link(self, code: str) -> GeneratedLink:
        link = (await self.db.execute(
            select(GeneratedLink).where(GeneratedLink.link_code == code)
        )).scalars().first()
        if link is None:
            raise NotFound("link not found")
        return link

    async def toggle_link(self, code: str) -> bool:
        link = await self._link(code)
        link.is_active = not link.is_active
        await self.db.flush()
        return link.is_active

    async def delete_link(self, code: str) -> None:
        link = await self._link(code)
        if await self._has_orders(Order.link_id == link.id):
            raise Conflict("link has orders, deactivate it instead")
        await self.db.delete(link)
        await self.db.flush()

    async def _link_fields(self, link: GeneratedLink) -> Dict[str, Any]:
        tpl = await self.db.get(EventTemplate, link.event_template_id)
        return {
            "id": link.id,
            "link_code": link.link_code,
            "name": tpl.name if tpl else "",
            "description": tpl.description if tpl else None,
            "city_name": await self._city_name(link.city_id),
            "event_date": link.event_date,
            "event_time": link.event_time,
            "venue_address": link.venue_address,
            "available_seats": link.available_seats,
            "price": link.price,
        }

    async def link_dict(self, code: str) -> Dict[str, Any]:
        link = await self._link(code)
        if not link.is_active:
            raise NotFound("link not found or inactive")
        return await self._link_fields(link)

    async def list_links(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Newest first, inactive links included."""
        rows = (await self.db.execute(
            select(GeneratedLink)
            .order_by(GeneratedLink.created_at.desc(),
                      GeneratedLink.id.desc())
            .limit(limit)
        )).scalars().all()
        out = []
        for link in rows:
            d = await self._link_fields(link)
            d["is_active"] = link.is_active
            d["created_at"] = to_iso(link.created_at)
            out.append(d)
        return out

    # ---
    # bank transfer details
    # ---
    async def payment_settings(
        self, admin_id: Optional[str]
    ) -> Dict[str, str]:
        cond = (
            PaymentSettings.admin_id.is_(None) if admin_id is None
            else PaymentSettings.admin_id == admin_id
        )
        row = (await self.db.execute(
            select(PaymentSettings).where(cond)
        )).scalars().first()
        if row is None:
            return {"card_number": "", "card_holder_name": "",
                    "bank_name": ""}
        return {
            "card_number": row.card_number,
            "card_holder_name": row.card_holder_name,
            "bank_name": row.bank_name,
        }

    async def set_payment_settings(
        self, admin_id: Optional[str], *, card_number: str,
        card_holder_name: str, bank_name: str,
    ) -> None:
        cond = (
            PaymentSettings.admin_id.is_(None) if admin_id is None
            else PaymentSettings.admin_id == admin_id
        )
        row = (await self.db.execute(
            select(PaymentSettings).where(cond)
        )).scalars().first()
        if row is None:
            row = PaymentSettings(admin_id=admin_id)
            self.db.add(row)
        row.card_number = card_number
        row.card_holder_name = card_holder_name
        row.bank_name = bank_name
        await self.db.flush()
