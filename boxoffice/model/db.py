from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)


Base = declarative_base()

# Order lifecycle
PENDING = "pending"
WAITING_CONFIRMATION = "waiting_confirmation"
CONFIRMED = "confirmed"
REJECTED = "rejected"

OPEN_STATES = (PENDING, WAITING_CONFIRMATION)
TERMINAL_STATES = (CONFIRMED, REJECTED)

# Payment state
PAYMENT_PENDING = "pending"
PAYMENT_CONFIRMED = "confirmed"


# ----------------------------
# Catalogue
# ----------------------------
class City(Base):
    __tablename__ = "cities"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="events_seats_nonneg"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    city_id = Column(Integer, ForeignKey("cities.id"), nullable=True)
    date = Column(String, nullable=True)   # YYYY-MM-DD
    time = Column(String, nullable=True)   # HH:MM
    price = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False, default=0)
    admin_id = Column(String, nullable=True)
    is_published = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)


class EventTemplate(Base):
    __tablename__ = "event_templates"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)


class GeneratedLink(Base):
    __tablename__ = "generated_links"
    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="links_seats_nonneg"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    link_code = Column(String, nullable=False, unique=True)
    event_template_id = Column(
        Integer, ForeignKey("event_templates.id"), nullable=False
    )
    city_id = Column(Integer, ForeignKey("cities.id"), nullable=True)
    event_date = Column(String, nullable=True)
    event_time = Column(String, nullable=True)
    venue_address = Column(String, nullable=True)
    price = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False, default=100)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)


class PaymentSettings(Base):
    __tablename__ = "payment_settings"
    id = Column(Integer, primary_key=True, autoincrement=True)
    # NULL admin_id: global settings used for link orders
    admin_id = Column(String, nullable=True, unique=True)
    card_number = Column(String, nullable=False, default="")
    card_holder_name = Column(String, nullable=False, default="")
    bank_name = Column(String, nullable=False, default="")


# ----------------------------
# Orders
# ----------------------------
class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        # exactly one sellable item reference
        CheckConstraint(
            "(event_id IS NULL) <> (link_id IS NULL)",
            name="orders_one_item",
        ),
        CheckConstraint("seats_count >= 1", name="orders_seats_positive"),
        CheckConstraint("total_price >= 0", name="orders_total_nonneg"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_code = Column(String, nullable=False, unique=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=True)
    event_template_id = Column(
        Integer, ForeignKey("event_templates.id"), nullable=True
    )
    link_id = Column(Integer, ForeignKey("generated_links.id"), nullable=True)
    admin_id = Column(String, nullable=True)
    customer_name = Column(String, nullable=False)
    customer_phone = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    seats_count = Column(Integer, nullable=False)
    total_price = Column(Integer, nullable=False)

    # pending | waiting_confirmation | confirmed | rejected
    status = Column(String, nullable=False, default=PENDING)
    # pending | confirmed
    payment_status = Column(String, nullable=False, default=PAYMENT_PENDING)

    created_at = Column(Float, nullable=False)
    paid_at = Column(Float, nullable=True)
    decided_at = Column(Float, nullable=True)
    decided_by = Column(String, nullable=True)


class AdminMessage(Base):
    """A Telegram admin message that carries confirm/reject buttons."""
    __tablename__ = "admin_messages"
    __table_args__ = (UniqueConstraint("chat_id", "message_id"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(String, nullable=False)
    message_id = Column(Integer, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False,
                      index=True)
    has_media = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)


class SeenInteraction(Base):
    __tablename__ = "seen_interactions"
    interaction_id = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)
