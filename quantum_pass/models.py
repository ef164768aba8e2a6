from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from .db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    # SQLite hands datetimes back naive; they were written as UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, index=True)
    description: Mapped[str] = mapped_column(String, default="")
    category: Mapped[str] = mapped_column(String, default="")
    image: Mapped[str] = mapped_column(String, default="")
    date: Mapped[str] = mapped_column(String)
    end_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    venue: Mapped[str] = mapped_column(String)
    location: Mapped[str] = mapped_column(String)
    organizer_address: Mapped[str] = mapped_column(String, index=True)
    attendees: Mapped[int] = mapped_column(Integer, default=0)
    royalty_percentage: Mapped[float] = mapped_column(Float, default=5.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)

    tiers: Mapped[List["TicketTier"]] = relationship(
        back_populates="event",
        order_by="TicketTier.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def price(self) -> str:
        return self.tiers[0].price if self.tiers else "TBA"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "image": self.image,
            "date": self.date,
            "endDate": self.end_date,
            "venue": self.venue,
            "location": self.location,
            "ticketTiers": [t.to_dict() for t in self.tiers],
            "attendees": self.attendees,
            "price": self.price,
            "organizerAddress": self.organizer_address,
            "royaltyPercentage": self.royalty_percentage,
            "createdAt": isoformat(self.created_at),
        }


class TicketTier(Base):
    __tablename__ = "ticket_tiers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(ForeignKey("events.id"), index=True)
    position: Mapped[int] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String)
    price: Mapped[str] = mapped_column(String, default="TBA")
    usd: Mapped[str] = mapped_column(String, default="")
    features: Mapped[list] = mapped_column(JSON, default=list)
    total: Mapped[int] = mapped_column(Integer)
    available: Mapped[int] = mapped_column(Integer)

    event: Mapped[Event] = relationship(back_populates="tiers")

    __table_args__ = (UniqueConstraint("event_id", "name", name="uniq_event_tier_name"),)

    @property
    def sold(self) -> int:
        return self.total - self.available

    def summary(self) -> dict:
        return {"name": self.name, "available": self.available, "total": self.total}

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "price": self.price,
            "usd": self.usd,
            "total": self.total,
            "available": self.available,
            "features": list(self.features or []),
        }


class TicketMetadata(Base):
    __tablename__ = "ticket_metadata"

    token_id: Mapped[str] = mapped_column(String, primary_key=True)
    event_id: Mapped[str] = mapped_column(String, index=True)
    event_name: Mapped[str] = mapped_column(String)
    tier_name: Mapped[str] = mapped_column(String)
    participant_count: Mapped[int] = mapped_column(Integer, default=1)
    document: Mapped[dict] = mapped_column(JSON)
    metadata_hash: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Redemption(Base):
    __tablename__ = "redemptions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_id: Mapped[str] = mapped_column(String, index=True)
    event_id: Mapped[str] = mapped_column(String, index=True)
    redeemed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("token_id", name="uniq_redeemed_token"),)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    decision_id: Mapped[str] = mapped_column(String, index=True)
    ip: Mapped[str] = mapped_column(String)
    user_agent: Mapped[str] = mapped_column(String)
    event_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    subject: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String)
    reason_code: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
