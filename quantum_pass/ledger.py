"""Events, ticket tiers and purchase accounting.

The ledger is the only writer of ``TicketTier.available`` and
``Event.attendees``. A purchase claims a unit with a conditional UPDATE
(``available > 0``) so concurrent buyers of the last ticket cannot both
win, whichever process or thread they run in.
"""
import logging
import math
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .auth import normalize_address
from .errors import EventNotFound, InvalidInput, SoldOut, TierNotFound
from .models import Event, TicketTier

logger = logging.getLogger(__name__)

DEFAULT_ROYALTY = 5.0
MAX_ROYALTY = 20.0
DEFAULT_TIER_NAME = "General Admission"
REQUIRED_EVENT_FIELDS = ("name", "date", "venue", "location")
MAX_TIER_SUPPLY = 5000
MAX_PARTICIPANTS = 1000

_ETH_SUFFIX = re.compile(r"\s*ETH\s*", re.IGNORECASE)


def _gen_event_id() -> str:
    return f"evt_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def clamp_royalty(raw: Any) -> float:
    """Parse a royalty percentage and clamp it into [0, 20].

    Missing or non-numeric values fall back to 5.0.
    """
    try:
        royalty = float(raw)
    except (TypeError, ValueError):
        return DEFAULT_ROYALTY
    if math.isnan(royalty):
        return DEFAULT_ROYALTY
    return min(max(royalty, 0.0), MAX_ROYALTY)


def parse_price(price: Any) -> float:
    """'0.05 ETH' -> 0.05; anything unparseable counts as 0."""
    cleaned = _ETH_SUFFIX.sub("", str(price if price is not None else "0")).strip()
    try:
        value = float(cleaned)
    except ValueError:
        return 0.0
    return 0.0 if math.isnan(value) or math.isinf(value) else value


def _is_upcoming(date: str, now: datetime) -> bool:
    try:
        when = datetime.fromisoformat(date.strip().replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return False
    if when.tzinfo is None:
        # browsers send datetime-local values; read them in server-local time
        when = when.astimezone(timezone.utc)
    return when > now


def _positive_participants(raw: Any) -> int:
    if raw is None:
        return 1
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise InvalidInput("participantCount must be a whole number")
    if raw < 1 or raw > MAX_PARTICIPANTS:
        raise InvalidInput(f"participantCount must be between 1 and {MAX_PARTICIPANTS}")
    return raw


def _build_tiers(raw_tiers: Optional[List[Dict[str, Any]]]) -> List[TicketTier]:
    tiers: List[TicketTier] = []
    seen = set()
    for position, raw in enumerate(raw_tiers or []):
        name = raw.get("name") or DEFAULT_TIER_NAME
        if name in seen:
            raise InvalidInput(f"duplicate ticket tier name: {name}")
        seen.add(name)

        total = raw.get("total", 0)
        if isinstance(total, bool) or not isinstance(total, int) or not 0 <= total <= MAX_TIER_SUPPLY:
            raise InvalidInput(f"tier '{name}' total must be between 0 and {MAX_TIER_SUPPLY}")

        price = raw.get("price")
        tiers.append(TicketTier(
            position=position,
            name=name,
            price=str(price) if price not in (None, "") else "TBA",
            usd=str(raw.get("usd") or ""),
            features=list(raw.get("features") or []),
            total=total,
            available=total,
        ))
    return tiers


class InventoryLedger:
    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def create_event(self, fields: Dict[str, Any]) -> dict:
        missing = [k for k in REQUIRED_EVENT_FIELDS if not fields.get(k)]
        if missing:
            raise InvalidInput(f"missing required fields: {', '.join(missing)}")
        if not fields.get("organizerAddress"):
            raise InvalidInput("organizerAddress required")

        event = Event(
            id=_gen_event_id(),
            name=fields["name"],
            description=fields.get("description") or "",
            category=fields.get("category") or "",
            image=fields.get("image") or "",
            date=fields["date"],
            end_date=fields.get("endDate") or None,
            venue=fields["venue"],
            location=fields["location"],
            organizer_address=normalize_address(fields["organizerAddress"]),
            attendees=0,
            royalty_percentage=clamp_royalty(fields.get("royaltyPercentage")),
            tiers=_build_tiers(fields.get("ticketTiers")),
        )

        db = self._sessions()
        try:
            db.add(event)
            db.commit()
            logger.info("event %s created by %s with %d tiers", event.id, event.organizer_address, len(event.tiers))
            return event.to_dict()
        except IntegrityError:
            db.rollback()
            raise InvalidInput("duplicate ticket tier name")
        finally:
            db.close()

    def list_events(self) -> List[dict]:
        db = self._sessions()
        try:
            rows = db.execute(select(Event).order_by(Event.created_at.desc())).scalars().all()
            return [e.to_dict() for e in rows]
        finally:
            db.close()

    def get_event(self, event_id: str) -> dict:
        db = self._sessions()
        try:
            event = db.get(Event, event_id)
            if event is None:
                raise EventNotFound()
            return event.to_dict()
        finally:
            db.close()

    def purchase(self, event_id: Optional[str], tier_name: Optional[str], participant_count: Any = None) -> dict:
        """Sell one unit of ``tier_name`` and add ``participant_count`` attendees.

        One NFT is consumed per purchase whatever the participant count.
        Failures leave the event untouched.
        """
        if not event_id or not tier_name:
            raise InvalidInput("eventId and tierName required")
        participants = _positive_participants(participant_count)

        db = self._sessions()
        try:
            event = db.get(Event, event_id)
            if event is None:
                raise EventNotFound()

            tier = db.execute(
                select(TicketTier).where(TicketTier.event_id == event_id, TicketTier.name == tier_name)
            ).scalar_one_or_none()
            if tier is None:
                raise TierNotFound()

            claimed = db.execute(
                update(TicketTier)
                .where(TicketTier.id == tier.id, TicketTier.available > 0)
                .values(available=TicketTier.available - 1)
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed != 1:
                db.rollback()
                logger.info("sold out: event=%s tier=%s", event_id, tier_name)
                raise SoldOut()

            db.execute(
                update(Event)
                .where(Event.id == event_id)
                .values(attendees=Event.attendees + participants)
                .execution_options(synchronize_session=False)
            )

            # read back inside the write transaction so the counts are our own
            db.refresh(event)
            db.refresh(tier)
            result = {
                "event": event.to_dict(),
                "tier": tier.summary(),
                "participantCount": participants,
            }
            db.commit()
            logger.info(
                "purchase: event=%s tier=%s participants=%d available=%d/%d",
                event_id, tier_name, participants, result["tier"]["available"], result["tier"]["total"],
            )
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_by_organizer(self, address: Optional[str]) -> dict:
        addr = normalize_address(address)
        db = self._sessions()
        try:
            rows = db.execute(
                select(Event).where(Event.organizer_address == addr).order_by(Event.created_at.desc())
            ).scalars().all()

            now = datetime.now(timezone.utc)
            revenue = sum(parse_price(t.price) * t.sold for e in rows for t in e.tiers)
            stats = {
                "totalEvents": len(rows),
                "activeEvents": sum(1 for e in rows if _is_upcoming(e.date, now)),
                "totalTicketsSold": sum(e.attendees or 0 for e in rows),
                "totalTickets": sum(t.total for e in rows for t in e.tiers),
                "totalRevenue": f"{revenue:.4f} ETH",
            }
            return {"events": [e.to_dict() for e in rows], "stats": stats}
        finally:
            db.close()
