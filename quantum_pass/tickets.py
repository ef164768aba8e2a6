"""NFT metadata documents and entry verification for minted tickets."""
import json
import logging
import secrets
from typing import Any, Dict

from eth_utils import keccak
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .errors import AlreadyRedeemed, InvalidInput, TicketNotFound
from .ledger import MAX_PARTICIPANTS
from .models import Redemption, TicketMetadata

logger = logging.getLogger(__name__)

REQUIRED_METADATA_FIELDS = ("eventId", "eventName", "tierName", "imageUrl")


def _gen_token_id() -> str:
    # decimal so it can be passed straight to the contract as a uint256
    return str(secrets.randbits(64))


def _plural(n: int) -> str:
    return "" if n == 1 else "s"


def metadata_hash(document: dict) -> str:
    text = json.dumps(document, indent=2)
    return "0x" + keccak(text=text).hex()


def build_document(token_id: str, fields: Dict[str, Any], participants: int) -> dict:
    event_name = fields["eventName"]
    tier_name = fields["tierName"]
    time_ = fields.get("time")
    location = fields.get("location")
    return {
        "name": f"{event_name} - {tier_name} Ticket",
        "description": (
            f"Ticket for {event_name} ({tier_name}) - "
            f"Valid for {participants} participant{_plural(participants)}"
        ),
        "image": fields["imageUrl"],
        "attributes": [
            {"trait_type": "Event", "value": event_name},
            {"trait_type": "Tier", "value": tier_name},
            {"trait_type": "Date", "value": time_ or "TBA"},
            {"trait_type": "Location", "value": location or "TBA"},
            {"trait_type": "Token ID", "value": token_id},
            {"trait_type": "Participants", "value": str(participants)},
        ],
        "properties": {
            "eventId": fields["eventId"],
            "eventName": event_name,
            "tierName": tier_name,
            "time": time_ or None,
            "location": location or None,
            "attendees": int(fields.get("attendees") or 0),
            "tokenId": token_id,
            "participantCount": participants,
            "extra": fields.get("extra"),
        },
    }


class TicketRegistry:
    def __init__(self, session_factory: sessionmaker, base_url: str):
        self._sessions = session_factory
        self._base_url = base_url.rstrip("/")

    def create_metadata(self, fields: Dict[str, Any]) -> dict:
        missing = [k for k in REQUIRED_METADATA_FIELDS if not fields.get(k)]
        if missing:
            raise InvalidInput("missing required metadata fields")

        participants = fields.get("participantCount") or 1
        if not 1 <= participants <= MAX_PARTICIPANTS:
            raise InvalidInput(f"participantCount must be between 1 and {MAX_PARTICIPANTS}")

        token_id = _gen_token_id()
        document = build_document(token_id, fields, participants)
        digest = metadata_hash(document)

        db = self._sessions()
        try:
            db.add(TicketMetadata(
                token_id=token_id,
                event_id=fields["eventId"],
                event_name=fields["eventName"],
                tier_name=fields["tierName"],
                participant_count=participants,
                document=document,
                metadata_hash=digest,
            ))
            db.commit()
        finally:
            db.close()

        logger.info("metadata stored for token %s (event %s)", token_id, fields["eventId"])
        return {
            "ok": True,
            "id": token_id,
            "tokenId": token_id,
            "tokenURI": f"{self._base_url}/metadata/{token_id}",
            "metadataHash": digest,
        }

    def get_metadata(self, token_id: str) -> dict:
        db = self._sessions()
        try:
            row = db.get(TicketMetadata, token_id)
            if row is None:
                raise TicketNotFound()
            return row.document
        finally:
            db.close()

    def redeem(self, token_id) -> dict:
        """Admit a ticket at the door. Each token id gets in once."""
        if not token_id or not str(token_id).strip():
            raise InvalidInput("Token ID required")
        token_id = str(token_id).strip()

        db = self._sessions()
        try:
            row = db.get(TicketMetadata, token_id)
            if row is None:
                raise TicketNotFound()

            ticket = {
                "tokenId": row.token_id,
                "eventId": row.event_id,
                "eventName": row.event_name,
                "tierName": row.tier_name,
                "participants": row.participant_count,
            }

            db.add(Redemption(token_id=token_id, event_id=row.event_id))
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info("replay at entry for token %s", token_id)
            raise AlreadyRedeemed()
        finally:
            db.close()

        n = ticket["participants"]
        logger.info("token %s admitted (%d participant%s)", token_id, n, _plural(n))
        return {
            "success": True,
            "valid": True,
            "ticket": ticket,
            "message": f"Valid ticket for {n} participant{_plural(n)}",
        }
