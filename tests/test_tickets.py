import pytest

from quantum_pass.tickets import build_document, metadata_hash
from tests.helpers import create_event

pytestmark = pytest.mark.asyncio

async def _mint_metadata(client, event, participants=2):
    r = await client.post("/metadata", json={
        "eventId": event["id"],
        "eventName": event["name"],
        "tierName": "VIP",
        "time": event["date"],
        "location": event["venue"],
        "attendees": event["attendees"],
        "imageUrl": "http://img/poster.png",
        "participantCount": participants,
    })
    assert r.status_code == 200, r.text
    return r.json()

async def test_metadata_document_and_hash(client):
    event = await create_event(client)
    meta = await _mint_metadata(client, event)

    assert meta["ok"] is True
    assert meta["tokenId"].isdigit()
    assert meta["tokenURI"] == f"http://test/metadata/{meta['tokenId']}"
    assert meta["metadataHash"].startswith("0x") and len(meta["metadataHash"]) == 66

    doc = (await client.get(f"/metadata/{meta['tokenId']}")).json()
    assert doc["name"] == "Test Event - VIP Ticket"
    assert doc["description"].endswith("Valid for 2 participants")
    assert doc["image"] == "http://img/poster.png"
    assert {"trait_type": "Token ID", "value": meta["tokenId"]} in doc["attributes"]
    assert doc["properties"]["participantCount"] == 2
    assert metadata_hash(doc) == meta["metadataHash"]

async def test_metadata_requires_fields(client):
    r = await client.post("/metadata", json={"eventId": "evt_x", "eventName": "X"})
    assert r.status_code == 400

async def test_metadata_participant_count_is_bounded(client):
    event = await create_event(client)
    for count in (1001, 2**63, -1):
        r = await client.post("/metadata", json={
            "eventId": event["id"],
            "eventName": event["name"],
            "tierName": "VIP",
            "imageUrl": "http://img/poster.png",
            "participantCount": count,
        })
        assert r.status_code == 400
        assert r.json()["reason_code"] == "INVALID_INPUT"

async def test_unknown_metadata_is_404(client):
    r = await client.get("/metadata/123")
    assert r.status_code == 404

async def test_entry_scan_admits_once(client):
    event = await create_event(client)
    token_id = (await _mint_metadata(client, event, participants=1))["tokenId"]

    r1 = await client.post("/verify-ticket", json={"tokenId": token_id})
    assert r1.status_code == 200
    body = r1.json()
    assert body["valid"] is True
    assert body["ticket"]["tierName"] == "VIP"
    assert body["message"] == "Valid ticket for 1 participant"

    r2 = await client.post("/verify-ticket", json={"tokenId": token_id})
    assert r2.status_code == 409
    assert r2.json()["reason_code"] == "REPLAY"

async def test_entry_scan_rejects_unknown_and_missing(client):
    r = await client.post("/verify-ticket", json={"tokenId": "999"})
    assert r.status_code == 404
    assert r.json()["reason_code"] == "TICKET_NOT_FOUND"

    r = await client.post("/verify-ticket", json={})
    assert r.status_code == 400

async def test_build_document_defaults():
    doc = build_document("42", {"eventId": "e", "eventName": "Gig", "tierName": "GA", "imageUrl": "u"}, 1)
    assert doc["description"] == "Ticket for Gig (GA) - Valid for 1 participant"
    assert {"trait_type": "Date", "value": "TBA"} in doc["attributes"]
    assert doc["properties"]["location"] is None
