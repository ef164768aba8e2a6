import httpx
from eth_account import Account
from eth_account.messages import encode_defunct

ORGANIZER = "0xAbC0000000000000000000000000000000000001"

DEFAULT_TIERS = [
    {"name": "General Admission", "price": "0.05 ETH", "total": 10, "available": 10},
    {"name": "VIP", "price": "0.1 ETH", "total": 5, "available": 5},
]

def sign_login(account, nonce: str) -> str:
    signed = Account.sign_message(encode_defunct(text=f"Login nonce: {nonce}"), private_key=account.key)
    return "0x" + bytes(signed.signature).hex()

def event_fields(name="Test Event", tiers=None, organizer=ORGANIZER, **extra) -> dict:
    fields = {
        "name": name,
        "date": "2999-06-01T19:00:00Z",
        "venue": "Main Hall",
        "location": "Lisbon",
        "organizerAddress": organizer,
        "ticketTiers": DEFAULT_TIERS if tiers is None else tiers,
    }
    fields.update(extra)
    return fields

async def create_event(client: httpx.AsyncClient, name="Test Event", tiers=None, organizer=ORGANIZER, **extra) -> dict:
    r = await client.post("/events", json=event_fields(name, tiers, organizer, **extra))
    r.raise_for_status()
    data = r.json()
    assert data["id"].startswith("evt_"), data
    return data

async def purchase(client: httpx.AsyncClient, event_id: str, tier_name: str, participant_count=None, headers=None):
    body = {"eventId": event_id, "tierName": tier_name}
    if participant_count is not None:
        body["participantCount"] = participant_count
    return await client.post("/tickets/purchase", json=body, headers=headers or {})

async def login(client: httpx.AsyncClient, account) -> httpx.Response:
    nonce = (await client.post("/auth/nonce", json={"address": account.address})).json()["nonce"]
    return await client.post("/auth/verify", json={"address": account.address, "signature": sign_login(account, nonce)})
