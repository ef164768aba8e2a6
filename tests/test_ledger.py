from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from quantum_pass.errors import EventNotFound, InvalidInput, SoldOut, TierNotFound
from quantum_pass.ledger import InventoryLedger, _is_upcoming, clamp_royalty, parse_price
from tests.helpers import ORGANIZER, event_fields


@pytest.fixture
def ledger(sessions):
    return InventoryLedger(sessions)


@pytest.mark.parametrize("raw, expected", [
    (37, 20.0),
    (-5, 0.0),
    (None, 5.0),
    ("abc", 5.0),
    ("7.5", 7.5),
    (0, 0.0),
    (float("nan"), 5.0),
])
def test_clamp_royalty(raw, expected):
    assert clamp_royalty(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("0.05 ETH", 0.05),
    ("0.1eth", 0.1),
    ("2", 2.0),
    ("TBA", 0.0),
    (None, 0.0),
])
def test_parse_price(raw, expected):
    assert parse_price(raw) == pytest.approx(expected)


def test_create_event_initialises_inventory(ledger):
    event = ledger.create_event(event_fields(tiers=[{"name": "GA", "price": "0.05 ETH", "total": 3, "available": 1}]))

    assert event["attendees"] == 0
    assert event["organizerAddress"] == ORGANIZER.lower()
    assert event["royaltyPercentage"] == 5.0
    assert event["price"] == "0.05 ETH"
    assert event["ticketTiers"] == [
        {"name": "GA", "price": "0.05 ETH", "usd": "", "total": 3, "available": 3, "features": []},
    ]


def test_create_event_requires_fields(ledger):
    fields = event_fields()
    del fields["venue"]
    with pytest.raises(InvalidInput):
        ledger.create_event(fields)

    with pytest.raises(InvalidInput):
        ledger.create_event(event_fields(organizer=""))


def test_create_event_rejects_duplicate_tier_names(ledger):
    with pytest.raises(InvalidInput):
        ledger.create_event(event_fields(tiers=[{"name": "GA", "total": 1}, {"name": "GA", "total": 2}]))


@pytest.mark.parametrize("total", [-1, 5001, 2**63, "10"])
def test_create_event_rejects_bad_tier_totals(ledger, total):
    with pytest.raises(InvalidInput):
        ledger.create_event(event_fields(tiers=[{"name": "GA", "total": total}]))


def test_tier_order_is_preserved(ledger):
    names = ["Early Bird", "VIP", "General Admission"]
    event = ledger.create_event(event_fields(tiers=[{"name": n, "total": 1} for n in names]))

    assert [t["name"] for t in ledger.get_event(event["id"])["ticketTiers"]] == names


def test_purchase_counts_participants_but_one_ticket(ledger):
    event = ledger.create_event(event_fields())

    result = ledger.purchase(event["id"], "VIP", 3)

    assert result["participantCount"] == 3
    assert result["tier"] == {"name": "VIP", "available": 4, "total": 5}
    assert result["event"]["attendees"] == 3


def test_purchase_defaults_to_one_participant(ledger):
    event = ledger.create_event(event_fields())
    assert ledger.purchase(event["id"], "VIP")["event"]["attendees"] == 1


@pytest.mark.parametrize("count", [0, -2, "3", 1.5, 1001, 2**63])
def test_purchase_rejects_bad_participant_counts(ledger, count):
    event = ledger.create_event(event_fields())
    with pytest.raises(InvalidInput):
        ledger.purchase(event["id"], "VIP", count)


def test_unknown_event_and_tier(ledger):
    event = ledger.create_event(event_fields())

    with pytest.raises(EventNotFound):
        ledger.purchase("nonexistent-event", "VIP", 1)
    with pytest.raises(TierNotFound):
        ledger.purchase(event["id"], "NoSuchTier", 1)
    with pytest.raises(InvalidInput):
        ledger.purchase(event["id"], "", 1)


def test_sold_out_leaves_event_untouched(ledger):
    event = ledger.create_event(event_fields(tiers=[{"name": "Solo", "total": 1}]))
    ledger.purchase(event["id"], "Solo", 2)

    with pytest.raises(SoldOut):
        ledger.purchase(event["id"], "Solo", 4)

    after = ledger.get_event(event["id"])
    assert after["attendees"] == 2
    assert after["ticketTiers"][0]["available"] == 0


def test_concurrent_purchases_never_oversell(ledger):
    n = 5
    event = ledger.create_event(event_fields(tiers=[{"name": "GA", "total": n}]))

    def attempt():
        try:
            ledger.purchase(event["id"], "GA", 1)
            return "ok"
        except SoldOut:
            return "sold_out"

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: attempt(), range(n * 2)))

    assert results.count("ok") == n
    assert results.count("sold_out") == n
    after = ledger.get_event(event["id"])
    assert after["ticketTiers"][0]["available"] == 0
    assert after["attendees"] == n


def test_organizer_stats(ledger):
    current = ledger.create_event(event_fields(name="Future Fest"))
    ledger.create_event(event_fields(name="Old Show", date="2000-01-01", tiers=[]))
    ledger.create_event(event_fields(name="Someone Else", organizer="0x0000000000000000000000000000000000000bad"))
    ledger.purchase(current["id"], "General Admission", 1)
    ledger.purchase(current["id"], "General Admission", 2)

    out = ledger.list_by_organizer(ORGANIZER.upper().replace("0X", "0x"))

    assert [e["name"] for e in out["events"]] == ["Old Show", "Future Fest"]
    assert out["stats"] == {
        "totalEvents": 2,
        "activeEvents": 1,
        "totalTicketsSold": 3,
        "totalTickets": 15,
        "totalRevenue": "0.1000 ETH",
    }


def test_unparseable_event_date_is_not_active(ledger):
    ledger.create_event(event_fields(date="sometime soon"))
    assert ledger.list_by_organizer(ORGANIZER)["stats"]["activeEvents"] == 0


def test_dates_without_offset_are_server_local_time():
    now = datetime.now(timezone.utc)
    local = datetime.now().replace(microsecond=0)

    assert _is_upcoming((local + timedelta(minutes=30)).isoformat(timespec="minutes"), now)
    assert not _is_upcoming((local - timedelta(minutes=30)).isoformat(timespec="minutes"), now)
    assert _is_upcoming("2999-06-01T19:00", now)
    assert not _is_upcoming("2000-06-01T19:00:00+00:00", now)
