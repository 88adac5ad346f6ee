"""
In-memory booking store tests.
"""

import pytest

from voice_receptionist.src.errors import PersistenceError


@pytest.mark.asyncio
async def test_customer_upsert_keeps_existing_fields(store):
    first = await store.create_or_update_customer("+18045551234", name="James Wilson", email="james@example.com")
    second = await store.create_or_update_customer("+18045551234", notes="prefers Marcus")

    assert second.id == first.id
    assert second.name == "James Wilson"
    assert second.email == "james@example.com"
    assert second.notes == "prefers Marcus"
    assert await store.find_customer_by_phone("+18045551234") == second
    assert await store.find_customer_by_phone("+10000000000") is None


@pytest.mark.asyncio
async def test_appointments_sorted_by_time(store):
    await store.create_appointment(service="Fade", date="2026-10-20", time="2:00 PM")
    await store.create_appointment(service="Beard Trim", date="2026-10-20", time="9:30 AM")
    await store.create_appointment(service="Kids Cut", date="2026-10-21", time="8:00 AM")

    listed = await store.list_appointments("2026-10-20")

    assert [a.time for a in listed] == ["9:30 AM", "2:00 PM"]


@pytest.mark.asyncio
async def test_appointment_for_unknown_customer_rejected(store):
    with pytest.raises(PersistenceError):
        await store.create_appointment(service="Fade", date="2026-10-20", time="2:00 PM", customer_id=42)


@pytest.mark.asyncio
async def test_call_record_lifecycle(store):
    record = await store.create_call_record("call-1", "+18045551234")
    assert record.status == "in-progress"

    await store.update_call_record(record.id, {"status": "completed", "duration": 42, "summary": "Booked a fade."})

    updated = await store.get_call_record(record.id)
    assert updated.status == "completed"
    assert updated.duration == 42
    assert updated.ended_at is not None


@pytest.mark.asyncio
async def test_call_record_errors(store):
    await store.create_call_record("call-1", "+18045551234")

    with pytest.raises(PersistenceError):
        await store.create_call_record("call-1", "+18045551234")
    with pytest.raises(PersistenceError):
        await store.update_call_record(99, {"status": "completed"})
    with pytest.raises(PersistenceError):
        await store.update_call_record(1, {"call_id": "other"})
