"""
Booking/Directory store.
The orchestration engine only depends on the BookingStore contract; the
in-memory implementation backs local runs and tests.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import PersistenceError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Customer:
    id: int
    phone: str
    name: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class Appointment:
    id: int
    service: str
    date: str  # YYYY-MM-DD
    time: str
    customer_id: Optional[int] = None
    staff: Optional[str] = None
    duration: int = 30
    status: str = "scheduled"
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class CallRecord:
    id: int
    call_id: str
    phone_number: str
    direction: str = "inbound"
    duration: int = 0
    transcript: Optional[str] = None
    summary: Optional[str] = None
    lead_captured: bool = False
    appointment_booked: bool = False
    customer_id: Optional[int] = None
    status: str = "in-progress"
    started_at: datetime = field(default_factory=_utcnow)
    ended_at: Optional[datetime] = None


CALL_RECORD_FIELDS = {
    "duration", "transcript", "summary", "lead_captured",
    "appointment_booked", "customer_id", "status",
}


class BookingStore(ABC):
    """Customers, appointments and call records. Every method may raise PersistenceError."""

    @abstractmethod
    async def find_customer_by_phone(self, phone: str) -> Optional[Customer]:
        ...

    @abstractmethod
    async def create_or_update_customer(
        self,
        phone: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Customer:
        """Upsert by phone; None fields keep their stored value."""

    @abstractmethod
    async def create_appointment(
        self,
        service: str,
        date: str,
        time: str,
        customer_id: Optional[int] = None,
        staff: Optional[str] = None,
        duration: int = 30,
        notes: Optional[str] = None,
    ) -> Appointment:
        ...

    @abstractmethod
    async def list_appointments(self, date: str, staff: Optional[str] = None) -> list[Appointment]:
        """Non-cancelled appointments on a date, ordered by time."""

    @abstractmethod
    async def create_call_record(
        self,
        call_id: str,
        phone_number: str,
        direction: str = "inbound",
        customer_id: Optional[int] = None,
    ) -> CallRecord:
        ...

    @abstractmethod
    async def update_call_record(self, record_id: int, fields: dict[str, Any]) -> None:
        """Update final call fields. Setting status 'completed' stamps ended_at."""


def _time_sort_key(value: str) -> tuple:
    for fmt in ("%I:%M %p", "%I %p", "%H:%M"):
        try:
            parsed = datetime.strptime(value.strip().upper(), fmt)
            return (0, parsed.hour, parsed.minute)
        except ValueError:
            continue
    return (1, value)


class InMemoryBookingStore(BookingStore):
    """Process-local store guarded by an asyncio lock."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._customers: dict[int, Customer] = {}
        self._appointments: dict[int, Appointment] = {}
        self._calls: dict[int, CallRecord] = {}
        self._next_ids = {"customer": 1, "appointment": 1, "call": 1}

    def _next_id(self, kind: str) -> int:
        value = self._next_ids[kind]
        self._next_ids[kind] = value + 1
        return value

    async def find_customer_by_phone(self, phone: str) -> Optional[Customer]:
        async with self._lock:
            return self._customer_by_phone(phone)

    def _customer_by_phone(self, phone: str) -> Optional[Customer]:
        for customer in self._customers.values():
            if customer.phone == phone:
                return customer
        return None

    async def create_or_update_customer(
        self,
        phone: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Customer:
        if not phone:
            raise PersistenceError("Customer phone number is required")

        async with self._lock:
            existing = self._customer_by_phone(phone)
            if existing is None:
                customer = Customer(
                    id=self._next_id("customer"), phone=phone, name=name, email=email, notes=notes
                )
            else:
                customer = replace(
                    existing,
                    name=name if name is not None else existing.name,
                    email=email if email is not None else existing.email,
                    notes=notes if notes is not None else existing.notes,
                    updated_at=_utcnow(),
                )
            self._customers[customer.id] = customer
            return customer

    async def create_appointment(
        self,
        service: str,
        date: str,
        time: str,
        customer_id: Optional[int] = None,
        staff: Optional[str] = None,
        duration: int = 30,
        notes: Optional[str] = None,
    ) -> Appointment:
        async with self._lock:
            if customer_id is not None and customer_id not in self._customers:
                raise PersistenceError(f"Unknown customer {customer_id}")
            appointment = Appointment(
                id=self._next_id("appointment"),
                service=service,
                date=date,
                time=time,
                customer_id=customer_id,
                staff=staff,
                duration=duration,
                notes=notes,
            )
            self._appointments[appointment.id] = appointment
            logger.info(f"Booked appointment {appointment.id}: {service} on {date} at {time}")
            return appointment

    async def list_appointments(self, date: str, staff: Optional[str] = None) -> list[Appointment]:
        async with self._lock:
            matches = [
                a for a in self._appointments.values()
                if a.date == date
                and a.status != "cancelled"
                and (staff is None or (a.staff or "").lower() == staff.lower())
            ]
        return sorted(matches, key=lambda a: _time_sort_key(a.time))

    async def create_call_record(
        self,
        call_id: str,
        phone_number: str,
        direction: str = "inbound",
        customer_id: Optional[int] = None,
    ) -> CallRecord:
        async with self._lock:
            if any(c.call_id == call_id for c in self._calls.values()):
                raise PersistenceError(f"Call record for {call_id} already exists")
            record = CallRecord(
                id=self._next_id("call"),
                call_id=call_id,
                phone_number=phone_number,
                direction=direction,
                customer_id=customer_id,
            )
            self._calls[record.id] = record
            return record

    async def update_call_record(self, record_id: int, fields: dict[str, Any]) -> None:
        unknown = set(fields) - CALL_RECORD_FIELDS
        if unknown:
            raise PersistenceError(f"Unknown call record fields: {', '.join(sorted(unknown))}")

        async with self._lock:
            record = self._calls.get(record_id)
            if record is None:
                raise PersistenceError(f"Call record {record_id} not found")
            updates = dict(fields)
            if updates.get("status") == "completed":
                updates["ended_at"] = _utcnow()
            self._calls[record_id] = replace(record, **updates)

    # Read helpers for the transport layer and tests

    async def get_call_record(self, record_id: int) -> Optional[CallRecord]:
        async with self._lock:
            return self._calls.get(record_id)

    async def list_all_appointments(self) -> list[Appointment]:
        async with self._lock:
            return list(self._appointments.values())
