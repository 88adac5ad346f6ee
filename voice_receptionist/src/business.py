"""
Business profile provider.
Hours, services, staff and policies used for the system prompt and get_business_info.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True)
class ServiceItem:
    name: str
    duration: int
    price: float
    description: str = ""


@dataclass(frozen=True)
class StaffMember:
    name: str
    role: str
    specialties: tuple[str, ...] = ()


@dataclass(frozen=True)
class BusinessHours:
    open: str
    close: str


@dataclass(frozen=True)
class Policies:
    cancellation: str = ""
    lateness: str = ""
    payment: tuple[str, ...] = ()


@dataclass(frozen=True)
class BusinessProfile:
    """Everything the receptionist knows about the business."""
    name: str
    type: str
    phone: str
    address: str
    hours: dict[str, Optional[BusinessHours]] = field(default_factory=dict)  # None means closed
    services: tuple[ServiceItem, ...] = ()
    staff: tuple[StaffMember, ...] = ()
    policies: Policies = field(default_factory=Policies)
    personality: str = ""
    timezone: str = "America/New_York"

    def find_service(self, name: str) -> Optional[ServiceItem]:
        """Case-insensitive service lookup."""
        wanted = name.strip().lower()
        for service in self.services:
            if service.name.lower() == wanted:
                return service
        return None

    def hours_for(self, day: str) -> Optional[BusinessHours]:
        return self.hours.get(day.lower())

    def to_dict(self) -> dict:
        """Plain JSON-compatible view, used for tool results."""
        return {
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "hours": {
                day: ({"open": h.open, "close": h.close} if h else "closed")
                for day, h in self.hours.items()
            },
            "services": [
                {"name": s.name, "duration": s.duration, "price": s.price, "description": s.description}
                for s in self.services
            ],
            "staff": [
                {"name": s.name, "role": s.role, "specialties": list(s.specialties)}
                for s in self.staff
            ],
            "policies": {
                "cancellation": self.policies.cancellation,
                "lateness": self.policies.lateness,
                "payment": list(self.policies.payment),
            },
        }


def parse_business_profile(raw: dict) -> BusinessProfile:
    """Build a BusinessProfile from its JSON representation."""
    try:
        hours = {}
        for day, value in raw.get("hours", {}).items():
            hours[day.lower()] = None if value == "closed" else BusinessHours(value["open"], value["close"])

        policies = raw.get("policies", {})
        return BusinessProfile(
            name=raw["name"],
            type=raw.get("type", "business"),
            phone=raw.get("phone", ""),
            address=raw.get("address", ""),
            hours=hours,
            services=tuple(
                ServiceItem(
                    name=s["name"],
                    duration=int(s.get("duration", 30)),
                    price=s.get("price", 0),
                    description=s.get("description", ""),
                )
                for s in raw.get("services", [])
            ),
            staff=tuple(
                StaffMember(name=s["name"], role=s.get("role", ""), specialties=tuple(s.get("specialties", [])))
                for s in raw.get("staff", [])
            ),
            policies=Policies(
                cancellation=policies.get("cancellation", ""),
                lateness=policies.get("lateness", ""),
                payment=tuple(policies.get("payment", [])),
            ),
            personality=raw.get("personality", ""),
            timezone=raw.get("timezone", "America/New_York"),
        )
    except (KeyError, TypeError) as e:
        raise ConfigurationError(f"Invalid business profile: {e}") from e


def load_business_profile(path: Union[str, Path]) -> BusinessProfile:
    """Load a business profile JSON file."""
    profile_path = Path(path)
    if not profile_path.exists():
        raise ConfigurationError(f"Business profile not found at {profile_path}")

    with profile_path.open(encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Business profile {profile_path} is not valid JSON: {e}") from e
    profile = parse_business_profile(raw)
    logger.info(f"Loaded business profile: {profile.name}")
    return profile


def format_services(services: tuple[ServiceItem, ...]) -> str:
    return "\n".join(
        f"- {s.name}: ${s.price} ({s.duration} min) - {s.description}" for s in services
    )


def format_hours(hours: dict[str, Optional[BusinessHours]]) -> str:
    lines = []
    for day in WEEKDAYS:
        if day not in hours:
            lines.append(f"- {day.capitalize()}: Unknown")
        elif hours[day] is None:
            lines.append(f"- {day.capitalize()}: Closed")
        else:
            lines.append(f"- {day.capitalize()}: {hours[day].open} - {hours[day].close}")
    return "\n".join(lines)


def format_staff(staff: tuple[StaffMember, ...]) -> str:
    return "\n".join(
        f"- {s.name} ({s.role}), specializes in {', '.join(s.specialties)}" for s in staff
    )
