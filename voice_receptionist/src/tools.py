"""
Receptionist tools exposed to the LLM.
Schemas are in Bedrock toolSpec format; execution never raises out of a turn,
failures come back to the model as structured error payloads.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from .business import BusinessProfile
from .errors import PersistenceError, ToolExecutionError
from .llm_handler import ToolUseBlock
from .store import BookingStore

if TYPE_CHECKING:
    from .conversation import ConversationState

logger = logging.getLogger(__name__)

BUSINESS_INFO_TOPICS = ("hours", "services", "location", "policies", "staff", "pricing")

TOOL_SPECS: list[dict] = [
    {
        "toolSpec": {
            "name": "collect_customer_info",
            "description": "Save or update customer information when they provide their name, phone, or email",
            "inputSchema": {
                "json": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Customer name"},
                        "phone": {"type": "string", "description": "Customer phone number"},
                        "email": {"type": "string", "description": "Customer email address"},
                    },
                    "required": [],
                }
            },
        }
    },
    {
        "toolSpec": {
            "name": "check_availability",
            "description": "Check appointment availability for a specific date, optionally for a specific barber",
            "inputSchema": {
                "json": {
                    "type": "object",
                    "properties": {
                        "date": {"type": "string", "description": "Date to check (YYYY-MM-DD format)"},
                        "staff": {"type": "string", "description": "Optional: specific barber name"},
                    },
                    "required": ["date"],
                }
            },
        }
    },
    {
        "toolSpec": {
            "name": "book_appointment",
            "description": "Book an appointment for the customer",
            "inputSchema": {
                "json": {
                    "type": "object",
                    "properties": {
                        "service": {"type": "string", "description": 'Service name (e.g., "Fade", "Regular Haircut")'},
                        "date": {"type": "string", "description": "Appointment date (YYYY-MM-DD)"},
                        "time": {"type": "string", "description": 'Appointment time (e.g., "2:00 PM")'},
                        "staff": {"type": "string", "description": "Preferred barber name"},
                        "customer_name": {"type": "string", "description": "Customer name"},
                        "customer_phone": {"type": "string", "description": "Customer phone number"},
                    },
                    "required": ["service", "date", "time"],
                }
            },
        }
    },
    {
        "toolSpec": {
            "name": "get_business_info",
            "description": "Get specific business information like hours, services, pricing, location, or policies",
            "inputSchema": {
                "json": {
                    "type": "object",
                    "properties": {
                        "topic": {
                            "type": "string",
                            "enum": list(BUSINESS_INFO_TOPICS),
                            "description": "What info to retrieve",
                        },
                    },
                    "required": ["topic"],
                }
            },
        }
    },
]

TOOL_CONFIG = {"tools": TOOL_SPECS}

REQUIRED_ARGS = {
    tool["toolSpec"]["name"]: tuple(tool["toolSpec"]["inputSchema"]["json"]["required"])
    for tool in TOOL_SPECS
}


@dataclass
class ToolInvocation:
    """One executed tool call."""
    tool_use_id: str
    name: str
    arguments: dict[str, Any]
    result: Any = None
    is_error: bool = False


def _arg(args: dict[str, Any], key: str) -> Optional[str]:
    value = args.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _check_date(tool_name: str, value: str) -> str:
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ToolExecutionError(tool_name, f"date must be YYYY-MM-DD, got '{value}'") from None
    return value


class ToolExecutor:
    """Executes receptionist tools against the store and business profile."""

    def __init__(self, store: BookingStore, profile: BusinessProfile):
        self.store = store
        self.profile = profile
        self._handlers: dict[str, Callable[..., Awaitable[dict]]] = {
            "collect_customer_info": self._collect_customer_info,
            "check_availability": self._check_availability,
            "book_appointment": self._book_appointment,
            "get_business_info": self._get_business_info,
        }

    async def execute(self, call: ToolUseBlock, state: "ConversationState") -> ToolInvocation:
        """Run one tool call. Errors are captured in the invocation, never raised."""
        invocation = ToolInvocation(tool_use_id=call.tool_use_id, name=call.name, arguments=dict(call.input))
        logger.info(f"Executing tool {call.name} with {call.input}")

        try:
            handler = self._handlers.get(call.name)
            if handler is None:
                raise ToolExecutionError(call.name, f"Unknown tool: {call.name}")
            missing = [key for key in REQUIRED_ARGS[call.name] if not _arg(call.input, key)]
            if missing:
                raise ToolExecutionError(call.name, f"Missing required argument(s): {', '.join(missing)}")
            invocation.result = await handler(call.input, state)
        except ToolExecutionError as e:
            logger.warning(f"Tool {call.name} failed: {e.message}")
            invocation.result = {"error": e.message}
            invocation.is_error = True
        except PersistenceError as e:
            logger.error(f"Tool {call.name} storage failure: {e}")
            invocation.result = {"error": f"Could not save or read records: {e}"}
            invocation.is_error = True
        except Exception as e:
            logger.error(f"Tool {call.name} raised unexpectedly: {e}", exc_info=True)
            invocation.result = {"error": f"Tool {call.name} failed: {e}"}
            invocation.is_error = True

        return invocation

    async def _collect_customer_info(self, args: dict, state: "ConversationState") -> dict:
        name = _arg(args, "name")
        phone = _arg(args, "phone")
        email = _arg(args, "email")

        if name:
            state.customer_name = name
        if phone:
            state.customer_phone = phone
        if email:
            state.customer_email = email

        phone = phone or state.customer_phone
        if not phone:
            return {"success": True, "message": "Info noted, but no phone number to save yet"}

        customer = await self.store.create_or_update_customer(
            phone=phone,
            name=name or state.customer_name,
            email=email or state.customer_email,
        )
        state.lead_captured = True
        return {"success": True, "customer_id": customer.id, "message": "Customer info saved"}

    async def _check_availability(self, args: dict, state: "ConversationState") -> dict:
        date = _check_date("check_availability", _arg(args, "date"))
        staff = _arg(args, "staff")

        existing = await self.store.list_appointments(date, staff)
        booked = [f"{a.time} ({a.service} with {a.staff or 'any barber'})" for a in existing]

        if not booked:
            return {"available": True, "booked_slots": [], "message": f"{date} is wide open! All time slots available."}
        return {
            "available": True,
            "booked_slots": booked,
            "message": f"Some slots are booked on {date}: {', '.join(booked)}. Other times are available.",
        }

    async def _book_appointment(self, args: dict, state: "ConversationState") -> dict:
        service = _arg(args, "service")
        date = _check_date("book_appointment", _arg(args, "date"))
        time = _arg(args, "time")
        staff = _arg(args, "staff")
        customer_name = _arg(args, "customer_name")
        phone = _arg(args, "customer_phone") or state.customer_phone

        if customer_name:
            state.customer_name = customer_name

        customer_id = None
        if phone:
            customer = await self.store.create_or_update_customer(phone=phone, name=state.customer_name)
            customer_id = customer.id
            state.lead_captured = True

        service_info = self.profile.find_service(service)
        appointment = await self.store.create_appointment(
            service=service_info.name if service_info else service,
            date=date,
            time=time,
            customer_id=customer_id,
            staff=staff,
            duration=service_info.duration if service_info else 30,
        )

        state.appointment_booked = True
        message = f"Appointment booked: {appointment.service} on {date} at {time}"
        if staff:
            message += f" with {staff}"
        return {"success": True, "appointment_id": appointment.id, "message": message}

    async def _get_business_info(self, args: dict, state: "ConversationState") -> dict:
        topic = _arg(args, "topic").lower()
        info = self.profile.to_dict()

        if topic == "hours":
            return {"hours": info["hours"]}
        if topic in ("services", "pricing"):
            return {"services": info["services"]}
        if topic == "location":
            return {"address": info["address"], "phone": info["phone"]}
        if topic == "policies":
            return {"policies": info["policies"]}
        if topic == "staff":
            return {"staff": info["staff"]}
        raise ToolExecutionError(
            "get_business_info", f"Unknown topic '{topic}', expected one of {', '.join(BUSINESS_INFO_TOPICS)}"
        )
