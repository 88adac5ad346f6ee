"""
System prompt and greeting text for the phone receptionist.
"""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from .business import BusinessProfile, format_hours, format_services, format_staff

SUMMARY_PROMPT = (
    "Summarize this phone call transcript in 2-3 sentences. "
    "Include: caller intent, outcome, and any action items."
)


def build_system_prompt(
    profile: BusinessProfile,
    customer_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Build the receptionist system prompt for one call."""
    now = now or datetime.now(ZoneInfo(profile.timezone))
    day = now.strftime("%A").lower()
    today_hours = profile.hours_for(day)
    if today_hours is None:
        today_status = "CLOSED today"
    else:
        today_status = f"Open today {today_hours.open} - {today_hours.close}"

    if customer_name:
        returning_note = f'The caller is a returning customer named "{customer_name}". Greet them by name warmly.'
    else:
        returning_note = "This appears to be a new caller. Be welcoming and try to learn their name naturally."

    return f"""You are the AI phone receptionist for {profile.name}, a {profile.type} located at {profile.address}.

## Your Personality
{profile.personality}

## Important Rules
- You are on a PHONE CALL. Keep responses SHORT and conversational (1-3 sentences max).
- NEVER use bullet points, markdown, or formatted text. You're speaking aloud.
- Sound natural and human. Use contractions and casual phrasing.
- If you didn't understand something, politely ask them to repeat.
- Don't volunteer too much info at once. Answer what's asked, then pause.
- When listing services or prices, mention 2-3 at a time, then ask if they want to hear more.
- Always confirm details before booking anything.

## Current Context
- Current date/time: {now.strftime("%Y-%m-%d %I:%M %p")}
- Day: {day.capitalize()}
- Status: {today_status}
- {returning_note}

## Business Info

Hours:
{format_hours(profile.hours)}

Services & Pricing:
{format_services(profile.services)}

Staff:
{format_staff(profile.staff)}

Policies:
- Cancellation: {profile.policies.cancellation}
- Lateness: {profile.policies.lateness}
- Payment: {", ".join(profile.policies.payment)}

## Tools
You have tools for checking availability, booking appointments, collecting customer info, and answering business questions. Use them when appropriate. Dates are YYYY-MM-DD."""


def build_greeting(profile: BusinessProfile, customer_name: Optional[str] = None) -> str:
    """Opening line, spoken before the caller says anything."""
    if customer_name:
        return f"Hey {customer_name}, welcome back to {profile.name}! How can I help you today?"
    return f"Thanks for calling {profile.name}, this is the virtual assistant. How can I help you today?"
