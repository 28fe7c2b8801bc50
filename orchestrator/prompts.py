"""Prompt templates and response schemas for every generation task.

Schemas use the Gemini OpenAPI subset (upper-case type names). Field names are
camelCase on the wire and map onto the snake_case pydantic models via aliases.
"""
import json
from typing import Any, Dict, List, NamedTuple, Sequence

from .models import (
    Activity,
    Coordinate,
    DayPlan,
    DestinationQuote,
    Preferences,
    TravelCost,
    TripHeader,
)


class StructuredTask(NamedTuple):
    name: str
    schema: Dict[str, Any]
    response_type: Any


HEADER_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "tripTitle": {"type": "STRING"},
        "tripSummary": {"type": "STRING"},
    },
    "required": ["tripTitle", "tripSummary"],
}

TRAVEL_COST_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "mode": {"type": "STRING", "enum": ["flight", "train", "other"]},
        "estimatedCost": {"type": "STRING"},
        "costDisclaimer": {"type": "STRING"},
    },
    "required": ["mode", "estimatedCost", "costDisclaimer"],
}

DESTINATION_QUOTE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "quote": {"type": "STRING"},
        "author": {"type": "STRING"},
        "translation": {"type": "STRING"},
    },
    "required": ["quote", "author"],
}

DAY_PLAN_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "day": {"type": "INTEGER"},
        "title": {"type": "STRING"},
        "summary": {"type": "STRING"},
        "activities": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name": {"type": "STRING"},
                    "description": {"type": "STRING"},
                    "time": {"type": "STRING"},
                    "location": {"type": "STRING"},
                },
                "required": ["name", "description", "time", "location"],
            },
        },
    },
    "required": ["day", "title", "activities"],
}

COORDINATES_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "name": {"type": "STRING"},
            "latitude": {"type": "NUMBER"},
            "longitude": {"type": "NUMBER"},
        },
        "required": ["name", "latitude", "longitude"],
    },
}

HEADER = StructuredTask("header", HEADER_SCHEMA, TripHeader)
TRAVEL_COST = StructuredTask("travel_cost", TRAVEL_COST_SCHEMA, TravelCost)
DESTINATION_QUOTE = StructuredTask("destination_quote", DESTINATION_QUOTE_SCHEMA, DestinationQuote)
DAY_PLAN = StructuredTask("day_plan", DAY_PLAN_SCHEMA, DayPlan)
COORDINATES = StructuredTask("coordinates", COORDINATES_SCHEMA, List[Coordinate])


def header_prompt(prefs: Preferences) -> str:
    return (
        f"Generate a captivating trip title and a short, compelling summary for a "
        f"{prefs.duration}-day trip to {prefs.destination}.\n"
        "User Preferences for context:\n"
        f"- Interests: {', '.join(prefs.interests)}\n"
        f"- Budget: {prefs.budget}"
    )


def travel_cost_prompt(prefs: Preferences) -> str:
    return (
        f"Suggest a primary travel mode (flight or train) from {prefs.origin} to {prefs.destination} "
        'and provide a ROUGH cost estimate (e.g., "$500 - $800 USD"). '
        "Add a disclaimer that this is just an estimate."
    )


def destination_quote_prompt(prefs: Preferences) -> str:
    return (
        f"Find an inspirational, location-specific quote about {prefs.destination}. "
        "Provide the quote, its author, and a simple English translation if it's in another language."
    )


def day_plan_prompt(prefs: Preferences, day: int) -> str:
    return (
        f"Generate a detailed plan for Day {day} of a {prefs.duration}-day trip to {prefs.destination}.\n"
        "- The plan should be logical and follow a theme.\n"
        "- The response must be a single JSON object that conforms to the schema.\n"
        f"- It must include 'day' ({day}), 'title', an optional 'summary', and a list of 'activities'.\n"
        "- For each activity in the list, provide:\n"
        "    1. 'name': The name of the activity.\n"
        "    2. 'description': A detailed 2-3 sentence description.\n"
        "    3. 'time': A suggested time (e.g., \"10:00 AM\" or \"Evening\").\n"
        "    4. 'location': The physical location or address.\n"
        "User Preferences for context:\n"
        f"- Interests: {', '.join(prefs.interests)}\n"
        f"- Budget: {prefs.budget}"
    )


def packing_list_prompt(prefs: Preferences) -> str:
    return (
        f"Create a packing list for a {prefs.duration}-day trip to {prefs.destination} "
        f"for someone interested in {', '.join(prefs.interests)}.\n"
        "Provide the output as a simple bulleted list of items, including quantities where appropriate "
        '(e.g., "* Comfortable Shoes (2 pairs)").\n'
        "Limit the list to the 10 most essential items.\n"
        "Do NOT include any other text, titles, or justifications. Just the bulleted list."
    )


def coordinates_prompt(activities: Sequence[Activity], destination: str) -> str:
    names = [{"name": a.name, "location": a.location} for a in activities]
    return (
        f"For the following list of activities in/around {destination}, provide their precise "
        "latitude and longitude.\n"
        "Match the name exactly in your response.\n"
        f"Activities: {json.dumps(names)}"
    )
