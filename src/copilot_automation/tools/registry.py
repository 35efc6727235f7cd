"""Tool registry and function-calling definitions."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel

from copilot_automation.tools import handlers
from copilot_automation.tools.base import ToolSpec
from copilot_automation.tools.handlers import ToolDependencies
from copilot_automation.tools.schemas import (
    CalendarEventInput,
    EmailPayloadInput,
    HubspotContactInput,
    ListInstructionsInput,
    LookupHubspotContactInput,
    ScheduleFollowUpInput,
    SearchKnowledgeInput,
    StoreInstructionInput,
    UpdateCalendarEventInput,
)

ToolRegistry = Mapping[str, ToolSpec]


def build_registry(deps: ToolDependencies) -> ToolRegistry:
    specs = [
        ToolSpec(
            name="searchKnowledge",
            description=(
                "Retrieve relevant Gmail messages, calendar events, and HubSpot contacts for a "
                "query. Use exactSubjectMatch=true when searching for specific email subjects."
            ),
            input_model=SearchKnowledgeInput,
            handler=handlers.search_knowledge(deps),
        ),
        ToolSpec(
            name="sendEmail",
            description="Send an email via Gmail on behalf of the user.",
            input_model=EmailPayloadInput,
            handler=handlers.send_email(deps),
        ),
        ToolSpec(
            name="draftEmail",
            description="Create a Gmail draft for later review.",
            input_model=EmailPayloadInput,
            handler=handlers.draft_email(deps),
        ),
        ToolSpec(
            name="createCalendarEvent",
            description="Create a new Google Calendar event.",
            input_model=CalendarEventInput,
            handler=handlers.create_calendar_event(deps),
        ),
        ToolSpec(
            name="updateCalendarEvent",
            description="Update an existing Google Calendar event.",
            input_model=UpdateCalendarEventInput,
            handler=handlers.update_calendar_event(deps),
        ),
        ToolSpec(
            name="createOrUpdateHubspotContact",
            description=(
                "Create or update a HubSpot contact record. Proceed with the information "
                "available. The email property is required; firstname, lastname, phone, "
                "jobtitle and company are optional. Split a full name into firstname and "
                "lastname and omit unknown fields."
            ),
            input_model=HubspotContactInput,
            handler=handlers.upsert_hubspot_contact(deps),
        ),
        ToolSpec(
            name="lookupHubspotContact",
            description=(
                "Look up or list HubSpot contacts. Provide email, name, or HubSpot ID to search "
                "for specific contacts, or call without parameters to list recent contacts."
            ),
            input_model=LookupHubspotContactInput,
            handler=handlers.lookup_hubspot_contact(deps),
        ),
        ToolSpec(
            name="scheduleFollowUpTask",
            description="Create a follow-up task that the agent should revisit later.",
            input_model=ScheduleFollowUpInput,
            handler=handlers.schedule_follow_up(deps),
        ),
        ToolSpec(
            name="storeInstruction",
            description="Persist an ongoing instruction that should trigger on future events.",
            input_model=StoreInstructionInput,
            handler=handlers.store_instruction(deps),
        ),
        ToolSpec(
            name="listInstructions",
            description="List stored ongoing instructions and their status.",
            input_model=ListInstructionsInput,
            handler=handlers.list_instructions(deps),
        ),
    ]
    return MappingProxyType({spec.name: spec for spec in specs})


def list_tools(registry: ToolRegistry) -> list[str]:
    return sorted(registry.keys())


def tool_parameters(model: type[BaseModel]) -> dict[str, Any]:
    """JSON schema for a tool input model, inlined and stripped for function calling."""

    schema = model.model_json_schema(by_alias=True)
    definitions = schema.pop("$defs", {})
    cleaned = _clean_schema(schema, definitions)
    return {
        "type": "object",
        "properties": cleaned.get("properties", {}),
        "required": cleaned.get("required", []),
        "additionalProperties": False,
    }


def tool_definitions(registry: ToolRegistry) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": spec.name,
                "description": spec.description,
                "parameters": tool_parameters(spec.input_model),
            },
        }
        for spec in registry.values()
    ]


def _clean_schema(node: Any, definitions: dict[str, Any]) -> Any:
    if isinstance(node, list):
        return [_clean_schema(item, definitions) for item in node]
    if not isinstance(node, dict):
        return node

    if "$ref" in node:
        name = node["$ref"].rsplit("/", 1)[-1]
        resolved = _clean_schema(definitions.get(name, {}), definitions)
        extras = {key: value for key, value in node.items() if key != "$ref"}
        return {**resolved, **_clean_schema(extras, definitions)}

    # Optional[X] renders as anyOf [X, null]; function calling only needs X.
    variants = node.get("anyOf")
    if isinstance(variants, list):
        non_null = [item for item in variants if item != {"type": "null"}]
        if len(non_null) == 1 and len(non_null) < len(variants):
            merged = {key: value for key, value in node.items() if key != "anyOf"}
            merged.update(non_null[0])
            return _clean_schema(merged, definitions)

    output: dict[str, Any] = {}
    for key, value in node.items():
        if key == "title":
            continue
        if key == "default" and value is None:
            continue
        if key == "properties" and isinstance(value, dict):
            output[key] = {
                prop: _clean_schema(prop_schema, definitions) for prop, prop_schema in value.items()
            }
            continue
        output[key] = _clean_schema(value, definitions)
    return output
