from __future__ import annotations

from typing import Any, Dict

from jsonschema import Draft202012Validator

ANSWER_PROSE_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["schema_version", "summary_lines", "next_steps", "disclaimer"],
    "properties": {
        "schema_version": {"const": "answer_prose_v1"},
        "summary_lines": {
            "type": "array",
            "minItems": 1,
            "maxItems": 6,
            "items": {"type": "string", "minLength": 1},
        },
        "next_steps": {
            "type": "array",
            "maxItems": 4,
            "items": {"type": "string", "minLength": 1},
        },
        "disclaimer": {"type": "string", "minLength": 1},
    },
    "additionalProperties": False,
}

_HOLDING_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["symbol", "allocationInPercentage"],
    "properties": {
        "symbol": {"type": "string", "minLength": 1},
        "name": {"type": ["string", "null"]},
        "allocationInPercentage": {"type": "number"},
        "valueInBaseCurrency": {"type": ["number", "null"]},
    },
}

# Shapes of collaborator payloads this core reads fields from. Other tools are
# only required to return a JSON object.
TOOL_RESULT_JSON_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "portfolio_analysis": {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "required": ["holdings"],
        "properties": {
            "holdings": {"type": "array", "items": _HOLDING_SCHEMA},
            "totalValueInBaseCurrency": {"type": ["number", "null"]},
        },
    },
    "get_portfolio_summary": {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": {
            "totalValueInBaseCurrency": {"type": ["number", "null"]},
            "holdingsCount": {"type": ["integer", "null"]},
        },
    },
    "fire_analysis": {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": {"status": {"enum": ["feasible", "infeasible", None]}},
    },
}
_GENERIC_RESULT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
}

AGENT_REQUEST_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["query"],
    "properties": {
        "query": {"type": "string", "minLength": 1, "maxLength": 4000},
        "session_id": {"type": "string"},
        "user_id": {"type": "string"},
        "symbols": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "limits": {
            "type": "object",
            "properties": {
                "maxToolCallsPerRequest": {"type": "integer", "minimum": 1},
                "maxCallsPerActionTool": {"type": "integer", "minimum": 1},
            },
            "additionalProperties": False,
        },
        "authorization": {"type": "string"},
    },
    "additionalProperties": False,
}

_answer_prose_validator = Draft202012Validator(ANSWER_PROSE_JSON_SCHEMA)
_agent_request_validator = Draft202012Validator(AGENT_REQUEST_JSON_SCHEMA)
_tool_result_validators = {name: Draft202012Validator(schema) for name, schema in TOOL_RESULT_JSON_SCHEMAS.items()}
_generic_result_validator = Draft202012Validator(_GENERIC_RESULT_SCHEMA)


def _collect_messages(validator: Draft202012Validator, payload: Any) -> list[str]:
    errors = sorted(validator.iter_errors(payload), key=lambda item: list(item.path))
    messages: list[str] = []
    for item in errors:
        path = ".".join(str(part) for part in item.path)
        location = path if path else "$"
        messages.append(f"{location}: {item.message}")
    return messages


def validate_answer_prose_payload(payload: Dict[str, Any]) -> list[str]:
    return _collect_messages(_answer_prose_validator, payload)


def validate_agent_request_payload(payload: Any) -> list[str]:
    return _collect_messages(_agent_request_validator, payload)


def validate_tool_result_payload(tool: str, payload: Any) -> list[str]:
    validator = _tool_result_validators.get(tool, _generic_result_validator)
    return _collect_messages(validator, payload)
