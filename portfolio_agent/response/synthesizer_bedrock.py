from __future__ import annotations

import json
import logging
import re
import threading
from typing import Any, Dict

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import AWS_REGION, BEDROCK_CONNECT_TIMEOUT, BEDROCK_MODEL_ID, BEDROCK_READ_TIMEOUT, RESPONSE_PROMPT_VERSION
from .renderer import DEFAULT_DISCLAIMER
from .schemas import validate_answer_prose_payload

logger = logging.getLogger(__name__)

_LOCK = threading.Lock()
_BEDROCK_CLIENT: Any | None = None


def _get_bedrock_client() -> Any:
    global _BEDROCK_CLIENT
    with _LOCK:
        if _BEDROCK_CLIENT is None:
            cfg = Config(
                connect_timeout=BEDROCK_CONNECT_TIMEOUT,
                read_timeout=BEDROCK_READ_TIMEOUT,
                retries={"max_attempts": 2, "mode": "adaptive"},
            )
            _BEDROCK_CLIENT = boto3.client("bedrock-runtime", region_name=AWS_REGION, config=cfg)
        return _BEDROCK_CLIENT


def _build_prompt(*, user_prompt: str, grounding: Dict[str, Any], corrective_feedback: str = "") -> str:
    grounding_json = json.dumps(grounding, ensure_ascii=True, default=str)
    correction = f"\nPrevious attempt issues: {corrective_feedback}" if corrective_feedback else ""
    return (
        "You are a portfolio assistant explaining verified analysis results.\n"
        "Return ONLY one valid JSON object. No markdown.\n"
        "The object must follow schema answer_prose_v1 with no extra properties.\n"
        "schema_version must be 'answer_prose_v1'.\n"
        "summary_lines must contain 1 to 6 concise lines; next_steps at most 4 items.\n"
        "ONLY use numbers that appear in the grounding JSON. Do not invent numbers, percentages or symbols.\n"
        "If information is missing, say it is unknown.\n"
        "Never claim that an order or trade was executed unless a create_order tool call succeeded.\n"
        "Do not expose internal tool names or check names in prose.\n"
        "JSON example:\n"
        "{\"schema_version\":\"answer_prose_v1\","
        "\"summary_lines\":[\"Your top holding is AAPL at 35.0%.\"],"
        "\"next_steps\":[\"Review the rebalance options below.\"],"
        "\"disclaimer\":\"Informational only, not investment advice.\"}\n"
        f"{correction}\n"
        f"User prompt: {user_prompt}\n"
        f"Grounding: {grounding_json}\n"
    )


def _extract_text_from_converse_payload(payload: Dict[str, Any]) -> str:
    output = payload.get("output") or {}
    message = output.get("message") or {}
    content = message.get("content") or []
    texts: list[str] = []
    if isinstance(content, list):
        for item in content:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                texts.append(item["text"])
    return "\n".join(texts).strip()


def _normalize_json_text(text: str) -> str:
    normalized = str(text or "").strip().lstrip("﻿")
    for source, target in {"“": '"', "”": '"', "‘": "'", "’": "'"}.items():
        normalized = normalized.replace(source, target)
    normalized = re.sub(r"^\s*json\s*[:\-]?\s*", "", normalized, flags=re.IGNORECASE)
    return normalized.strip()


def _load_json_candidate(text: str) -> Dict[str, Any] | None:
    candidate = _normalize_json_text(text)
    if not candidate:
        return None
    for item in (candidate, re.sub(r",(\s*[}\]])", r"\1", candidate)):
        try:
            parsed = json.loads(item)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _try_parse_json(raw_text: str) -> Dict[str, Any] | None:
    text = _normalize_json_text(raw_text or "")
    if not text:
        return None
    direct = _load_json_candidate(text)
    if direct is not None:
        return direct
    fenced = re.search(r"```(?:json)?\s*(\{.*\})\s*```", text, flags=re.DOTALL | re.IGNORECASE)
    if fenced:
        parsed = _load_json_candidate(fenced.group(1))
        if parsed is not None:
            return parsed
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        return None
    return _load_json_candidate(text[start : end + 1])


def _invoke_bedrock_converse(prompt: str, *, model_id: str) -> str:
    response = _get_bedrock_client().converse(
        modelId=model_id,
        messages=[{"role": "user", "content": [{"text": prompt}]}],
        inferenceConfig={"temperature": 0.0, "topP": 0.01, "maxTokens": 700},
    )
    return _extract_text_from_converse_payload(response)


def _sanitize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    def _strings(value: Any) -> list[str]:
        if isinstance(value, str):
            return [value.strip()] if value.strip() else []
        if isinstance(value, list):
            return [str(item).strip() for item in value if item is not None and str(item).strip()]
        return []

    return {
        "schema_version": "answer_prose_v1",
        "summary_lines": _strings(payload.get("summary_lines"))[:6],
        "next_steps": _strings(payload.get("next_steps"))[:4],
        "disclaimer": str(payload.get("disclaimer") or "").strip() or DEFAULT_DISCLAIMER,
    }


def synthesize_answer_with_bedrock(
    *,
    user_prompt: str,
    grounding: Dict[str, Any],
    retry_attempts: int = 1,
    model_id: str | None = None,
    corrective_feedback: str = "",
) -> tuple[Dict[str, Any] | None, list[str], Dict[str, Any]]:
    """Ask Bedrock to phrase the grounded answer; returns (payload, errors, runtime_meta)."""
    errors: list[str] = []
    runtime_meta: Dict[str, Any] = {
        "prompt_version": RESPONSE_PROMPT_VERSION,
        "attempts": retry_attempts + 1,
        "raw_text": "",
    }
    resolved_model = (model_id or BEDROCK_MODEL_ID or "").strip()
    runtime_meta["model_id"] = resolved_model
    if not resolved_model:
        errors.append("model_not_configured")
        return None, errors, runtime_meta

    prompt_text = _build_prompt(user_prompt=user_prompt, grounding=grounding, corrective_feedback=corrective_feedback)
    for attempt in range(retry_attempts + 1):
        runtime_meta["attempt"] = attempt + 1
        try:
            raw_text = _invoke_bedrock_converse(prompt_text, model_id=resolved_model)
            runtime_meta["raw_text"] = raw_text
        except (BotoCoreError, ClientError) as exc:
            errors.append(f"bedrock_invoke_error:{type(exc).__name__}")
            logger.warning("prose_synthesis_invoke_failed attempt=%s error=%s", attempt + 1, exc)
            continue

        payload = _try_parse_json(raw_text)
        if payload is None:
            errors.append("answer_invalid_json")
            continue

        payload = _sanitize_payload(payload)
        schema_errors = validate_answer_prose_payload(payload)
        if schema_errors:
            errors.append("answer_invalid_schema")
            errors.extend(f"schema:{message}" for message in schema_errors[:3])
            continue
        return payload, errors, runtime_meta

    return None, errors, runtime_meta
