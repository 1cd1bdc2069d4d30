from __future__ import annotations

import logging
import os
from typing import Any, Dict

from bedrock_agentcore import BedrockAgentCoreApp
from dotenv import load_dotenv

from .graph import run_agent
from .response.schemas import validate_agent_request_payload
from .router.contracts import PolicyLimits

load_dotenv()

logger = logging.getLogger(__name__)
app = BedrockAgentCoreApp()


def _authorization_from_context(context: Any | None) -> str:
    if context is None:
        return ""

    request_headers = getattr(context, "request_headers", None)
    if isinstance(request_headers, dict):
        for key, value in request_headers.items():
            if str(key).lower() == "authorization" and isinstance(value, str) and value.strip():
                return value.strip()

    request = getattr(context, "request", None)
    headers = getattr(request, "headers", None) if request is not None else None
    if headers is not None:
        value = headers.get("Authorization") or headers.get("authorization")
        if isinstance(value, str) and value.strip():
            return value.strip()

    return ""


def _resolve_user_token(payload: Dict[str, Any], context: Any | None) -> str:
    payload_token = payload.get("authorization")
    if isinstance(payload_token, str) and payload_token.strip():
        return payload_token.strip()

    context_token = _authorization_from_context(context)
    if context_token:
        return context_token

    return os.getenv("DEFAULT_USER_TOKEN", "")


@app.entrypoint
def invoke(payload: Dict[str, Any], context: Any | None = None) -> Dict[str, Any]:
    errors = validate_agent_request_payload(payload)
    if errors:
        logger.warning("invalid_request errors=%s", errors[:3])
        return {"error": {"code": "invalid_request", "details": errors}}

    limits = PolicyLimits(**payload["limits"]) if payload.get("limits") else None
    return run_agent(
        query=payload["query"],
        user_token=_resolve_user_token(payload, context),
        user_id=payload.get("user_id", "demo-user"),
        session_id=payload.get("session_id", ""),
        symbols=payload.get("symbols"),
        limits=limits,
    )


if __name__ == "__main__":
    app.run()
