"""
LLM-backed executors.
"""

import json
from typing import Any

from chatflow_engine.core.models import NodeResult
from chatflow_engine.executors.base import ExecutionAborted, ExecutionContext, executor
from chatflow_engine.template.resolver import get_by_path, render_path_template

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000


def try_parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def pick_mapped(body: Any, mapping: Any) -> dict[str, Any]:
    picked: dict[str, Any] = {}
    for item in mapping or []:
        if isinstance(item, dict) and item.get("field"):
            picked[item["field"]] = get_by_path(body, item.get("path"))
    return picked


def response_text(response: Any) -> str:
    if isinstance(response, dict):
        return response.get("content") or response.get("text") or ""
    return str(response)


@executor("ai.analysis")
async def ai_analysis(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Ask the model to analyse the payload and project fields from its JSON.

    data.text is the raw answer, data.json its parsed form (None when it is
    not JSON) and data.mapped the responseMapping projection.
    """
    llm = context.services.llm
    if llm is None:
        return NodeResult.failure("LLM service not available", code="NO_LLM")

    messages = [
        {"role": "system", "content": config.get("systemPrompt") or ""},
        {"role": "user", "content": render_path_template(config.get("promptTemplate") or "", context.scope())},
    ]
    try:
        response = await context.run_abortable(
            llm.chat(
                messages,
                model=config.get("model"),
                temperature=config.get("temperature"),
                max_tokens=config.get("maxTokens"),
                tools=config.get("tools"),
            )
        )
    except ExecutionAborted:
        raise
    except Exception as e:
        context.logger.error(f"AIAnalysis failed: {e}")
        return NodeResult.failure(str(e), code="AI_ERROR", details=getattr(e, "details", None), next="error")

    text = response_text(response)
    parsed = try_parse_json(text)
    mapped = pick_mapped(parsed, config.get("responseMapping")) if parsed else {}
    return NodeResult.success({"text": text, "json": parsed, "mapped": mapped})


@executor("ai.response")
async def ai_response(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Generate a reply with the configured model.

    The user prompt is `responseTemplate` rendered over payload, memory and
    vars (placeholders without a value are kept), or the payload as JSON.
    With responseFormat "json" the answer is parsed, falling back to the
    raw text.
    """
    if not config.get("model"):
        return NodeResult.failure("Missing required configuration: model", code="INVALID_CONFIG")
    llm = context.services.llm
    if llm is None:
        return NodeResult.failure("LLM service not available", code="NO_LLM")

    template = config.get("responseTemplate") or json.dumps(context.payload, default=str)
    messages = [
        {"role": "system", "content": config.get("context") or DEFAULT_SYSTEM_PROMPT},
        {"role": "user", "content": render_path_template(template, context.scope(), keep_missing=True)},
    ]

    context.logger.info(f"Sending request to model {config['model']}")
    try:
        response = await context.run_abortable(
            llm.chat(
                messages,
                model=config["model"],
                temperature=config.get("temperature") or DEFAULT_TEMPERATURE,
                max_tokens=config.get("maxTokens") or DEFAULT_MAX_TOKENS,
            )
        )
    except ExecutionAborted:
        return NodeResult.failure("AI request was aborted", code="ABORTED")
    except Exception as e:
        context.logger.error(f"AI execution failed: {e}")
        if context.aborted:
            return NodeResult.failure("AI request was aborted", code="ABORTED")
        return NodeResult.failure(
            str(e) or "AI execution failed",
            code="AI_ERROR",
            details={"model": config.get("model"), "error": getattr(e, "details", None)},
        )

    content = response_text(response)
    parsed: Any = content
    if config.get("responseFormat") == "json":
        parsed = try_parse_json(content)
        if parsed is None:
            context.logger.warning("Failed to parse JSON response, returning raw text")
            parsed = content

    return NodeResult.success(
        {
            "response": parsed,
            "model": response.get("model") if isinstance(response, dict) else None,
            "usage": response.get("usage") if isinstance(response, dict) else None,
            "finishReason": response.get("finish_reason") if isinstance(response, dict) else None,
        }
    )


def agent_fallback(text: str) -> dict[str, Any]:
    """Structured stand-in for a model answer that is not JSON."""
    return {
        "agent_response": text,
        "field_detected": None,
        "value": None,
        "next_field": None,
        "status": "in_progress",
        "confidence": 0.5,
    }


@executor("ai.chatModel")
async def chat_model(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Conversational agent turn.

    promptTemplate is rendered over payload and memory; the answer is parsed
    as JSON, or wrapped by agent_fallback when the model replied in prose.
    """
    llm = context.services.llm
    if llm is None:
        return NodeResult.failure("LLM service not available", code="NO_LLM")

    prompt = render_path_template(
        config.get("promptTemplate") or "",
        {"payload": context.payload, "memory": context.memory},
        keep_missing=True,
    )
    messages = [
        {"role": "system", "content": config.get("systemPrompt") or DEFAULT_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]

    context.logger.info(f"Calling chat model {config.get('model') or 'default'}")
    try:
        response = await context.run_abortable(
            llm.chat(
                messages,
                model=config.get("model"),
                temperature=config.get("temperature"),
                max_tokens=config.get("maxTokens"),
                tools=config.get("tools"),
            )
        )
    except ExecutionAborted:
        raise
    except Exception as e:
        context.logger.error(f"Chat model execution failed: {e}")
        return NodeResult.failure(str(e), code="LLM_ERROR", details=getattr(e, "details", None))

    text = response_text(response) or json.dumps(response, default=str)
    parsed = try_parse_json(text)
    return NodeResult.success(parsed if parsed is not None else agent_fallback(text))
