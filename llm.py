"""
Gemini access through langchain, with a model fallback chain.

Each call walks its chain until one model answers:
  - 429 / RESOURCE_EXHAUSTED → next model
  - "unsupported feature" 400s (system instructions, JSON mode) → next model
  - anything else → raised to the caller

Gemma models take neither SystemMessage nor JSON mode, so for them the
system prompt is folded into the user turn and JSON is parsed by hand.
"""

from __future__ import annotations

import os
import re
import json
import logging

from dotenv import load_dotenv
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_core.messages import HumanMessage, SystemMessage

from config import QuestConfig

load_dotenv()

logger = logging.getLogger(__name__)

_llm_cache: dict[tuple[str, float], ChatGoogleGenerativeAI] = {}


def get_llm(model: str, temperature: float = 0.2) -> ChatGoogleGenerativeAI:
    """Get or create an LLM instance for ``model``."""
    key = (model, temperature)
    if key not in _llm_cache:
        _llm_cache[key] = ChatGoogleGenerativeAI(
            model=model,
            google_api_key=os.getenv("GOOGLE_API_KEY"),
            temperature=temperature,
            max_retries=1,  # the chain is the retry policy
        )
    return _llm_cache[key]


def _is_fallback_error(err_str: str) -> bool:
    if "429" in err_str or "RESOURCE_EXHAUSTED" in err_str:
        return True
    return "400" in err_str and ("Developer instruction" in err_str or "JSON mode" in err_str)


async def invoke_with_fallback(
    messages,
    schema=None,
    models: list[str] | None = None,
    cfg: QuestConfig | None = None,
):
    """
    Invoke the first model in ``models`` that is not rate-limited.

    With a pydantic ``schema`` the result is a validated instance of it;
    otherwise the raw AIMessage.
    """
    if cfg is None:
        cfg = QuestConfig()
    chain = models or cfg.model_chain

    last_error = None
    for model_name in chain:
        try:
            llm = get_llm(model_name, cfg.temperature)
            is_gemma = "gemma" in model_name.lower()

            msgs = merge_system_into_user(messages) if is_gemma else messages

            if schema and not is_gemma:
                structured = llm.with_structured_output(schema)
                result = await structured.ainvoke(msgs)
                if result is None:
                    raise ValueError(f"{model_name} returned no structured output")
            elif schema and is_gemma:
                json_instruction = (
                    f"\n\nIMPORTANT: Respond ONLY with valid JSON matching this schema, "
                    f"no markdown fences, no explanation:\n"
                    f"{json.dumps(schema.model_json_schema())}\n"
                )
                patched = list(msgs)
                patched[-1] = _append_text(patched[-1], json_instruction)
                raw_result = await llm.ainvoke(patched)
                result = parse_json_response(content_text(raw_result), schema)
            else:
                result = await llm.ainvoke(msgs)

            logger.info(f"Using model: {model_name}")
            return result
        except Exception as e:
            if _is_fallback_error(str(e)):
                logger.warning(f"{model_name} unavailable ({str(e)[:80]}), trying fallback...")
                last_error = e
                continue
            raise
    raise last_error or RuntimeError("All models exhausted")


def content_text(message) -> str:
    """Plain text of an AIMessage whose content may be a list of parts."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def parse_json_response(text: str, schema=None):
    """Parse JSON from raw LLM text, tolerating ```json fences and chatter."""
    cleaned = re.sub(r"```(?:json)?\s*", "", text).strip()
    cleaned = re.sub(r"```\s*$", "", cleaned).strip()

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"(\{.*\}|\[.*\])", cleaned, re.DOTALL)
        if not match:
            raise ValueError(f"Could not parse JSON from model response: {text[:200]}")
        data = json.loads(match.group(1))

    if schema is None:
        return data
    return schema.model_validate(data)


def _append_text(message, text: str) -> HumanMessage:
    if isinstance(message.content, str):
        return HumanMessage(content=message.content + text)
    return HumanMessage(content=list(message.content) + [{"type": "text", "text": text}])


def merge_system_into_user(messages) -> list:
    """Merge SystemMessage into the next HumanMessage for models without system instructions."""
    merged = []
    system_content = ""
    for msg in messages:
        if isinstance(msg, SystemMessage):
            system_content += msg.content + "\n\n"
        elif isinstance(msg, HumanMessage) and system_content:
            if isinstance(msg.content, str):
                merged.append(HumanMessage(content=system_content + msg.content))
            else:
                merged.append(
                    HumanMessage(content=[{"type": "text", "text": system_content}] + list(msg.content))
                )
            system_content = ""
        else:
            merged.append(msg)
    return merged
