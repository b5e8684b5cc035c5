import os
import time
from dataclasses import dataclass
from typing import List, Optional

import requests

from study_api.config import (
    ADVANCED_MODEL,
    CHAT_MODEL,
    OPENAI_BASE_URL,
    OPENAI_TIMEOUT_SEC,
    TOOLS_MODEL,
    get_api_key,
)
from study_api.errors import ConfigurationError, ProviderError
from study_api.events import log_llm_event

LLM_SLOW_MS = int(os.getenv("LLM_SLOW_MS", "5000"))

MISSING_KEY_MESSAGE = "OpenAI API key is not configured"

COMMENTARY_SYSTEM_PROMPT = (
    "You are a Bible scholar and theological expert. Provide an in-depth commentary on Bible "
    "chapters with historical context, theological analysis, and practical applications. Use "
    "markdown formatting for clear section headers. Include information about key figures, "
    "themes, connections to other chapters, and historical background where relevant. Your "
    "commentary should be educational, respectful of diverse interpretations, and spiritually "
    "insightful.\n\n"
    "Structure your response with these sections (using markdown headers):\n"
    "1. ## Historical Context\n"
    "2. ## Key Themes\n"
    "3. ## Verse-by-Verse Analysis (if relevant)\n"
    "4. ## Theological Significance\n"
    "5. ## Practical Applications\n\n"
    'Always cite other relevant Bible verses using proper references, such as "John 3:16" '
    'or "Genesis 1:1".'
)

VERSE_ANALYSIS_SYSTEM_PROMPT = (
    "You are a Bible scholar specializing in detailed verse analysis. Provide comprehensive "
    "analysis of Bible verses with linguistic insights, cultural context, theological meaning, "
    "and practical applications. Structure your response with clear sections using markdown "
    "formatting. Your analysis should be educational, insightful, and respectful of various "
    "interpretations. If given a reference without the verse text, try to recall the verse "
    "content first, then analyze it.\n\n"
    "Structure your response with these sections (using markdown headers):\n"
    "1. ## Verse Text (if not provided, include the text of the reference)\n"
    "2. ## Original Language Insights\n"
    "3. ## Historical and Cultural Context\n"
    "4. ## Theological Meaning\n"
    '5. ## Related Passages (make sure to cite these as proper references, such as "John 3:16" '
    'or "Genesis 1:1")\n'
    "6. ## Practical Application\n\n"
    "Always cite other relevant Bible verses using proper references."
)


@dataclass(frozen=True)
class ToolProfile:
    name: str
    model: str
    max_tokens: int
    temperature: float
    system_prompt: Optional[str] = None


@dataclass
class Completion:
    text: str
    model: str
    usage: Optional[dict]


CHAT = ToolProfile("chat", CHAT_MODEL, 500, 0.7)
ADVANCED_CHAT = ToolProfile("chat_advanced", ADVANCED_MODEL, 800, 0.7)
COMMENTARY = ToolProfile("bible_commentary", TOOLS_MODEL, 1200, 0.6, COMMENTARY_SYSTEM_PROMPT)
VERSE_ANALYSIS = ToolProfile("verse_analyzer", TOOLS_MODEL, 1000, 0.6, VERSE_ANALYSIS_SYSTEM_PROMPT)


def require_api_key() -> str:
    api_key = get_api_key()
    if not api_key:
        raise ConfigurationError(MISSING_KEY_MESSAGE)
    return api_key


def build_commentary_messages(book: str, chapter) -> List[dict]:
    return [
        {"role": "system", "content": COMMENTARY.system_prompt},
        {
            "role": "user",
            "content": (
                f"Please provide a detailed commentary on {book} chapter {chapter}. Include "
                "historical context, key verses, themes, and interpretations. Make sure to "
                "structure your response with clear sections using markdown."
            ),
        },
    ]


def build_verse_analysis_messages(verse: str) -> List[dict]:
    return [
        {"role": "system", "content": VERSE_ANALYSIS.system_prompt},
        {
            "role": "user",
            "content": (
                f'Please analyze this Bible verse or reference: "{verse}". If this is just a '
                "reference without the full verse, please include the verse text first. Then "
                "provide detailed analysis including: original language insights if relevant, "
                "historical/cultural context, theological significance, connections to other "
                "passages, and practical applications. Structure your response with clear "
                "markdown formatting."
            ),
        },
    ]


def _error_message(res: requests.Response) -> str:
    try:
        data = res.json()
    except ValueError:
        return "Error from OpenAI API"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return "Error from OpenAI API"


def complete(profile: ToolProfile, messages: List[dict], api_key: Optional[str] = None) -> Completion:
    """Send one chat completion request and return the first choice.

    Messages are forwarded in order. A system prompt on the profile is placed
    first unless the caller already supplied one. There is a single attempt.
    """
    api_key = api_key or require_api_key()
    if profile.system_prompt and not (messages and messages[0].get("role") == "system"):
        messages = [{"role": "system", "content": profile.system_prompt}] + list(messages)

    payload = {
        "model": profile.model,
        "messages": messages,
        "max_tokens": profile.max_tokens,
        "temperature": profile.temperature,
    }
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    start = time.perf_counter()
    try:
        res = requests.post(
            f"{OPENAI_BASE_URL}/chat/completions",
            json=payload,
            headers=headers,
            timeout=OPENAI_TIMEOUT_SEC,
        )
    except requests.RequestException as exc:
        log_llm_event("llm_error", {"tool": profile.name, "model": profile.model, "error": "request_failed"})
        raise ProviderError("Failed to communicate with AI service") from exc

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    if not res.ok:
        log_llm_event(
            "llm_error",
            {"tool": profile.name, "model": profile.model, "status": res.status_code},
        )
        raise ProviderError(_error_message(res))

    try:
        data = res.json()
        text = data["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        log_llm_event("llm_error", {"tool": profile.name, "model": profile.model, "error": "malformed"})
        raise ProviderError("Malformed response from OpenAI API") from exc
    if not isinstance(text, str):
        raise ProviderError("Malformed response from OpenAI API")

    log_llm_event("llm_latency", {"tool": profile.name, "model": profile.model, "elapsed_ms": elapsed_ms})
    if elapsed_ms > LLM_SLOW_MS:
        log_llm_event("llm_slow", {"tool": profile.name, "model": profile.model, "elapsed_ms": elapsed_ms})
    return Completion(text=text, model=profile.model, usage=data.get("usage"))
