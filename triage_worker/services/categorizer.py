from __future__ import annotations

import json
import logging
import os
import re
import ssl
import time
from typing import Any, Dict, List, Mapping, Optional, Protocol
from urllib import error, request

from ..config import Settings
from ..errors import CategorizerFailure
from ..models.categorize import CategorizationResult
from ..state import State

log = logging.getLogger("app.categorize")

LABELS = ("important", "noise", "uncertain")

# Keyword fallback table. Matching is a lower-case substring test; important wins over noise.
IMPORTANT_KEYWORDS = ("revenue", "action item", "deadline", "results", "focus", "expanding")
NOISE_KEYWORDS = ("weather", "coffee", "um", "really")

_SENTENCE_SPLIT = re.compile(r"[.!?]+")

PROMPT_TEMPLATE = """Analyze the following transcript and categorize each sentence or phrase as:
- Important: Key information, decisions, action items, valuable insights, specific data
- Noise: Filler words, casual conversation, unimportant chatter, "um", "uh", weather talk
- Uncertain: Content that could be either important or noise

Transcript: "{transcript}"

You MUST respond with valid JSON in this exact format:
{{"important": ["sentence1", "sentence2"], "noise": ["sentence3"], "uncertain": ["sentence4"]}}

Do not include any other text, only the JSON response."""


class Categorizer(Protocol):
    def categorize(self, transcript: str, timeout_s: float) -> Mapping[str, Any]: ...


def _http_post(url: str, headers: Dict[str, str], data: Dict[str, Any], timeout: float = 40) -> Dict[str, Any]:
    body = json.dumps(data).encode("utf-8")
    hdrs = {"User-Agent": "triage-worker/1.0 python-urllib", "Content-Type": "application/json", **headers}
    req = request.Request(url, data=body, headers=hdrs, method="POST")
    # Be tolerant of environments with custom SSL; allow opt-out verify
    if os.getenv("WORKER_SSL_NO_VERIFY"):
        ctx = ssl._create_unverified_context()  # type: ignore[attr-defined]
    else:
        ctx = ssl.create_default_context()
    try:
        with request.urlopen(req, context=ctx, timeout=timeout) as resp:
            raw = resp.read()
            return json.loads(raw.decode("utf-8"))
    except error.HTTPError as e:
        try:
            payload = e.read().decode("utf-8")
        except Exception:
            payload = str(e)
        raise CategorizerFailure(f"HTTP {e.code}: {payload}")
    except (error.URLError, TimeoutError, OSError) as e:
        raise CategorizerFailure(f"request to {url} failed: {e}")
    except ValueError as e:
        raise CategorizerFailure(f"invalid JSON from {url}: {e}")


def _try_parse_json(s: str) -> Optional[Dict[str, Any]]:
    """Attempt to extract and parse a JSON object from the model output.
    Tries whole string first, then searches for the first {...} block.
    """
    s = s.strip()
    try:
        obj = json.loads(s)
        if isinstance(obj, dict):
            return obj
    except ValueError:
        pass
    start = s.find("{")
    end = s.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            obj = json.loads(s[start : end + 1])
            if isinstance(obj, dict):
                return obj
        except ValueError:
            return None
    return None


def build_prompt(transcript: str) -> str:
    return PROMPT_TEMPLATE.format(transcript=transcript)


class OllamaCategorizer:
    def __init__(self, url: str = "http://localhost:11434", model: str = "llama3.2:3b"):
        self.url = url.rstrip("/")
        self.model = model

    def categorize(self, transcript: str, timeout_s: float) -> Mapping[str, Any]:
        res = _http_post(
            f"{self.url}/api/generate",
            headers={},
            data={"model": self.model, "prompt": build_prompt(transcript), "stream": False, "format": "json"},
            timeout=timeout_s,
        )
        obj = _try_parse_json(str(res.get("response") or ""))
        if obj is None:
            raise CategorizerFailure("ollama response is not a JSON object")
        return obj


class ChatCompletionsCategorizer:
    """OpenAI-compatible ``/chat/completions`` (OpenAI or Groq)."""

    def __init__(self, base_url: str, api_key: str, model: str, name: str = "openai"):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.name = name

    def categorize(self, transcript: str, timeout_s: float) -> Mapping[str, Any]:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": "You sort transcript sentences. Respond with JSON only."},
                {"role": "user", "content": build_prompt(transcript)},
            ],
            "temperature": 0.1,
        }
        res = _http_post(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}"},
            data=payload,
            timeout=timeout_s,
        )
        try:
            content = res["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise CategorizerFailure(f"{self.name} response missing message content")
        obj = _try_parse_json(str(content or ""))
        if obj is None:
            raise CategorizerFailure(f"{self.name} response is not a JSON object")
        return obj


class ChainCategorizer:
    """Try each categorizer in turn; the first success wins."""

    def __init__(self, members: List[Categorizer]):
        self.members = members

    def categorize(self, transcript: str, timeout_s: float) -> Mapping[str, Any]:
        deadline = time.monotonic() + timeout_s
        errors: List[str] = []
        for member in self.members:
            left = deadline - time.monotonic()
            if left <= 0:
                break
            try:
                return member.categorize(transcript, left)
            except CategorizerFailure as e:
                errors.append(str(e))
        raise CategorizerFailure("; ".join(errors) or "no categorizer available")


def _openai(settings: Settings) -> Optional[ChatCompletionsCategorizer]:
    key = os.getenv("OPENAI_API_KEY")
    if not key:
        return None
    base = os.getenv("OPENAI_API_BASE") or "https://api.openai.com/v1"
    return ChatCompletionsCategorizer(base, key, settings.openai_model, name="openai")


def _groq(settings: Settings) -> Optional[ChatCompletionsCategorizer]:
    key = os.getenv("GROQ_API_KEY")
    if not key:
        return None
    base = os.getenv("GROQ_API_BASE") or "https://api.groq.com/openai/v1"
    return ChatCompletionsCategorizer(base, key, settings.groq_model, name="groq")


def build_categorizer(settings: Settings) -> Optional[Categorizer]:
    """Primary categorizer for the configured provider, or None for keyword-only mode."""
    provider = settings.categorizer.strip().lower()
    if provider == "off":
        return None
    ollama = OllamaCategorizer(settings.ollama_url, settings.ollama_model)
    if provider == "ollama":
        return ollama
    if provider == "openai":
        return _openai(settings)
    if provider == "groq":
        return _groq(settings)
    # auto: hosted providers with a key, then local ollama
    members = [c for c in (_openai(settings), _groq(settings)) if c is not None]
    members.append(ollama)
    return members[0] if len(members) == 1 else ChainCategorizer(members)


# ------------------------------- Validation -------------------------------
def validate_categorization(obj: Any) -> CategorizationResult:
    """Accept only ``{"important": [str], "noise": [str], "uncertain": [str]}``."""
    if not isinstance(obj, Mapping):
        raise CategorizerFailure("categorization is not an object")
    lists: Dict[str, List[str]] = {}
    seen: Dict[str, str] = {}
    for label in LABELS:
        items = obj.get(label)
        if not isinstance(items, list):
            raise CategorizerFailure(f"'{label}' missing or not a list")
        clean: List[str] = []
        for item in items:
            if not isinstance(item, str):
                raise CategorizerFailure(f"'{label}' contains a non-string item")
            text = item.strip()
            if not text:
                continue
            other = seen.get(text)
            if other is not None and other != label:
                raise CategorizerFailure(f"fragment appears in both '{other}' and '{label}'")
            seen[text] = label
            clean.append(text)
        lists[label] = clean
    return CategorizationResult(**lists)


# -------------------------------- Fallback --------------------------------
def split_sentences(transcript: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(transcript) if s.strip()]


def classify_sentence(sentence: str) -> str:
    lower = sentence.lower()
    if any(k in lower for k in IMPORTANT_KEYWORDS):
        return "important"
    if any(k in lower for k in NOISE_KEYWORDS):
        return "noise"
    return "uncertain"


def fallback_categorize(transcript: str) -> CategorizationResult:
    buckets: Dict[str, List[str]] = {label: [] for label in LABELS}
    for sentence in split_sentences(transcript or ""):
        buckets[classify_sentence(sentence)].append(sentence)
    return CategorizationResult(**buckets)


# --------------------------------- Adapter --------------------------------
def _primary(state: State, transcript: str) -> CategorizationResult:
    categorizer = state.categorizer
    if categorizer is None:
        raise CategorizerFailure("no categorizer configured")
    timeout_s = state.settings.categorize_timeout_s
    limiter = state.categorize_limiter
    if limiter is None:
        return validate_categorization(categorizer.categorize(transcript, timeout_s))

    start = time.monotonic()
    if not limiter.acquire(timeout=timeout_s):
        raise CategorizerFailure("categorizer busy")
    try:
        left = timeout_s - (time.monotonic() - start)
        if left <= 0:
            raise CategorizerFailure("categorizer busy")
        return validate_categorization(categorizer.categorize(transcript, left))
    finally:
        limiter.release()


def categorize_with_source(state: State, transcript: str) -> tuple[CategorizationResult, str]:
    """Like :func:`categorize` but also reports ``"model"`` or ``"fallback"``."""
    try:
        return _primary(state, transcript), "model"
    except CategorizerFailure as e:
        log.warning(f"categorizer failed, using keyword fallback: {e.details}")
    except Exception:
        log.exception("categorizer crashed, using keyword fallback")
    return fallback_categorize(transcript), "fallback"


def categorize(state: State, transcript: str) -> CategorizationResult:
    return categorize_with_source(state, transcript)[0]
