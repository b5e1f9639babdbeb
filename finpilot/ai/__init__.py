import json
import logging
import os
import re
import urllib.parse
import urllib.request
from dataclasses import dataclass, replace
from typing import List, Optional, Protocol, Sequence

from huggingface_hub import InferenceClient

from finpilot.core.categorizer import FALLBACK_CATEGORY, apply_rules, transaction_fields
from finpilot.core.models import Transaction

logger = logging.getLogger(__name__)

_OLLAMA_URL = "http://localhost:11434/api/chat"
_OPENAI_URL = "https://api.openai.com/v1/chat/completions"
_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

_CODE_FENCE = re.compile(r"```(?:json)?")


class LLMProvider(Protocol):
    """A minimal protocol all concrete providers must implement."""

    def generate(self, messages: List[dict], model: Optional[str] = None) -> str:
        """Return the model reply given a list-of-dicts chat history."""


@dataclass
class LLMClient:
    """Simple client that delegates chat requests to an LLM provider."""
    provider: LLMProvider | None = None

    def __post_init__(self) -> None:
        if self.provider is None:
            self.provider = get_provider_from_env()

    def chat(self, messages: List[dict], model: Optional[str] = None) -> str:
        return self.provider.generate(messages, model=model)


# -----------------------------------------------------------------------------
# Google Gemini (generateContent REST endpoint)
# -----------------------------------------------------------------------------

@dataclass
class GeminiProvider:
    api_key: str
    model: str = "gemini-2.5-flash"
    url: str = _GEMINI_URL

    def generate(self, messages: List[dict], model: Optional[str] = None) -> str:
        # Gemini has no system role in the basic endpoint; fold everything into one user turn.
        prompt = "\n\n".join(m["content"] for m in messages)
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        target = self.url.format(model=urllib.parse.quote(model or self.model, safe=""))
        data = json.dumps(payload).encode()
        req = urllib.request.Request(target, data=data, method="POST")
        req.add_header("Content-Type", "application/json")
        req.add_header("x-goog-api-key", self.api_key)
        with urllib.request.urlopen(req) as resp:
            resp_data = json.load(resp)
        try:
            parts = resp_data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            raise RuntimeError(f"Unexpected Gemini response format: {resp_data}")
        return "".join(p.get("text", "") for p in parts).strip()


# -----------------------------------------------------------------------------
# Hugging Face Inference API provider
# -----------------------------------------------------------------------------

@dataclass
class HuggingFaceProvider:
    model: str
    token: str | None = None

    def __post_init__(self) -> None:
        self._client = InferenceClient(api_key=self.token)

    def generate(self, messages: List[dict], model: Optional[str] = None) -> str:
        out = self._client.chat_completion(messages=messages, model=model or self.model)
        return out.choices[0].message.content.strip()


# -----------------------------------------------------------------------------
# OpenAI Chat Completions provider
# -----------------------------------------------------------------------------

@dataclass
class OpenAIProvider:
    model: str
    api_key: str

    def generate(self, messages: List[dict], model: Optional[str] = None) -> str:
        payload = {"model": model or self.model, "messages": messages}
        data = json.dumps(payload).encode()
        req = urllib.request.Request(_OPENAI_URL, data=data, method="POST")
        req.add_header("Content-Type", "application/json")
        req.add_header("Authorization", f"Bearer {self.api_key}")
        with urllib.request.urlopen(req) as resp:
            resp_data = json.load(resp)
        return resp_data["choices"][0]["message"]["content"].strip()


# -----------------------------------------------------------------------------
# Ollama provider
# -----------------------------------------------------------------------------

@dataclass
class OllamaProvider:
    model: str
    url: str = _OLLAMA_URL

    def _post(self, payload: dict) -> dict:
        """Low-level helper: POST JSON and return parsed JSON with debug logs."""
        data = json.dumps(payload).encode()
        logger.debug("Ollama POST %s", self.url)
        req = urllib.request.Request(self.url, data=data, method="POST")
        req.add_header("Content-Type", "application/json")

        with urllib.request.urlopen(req) as resp:
            raw = resp.read().decode()
            logger.debug("Ollama response: %s", raw)
            return json.loads(raw)

    def generate(self, messages: List[dict], model: Optional[str] = None) -> str:
        payload = {"model": model or self.model, "messages": messages, "stream": False}
        resp_data = self._post(payload)

        # /api/chat returns either {'message': str} or {'message': {'content': str, ...}}
        msg = resp_data.get("message", "")
        if isinstance(msg, dict):
            msg = msg.get("content", "")
        if not isinstance(msg, str):
            raise RuntimeError(f"Unexpected Ollama response format: {resp_data}")
        return msg.strip()


# -----------------------------------------------------------------------------
# Helper utilities
# -----------------------------------------------------------------------------

def strip_code_fences(text: str) -> str:
    """Remove markdown ```json fences models like to wrap JSON in."""
    return _CODE_FENCE.sub("", text or "").strip()


def get_provider_from_env() -> LLMProvider:
    provider = os.environ.get("FINPILOT_LLM_PROVIDER", "gemini").lower()

    if provider == "openai":
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY not set")
        model = os.environ.get("FINPILOT_LLM_MODEL", "gpt-4o-mini")
        return OpenAIProvider(model=model, api_key=api_key)

    if provider == "ollama":
        model = os.environ.get("FINPILOT_LLM_MODEL", "phi3:mini")
        url = os.environ.get("OLLAMA_URL", _OLLAMA_URL)
        return OllamaProvider(model=model, url=url)

    if provider == "huggingface":
        token = os.environ.get("HF_API_TOKEN")
        model = os.environ.get("FINPILOT_LLM_MODEL", "Qwen/Qwen3-32B")
        return HuggingFaceProvider(model=model, token=token)

    api_key = os.environ.get("GEMINI_API_KEY")
    if not api_key:
        raise RuntimeError("GEMINI_API_KEY not set")
    model = os.environ.get("FINPILOT_LLM_MODEL", "gemini-2.5-flash")
    return GeminiProvider(api_key=api_key, model=model)


# -----------------------------------------------------------------------------
# Category suggestions for transactions neither rules nor heuristics settled
# -----------------------------------------------------------------------------

SUGGESTION_BATCH_SIZE = 20


def _category_prompt(batch: Sequence[Transaction], categories: dict) -> List[dict]:
    catalog = "\n".join(f"{name}: [{', '.join(subs or [])}]" for name, subs in categories.items())
    listing = "\n".join(
        f'{i}: "{tx.description}" - {tx.amount} {tx.currency}' for i, tx in enumerate(batch)
    )
    return [
        {
            "role": "system",
            "content": (
                "Eres un asistente de categorización financiera. Usa SOLO las categorías y "
                "subcategorías listadas. Si no hay subcategoría apropiada, usa \"Otros\". "
                "Responde SOLO con un JSON array: "
                '[{"index": 0, "category": "...", "subcategory": "...", "confidence": 0.95}]'
            ),
        },
        {"role": "user", "content": f"CATEGORÍAS EXISTENTES:\n{catalog}\n\nTRANSACCIONES:\n{listing}"},
    ]


def _accept_suggestion(item, batch, categories):
    if not isinstance(item, dict):
        return None
    index = item.get("index")
    if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(batch):
        return None
    category = item.get("category")
    if category not in categories:
        return None
    subcategory = item.get("subcategory") or "Otros"
    return index, category, subcategory


def suggest_categories(
    transactions: Sequence[Transaction],
    categories: dict,
    rules=None,
    client: LLMClient | None = None,
) -> List[Transaction]:
    """
    Fill in category/subcategory for uncategorized transactions.

    ``categories`` maps each allowed category to its subcategory names. User
    rules are applied first; whatever is still uncategorized goes to the model
    in batches. Suggestions naming an unknown category or index are dropped
    and a failed batch leaves its transactions as they were.
    """
    results = []
    pending = []
    for tx in transactions:
        action = apply_rules(transaction_fields(tx), rules)
        if action is not None:
            tx = replace(tx, category=action.category, subcategory=action.subcategory or "Otros")
        elif not tx.category or not tx.subcategory:
            pending.append(len(results))
        results.append(tx)

    if not pending:
        return results

    client = client or LLMClient()
    for start in range(0, len(pending), SUGGESTION_BATCH_SIZE):
        positions = pending[start:start + SUGGESTION_BATCH_SIZE]
        batch = [results[p] for p in positions]
        try:
            reply = client.chat(_category_prompt(batch, categories))
            suggestions = json.loads(strip_code_fences(reply))
        except Exception as e:
            logger.warning("Category suggestion batch failed: %s", e)
            continue
        if not isinstance(suggestions, list):
            logger.warning("Category suggestion reply is not a JSON array, batch skipped")
            continue
        for item in suggestions:
            accepted = _accept_suggestion(item, batch, categories)
            if accepted is None:
                logger.debug("Discarding category suggestion: %r", item)
                continue
            index, category, subcategory = accepted
            pos = positions[index]
            results[pos] = replace(results[pos], category=category, subcategory=subcategory)
    return results


def suggest_fallback_categories(
    transactions: Sequence[Transaction],
    categories: Sequence[str],
    rules=None,
    client: LLMClient | None = None,
) -> List[Transaction]:
    """Ask the model for a category on every transaction the classifier left in the fallback bucket."""
    positions = [i for i, tx in enumerate(transactions) if tx.category == FALLBACK_CATEGORY]
    if not positions:
        return list(transactions)

    cleared = [replace(transactions[i], category=None, subcategory=None) for i in positions]
    catalog = {name: [] for name in categories if name != FALLBACK_CATEGORY}
    suggested = suggest_categories(cleared, catalog, rules, client=client)

    results = list(transactions)
    for pos, tx in zip(positions, suggested):
        if tx.category:
            results[pos] = tx
    return results
