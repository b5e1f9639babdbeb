import json

from finpilot.ai import LLMClient, SUGGESTION_BATCH_SIZE, suggest_categories, suggest_fallback_categories
from finpilot.core.models import CategorizationRule, Transaction

CATEGORIES = {
    "Comida y Bebida": ["Kiosco"],
    "Compras": [],
    "Entretenimiento": ["Streaming"],
}


class DummyProvider:
    def __init__(self, replies):
        self.replies = list(replies)
        self.prompts = []

    def generate(self, messages, model=None):
        self.prompts.append(messages)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def tx(desc, category=None, subcategory=None):
    return Transaction(date="01/10/2025", description=desc, amount=-100.0,
                       category=category, subcategory=subcategory)


def test_rules_first_then_model_suggestions():
    rules = [CategorizationRule.from_dict({
        "condition": {"field": "description", "operator": "contains", "value": "netflix"},
        "action": {"category": "Entretenimiento"},
    })]
    reply = json.dumps([
        {"index": 0, "category": "Comida y Bebida", "subcategory": "Kiosco", "confidence": 0.9},
        {"index": 1, "category": "Inventada", "subcategory": "X"},
        {"index": 9, "category": "Compras"},
    ])
    provider = DummyProvider([reply])
    txs = [tx("NETFLIX"), tx("KIOSCO"), tx("LIBRERIA"), tx("COTO", "Supermercado", "Supermercado")]

    result = suggest_categories(txs, CATEGORIES, rules, client=LLMClient(provider))

    assert [(t.category, t.subcategory) for t in result] == [
        ("Entretenimiento", "Otros"),
        ("Comida y Bebida", "Kiosco"),
        (None, None),
        ("Supermercado", "Supermercado"),
    ]
    assert len(provider.prompts) == 1
    user_prompt = provider.prompts[0][1]["content"]
    assert '0: "KIOSCO"' in user_prompt
    assert "NETFLIX" not in user_prompt


def test_missing_subcategory_becomes_otros():
    provider = DummyProvider(['```json\n[{"index": 0, "category": "Compras"}]\n```'])
    [result] = suggest_categories([tx("LIBRERIA")], CATEGORIES, client=LLMClient(provider))
    assert (result.category, result.subcategory) == ("Compras", "Otros")


def test_failed_batch_is_skipped_and_others_still_apply():
    txs = [tx(f"COMERCIO {i}") for i in range(SUGGESTION_BATCH_SIZE * 2 + 5)]
    all_compras = lambda n: json.dumps([{"index": i, "category": "Compras"} for i in range(n)])
    provider = DummyProvider([
        RuntimeError("quota exceeded"),
        "not json at all",
        all_compras(5),
    ])

    result = suggest_categories(txs, CATEGORIES, client=LLMClient(provider))

    assert len(provider.prompts) == 3
    assert all(t.category is None for t in result[:SUGGESTION_BATCH_SIZE * 2])
    assert all(t.category == "Compras" for t in result[SUGGESTION_BATCH_SIZE * 2:])


def test_nothing_pending_makes_no_call():
    provider = DummyProvider([])
    txs = [tx("COTO", "Supermercado", "Supermercado")]
    assert suggest_categories(txs, CATEGORIES, client=LLMClient(provider)) == txs
    assert provider.prompts == []


def test_fallback_suggestions_only_touch_varios_rows():
    provider = DummyProvider(['[{"index": 0, "category": "Compras", "subcategory": "Libros"}]'])
    txs = [tx("COTO", "Supermercado", "Supermercado"), tx("LIBRERIA", "Varios", "Varios"),
           tx("RARO", "Varios", "Varios")]

    result = suggest_fallback_categories(txs, ["Supermercado", "Compras", "Varios"],
                                         client=LLMClient(provider))

    assert [(t.category, t.subcategory) for t in result] == [
        ("Supermercado", "Supermercado"),
        ("Compras", "Libros"),
        ("Varios", "Varios"),
    ]
    assert "Varios:" not in provider.prompts[0][1]["content"]
