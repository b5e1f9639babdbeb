import json

import pytest

from finpilot.ai import LLMClient
from finpilot.core.models import CardMapping, TxType
from finpilot.parsers.ai import AIParser, AIParserError, MAX_PROMPT_CHARS, decode_reply
from finpilot.parsers.base import MissingInputError

STATEMENT = "VISA GALICIA\nVencimiento 15/11/2025\n09/10/2025 MERPAGO*RAPSODIA 02/06 40.000,00\n"


class ScriptedProvider:
    """Returns canned replies per model; an Exception instance is raised instead."""

    def __init__(self, replies):
        self.replies = replies
        self.calls = []

    def generate(self, messages, model=None):
        self.calls.append((model, messages))
        reply = self.replies.get(model, RuntimeError(f"model {model} not found"))
        if isinstance(reply, Exception):
            raise reply
        return reply


GOOD_REPLY = "```json\n" + json.dumps({
    "statementDate": "15/11/2025",
    "transactions": [
        {"date": "09/10/2025", "description": "MERPAGO*RAPSODIA", "amount": -40000.0,
         "currency": "ARS", "owner": "Jesica", "type": "expense",
         "installment": 2, "totalInstallments": 6},
        {"date": "10/10/2025", "description": "SU PAGO", "amount": 15000, "type": "payment"},
        {"date": "11/10/2025", "description": "", "amount": -5},
        {"date": "12/10/2025", "description": "SIN MONTO"},
        {"description": "SIN FECHA", "amount": -1},
        "not an object",
    ],
}) + "\n```"


def test_missing_api_key_fails_before_any_call():
    with pytest.raises(MissingInputError):
        AIParser(STATEMENT, api_key=None).parse()


def test_near_empty_text_fails_fast():
    provider = ScriptedProvider({})
    with pytest.raises(MissingInputError):
        AIParser("  abc ", client=LLMClient(provider)).parse()
    assert provider.calls == []


def test_falls_through_models_until_one_succeeds():
    provider = ScriptedProvider({
        "m1": RuntimeError("404 model not found"),
        "m2": "this is not json",
        "m3": GOOD_REPLY,
    })
    parser = AIParser(STATEMENT, client=LLMClient(provider), models=["m1", "m2", "m3", "m4"])
    txs = parser.parse()

    assert [c[0] for c in provider.calls] == ["m1", "m2", "m3"]
    assert len(txs) == 2
    purchase, payment = txs
    assert purchase.date == "09/11/2025"
    assert purchase.installment == 2
    assert purchase.total_installments == 6
    assert purchase.is_installment
    assert purchase.owner == "Jesica"
    assert purchase.type == TxType.EXPENSE
    assert payment.type == TxType.EXCLUDED
    assert payment.original_type == TxType.PAYMENT
    assert payment.currency == "ARS"


def test_all_models_failing_reports_last_error():
    provider = ScriptedProvider({"a": RuntimeError("quota"), "b": ValueError("boom")})
    parser = AIParser(STATEMENT, client=LLMClient(provider), models=["a", "b", "a"])
    with pytest.raises(AIParserError) as excinfo:
        parser.parse()
    assert "API key" in str(excinfo.value)
    assert "boom" in str(excinfo.value)
    # duplicates in the model list are tried once
    assert [c[0] for c in provider.calls] == ["a", "b"]


def test_missing_transactions_field_is_a_failed_attempt():
    provider = ScriptedProvider({"a": json.dumps({"statementDate": "15/11/2025"})})
    with pytest.raises(AIParserError):
        AIParser(STATEMENT, client=LLMClient(provider), models=["a"]).parse()


def test_bare_array_reply_and_card_mapping_owner():
    reply = json.dumps([{"date": "01/10/2025", "description": "COMPRA 4321", "amount": "-1.000,00"}])
    provider = ScriptedProvider({"a": reply})
    parser = AIParser(STATEMENT, client=LLMClient(provider), models=["a"],
                      card_mappings=[CardMapping("4321", "Fernando")])
    [tx] = parser.parse()
    assert tx.amount == -1000.0
    assert tx.owner == "Fernando"


def test_prompt_is_truncated():
    provider = ScriptedProvider({"a": "[]"})
    AIParser("x" * (MAX_PROMPT_CHARS + 5000), client=LLMClient(provider), models=["a"]).parse()
    _, messages = provider.calls[0]
    content = messages[-1]["content"]
    assert "x" * MAX_PROMPT_CHARS in content
    assert "x" * (MAX_PROMPT_CHARS + 1) not in content


def test_decode_reply_rejects_scalar():
    with pytest.raises(ValueError):
        decode_reply("42")
