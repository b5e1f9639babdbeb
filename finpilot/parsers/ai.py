# finpilot/parsers/ai.py
import json
import logging
from typing import List, Optional, Sequence

from finpilot.ai import GeminiProvider, LLMClient, strip_code_fences
from finpilot.core.models import CURRENCIES, DEFAULT_CURRENCY, Transaction, TxType
from finpilot.core.normalize import clean_description, is_valid_amount, normalize_date, parse_amount
from finpilot.parsers.base import BaseParser, MissingInputError
from finpilot.parsers.creditcard import anchor_to_statement

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 30000
MIN_TEXT_CHARS = 10

DEFAULT_MODELS = (
    "gemini-2.5-flash",
    "gemini-2.5-pro",
    "gemini-2.0-flash",
    "gemini-2.5-flash-latest",
    "gemini-2.5-flash-001",
    "gemini-2.5-flash-8b",
    "gemini-1.0-pro",
)

_INSTRUCTIONS = """\
Act as a financial data parser. Extract every transaction from the statement
text below and answer with strict JSON only.

Instructions:
1. Owners: a footer such as "Total Consumos de NAME" or "TOTAL ADICIONAL DE NAME"
   means the transactions above it (up to the previous subtotal) belong to NAME.
   If a block has no owner indication, leave "owner" as null.
2. Dates: return DD/MM/YYYY. Convert textual dates like "09-Oct-25".
3. Installments: look for "NN/NN" anywhere on the raw line
   (e.g. "MERPAGO*RAPSODIA 02/06 04982" -> installment 2, totalInstallments 6)
   and keep it out of the description.
4. Amounts: negative for expenses, positive for payments and credits.
   Currency is ARS or USD.
5. Ignore SUBTOTAL, SALDO ANTERIOR, SU PAGO and TASAS lines.
6. Report the statement "Vencimiento" or "Cierre" date as "statementDate".

Output format:
{
  "statementDate": "DD/MM/YYYY",
  "transactions": [
    {"date": "09/10/2025", "description": "MERPAGO*RAPSODIA", "amount": -40000.00,
     "currency": "ARS", "owner": null, "type": "expense",
     "installment": 2, "totalInstallments": 6}
  ]
}
"""


class AIParserError(RuntimeError):
    """Every model in the fallback list failed."""


def build_messages(text: str) -> List[dict]:
    document = text[:MAX_PROMPT_CHARS].replace('`', "'")
    return [
        {"role": "system", "content": _INSTRUCTIONS},
        {"role": "user", "content": f'Input text:\n"""\n{document}\n"""'},
    ]


def decode_reply(reply: str):
    """Return (statement_date, entries) from a model reply, raising ValueError when malformed."""
    parsed = json.loads(strip_code_fences(reply))
    if isinstance(parsed, list):
        return None, parsed
    if not isinstance(parsed, dict) or not isinstance(parsed.get('transactions'), list):
        raise ValueError("response has no 'transactions' array")
    return parsed.get('statementDate'), parsed['transactions']


def _to_int(value) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


class AIParser(BaseParser):
    """
    Delegates extraction to a text-generation service.

    Models are tried in order until one returns a usable JSON reply; any
    failure of an attempt (service error or malformed reply) moves on to the
    next model. Entries lacking a valid date, description or amount are dropped.
    """

    def __init__(self, text, api_key=None, card_mappings=None, client: LLMClient | None = None,
                 models: Sequence[str] = DEFAULT_MODELS, default_owner=None):
        super().__init__(text, card_mappings)
        self.api_key = api_key
        self.client = client
        self.models = list(dict.fromkeys(models))
        self.default_owner = default_owner

    def parse(self) -> List[Transaction]:
        if self.client is None and not self.api_key:
            raise MissingInputError("Gemini API key is not configured. Set it in the settings.")
        if len(self.text.strip()) < MIN_TEXT_CHARS:
            raise MissingInputError(
                "The document looks empty or is a scanned image without selectable text. "
                "Paste the text manually or use a PDF with digital text."
            )
        if not self.models:
            raise MissingInputError("No AI models configured.")

        client = self.client or LLMClient(GeminiProvider(api_key=self.api_key))
        messages = build_messages(self.text)

        last_error = None
        for model in self.models:
            logger.info("Trying AI model %s", model)
            try:
                statement_date, entries = decode_reply(client.chat(messages, model=model))
            except Exception as e:
                logger.warning("AI model %s failed: %s", model, e)
                last_error = e
                continue
            return self.accept_entries(entries, statement_date)

        raise AIParserError(
            "AI analysis failed (all models failed). Verify your API key. "
            f"Details: {last_error}"
        )

    def accept_entries(self, entries, statement_date=None) -> List[Transaction]:
        statement_date = normalize_date(statement_date) if statement_date else None
        transactions = []
        for entry in entries:
            tx = self.validate_entry(entry, statement_date)
            if tx is None:
                logger.warning("Dropping incomplete AI transaction: %r", entry)
                continue
            transactions.append(tx)
        return transactions

    def validate_entry(self, entry, statement_date) -> Optional[Transaction]:
        if not isinstance(entry, dict):
            return None

        date = normalize_date(entry.get('date'))
        description = clean_description(str(entry.get('description') or ''))
        amount = entry.get('amount')
        if isinstance(amount, str):
            amount = parse_amount(amount)
        if date is None or not description or not is_valid_amount(amount):
            return None

        currency = str(entry.get('currency') or DEFAULT_CURRENCY).upper()
        if currency not in CURRENCIES:
            currency = DEFAULT_CURRENCY

        installment = _to_int(entry.get('installment'))
        total = _to_int(entry.get('totalInstallments'))
        if installment and statement_date:
            date = anchor_to_statement(date, statement_date)

        owner = entry.get('owner') or None
        if owner is None:
            mapping = self.mapping_in(description)
            owner = mapping.owner if mapping else self.default_owner

        tx = Transaction(
            date=date,
            description=description,
            amount=float(amount),
            currency=currency,
            owner=owner,
            original_line=description,
            payment_method='Tarjeta Crédito',
        )
        if installment:
            tx.installment = installment
            tx.total_installments = total
            tx.is_installment = True

        if str(entry.get('type', '')).lower() == TxType.PAYMENT:
            tx.type = TxType.EXCLUDED
            tx.original_type = TxType.PAYMENT
        else:
            tx.type = TxType.EXPENSE if tx.amount < 0 else TxType.INCOME
        return tx
