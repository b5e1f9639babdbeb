# finpilot/core/models.py
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional


class TxType:
    REAL_INCOME = "real_income"
    REAL_EXPENSE = "real_expense"
    INTERNAL_TRANSFER = "internal_transfer"
    EXCLUDED = "excluded"
    PAYMENT = "payment"

    # Raw tags emitted by parsers before classification
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


DEFAULT_CURRENCY = "ARS"
CURRENCIES = ("ARS", "USD")


@dataclass
class Transaction:
    date: str                      # DD/MM/YYYY
    description: str
    amount: float
    currency: str = DEFAULT_CURRENCY
    owner: Optional[str] = None
    type: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    original_type: Optional[str] = None
    installment: Optional[int] = None
    total_installments: Optional[int] = None
    is_installment: bool = False
    payment_method: Optional[str] = None
    bank: Optional[str] = None
    card_brand: Optional[str] = None
    account: Optional[str] = None
    source_file: Optional[str] = None
    original_line: Optional[str] = None
    is_extraordinary: bool = False
    accrual_period: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def as_date(self) -> date:
        return datetime.strptime(self.date, "%d/%m/%Y").date()


@dataclass
class CardMapping:
    last4: str
    owner: str

    @classmethod
    def from_dict(cls, data):
        return cls(last4=str(data["last4"]).strip(), owner=str(data["owner"]).strip())


@dataclass
class Account:
    """A configured account recognised by keywords in a file name or its text."""
    name: str
    keywords: List[str] = field(default_factory=list)
    owner: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        keywords = data.get("keywords") or []
        if isinstance(keywords, str):
            keywords = keywords.split(",")
        return cls(
            name=str(data["name"]).strip(),
            keywords=[str(k).strip().lower() for k in keywords if str(k).strip()],
            owner=data.get("owner") or None,
        )


@dataclass
class RuleCondition:
    field: str
    operator: str
    value: object


@dataclass
class RuleAction:
    category: str
    subcategory: Optional[str] = None
    type: Optional[str] = None


@dataclass
class CategorizationRule:
    condition: RuleCondition
    action: RuleAction
    enabled: bool = True

    @classmethod
    def from_dict(cls, data):
        """Build a rule from its stored mapping form.

        Expected shape::

            {"condition": {"field": "description", "operator": "contains", "value": "netflix"},
             "action": {"category": "Entretenimiento", "subcategory": "Streaming"},
             "enabled": true}
        """
        cond = data.get("condition")
        action = data.get("action")
        if not cond or not action:
            raise ValueError(f"Rule requires 'condition' and 'action': {data}")
        return cls(
            condition=RuleCondition(
                field=cond.get("field", "description"),
                operator=cond.get("operator", "contains"),
                value=cond.get("value"),
            ),
            action=RuleAction(
                category=action.get("category"),
                subcategory=action.get("subcategory"),
                type=action.get("type"),
            ),
            enabled=data.get("enabled", True) is not False,
        )


@dataclass
class RecurringExpense:
    name: str
    amount: float
    currency: str
    frequency: str
    last_occurrence: str
    next_occurrence: str
    confidence: int
    linked_transaction_ids: List[str] = field(default_factory=list)
    category: Optional[str] = None
    subcategory: Optional[str] = None
    active: bool = True
