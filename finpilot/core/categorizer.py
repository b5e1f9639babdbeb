# finpilot/core/categorizer.py
import logging
import math
import re
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence

from finpilot.core.models import CategorizationRule, Transaction, TxType

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = "Varios"
DEFAULT_RULE_SUBCATEGORY = "Otros"

# Ordered: the first category with a matching keyword wins.
EXPENSE_CATEGORIES: Dict[str, List[str]] = {
    'Supermercado': ['super', 'market', 'coto', 'carrefour', 'jumbo', 'disco', 'dia', 'chino', 'almacen'],
    'Comida y Bebida': ['restaurant', 'bar', 'cafe', 'coffee', 'burger', 'pizza', 'mc donald', 'starbucks', 'rappi', 'pedidosya'],
    'Transporte': ['uber', 'cabify', 'taxi', 'nafta', 'ypf', 'shell', 'axion', 'peaje', 'estacionamiento', 'sube'],
    'Servicios': ['luz', 'gas', 'agua', 'internet', 'cable', 'telefono', 'movistar', 'personal', 'claro', 'edenor', 'metrogas', 'aysa', 'fibertel', 'telecentro'],
    'Salud': ['farmacia', 'doctor', 'medico', 'osde', 'swiss', 'galeno', 'hospital', 'clinica'],
    'Entretenimiento': ['netflix', 'spotify', 'youtube', 'cine', 'teatro', 'entrada', 'juego', 'steam', 'playstation'],
    'Compras': ['amazon', 'mercadolibre', 'shopping', 'zara', 'adidas', 'nike', 'ropa'],
    'Hogar': ['easy', 'sodimac', 'ferreteria', 'pintureria', 'muebles'],
}

CARD_PAYMENT_KEYWORDS = ('pago tarjeta', 'su pago', 'pago de tarjeta')
TRANSFER_KEYWORDS = ('transferencia', 'trf')
INVESTMENT_KEYWORDS = ('fima', 'fondo comun')
INVESTMENT_MOVES = ('suscripcion', 'rescate')
YIELD_KEYWORDS = ('renta', 'interes', 'dividendo')
CASH_KEYWORDS = ('extraccion', 'cajero', 'banelco', 'link')
SALARY_KEYWORDS = ('sueldo', 'haberes', 'honorarios')


@dataclass
class ClassificationPolicy:
    """Deployment-specific heuristics: who is excluded, who counts as family."""
    excluded_owners: List[str] = field(default_factory=list)
    excluded_phrases: List[str] = field(default_factory=list)
    family_keywords: List[str] = field(default_factory=lambda: ['propia'])
    investment_accounts: List[str] = field(default_factory=lambda: ['Balanz'])
    categories: Dict[str, List[str]] = field(default_factory=lambda: dict(EXPENSE_CATEGORIES))

    @classmethod
    def from_config(cls, cfg):
        section = cfg.get('classification') or {}
        policy = cls()
        for key in ('excluded_owners', 'excluded_phrases', 'family_keywords', 'investment_accounts'):
            if section.get(key) is not None:
                setattr(policy, key, list(section[key]))
        if cfg.get('categories'):
            policy.categories = dict(cfg['categories'])
        return policy


class Classification(NamedTuple):
    type: str
    category: str
    subcategory: str


def categorize(description, categories_map):
    """Return the first category whose keyword list matches the description."""
    name = (description or '').lower()
    for cat, keywords in categories_map.items():
        for kw in keywords or ():
            if kw.lower() in name:
                return cat
    return None


def evaluate_condition(fields, condition) -> bool:
    if condition.field not in fields or fields[condition.field] is None:
        return False
    field_value = fields[condition.field]
    op = condition.operator
    value = condition.value

    if op in ('contains', 'equals', 'startsWith', 'endsWith'):
        left = str(field_value).lower()
        right = str(value).lower()
        if op == 'contains':
            return right in left
        if op == 'equals':
            return left == right
        if op == 'startsWith':
            return left.startswith(right)
        return left.endswith(right)

    if op in ('greaterThan', 'lessThan'):
        try:
            left, right = float(field_value), float(value)
        except (TypeError, ValueError):
            return False
        if math.isnan(left) or math.isnan(right):
            return False
        return left > right if op == 'greaterThan' else left < right

    if op == 'regex':
        try:
            return re.search(str(value), str(field_value), re.I) is not None
        except re.error:
            logger.warning("Invalid regex in categorization rule: %r", value)
            return False

    return False


def _fields(description, amount, owner, account, currency):
    return {
        'description': description,
        'amount': amount,
        'owner': owner,
        'account': account,
        'currency': currency,
    }


def apply_rules(fields, rules: Optional[Sequence[CategorizationRule]]):
    """Return the action of the first enabled rule whose condition matches."""
    for rule in rules or ():
        if not rule.enabled or rule.condition is None or rule.action is None:
            continue
        if evaluate_condition(fields, rule.condition):
            return rule.action
    return None


def classify(description, amount, owner=None, account=None, rules=None,
             policy: Optional[ClassificationPolicy] = None, currency=None) -> Classification:
    """
    Assign a transaction type and category.

    Priority, first match wins: user rules, exclusion heuristics,
    internal-transfer heuristics, income heuristics, keyword table.
    """
    policy = policy or ClassificationPolicy()
    desc = (description or '').lower()

    action = apply_rules(_fields(description, amount, owner, account, currency), rules)
    if action is not None:
        subcategory = action.subcategory or DEFAULT_RULE_SUBCATEGORY
        return Classification(action.type or TxType.REAL_EXPENSE, action.category or subcategory, subcategory)

    # Exclusions
    excluded_owners = {o.lower() for o in policy.excluded_owners}
    if owner and owner.lower() in excluded_owners:
        return Classification(TxType.EXCLUDED, 'Excluido', f"Gastos {owner}")
    for phrase in policy.excluded_phrases:
        if phrase.lower() in desc:
            return Classification(TxType.EXCLUDED, 'Excluido', 'Excluido')
    if 'adicional' in desc:
        for name in policy.excluded_owners:
            if name.lower() in desc:
                return Classification(TxType.EXCLUDED, 'Excluido', f"Gastos {name}")

    # Internal transfers
    if any(k in desc for k in CARD_PAYMENT_KEYWORDS):
        return Classification(TxType.INTERNAL_TRANSFER, 'Transferencias', 'Pago Tarjeta')

    if any(k in desc for k in TRANSFER_KEYWORDS):
        if any(k.lower() in desc for k in policy.family_keywords):
            return Classification(TxType.INTERNAL_TRANSFER, 'Transferencias', 'Transferencia Familiar')

    if account in policy.investment_accounts or any(k in desc for k in INVESTMENT_KEYWORDS):
        if any(k in desc for k in INVESTMENT_MOVES):
            return Classification(TxType.INTERNAL_TRANSFER, 'Inversiones', 'Inversión')
        if any(k in desc for k in YIELD_KEYWORDS):
            return Classification(TxType.REAL_INCOME, 'Ingresos', 'Rendimientos')
        return Classification(TxType.INTERNAL_TRANSFER, 'Inversiones', 'Movimiento Inversión')

    if any(k in desc for k in CASH_KEYWORDS):
        return Classification(TxType.INTERNAL_TRANSFER, 'Transferencias', 'Retiro Efectivo')

    # Income
    if any(k in desc for k in SALARY_KEYWORDS):
        return Classification(TxType.REAL_INCOME, 'Ingresos', 'Salario/Honorarios')

    cat = categorize(description, policy.categories) or FALLBACK_CATEGORY
    return Classification(TxType.REAL_EXPENSE, cat, cat)


# Types a parser may already have settled; classification only fills categories.
_PARSER_DECIDED = (TxType.EXCLUDED, TxType.INTERNAL_TRANSFER)

_RAW_TYPES = {
    TxType.EXPENSE: TxType.REAL_EXPENSE,
    TxType.INCOME: TxType.REAL_INCOME,
    TxType.TRANSFER: TxType.INTERNAL_TRANSFER,
}


def enrich_transaction(tx: Transaction, rules=None, policy=None) -> Transaction:
    """
    Return a copy of ``tx`` with type, category and subcategory filled in.

    A matching user rule decides the category outright. Otherwise a category
    the source already carried (spreadsheet exports) is kept, and a raw
    parser tag only yields to a heuristic that found something more specific
    than a plain expense. Excluded and internal-transfer tags set by a parser
    are never overridden.
    """
    result = classify(
        tx.description, tx.amount, owner=tx.owner, account=tx.account,
        rules=rules, policy=policy, currency=tx.currency,
    )
    rule_hit = _rule_matched(tx, rules)

    tx_type = result.type
    if tx.type in _PARSER_DECIDED:
        tx_type = tx.type
    elif tx.type and result.type == TxType.REAL_EXPENSE and not rule_hit:
        tx_type = _RAW_TYPES.get(tx.type, tx.type)

    category, subcategory = result.category, result.subcategory
    if not rule_hit and tx.category:
        category, subcategory = tx.category, tx.subcategory or tx.category

    amount = tx.amount
    if tx_type == TxType.REAL_EXPENSE:
        amount = -abs(amount)
    elif tx_type == TxType.REAL_INCOME:
        amount = abs(amount)

    return replace(
        tx,
        type=tx_type,
        category=category,
        subcategory=subcategory,
        amount=amount,
    )


def transaction_fields(tx):
    return _fields(tx.description, tx.amount, tx.owner, tx.account, tx.currency)


def _rule_matched(tx, rules):
    return apply_rules(transaction_fields(tx), rules) is not None


def classify_transactions(transactions: Iterable[Transaction], rules=None, policy=None) -> List[Transaction]:
    return [enrich_transaction(tx, rules, policy) for tx in transactions]
