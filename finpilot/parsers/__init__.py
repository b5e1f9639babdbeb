# finpilot/parsers/__init__.py
from dataclasses import dataclass
from typing import NamedTuple, Optional

from finpilot.parsers.ai import AIParser
from finpilot.parsers.bank import BankStatementParser
from finpilot.parsers.base import BaseParser, MissingInputError
from finpilot.parsers.creditcard import CreditCardParser
from finpilot.parsers.tabular import TabularExportParser

AI = 'ai'
TABULAR = 'tabular'
CREDIT_CARD = 'credit_card'
BANK = 'bank'

CARD_FILENAME_KEYWORDS = ('tarjeta', 'visa', 'mastercard', 'amex')
CARD_CONTENT_KEYWORDS = ('limite de compra', 'pago minimo', 'vencimiento actual')

# (file name keywords, text keywords, account) tried when no configured account matches
_ACCOUNT_HEURISTICS = (
    (('galicia',), ('banco galicia',), 'Galicia'),
    (('santander',), ('santander',), 'Santander'),
    (('itau',), ('itau',), 'Itaú Uruguay'),
    (('balanz',), (), 'Balanz'),
    (('mercadopago',), ('mercadopago',), 'MercadoPago'),
    (('icbc',), ('icbc',), 'ICBC'),
)


@dataclass
class ParseOptions:
    method: str = 'regex'           # 'regex' | 'ai' | 'tabular'
    api_key: Optional[str] = None
    owner: Optional[str] = None     # stamped on tabular rows
    default_owner: Optional[str] = None


def select_parser(text, filename, options: Optional[ParseOptions] = None) -> str:
    """Decide which parser handles a document; always returns one of the parser tags."""
    options = options or ParseOptions()
    if options.method == AI:
        return AI
    if options.method == TABULAR:
        return TABULAR

    low_name = (filename or '').lower()
    if any(k in low_name for k in CARD_FILENAME_KEYWORDS):
        return CREDIT_CARD

    low_text = (text or '').lower()
    if any(k in low_text for k in CARD_CONTENT_KEYWORDS):
        return CREDIT_CARD

    return BANK


class AccountMatch(NamedTuple):
    account: Optional[str]
    owner: Optional[str] = None


def detect_account(text, filename, accounts=None) -> AccountMatch:
    """
    Work out which account a document belongs to.

    Configured accounts win when one of their keywords appears in the file
    name or the text; otherwise a few well-known institutions are recognised.
    """
    low_name = (filename or '').lower()
    low_text = (text or '').lower()
    for account in accounts or ():
        if any(k in low_name or k in low_text for k in account.keywords):
            return AccountMatch(account.name, account.owner)

    for name_keys, text_keys, account in _ACCOUNT_HEURISTICS:
        if any(k in low_name for k in name_keys) or any(k in low_text for k in text_keys):
            return AccountMatch(account)
    return AccountMatch(None)


def get_parser(text, filename, card_mappings=None, options: Optional[ParseOptions] = None) -> BaseParser:
    options = options or ParseOptions()
    kind = select_parser(text, filename, options)
    if kind == AI:
        return AIParser(text, options.api_key, card_mappings, default_owner=options.default_owner)
    if kind == TABULAR:
        return TabularExportParser(text, card_mappings, owner=options.owner,
                                   source_name=filename or 'Money Manager Import')
    if kind == CREDIT_CARD:
        return CreditCardParser(text, card_mappings, default_owner=options.default_owner)
    return BankStatementParser(text, card_mappings)


__all__ = [
    'AI', 'BANK', 'CREDIT_CARD', 'TABULAR',
    'AIParser', 'BankStatementParser', 'CreditCardParser', 'TabularExportParser',
    'AccountMatch', 'MissingInputError', 'ParseOptions',
    'detect_account', 'get_parser', 'select_parser',
]
