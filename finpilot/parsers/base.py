# finpilot/parsers/base.py
import re
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from finpilot.core.models import CardMapping, DEFAULT_CURRENCY, Transaction
from finpilot.core.normalize import AMOUNT_RX, DATE_RX, clean_description, normalize_date


class MissingInputError(ValueError):
    """Raised before any work when a document is empty or a required setting is missing."""


class BaseParser(ABC):
    """Common state for statement parsers: the raw text, its lines and card mappings."""

    def __init__(self, text: str, card_mappings: Optional[Iterable[CardMapping]] = None):
        self.text = text or ''
        self.lines = self.text.split('\n')
        self.card_mappings = list(card_mappings or [])

    @abstractmethod
    def parse(self) -> List[Transaction]:
        """
        Return Transaction instances in document order.
        A line that cannot be parsed is skipped, never fatal.
        """

    def create_transaction(self, date, description, amount, original_line, currency=DEFAULT_CURRENCY, **extra):
        normalized = normalize_date(date)
        if normalized is None:
            return None
        return Transaction(
            date=normalized,
            description=clean_description(description),
            amount=amount,
            currency=currency,
            original_line=original_line,
            **extra,
        )

    def mapping_in(self, text: str) -> Optional[CardMapping]:
        """Return the first card mapping whose last 4 digits appear as a standalone number in text.

        Dates and amounts are blanked out first, so a year or an amount such as
        2025,00 never reads as a card number.
        """
        text = AMOUNT_RX.sub(" ", DATE_RX.sub(" ", text or ""))
        for mapping in self.card_mappings:
            if mapping.last4 and re.search(rf"(?<!\d){re.escape(mapping.last4)}(?!\d)", text):
                return mapping
        return None
