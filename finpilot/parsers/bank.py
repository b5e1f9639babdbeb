# finpilot/parsers/bank.py
import logging
import math

from finpilot.core.models import TxType
from finpilot.core.normalize import find_amounts, find_date, parse_amount
from finpilot.parsers.base import BaseParser

logger = logging.getLogger(__name__)


class BankStatementParser(BaseParser):
    """
    Line-oriented parser for bank account statements.

    Each line holding a date and an amount becomes one transaction; the
    description is whatever text remains once both are removed. A line that
    mentions a mapped card's last 4 digits is attributed to that card's
    owner, and becomes an internal transfer when it reads like a card payment.
    """

    def parse(self):
        transactions = []
        for line in self.lines:
            line = line.strip()
            if not line:
                continue

            date_match = find_date(line)
            if not date_match:
                continue
            rest = line[:date_match.start()] + ' ' + line[date_match.end():]
            amounts = find_amounts(rest)
            if not amounts:
                logger.debug("Date without amount, skipping line: %s", line)
                continue

            raw_amount = amounts[0].group(0)
            amount = parse_amount(raw_amount)
            if math.isnan(amount):
                logger.debug("Unparsable amount %r, skipping line: %s", raw_amount, line)
                continue

            amount_match = amounts[0]
            description = rest[:amount_match.start()] + rest[amount_match.end():]
            tx = self.create_transaction(date_match.group(0), description, amount, line)
            if tx is None:
                logger.debug("Invalid calendar date %r, skipping line: %s", date_match.group(0), line)
                continue

            mapping = self.mapping_in(tx.description)
            if mapping:
                tx.owner = mapping.owner
                upper = tx.description.upper()
                if 'PAGO' in upper or 'TARJETA' in upper:
                    tx.type = TxType.INTERNAL_TRANSFER

            transactions.append(tx)
        return transactions
