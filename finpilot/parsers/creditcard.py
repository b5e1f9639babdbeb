# finpilot/parsers/creditcard.py
import logging
import math
import re
from calendar import monthrange
from dataclasses import replace
from functools import reduce
from typing import List, NamedTuple, Optional, Tuple

from finpilot.core.models import Transaction, TxType
from finpilot.core.normalize import (
    clean_description,
    find_amounts,
    find_date,
    normalize_date,
    parse_amount,
    parse_date,
    title_case,
)
from finpilot.parsers.base import BaseParser

logger = logging.getLogger(__name__)

# "TARJETA XXXX 1234 Total Consumos de NAME", "Total Consumos de NAME", "TOTAL ADICIONAL DE NAME"
_OWNER_FOOTER = re.compile(
    r"(?:TARJETA\s+(?:X+\s+)?(\d+)\s+)?Total\s+(?:Consumos|Adicional)\s+de\s+([A-ZÁÉÍÓÚÑÜ .]+)",
    re.I,
)
_STATEMENT_DATE = re.compile(
    r"(?:Fecha\s+de\s+)?(?:Vencimiento|Cierre|Vto\.?)(?:\s+actual)?\s*[:.]?\s*(\d{2}[-/]\d{2}[-/]\d{2,4})",
    re.I,
)
_INSTALLMENT = re.compile(r"(?<![\d/])(\d{1,2})/(\d{1,2})(?![\d/])")

PAYMENT_KEYWORDS = ('SU PAGO', 'PAGO EN PESOS', 'PAGO EN DOLARES', 'PAGO DE RESUMEN', 'SALDO ANTERIOR')

_BANKS = (
    (('GALICIA',), 'Galicia'),
    (('SANTANDER',), 'Santander'),
    (('BBVA', 'FRANCES'), 'BBVA'),
    (('MACRO',), 'Macro'),
    (('HSBC',), 'HSBC'),
    (('ICBC',), 'ICBC'),
    (('NACION',), 'Nacion'),
)
_BRANDS = (
    (('VISA',), 'Visa'),
    (('MASTERCARD', 'MASTER'), 'Mastercard'),
    (('AMEX', 'AMERICAN EXPRESS'), 'Amex'),
)


class StatementMetadata(NamedTuple):
    bank: Optional[str]
    brand: Optional[str]
    currency: str = 'ARS'

    @property
    def payment_method(self):
        method = self.brand or 'Tarjeta Crédito'
        if self.bank:
            method += f" {self.bank}"
        return method


class OwnerScan(NamedTuple):
    """Accumulator threaded through the line fold."""
    current_owner: Optional[str] = None
    buffer: Tuple[Transaction, ...] = ()
    output: Tuple[Transaction, ...] = ()


def detect_metadata(text: str) -> StatementMetadata:
    upper = text.upper()
    bank = next((name for keys, name in _BANKS if any(k in upper for k in keys)), None)
    brand = next((name for keys, name in _BRANDS if any(k in upper for k in keys)), None)
    return StatementMetadata(bank=bank, brand=brand)


def detect_statement_date(lines) -> Optional[str]:
    """Return the first closing/due date header in the document, normalized."""
    for line in lines:
        m = _STATEMENT_DATE.search(line)
        if m:
            normalized = normalize_date(m.group(1))
            if normalized:
                logger.debug("Detected statement date: %s", normalized)
                return normalized
    return None


def anchor_to_statement(tx_date: str, statement_date: str) -> str:
    """Keep the day of ``tx_date``, take month and year from ``statement_date``."""
    day = parse_date(tx_date).day
    anchor = parse_date(statement_date)
    day = min(day, monthrange(anchor.year, anchor.month)[1])
    return f"{day:02d}/{anchor.month:02d}/{anchor.year:04d}"


def assign_owner(scan: OwnerScan, tx: Transaction) -> OwnerScan:
    if scan.current_owner:
        return scan._replace(output=scan.output + (replace(tx, owner=scan.current_owner),))
    return scan._replace(buffer=scan.buffer + (tx,))


def close_block(scan: OwnerScan, owner: Optional[str]) -> OwnerScan:
    """A footer ends the block: stamp the buffer with its owner and forget the owner."""
    stamped = tuple(tx if tx.owner else replace(tx, owner=owner) for tx in scan.buffer)
    return OwnerScan(current_owner=None, buffer=(), output=scan.output + stamped)


def switch_owner(scan: OwnerScan, owner: str, fallback: Optional[str] = None) -> OwnerScan:
    """A card marker sets the owner; whatever was pending is released unresolved."""
    pending = tuple(replace(tx, owner=fallback) if fallback and not tx.owner else tx for tx in scan.buffer)
    return OwnerScan(current_owner=owner, buffer=(), output=scan.output + pending)


class CreditCardParser(BaseParser):
    """
    Parser for credit card statements, including statements that concatenate
    several additional-card blocks, each closed by its own owner footer.

    ``default_owner`` is applied to transactions whose block never got an
    owner; by default they are left unassigned for manual review.
    """

    def __init__(self, text, card_mappings=None, default_owner=None):
        super().__init__(text, card_mappings)
        self.default_owner = default_owner

    def parse(self) -> List[Transaction]:
        self.metadata = detect_metadata(self.text)
        self.statement_date = detect_statement_date(self.lines)
        scan = reduce(self.scan_line, self.lines, OwnerScan())
        leftover = tuple(
            replace(tx, owner=self.default_owner) if self.default_owner and not tx.owner else tx
            for tx in scan.buffer
        )
        return list(scan.output + leftover)

    def scan_line(self, scan: OwnerScan, line: str) -> OwnerScan:
        line = line.strip()
        if not line:
            return scan

        footer = _OWNER_FOOTER.search(line)
        if footer:
            owner = self.resolve_owner(footer.group(1), footer.group(2))
            logger.debug("Owner footer %r resolved to %s", line, owner)
            return close_block(scan, owner)

        mapping = self.mapping_in(line)
        if mapping:
            scan = switch_owner(scan, mapping.owner, self.default_owner)

        if _STATEMENT_DATE.search(line):
            return scan

        for tx in self.extract_entries(line):
            scan = assign_owner(scan, tx)
        return scan

    def extract_entries(self, line: str) -> List[Transaction]:
        """Pull every date..amount pair out of one line."""
        entries = []
        remainder = line
        while True:
            date_match = find_date(remainder)
            if not date_match:
                break
            after = remainder[date_match.end():]
            next_date = find_date(after)
            segment = after[:next_date.start()] if next_date else after
            amounts = find_amounts(segment)
            if not amounts:
                logger.debug("Date %s without amount in line: %s", date_match.group(0), line)
                if not next_date:
                    break
                remainder = after[next_date.start():]
                continue

            amount_match = amounts[-1]
            tx = self.build_entry(date_match.group(0), segment[:amount_match.start()], amount_match.group(0), line)
            if tx is not None:
                entries.append(tx)
            remainder = after[amount_match.end():]
        return entries

    def build_entry(self, raw_date, raw_description, raw_amount, line) -> Optional[Transaction]:
        amount = parse_amount(raw_amount)
        if math.isnan(amount):
            logger.debug("Unparsable amount %r in line: %s", raw_amount, line)
            return None

        installment = total = None
        m = _INSTALLMENT.search(raw_description)
        if m and 0 < int(m.group(1)) <= int(m.group(2)):
            installment, total = int(m.group(1)), int(m.group(2))
            raw_description = raw_description[:m.start()] + ' ' + raw_description[m.end():]

        description = clean_description(raw_description)
        upper = description.upper()

        currency = 'ARS'
        if 'USD' in upper or 'U$S' in upper or self.metadata.currency == 'USD':
            currency = 'USD'

        is_payment = any(k in upper for k in PAYMENT_KEYWORDS)
        amount = abs(amount) if is_payment else -abs(amount)

        tx = self.create_transaction(
            raw_date, description, amount, line, currency,
            bank=self.metadata.bank,
            card_brand=self.metadata.brand,
            payment_method=self.metadata.payment_method,
        )
        if tx is None:
            logger.debug("Invalid date %r in line: %s", raw_date, line)
            return None

        if is_payment:
            tx.type = TxType.EXCLUDED
            tx.original_type = TxType.PAYMENT
        else:
            tx.type = TxType.EXPENSE

        if installment:
            tx.installment = installment
            tx.total_installments = total
            tx.is_installment = True
            if self.statement_date:
                tx.date = anchor_to_statement(tx.date, self.statement_date)
        return tx

    def resolve_owner(self, last_digits, name_from_statement) -> Optional[str]:
        if last_digits:
            for mapping in self.card_mappings:
                if mapping.last4.endswith(last_digits) or last_digits.endswith(mapping.last4):
                    return mapping.owner
        name = (name_from_statement or '').strip(' .')
        return title_case(name) if name else None
