# finpilot/parsers/tabular.py
import csv
import io
import logging
import math

import pandas as pd

from finpilot.core.models import Transaction, TxType
from finpilot.core.normalize import clean_description, normalize_date, parse_amount
from finpilot.parsers.base import BaseParser, MissingInputError

logger = logging.getLogger(__name__)

# Header fragments per column, matched case-insensitively in any language/order.
_HEADER_TOKENS = (
    ('date', ('date', 'fecha')),
    ('category', ('category', 'categoría', 'categoria')),
    ('amount', ('amount', 'monto', 'importe')),
    ('description', ('note', 'description', 'nota', 'descripción', 'descripcion')),
    ('account', ('account', 'cuenta')),
    ('type', ('type', 'tipo')),
    ('currency', ('currency', 'moneda')),
)


def read_excel_as_text(file_path):
    """Load the first sheet of an Excel export and return it as CSV text."""
    df = pd.read_excel(file_path, dtype=str)
    df = df.fillna('')
    return df.to_csv(index=False)


def map_header(header_cells):
    """Return {column name: index} for the recognised header cells."""
    columns = {}
    for idx, cell in enumerate(header_cells):
        name = cell.strip().lower()
        for col, tokens in _HEADER_TOKENS:
            if any(tok in name for tok in tokens):
                if col == 'category' and 'sub' in name:
                    col = 'subcategory'
                columns.setdefault(col, idx)
                break
    return columns


class TabularExportParser(BaseParser):
    """
    Parser for spreadsheet exports (Money Manager style).

    The first non-empty row is the header; columns are located by name.
    Rows without a usable date or amount are logged and skipped.
    """

    def __init__(self, text, card_mappings=None, owner=None, source_name='Money Manager Import'):
        super().__init__(text, card_mappings)
        self.owner = owner
        self.source_name = source_name

    def parse(self):
        rows = [row for row in csv.reader(io.StringIO(self.text)) if any(c.strip() for c in row)]
        if not rows:
            raise MissingInputError("The export file is empty")

        columns = map_header(rows[0])
        if 'date' not in columns or 'amount' not in columns:
            logger.warning("Export header lacks a date or amount column: %s", rows[0])
            return []

        transactions = []
        for lineno, row in enumerate(rows[1:], start=2):
            tx = self.parse_row(row, columns, lineno)
            if tx is not None:
                transactions.append(tx)
        return transactions

    def parse_row(self, row, columns, lineno):
        def cell(name):
            idx = columns.get(name)
            if idx is None or idx >= len(row):
                return ''
            return row[idx].strip()

        raw_date = cell('date')
        raw_amount = cell('amount')
        if not raw_date or not raw_amount:
            logger.warning("Row %d: missing date or amount, skipped", lineno)
            return None

        date = normalize_date(raw_date)
        if date is None:
            logger.warning("Row %d: invalid date %r, skipped", lineno, raw_date)
            return None

        amount = parse_amount(raw_amount)
        if math.isnan(amount) or amount == 0:
            logger.warning("Row %d: invalid amount %r, skipped", lineno, raw_amount)
            return None

        type_str = cell('type').lower()
        if type_str:
            if 'income' in type_str or 'ingreso' in type_str:
                tx_type = TxType.INCOME
            elif 'transfer' in type_str:
                tx_type = TxType.TRANSFER
            else:
                tx_type = TxType.EXPENSE
        else:
            # Money Manager exports expenses as positive numbers.
            tx_type = TxType.EXPENSE if amount > 0 else TxType.INCOME

        category = cell('category') or 'Sin categoría'
        subcategory = cell('subcategory')
        currency = cell('currency').upper() or 'ARS'

        return Transaction(
            date=date,
            description=clean_description(cell('description') or category),
            amount=abs(amount) if tx_type == TxType.INCOME else -abs(amount),
            currency=currency,
            owner=self.owner,
            type=tx_type,
            category=category,
            subcategory=subcategory or category,
            account=cell('account') or 'Money Manager',
            source_file=self.source_name,
            original_line=','.join(row),
        )
