# finpilot/outputs/csv_output.py

import csv
import logging
import os
from itertools import groupby

from finpilot.core.normalize import parse_date
from finpilot.outputs.base import BaseOutput

logger = logging.getLogger(__name__)

COLUMNS = [
    'date', 'description', 'amount', 'currency', 'owner', 'type', 'category',
    'subcategory', 'installment', 'total_installments', 'payment_method',
    'account', 'source_file',
]


class CSVOutput(BaseOutput):
    """
    Writes enriched transactions to one Transactions<Year>.csv per calendar
    year, each sorted by date (oldest to latest). An existing file for a year
    is replaced.
    """
    def __init__(self, config):
        self.config     = config
        self.output_dir = config.get('output_dir', 'data')
        os.makedirs(self.output_dir, exist_ok=True)

    def append(self, transactions):
        """Return the paths written, one per year present in ``transactions``."""
        if not transactions:
            logger.info("No transactions to write.")
            return []

        rows = sorted(transactions, key=lambda tx: parse_date(tx.date))
        paths = []
        for year, year_rows in groupby(rows, key=lambda tx: parse_date(tx.date).year):
            paths.append(self._write_year(year, list(year_rows)))
        return paths

    def _write_year(self, year, rows):
        out_path = os.path.join(self.output_dir, f"Transactions{year}.csv")
        with open(out_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(COLUMNS)
            for tx in rows:
                writer.writerow([
                    tx.date,
                    tx.description,
                    f"{tx.amount:.2f}",
                    tx.currency,
                    tx.owner or '',
                    tx.type or '',
                    tx.category or '',
                    tx.subcategory or '',
                    tx.installment or '',
                    tx.total_installments or '',
                    tx.payment_method or '',
                    tx.account or '',
                    tx.source_file or '',
                ])

        logger.info("Written %d transactions to %s", len(rows), out_path)
        return out_path
