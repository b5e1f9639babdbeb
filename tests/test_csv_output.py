import csv
import os

import pytest

from finpilot.core.models import Transaction
from finpilot.outputs import get_output
from finpilot.outputs.csv_output import CSVOutput


def read_dates(path):
    with open(path, newline='', encoding='utf-8') as f:
        return [row['date'] for row in csv.DictReader(f)]


def test_rows_are_split_by_year_and_sorted(tmp_path):
    txs = [
        Transaction(date='05/01/2026', description='CAFE', amount=-5.0),
        Transaction(date='20/12/2025', description='REGALO', amount=-50.0),
        Transaction(date='02/12/2025', description='UBER', amount=-10.0),
    ]

    paths = CSVOutput({'output_dir': str(tmp_path)}).append(txs)

    assert [os.path.basename(p) for p in paths] == ['Transactions2025.csv', 'Transactions2026.csv']
    assert read_dates(tmp_path / 'Transactions2025.csv') == ['02/12/2025', '20/12/2025']
    assert read_dates(tmp_path / 'Transactions2026.csv') == ['05/01/2026']


def test_nothing_written_without_transactions(tmp_path):
    assert CSVOutput({'output_dir': str(tmp_path)}).append([]) == []
    assert list(tmp_path.iterdir()) == []


def test_registry_resolves_csv_writer(tmp_path):
    cfg = {
        'output_dir': str(tmp_path),
        'output_modules': {'csv': 'finpilot.outputs.csv_output.CSVOutput'},
    }
    assert isinstance(get_output('csv', cfg), CSVOutput)
    with pytest.raises(ValueError):
        get_output('sheets', cfg)
