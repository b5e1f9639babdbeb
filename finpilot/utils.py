# finpilot/utils.py
from collections import Counter

from finpilot.core.normalize import parse_date


def filter_transactions_by_month(transactions, month_str):
    """
    Return only those transactions whose date falls in the given YYYY-MM.
    """
    year, month = map(int, month_str.split('-'))
    result = []
    for tx in transactions:
        d = parse_date(tx.date)
        if d.year == year and d.month == month:
            result.append(tx)
    return result


def _dedupe_key(tx):
    return (tx.date, tx.description, tx.amount, tx.currency, tx.owner)


def dedupe_transactions(transactions):
    """
    Remove duplicates imported from more than one file, based on
    (date, description, amount, currency, owner).

    Repeats inside a single file are real purchases and survive: each key
    is kept as many times as the file holding it most often lists it.
    """
    per_file = Counter((tx.source_file, _dedupe_key(tx)) for tx in transactions)
    allowed = Counter()
    for (_, key), count in per_file.items():
        allowed[key] = max(allowed[key], count)

    kept = Counter()
    unique = []
    for tx in transactions:
        key = _dedupe_key(tx)
        if kept[key] < allowed[key]:
            kept[key] += 1
            unique.append(tx)
    return unique


def tag_source_file(transactions, source_file):
    for tx in transactions:
        tx.source_file = source_file
    return transactions


def tag_account(transactions, account, owner=None):
    """Stamp the detected account, and its owner, on records that lack them."""
    for tx in transactions:
        if account and not tx.account:
            tx.account = account
        if owner and not tx.owner:
            tx.owner = owner
    return transactions


def remove_source_file(transactions, source_file):
    """Drop every transaction imported from ``source_file``."""
    return [tx for tx in transactions if tx.source_file != source_file]
