# finpilot/cli.py
import logging
import os

import click
from dotenv import load_dotenv

from finpilot.ai import suggest_fallback_categories
from finpilot.config import accounts_from, card_mappings_from, load_config, policy_from, rules_from
from finpilot.core.categorizer import FALLBACK_CATEGORY, classify_transactions
from finpilot.outputs import get_output
from finpilot.parsers import ParseOptions, detect_account, get_parser, MissingInputError
from finpilot.parsers.ai import AIParserError
from finpilot.parsers.tabular import read_excel_as_text
from finpilot.recurring import detect_recurring_expenses
from finpilot.utils import dedupe_transactions, tag_account, tag_source_file

TEXT_SUFFIXES = ('.txt', '.csv')
EXCEL_SUFFIXES = ('.xlsx', '.xls')
TABULAR_SUFFIXES = ('.csv',) + EXCEL_SUFFIXES


def read_statement(path):
    if path.lower().endswith(EXCEL_SUFFIXES):
        return read_excel_as_text(path)
    with open(path, encoding='utf-8', errors='replace') as f:
        return f.read()


def collect_paths(statements_dir, files):
    paths = list(files)
    if statements_dir:
        for fname in sorted(os.listdir(statements_dir)):
            path = os.path.join(statements_dir, fname)
            if os.path.isfile(path):
                paths.append(path)
    return paths


@click.command()
@click.option(
    '--dir', 'statements_dir',
    default=None,
    type=click.Path(exists=True, file_okay=False),
    help='Directory of extracted statement texts (.txt), CSV or Excel exports.'
)
@click.option(
    '--file', 'files',
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help='A single statement file; may be repeated.'
)
@click.option(
    '--method',
    default='auto',
    type=click.Choice(['auto', 'regex', 'ai', 'tabular']),
    help='Parsing method (auto: tabular for CSV/Excel, heuristics otherwise).'
)
@click.option(
    '--api-key',
    envvar='GEMINI_API_KEY',
    default=None,
    help='API key for the AI parser (defaults to $GEMINI_API_KEY).'
)
@click.option(
    '--output', 'output_format',
    default='csv',
    type=click.Choice(['csv']),
    help='Output target'
)
@click.option(
    '--config', 'config_path',
    default='config.yaml',
    type=click.Path(exists=True),
    help='Path to config.yaml'
)
@click.option(
    '--env-file', 'env_file',
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help='Optional .env file containing API tokens for AI providers'
)
@click.option(
    '--recurring',
    is_flag=True,
    default=False,
    help='Also detect recurring expenses over the imported transactions.'
)
@click.option(
    '--suggest-categories', 'suggest',
    is_flag=True,
    default=False,
    help=f'Ask the configured LLM provider to categorize transactions left in "{FALLBACK_CATEGORY}".'
)
def main(statements_dir, files, method, api_key, output_format, config_path, env_file, recurring, suggest):
    """
    Parse bank and credit card statements, classify every transaction and
    write the result. Card mappings, categorization rules and classification
    policy come from config.yaml.
    """
    logging.basicConfig(level=os.getenv("FINPILOT_LOG_LEVEL", "INFO").upper())
    if env_file:
        load_dotenv(env_file)
        api_key = api_key or os.getenv('GEMINI_API_KEY')

    cfg = load_config(config_path)
    card_mappings = card_mappings_from(cfg)
    accounts = accounts_from(cfg)
    rules = rules_from(cfg)
    policy = policy_from(cfg)

    paths = collect_paths(statements_dir, files)
    if not paths:
        raise click.UsageError("Provide --dir or at least one --file.")

    all_txs = []
    for path in paths:
        fname = os.path.basename(path)
        if not fname.lower().endswith(TEXT_SUFFIXES + EXCEL_SUFFIXES):
            click.echo(f"Skipping unsupported file: {fname}", err=True)
            continue

        chosen = method
        if chosen == 'auto':
            chosen = 'tabular' if fname.lower().endswith(TABULAR_SUFFIXES) else 'regex'
        options = ParseOptions(
            method=chosen,
            api_key=api_key,
            owner=cfg.get('tabular_owner'),
            default_owner=cfg.get('default_owner'),
        )

        text = read_statement(path)
        parser = get_parser(text, fname, card_mappings, options)
        try:
            parsed = parser.parse()
        except (MissingInputError, AIParserError) as e:
            raise click.ClickException(f"{fname}: {e}")
        click.echo(f"{fname}: {len(parsed)} transaction(s) via {type(parser).__name__}")
        match = detect_account(text, fname, accounts)
        tag_account(parsed, match.account, match.owner)
        all_txs.extend(tag_source_file(parsed, fname))

    enriched = classify_transactions(dedupe_transactions(all_txs), rules, policy)

    if suggest:
        pending = sum(1 for tx in enriched if tx.category == FALLBACK_CATEGORY)
        try:
            enriched = suggest_fallback_categories(enriched, list(policy.categories), rules)
        except RuntimeError as e:
            raise click.ClickException(f"Category suggestions unavailable: {e}")
        still = sum(1 for tx in enriched if tx.category == FALLBACK_CATEGORY)
        click.echo(f"Suggested categories for {pending - still} of {pending} uncategorized transaction(s).")

    outputter = get_output(output_format, cfg)
    outputter.append(enriched)
    click.echo(f"Appended {len(enriched)} transaction(s) to {output_format.upper()}.")

    if recurring:
        candidates = detect_recurring_expenses(enriched)
        click.echo(f"\nRecurring expenses: {len(candidates)}")
        for c in candidates:
            click.echo(
                f"  {c.name} | {c.amount:.2f} {c.currency} | {c.frequency} | "
                f"next {c.next_occurrence} | confidence {c.confidence}"
            )
