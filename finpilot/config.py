# finpilot/config.py
import yaml

from finpilot.core.categorizer import ClassificationPolicy
from finpilot.core.models import Account, CardMapping, CategorizationRule

DEFAULTS = {
    'card_mappings': [],
    'accounts': [],
    'rules': [],
    'categories': {},
    'classification': {},
    'default_owner': None,
    'tabular_owner': None,
    'output_dir': 'data',
    'output_modules': {
        'csv': 'finpilot.outputs.csv_output.CSVOutput',
    },
}


def load_config(path):
    """Read the YAML settings file and fill in defaults for missing keys."""
    with open(path, encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    cfg = dict(DEFAULTS)
    cfg.update({k: v for k, v in data.items() if v is not None})
    return cfg


def card_mappings_from(cfg):
    return [CardMapping.from_dict(m) for m in cfg.get('card_mappings') or []]


def accounts_from(cfg):
    return [Account.from_dict(a) for a in cfg.get('accounts') or []]


def rules_from(cfg):
    return [CategorizationRule.from_dict(r) for r in cfg.get('rules') or []]


def policy_from(cfg):
    return ClassificationPolicy.from_config(cfg)
