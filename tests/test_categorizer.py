import pytest

from finpilot.core.categorizer import (
    ClassificationPolicy,
    classify,
    classify_transactions,
    enrich_transaction,
)
from finpilot.core.models import CategorizationRule, Transaction, TxType


def rule(value, category, subcategory=None, field="description", operator="contains", enabled=True, type=None):
    return CategorizationRule.from_dict({
        "condition": {"field": field, "operator": operator, "value": value},
        "action": {"category": category, "subcategory": subcategory, "type": type},
        "enabled": enabled,
    })


def test_user_rule_beats_heuristics():
    rules = [rule("netflix", "Suscripciones", "Streaming")]
    result = classify("NETFLIX.COM", -5000, rules=rules)
    assert result.category == "Suscripciones"
    assert result.subcategory == "Streaming"
    assert result.type == TxType.REAL_EXPENSE

    # Without the rule the keyword table applies
    assert classify("NETFLIX.COM", -5000).subcategory == "Entretenimiento"


def test_user_rule_beats_transfer_heuristic():
    rules = [rule("su pago", "Finanzas", "Pagos", type=TxType.EXCLUDED)]
    result = classify("SU PAGO EN PESOS", 15000, rules=rules)
    assert result == (TxType.EXCLUDED, "Finanzas", "Pagos")


def test_disabled_rules_are_skipped_and_order_matters():
    rules = [
        rule("coto", "Ignorada", enabled=False),
        rule("^compra", "Primera", operator="regex"),
        rule("coto", "Segunda"),
    ]
    assert classify("COMPRA COTO", -10, rules=rules).category == "Primera"


@pytest.mark.parametrize("field, operator, value, description, amount, expected", [
    ("description", "equals", "uber trip", "UBER TRIP", -1, True),
    ("description", "startsWith", "uber", "UBER TRIP", -1, True),
    ("description", "endsWith", "trip", "UBER TRIP", -1, True),
    ("description", "endsWith", "uber", "UBER TRIP", -1, False),
    ("amount", "greaterThan", "100", "X", 150, True),
    ("amount", "lessThan", -100, "X", -150, True),
    ("amount", "lessThan", "abc", "X", -150, False),
    ("description", "regex", "[unclosed", "X", -1, False),
    ("description", "unknown", "x", "X", -1, False),
    ("owner", "equals", "ana", "X", -1, False),
])
def test_rule_operators(field, operator, value, description, amount, expected):
    rules = [rule(value, "Match", field=field, operator=operator)]
    result = classify(description, amount, rules=rules)
    assert (result.category == "Match") is expected


def test_rule_without_subcategory_defaults_to_otros():
    result = classify("kiosco", -1, rules=[rule("kiosco", "Varios")])
    assert result.subcategory == "Otros"


def test_exclusion_by_owner_and_phrase():
    policy = ClassificationPolicy(excluded_owners=["Elías"], excluded_phrases=["reintegro socio"])
    assert classify("COTO", -1, owner="Elías", policy=policy).type == TxType.EXCLUDED
    assert classify("REINTEGRO SOCIO", 1, policy=policy).type == TxType.EXCLUDED
    assert classify("CONSUMO ADICIONAL ELÍAS", -1, policy=policy).type == TxType.EXCLUDED
    assert classify("COTO", -1, owner="Ana", policy=policy).type == TxType.REAL_EXPENSE


@pytest.mark.parametrize("description, account, expected_type, expected_sub", [
    ("PAGO TARJETA VISA", None, TxType.INTERNAL_TRANSFER, "Pago Tarjeta"),
    ("TRANSFERENCIA A CUENTA PROPIA", None, TxType.INTERNAL_TRANSFER, "Transferencia Familiar"),
    ("SUSCRIPCION FIMA PREMIUM", None, TxType.INTERNAL_TRANSFER, "Inversión"),
    ("FIMA RENTA MENSUAL", None, TxType.REAL_INCOME, "Rendimientos"),
    ("MOVIMIENTO", "Balanz", TxType.INTERNAL_TRANSFER, "Movimiento Inversión"),
    ("EXTRACCION CAJERO", None, TxType.INTERNAL_TRANSFER, "Retiro Efectivo"),
    ("ACREDITACION HABERES", None, TxType.REAL_INCOME, "Salario/Honorarios"),
    ("UBER TRIP", None, TxType.REAL_EXPENSE, "Transporte"),
    ("ALGO RARO", None, TxType.REAL_EXPENSE, "Varios"),
])
def test_heuristic_priority(description, account, expected_type, expected_sub):
    result = classify(description, -100, account=account)
    assert result.type == expected_type
    assert result.subcategory == expected_sub


def test_transfer_to_stranger_is_not_internal():
    assert classify("TRANSFERENCIA A JUAN", -100).type == TxType.REAL_EXPENSE


def test_custom_keyword_table_from_config():
    policy = ClassificationPolicy.from_config({"categories": {"Mascotas": ["veterinaria"]}})
    assert classify("VETERINARIA ROCKY", -1, policy=policy).category == "Mascotas"


def test_classify_is_idempotent():
    rules = [rule("coto", "Super")]
    args = ("COMPRA COTO", -10)
    assert classify(*args, rules=rules) == classify(*args, rules=rules)
    assert classify("RANDOM", 5) == classify("RANDOM", 5)


def test_enrich_keeps_parser_exclusion_and_fixes_sign():
    payment = Transaction(date="10/10/2025", description="SU PAGO", amount=15000,
                          type=TxType.EXCLUDED, original_type=TxType.PAYMENT)
    purchase = Transaction(date="10/10/2025", description="COTO", amount=500, type=TxType.EXPENSE)

    enriched_payment, enriched_purchase = classify_transactions([payment, purchase])
    assert enriched_payment.type == TxType.EXCLUDED
    assert enriched_payment.amount == 15000
    assert enriched_purchase.type == TxType.REAL_EXPENSE
    assert enriched_purchase.category == "Supermercado"
    assert enriched_purchase.amount == -500
    # originals untouched
    assert purchase.type == TxType.EXPENSE


def test_enrich_respects_export_type_and_category():
    salary = Transaction(date="01/10/2025", description="Pago mensual", amount=1000,
                         type=TxType.INCOME, category="Sueldo", subcategory="Sueldo")
    enriched = enrich_transaction(salary)
    assert enriched.type == TxType.REAL_INCOME
    assert enriched.category == "Sueldo"
    assert enrich_transaction(enriched) == enriched
