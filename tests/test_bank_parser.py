from finpilot.core.models import CardMapping, TxType
from finpilot.parsers.bank import BankStatementParser


STATEMENT = """\
BANCO GALICIA - Resumen de cuenta

09/10/2025 COMPRA COTO 12.500,50
10/10/2025 PAGO TARJETA VISA 4321 80.000,00
11/10/2025 TRANSFERENCIA RECIBIDA 1,500.00
Saldo al cierre sin fecha 99.999,99
12/10/2025 LINEA SIN IMPORTE
"""


def test_bank_parser_extracts_date_amount_description():
    txs = BankStatementParser(STATEMENT).parse()

    assert [t.date for t in txs] == ["09/10/2025", "10/10/2025", "11/10/2025"]
    assert txs[0].description == "COMPRA COTO"
    assert txs[0].amount == 12500.50
    assert txs[0].currency == "ARS"
    assert txs[2].amount == 1500.0
    assert all(t.original_line for t in txs)


def test_bank_parser_applies_card_mapping_and_flags_transfer():
    mappings = [CardMapping(last4="4321", owner="Jesica")]
    txs = BankStatementParser(STATEMENT, mappings).parse()

    card_payment = txs[1]
    assert card_payment.owner == "Jesica"
    assert card_payment.type == TxType.INTERNAL_TRANSFER
    assert txs[0].owner is None
    assert txs[0].type is None


def test_bank_parser_skips_bad_lines_without_failing():
    text = "31/02/2025 FECHA IMPOSIBLE 10,00\nnada por aqui\n01/03/2025 OK 5,00"
    txs = BankStatementParser(text).parse()
    assert len(txs) == 1
    assert txs[0].description == "OK"


def test_balance_column_is_not_read_as_card_number():
    mappings = [CardMapping(last4="2025", owner="Elias")]
    [tx] = BankStatementParser("05/10/2025 CAFE 300,00 2025,00", mappings).parse()
    assert tx.owner is None
    assert tx.type is None
