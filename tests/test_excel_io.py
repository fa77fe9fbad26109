from datetime import date, datetime, time

import pytest

from precastplan.data.excel_io import (
    coerce_date,
    coerce_float,
    coerce_time,
    normalize_col_name,
    parse_int_strict,
    to_int01,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Altura (cm)", "altura_cm"),
        ("Código", "codigo"),
        ("  Disponível ", "disponivel"),
        ("Tempo unitário (min)", "tempo_unitario_min"),
    ],
)
def test_normalize_col_name(raw, expected):
    assert normalize_col_name(raw) == expected


def test_numeric_coercions():
    assert coerce_float("1.234,5") == 1234.5
    assert coerce_float("12,5") == 12.5
    assert coerce_float(float("nan")) is None
    assert coerce_float("abc") is None
    assert parse_int_strict(12.0, field="qty") == 12
    assert parse_int_strict("007", field="qty") == 7
    with pytest.raises(ValueError):
        parse_int_strict(2.5, field="qty")
    with pytest.raises(ValueError):
        parse_int_strict("", field="qty")


def test_flag_coercion():
    assert to_int01("Sí") == 1
    assert to_int01("no") == 0
    assert to_int01(None) == 0
    assert to_int01(2) == 1


def test_date_and_time_coercion():
    assert coerce_date("2026-03-10") == date(2026, 3, 10)
    assert coerce_date("10/03/2026") == date(2026, 3, 10)
    assert coerce_date(datetime(2026, 3, 10, 15, 0)) == date(2026, 3, 10)
    with pytest.raises(ValueError):
        coerce_date("tomorrow")

    assert coerce_time("7:30") == time(7, 30)
    assert coerce_time(time(8, 0, 15)) == time(8, 0)
    assert coerce_time(None) is None
    with pytest.raises(ValueError):
        coerce_time("25:00")
