import datetime as dt
from decimal import Decimal

import pytest

from expense_common.formatting import (
    download_filename,
    format_amount,
    format_date_fr,
    format_datetime_fr,
    format_eur,
    parse_decimal,
    slugify,
)
from expense_form.state import ExpenseLine
from expense_form.totals import compute_totals
from expense_form.validator import validate


def test_example_totals(example_state):
    totals = compute_totals(example_state)
    assert totals.expenses == Decimal("45.50")
    assert totals.kilometric == Decimal("32.10")
    assert totals.grand == Decimal("77.60")


def test_invalid_lines_are_left_out_of_the_total(example_state):
    example_state.expenses += [
        ExpenseLine(nature="Péage", amount="abc"),
        ExpenseLine(nature="", amount="99"),
        ExpenseLine(nature="Repas", amount="12,30"),
    ]
    assert compute_totals(example_state).expenses == Decimal("57.80")


def test_no_kilometers_means_no_kilometric_amount(example_state):
    example_state.kilometers = ""
    assert compute_totals(example_state).kilometric == 0


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("45.50", Decimal("45.50")),
        ("45,50", Decimal("45.50")),
        (" 1 200 ", Decimal("1200")),
        ("1 200,5", Decimal("1200.5")),
        ("", None),
        ("abc", None),
        ("NaN", None),
        ("Infinity", None),
        ("1e30", None),
        ("4.5E1", None),
        ("1" * 30, None),
        ("999999999999.99", Decimal("999999999999.99")),
        ("1000000000000", None),
        (None, None),
    ],
)
def test_parse_decimal(raw, expected):
    assert parse_decimal(raw) == expected


def test_amount_formatting():
    assert format_amount(Decimal("1234.5")) == "1 234,50"
    assert format_eur(Decimal("32.1")) == "32,10 €"
    assert format_eur(Decimal("0.005")) == "0,01 €"


def test_dates():
    assert format_date_fr("2024-05-01") == "01/05/2024"
    assert format_date_fr("demain") == "demain"
    assert format_datetime_fr(dt.datetime(2024, 5, 2, 9, 3, 7)) == "02/05/2024 à 09:03:07"


def test_slugify_folds_accents():
    assert slugify("Déplacement  compétition!") == "deplacement-competition"
    assert slugify("  Élodie  O'Brien ") == "elodie-o-brien"


def test_download_filename():
    name = download_filename("2024-05-02", "Jean", "Dupont", "Déplacement compétition!")
    assert name == "fiche_remboursement_20240502_jean-dupont_deplacement-competition.pdf"


def test_rounding_happens_only_at_display(example_state):
    example_state.expenses = [ExpenseLine(nature="Timbre", amount="0.004")]
    example_state.kilometers = "1"

    totals = compute_totals(example_state)

    assert totals.grand == Decimal("0.325")
    assert format_eur(totals.grand) == "0,33 €"
    # rounding each part first would give 0,00 + 0,32
    assert format_eur(totals.expenses) == "0,00 €"
    assert format_eur(totals.kilometric) == "0,32 €"


@pytest.mark.parametrize("amount", ["1e30", "1" * 30])
def test_oversized_amount_is_a_validation_error(example_state, amount):
    example_state.expenses.append(ExpenseLine(nature="Repas", amount=amount))

    errors = validate(example_state)

    assert [e.field for e in errors] == ["Dépense 2"]
    totals = compute_totals(example_state)
    assert format_eur(totals.grand) == "77,60 €"


def test_oversized_kilometers_are_rejected(example_state):
    example_state.kilometers = "1e40"
    assert [e.field for e in validate(example_state)] == ["Kilomètres"]
    assert format_eur(compute_totals(example_state).grand) == "45,50 €"
