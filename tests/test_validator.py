from expense_form.state import ExpenseLine, NoSignature, new_form_state
from expense_form.validator import validate


def fields(errors):
    return [e.field for e in errors]


def test_example_request_is_valid(example_state):
    assert validate(example_state) == []


def test_empty_form_lists_every_problem_in_order():
    errors = validate(new_form_state())
    assert fields(errors) == [
        "Lieu",
        "Date",
        "Prénom",
        "Nom",
        "Rôle/Fonction",
        "Objet de la demande",
        "Motivation",
        "Dépenses",
        "Signature",
    ]
    assert errors[0].message == "Ce champ est obligatoire"
    assert errors[0].anchor == "place"


def test_whitespace_only_counts_as_missing(example_state):
    example_state.motivation = "   "
    assert fields(validate(example_state)) == ["Motivation"]


def test_kilometers_alone_satisfy_the_claim_rule(example_state):
    example_state.expenses = [ExpenseLine()]
    assert validate(example_state) == []


def test_no_expense_and_no_kilometers(example_state):
    example_state.expenses = [ExpenseLine(nature="Repas")]
    example_state.kilometers = ""
    errors = validate(example_state)
    assert fields(errors) == ["Dépenses"]
    assert errors[0].anchor == "expenses"


def test_bad_amount_names_the_line(example_state):
    example_state.expenses.append(ExpenseLine(nature="Péage", amount="-3"))
    errors = validate(example_state)
    assert fields(errors) == ["Dépense 2"]
    assert errors[0].anchor == f"expense-{example_state.expenses[1].id}"


def test_comma_decimal_amount_is_accepted(example_state):
    example_state.expenses = [ExpenseLine(nature="Repas", amount="12,80")]
    assert validate(example_state) == []


def test_invalid_kilometers(example_state):
    example_state.kilometers = "abc"
    assert fields(validate(example_state)) == ["Kilomètres"]


def test_missing_signature(example_state):
    example_state.signature = NoSignature()
    errors = validate(example_state)
    assert fields(errors) == ["Signature"]
