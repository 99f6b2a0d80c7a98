import pytest

from household.models import (
    Classification,
    Expense,
    Intent,
    RecurringExpenseTemplate,
    SalaryRecord,
    SplitMode,
    Transfer,
    Virtual,
)
from household.settlement import (
    aggregate_paid,
    allocate_shares,
    calculate_settlement,
    minimize_transfers,
    resolve_split_mode,
    select_relevant_expenses,
)

PEOPLE = ["A", "B", "C"]
SALARIES = {"A": 50000.0, "B": 30000.0, "C": 20000.0}


def _expense(id="1", amount=100.0, payer="A", **kwargs):
    kwargs.setdefault("classification", Classification.SHARED)
    kwargs.setdefault("date", "2024-03-10")
    return Expense(id=id, amount=amount, payer=payer, **kwargs)


def _apply(balances, transfers):
    after = dict(balances)
    for t in transfers:
        after[t.from_id] += t.amount
        after[t.to_id] -= t.amount
    return after


def _mixed_expenses():
    return [
        _expense("1", 1234.56, "A", split_mode=SplitMode.SALARY_RATIO),
        _expense("2", 100.0, "B", participants=("A", "B", "C"), split_mode=SplitMode.EQUAL),
        _expense("3", 250.0, "C", split_mode=SplitMode.PERCENTAGE, custom_split={"A": 50, "B": 30, "C": 20}),
        _expense("4", 90.0, "A", participants=("A", "B"), split_mode=SplitMode.FIXED_AMOUNT,
                 custom_split={"A": 30, "B": 60}),
    ]


def test_salary_ratio_scenario():
    expenses = [_expense(amount=1000.0, payer="A", participants=("A", "B", "C"),
                         split_mode=SplitMode.SALARY_RATIO)]
    result = calculate_settlement("2024-03", expenses, SalaryRecord("2024-03", SALARIES), participants=PEOPLE)
    assert result.shares == pytest.approx({"A": 500.0, "B": 300.0, "C": 200.0})
    assert result.balances == pytest.approx({"A": 500.0, "B": -300.0, "C": -200.0})
    assert result.transactions == [Transfer("B", "A", 300.0), Transfer("C", "A", 200.0)]
    assert result.total_expense == 1000.0


def test_equal_split_intent_splits_evenly():
    expenses = [_expense(amount=300.0, payer="B", intent=Intent.EQUAL_SPLIT, participants=("A", "B", "C"))]
    result = calculate_settlement("2024-03", expenses, SALARIES, participants=PEOPLE)
    assert result.shares == pytest.approx({"A": 100.0, "B": 100.0, "C": 100.0})
    assert result.balances == pytest.approx({"A": -100.0, "B": 200.0, "C": -100.0})
    assert result.transactions == [Transfer("A", "B", 100.0), Transfer("C", "B", 100.0)]


@pytest.mark.parametrize("intent", [Intent.GIFT, Intent.LOAN])
def test_gift_and_loan_stay_out_of_settlement(intent):
    expenses = [_expense(amount=500.0, payer="C", intent=intent)]
    result = calculate_settlement("2024-03", expenses, SALARIES, participants=PEOPLE)
    assert result.total_expense == 0
    assert result.shares == {"A": 0.0, "B": 0.0, "C": 0.0}
    assert result.paid == {"A": 0.0, "B": 0.0, "C": 0.0}
    assert result.excluded_paid == {"A": 0.0, "B": 0.0, "C": 500.0}
    assert result.transactions == []


def test_percentage_split():
    expenses = [_expense(amount=1000.0, participants=("A", "B"), split_mode=SplitMode.PERCENTAGE,
                         custom_split={"A": 60, "B": 40})]
    shares = allocate_shares(expenses, PEOPLE, SALARIES)
    assert shares == pytest.approx({"A": 600.0, "B": 400.0, "C": 0.0})


def test_recurring_template_settles_empty_month():
    template = RecurringExpenseTemplate(
        id="7", amount=900.0, classification=Classification.SHARED, payer="A",
        split_mode=SplitMode.SALARY_RATIO, note="Rent",
    )
    result = calculate_settlement("2024-03", [], SALARIES, [template], participants=PEOPLE)
    assert result.total_expense == 900.0
    assert result.shares == pytest.approx({"A": 450.0, "B": 270.0, "C": 180.0})
    assert result.transactions == [Transfer("B", "A", 270.0), Transfer("C", "A", 180.0)]


def test_selector_filters_month_classification_and_intent():
    expenses = [
        _expense("1", date="2024-03-01"),
        _expense("2", date="2024-04-01"),
        _expense("3", classification=Classification.PERSONAL),
        _expense("4", intent=Intent.GIFT),
        _expense("5", intent=Intent.EQUAL_SPLIT, date="2024-03-31"),
        _expense("6", date="not-a-date"),
    ]
    templates = [
        RecurringExpenseTemplate("t1", 50.0, Classification.SHARED, "B", note="Internet"),
        RecurringExpenseTemplate("t2", 50.0, Classification.SHARED, "B", active=False),
        RecurringExpenseTemplate("t3", 50.0, Classification.PERSONAL, "B", on_behalf_of="C"),
        RecurringExpenseTemplate("t4", 50.0, Classification.SHARED, "B", intent=Intent.LOAN),
    ]
    relevant = select_relevant_expenses("2024-03", expenses, templates)
    assert [e.id for e in relevant] == ["1", "5", "t1"]
    virtual = relevant[-1]
    assert virtual.origin == Virtual("t1")
    assert virtual.is_virtual
    assert virtual.date == "2024-03-01"
    assert virtual.note == "[Recurring] Internet"
    assert virtual.key != _expense("t1").key


def test_shares_and_paid_conserve_total():
    expenses = _mixed_expenses()
    result = calculate_settlement("2024-03", expenses, SALARIES, participants=PEOPLE)
    total = 1234.56 + 100.0 + 250.0 + 90.0
    assert result.total_expense == pytest.approx(total)
    assert sum(result.shares.values()) == pytest.approx(total, abs=0.01)
    assert sum(result.paid.values()) == pytest.approx(total)
    assert sum(result.balances.values()) == pytest.approx(0.0, abs=0.01)


def test_transfers_close_all_balances():
    result = calculate_settlement("2024-03", _mixed_expenses(), SALARIES, participants=PEOPLE)
    after = _apply(result.balances, result.transactions)
    for value in after.values():
        assert value == pytest.approx(0.0, abs=0.02)
    positive = sum(v for v in result.balances.values() if v > 0)
    assert sum(t.amount for t in result.transactions) == pytest.approx(positive, abs=0.02)


def test_transaction_count_bound():
    result = calculate_settlement("2024-03", _mixed_expenses(), SALARIES, participants=PEOPLE)
    debtors = [p for p, v in result.balances.items() if v < -0.01]
    creditors = [p for p, v in result.balances.items() if v > 0.01]
    assert len(result.transactions) <= max(0, len(debtors) + len(creditors) - 1)


def test_same_inputs_same_output():
    expenses = _mixed_expenses()
    first = calculate_settlement("2024-03", expenses, SALARIES, participants=PEOPLE)
    second = calculate_settlement("2024-03", expenses, SALARIES, participants=PEOPLE)
    assert first == second


def test_inputs_are_not_mutated():
    expenses = _mixed_expenses()
    snapshot = list(expenses)
    salaries = dict(SALARIES)
    calculate_settlement("2024-03", expenses, salaries, participants=PEOPLE)
    assert expenses == snapshot
    assert salaries == SALARIES


def test_zero_salary_group_gets_no_share():
    expenses = [_expense(amount=600.0, payer="A", participants=("B", "C"), split_mode=SplitMode.SALARY_RATIO)]
    salaries = {"A": 40000.0, "B": 0.0, "C": 0.0}
    result = calculate_settlement("2024-03", expenses, salaries, participants=PEOPLE)
    assert result.shares == {"A": 0.0, "B": 0.0, "C": 0.0}
    assert result.paid["A"] == 600.0
    assert result.balances["A"] == 600.0
    assert result.transactions == []


def test_missing_custom_entries_count_as_zero():
    expenses = [
        _expense("1", 100.0, participants=("A", "B"), split_mode=SplitMode.PERCENTAGE, custom_split={"A": 60}),
        _expense("2", 80.0, participants=("B", "C"), split_mode=SplitMode.FIXED_AMOUNT, custom_split={"C": 30}),
    ]
    shares = allocate_shares(expenses, PEOPLE, SALARIES)
    assert shares == pytest.approx({"A": 60.0, "B": 0.0, "C": 30.0})


def test_custom_mode_without_custom_split_uses_salary_ratio():
    expense = _expense(amount=1000.0, split_mode=SplitMode.PERCENTAGE)
    assert resolve_split_mode(expense) == SplitMode.SALARY_RATIO
    shares = allocate_shares([expense], PEOPLE, SALARIES)
    assert shares == pytest.approx({"A": 500.0, "B": 300.0, "C": 200.0})


def test_mode_defaults():
    assert resolve_split_mode(_expense()) == SplitMode.SALARY_RATIO
    assert resolve_split_mode(_expense(intent=Intent.EQUAL_SPLIT)) == SplitMode.EQUAL
    assert resolve_split_mode(_expense(intent=Intent.EQUAL_SPLIT, split_mode=SplitMode.SALARY_RATIO)) == \
        SplitMode.SALARY_RATIO


def test_unknown_participants_are_ignored():
    expenses = [
        _expense("1", 100.0, payer="A", participants=("A", "Z"), split_mode=SplitMode.EQUAL),
        _expense("2", 40.0, payer="Z", split_mode=SplitMode.EQUAL),
    ]
    shares = allocate_shares(expenses, PEOPLE, SALARIES)
    paid = aggregate_paid(expenses, PEOPLE)
    assert shares["A"] == pytest.approx(100.0 + 40.0 / 3)
    assert "Z" not in shares
    assert paid == {"A": 100.0, "B": 0.0, "C": 0.0}


@pytest.mark.parametrize("mode,custom", [
    (SplitMode.PERCENTAGE, {"A": 50.0, "B": 50.0}),
    (SplitMode.FIXED_AMOUNT, {"A": 50.0, "B": 50.0}),
    (SplitMode.EQUAL, None),
    (SplitMode.SALARY_RATIO, None),
])
def test_repeated_group_member_counts_once(mode, custom):
    expense = _expense(amount=100.0, payer="A", participants=("A", "A", "B"), split_mode=mode,
                       custom_split=custom)
    shares = allocate_shares([expense], PEOPLE, SALARIES)
    assert sum(shares.values()) == pytest.approx(100.0)
    assert shares["C"] == 0.0


def test_empty_group_means_everyone():
    shares = allocate_shares([_expense(amount=90.0, split_mode=SplitMode.EQUAL)], PEOPLE, SALARIES)
    assert shares == pytest.approx({"A": 30.0, "B": 30.0, "C": 30.0})


def test_minimize_transfers_orders_and_bounds():
    balances = {"A": -50.0, "B": -30.0, "C": 60.0, "D": 20.0}
    transfers = minimize_transfers(balances, ["A", "B", "C", "D"])
    assert transfers == [
        Transfer("A", "C", 50.0),
        Transfer("B", "C", 10.0),
        Transfer("B", "D", 20.0),
    ]


def test_minimize_transfers_ignores_drift():
    assert minimize_transfers({"A": 0.004, "B": -0.004, "C": 0.0}) == []


def test_works_for_larger_households():
    people = ["A", "B", "C", "D", "E"]
    expenses = [
        _expense("1", 500.0, payer="A", split_mode=SplitMode.EQUAL),
        _expense("2", 120.0, payer="D", participants=("C", "D", "E"), split_mode=SplitMode.EQUAL),
    ]
    result = calculate_settlement("2024-03", expenses, {}, participants=people)
    assert set(result.balances) == set(people)
    assert result.shares == pytest.approx({"A": 100.0, "B": 100.0, "C": 140.0, "D": 140.0, "E": 140.0})
    after = _apply(result.balances, result.transactions)
    assert all(abs(v) <= 0.02 for v in after.values())
