"""Unit tests for contract closing, reopening and merging"""

import pytest
from datetime import date
from contract_engine.domain.exceptions import InvariantViolationError
from contract_engine.domain.lifecycle import (
    find_merge_candidates,
    lapse_end_date,
    project_reopening,
    rebase_histories,
    select_merge_head,
    should_close,
)
from contract_engine.domain.models import Contract, ContractHistory, NewContractHistory


def _contract(id, amount_cents=1000, cadence=1, end_date=None, parse_name="Gym"):
    return Contract(
        id=id,
        bank_id=1,
        name=parse_name,
        parse_name=parse_name,
        current_amount_cents=amount_cents,
        months_between_payment=cadence,
        end_date=end_date,
    )


def _history(id, contract_id, old, new, when):
    return ContractHistory(id=id, contract_id=contract_id, old_amount_cents=old, new_amount_cents=new, changed_at=when)


def test_should_close_after_two_missed_cadences():
    """Test monthly contract closes when four months pass without payment"""
    assert should_close(_contract(1), date(2024, 1, 1), date(2024, 5, 1)) is True


def test_should_not_close_at_exactly_two_cadences():
    """Test the lapse must exceed twice the cadence"""
    assert should_close(_contract(1), date(2024, 1, 1), date(2024, 3, 1)) is False


def test_should_close_quarterly():
    """Test lapse scales with the cadence"""
    quarterly = _contract(1, cadence=3)
    assert should_close(quarterly, date(2024, 1, 1), date(2024, 8, 1)) is True
    assert should_close(quarterly, date(2024, 1, 1), date(2024, 7, 1)) is False


def test_same_month_cadence_never_closes():
    """Test cadence 0 contracts are left open"""
    assert should_close(_contract(1, cadence=0), date(2022, 1, 1), date(2024, 5, 1)) is False


def test_project_reopening_within_one_cadence():
    """Test a closed contract reopens while its next payment is still due"""
    decision = project_reopening(_contract(1, end_date=date(2024, 1, 31)), date(2024, 2, 15))

    assert decision.reopened is True
    assert decision.end_date is None


def test_project_reopening_advances_end_date():
    """Test an overdue contract stays closed with its end date pushed one cadence"""
    decision = project_reopening(_contract(1, end_date=date(2024, 1, 31)), date(2024, 4, 1))

    assert decision.reopened is False
    assert decision.end_date == date(2024, 3, 1)


def test_project_reopening_requires_closed_contract():
    """Test open contracts cannot be reopened"""
    with pytest.raises(InvariantViolationError):
        project_reopening(_contract(1), date(2024, 4, 1))


def test_lapse_end_date():
    """Test a contract closes at its last payment once 60 days have passed"""
    assert lapse_end_date(date(2024, 1, 1), date(2024, 3, 15)) == date(2024, 1, 1)
    assert lapse_end_date(date(2024, 1, 1), date(2024, 2, 15)) is None


def test_select_merge_head_all_closed():
    """Test earliest end date wins when every contract is closed"""
    contracts = [_contract(1, end_date=date(2024, 3, 1)), _contract(2, end_date=date(2023, 6, 1))]

    assert select_merge_head(contracts, {}).id == 2


def test_select_merge_head_prefers_latest_open_payment():
    """Test the open contract paid most recently wins"""
    contracts = [_contract(1), _contract(2), _contract(3, end_date=date(2024, 9, 1))]
    last_payments = {1: date(2024, 2, 1), 2: date(2024, 5, 1), 3: date(2024, 9, 1)}

    assert select_merge_head(contracts, last_payments).id == 2


def test_select_merge_head_tie_goes_to_lowest_id():
    """Test equal last payments resolve to the lowest id"""
    contracts = [_contract(4), _contract(2)]
    last_payments = {4: date(2024, 5, 1), 2: date(2024, 5, 1)}

    assert select_merge_head(contracts, last_payments).id == 2


def test_select_merge_head_open_contract_without_payments():
    """Test an open contract needs a last payment to compete"""
    with pytest.raises(InvariantViolationError):
        select_merge_head([_contract(1), _contract(2)], {1: date(2024, 1, 1)})


def test_rebase_histories_bridges_member_amount():
    """Test member amount is bridged to the head amount and duplicate changes collapse"""
    head = _contract(1, amount_cents=1200)
    member = _contract(2, amount_cents=900, end_date=date(2024, 2, 1))
    histories = {
        1: [_history(1, 1, 1000, 1200, date(2024, 3, 1))],
        2: [_history(2, 2, 800, 900, date(2023, 12, 1))],
    }

    rows = rebase_histories(head, [head, member], histories, {1: date(2024, 3, 1), 2: date(2024, 2, 1)})

    assert rows == [
        NewContractHistory(contract_id=1, old_amount_cents=800, new_amount_cents=900, changed_at=date(2023, 12, 1)),
        NewContractHistory(contract_id=1, old_amount_cents=900, new_amount_cents=1200, changed_at=date(2024, 2, 1)),
    ]


def test_rebase_histories_rechains_old_amounts():
    """Test interleaved rows are re-chained in date order"""
    head = _contract(1, amount_cents=1100)
    member = _contract(2, amount_cents=600, end_date=date(2024, 3, 1))
    histories = {
        1: [_history(1, 1, 1000, 1100, date(2024, 1, 1))],
        2: [_history(2, 2, 500, 600, date(2024, 2, 1))],
    }

    rows = rebase_histories(head, [head, member], histories, {1: date(2024, 1, 1)})

    assert [(r.old_amount_cents, r.new_amount_cents) for r in rows] == [(1000, 1100), (1100, 600), (600, 1100)]
    assert all(r.contract_id == 1 for r in rows)


def test_rebase_histories_same_amount_needs_no_bridge():
    """Test members already at the head amount only contribute their rows"""
    head = _contract(1)
    member = _contract(2, end_date=date(2024, 2, 1))

    assert rebase_histories(head, [head, member], {}, {}) == []


def test_find_merge_candidates_groups_by_counterparty():
    """Test contracts sharing a parse name are grouped"""
    contracts = [_contract(3), _contract(1, amount_cents=1200), _contract(2, parse_name="Bakery")]

    groups = find_merge_candidates(contracts)

    assert [[c.id for c in group] for group in groups] == [[1, 3]]
