"""Contract lifecycle - closing lapsed contracts, reopening resumed ones, merging duplicates"""

from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import date
from typing import Dict, List, Optional

from contract_engine.domain.cadence import DAY_TOLERANCE, months_between
from contract_engine.domain.exceptions import InvariantViolationError
from contract_engine.domain.models import Contract, ContractHistory, NewContractHistory
from contract_engine.utils.date_utils import add_days

REOPEN_DAYS_PER_MONTH = 30
LAPSE_DAYS = 60


@dataclass
class ReopenDecision:
    """Outcome of a payment arriving after a contract's end date"""

    reopened: bool
    end_date: Optional[date]


def should_close(
    contract: Contract,
    last_payment: date,
    bank_last_date: date,
    day_tolerance: int = DAY_TOLERANCE,
) -> bool:
    """
    True when the contract has lapsed.

    A contract lapses when more than twice its cadence in months separates
    its last payment from the bank's latest transaction. Contracts with a
    cadence of 0 (same-month recurrence) never close automatically.
    """
    if contract.months_between_payment < 1:
        return False

    months = months_between(last_payment, bank_last_date, day_tolerance)
    return months is not None and months > contract.months_between_payment * 2


def project_reopening(
    contract: Contract,
    today: date,
    days_per_month: int = REOPEN_DAYS_PER_MONTH,
) -> ReopenDecision:
    """
    Decide what a new payment does to a closed contract.

    The end date is pushed out by one cadence (cadence * days_per_month days).
    If that horizon is still ahead of today the contract is open again,
    otherwise it stays closed with the advanced end date.
    """
    if contract.end_date is None:
        raise InvariantViolationError(f"Contract {contract.id} is not closed")

    candidate = add_days(contract.end_date, contract.months_between_payment * days_per_month)
    if candidate > today:
        return ReopenDecision(reopened=True, end_date=None)
    return ReopenDecision(reopened=False, end_date=candidate)


def lapse_end_date(
    last_payment: date,
    today: date,
    lapse_days: int = LAPSE_DAYS,
) -> Optional[date]:
    """
    End date for a contract whose payments were edited by hand.

    Closed at its last payment once that is more than lapse_days in the past,
    open otherwise.
    """
    if add_days(last_payment, lapse_days) < today:
        return last_payment
    return None


def find_merge_candidates(contracts: List[Contract]) -> List[List[Contract]]:
    """Groups of contracts of one bank that share a counterparty under different amounts"""
    groups: Dict[tuple, List[Contract]] = defaultdict(list)
    for contract in sorted(contracts, key=lambda c: c.id):
        groups[(contract.bank_id, contract.parse_name)].append(contract)
    return [group for group in groups.values() if len(group) > 1]


def select_merge_head(contracts: List[Contract], last_payment_dates: Dict[int, date]) -> Contract:
    """
    Pick the contract that survives a merge.

    All closed: the one with the earliest end date. Otherwise the open
    contract paid most recently. Ties go to the lowest id.
    """
    if not contracts:
        raise InvariantViolationError("Cannot select a merge head from no contracts")

    ordered = sorted(contracts, key=lambda c: c.id)
    open_contracts = [c for c in ordered if c.is_open]

    if not open_contracts:
        return min(ordered, key=lambda c: c.end_date)

    missing = [c.id for c in open_contracts if c.id not in last_payment_dates]
    if missing:
        raise InvariantViolationError(f"Open contracts without transactions: {missing}")

    latest = max(last_payment_dates[c.id] for c in open_contracts)
    return next(c for c in open_contracts if last_payment_dates[c.id] == latest)


def rebase_histories(
    head: Contract,
    members: List[Contract],
    histories: Dict[int, List[ContractHistory]],
    last_payment_dates: Dict[int, date],
) -> List[NewContractHistory]:
    """
    Combine the histories of merged contracts into the head's history.

    A member whose current amount differs from the head's gets a bridging
    row (member amount -> head amount) at its end date, or its last payment
    if it is open. All rows are sorted by date, consecutive rows with the
    same new amount are collapsed and every old amount is re-chained to the
    preceding row's new amount.
    """
    combined: List[ContractHistory] = []
    for contract in [head] + [m for m in members if m.id != head.id]:
        rows = sorted(histories.get(contract.id, []), key=lambda h: (h.changed_at, h.id))
        combined.extend(rows)

        if contract.id == head.id or contract.current_amount_cents == head.current_amount_cents:
            continue

        bridge_date = contract.end_date or last_payment_dates.get(contract.id)
        if bridge_date is None:
            raise InvariantViolationError(f"Contract {contract.id} has no end date and no transactions")
        combined.append(
            ContractHistory(
                id=0,
                contract_id=contract.id,
                old_amount_cents=contract.current_amount_cents,
                new_amount_cents=head.current_amount_cents,
                changed_at=bridge_date,
            )
        )

    # stable sort keeps each contract's own order for rows on the same day
    combined.sort(key=lambda h: h.changed_at)

    collapsed: List[ContractHistory] = []
    for row in combined:
        if collapsed and collapsed[-1].new_amount_cents == row.new_amount_cents:
            continue
        if collapsed:
            row = replace(row, old_amount_cents=collapsed[-1].new_amount_cents)
        collapsed.append(row)

    return [
        NewContractHistory(
            contract_id=head.id,
            old_amount_cents=row.old_amount_cents,
            new_amount_cents=row.new_amount_cents,
            changed_at=row.changed_at,
        )
        for row in collapsed
    ]
