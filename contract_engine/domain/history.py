"""Contract history construction and re-splicing"""

from dataclasses import replace
from datetime import date
from typing import List, Optional, Set, Tuple

from contract_engine.domain.models import (
    ContractHistory,
    HistoryPlan,
    NewContractHistory,
    Transaction,
)


def _chronological(history: List[ContractHistory]) -> List[ContractHistory]:
    return sorted(history, key=lambda h: (h.changed_at, h.id))


def chain_amount_changes(
    contract_id: int,
    start_amount_cents: int,
    transactions: List[Transaction],
) -> Tuple[List[NewContractHistory], int]:
    """
    Build the history rows for a run of amount-changing transactions.

    Transactions are replayed in date order starting from start_amount_cents.
    Repeated (amount, date) pairs are collapsed and a transaction that keeps
    the running amount produces no row, so each row is a real change whose
    old amount is the new amount of the row before it.

    Returns:
        (rows to insert, amount after the last transaction)
    """
    rows: List[NewContractHistory] = []
    seen: Set[Tuple[int, date]] = set()
    amount = start_amount_cents

    for transaction in sorted(transactions, key=lambda t: (t.date, t.id)):
        pair = (transaction.amount_cents, transaction.date)
        if pair in seen:
            continue
        seen.add(pair)

        if transaction.amount_cents == amount:
            continue

        rows.append(
            NewContractHistory(
                contract_id=contract_id,
                old_amount_cents=amount,
                new_amount_cents=transaction.amount_cents,
                changed_at=transaction.date,
            )
        )
        amount = transaction.amount_cents

    return rows, amount


def _neighbours(
    history: List[ContractHistory], when: date
) -> Tuple[Optional[ContractHistory], Optional[ContractHistory]]:
    ordered = _chronological(history)
    # a row on the same day counts as earlier
    before = [h for h in ordered if h.changed_at <= when]
    after = [h for h in ordered if h.changed_at > when]
    return (before[-1] if before else None, after[0] if after else None)


def plan_history_insertion(
    contract_id: int,
    history: List[ContractHistory],
    transaction: Transaction,
    current_amount_cents: int,
) -> HistoryPlan:
    """
    Place a transaction's amount into an existing timeline.

    The amount is treated as having been in effect around the transaction
    date; the neighbouring rows are rewritten so the chain stays connected:

    - earlier and later rows: new row (earlier.new -> amount), later.old = amount
    - only a later row:      new row (later.old -> amount), later.old = amount
    - only an earlier row:   new row (amount -> current), earlier.new = amount
    - no rows:               new row (amount -> current)

    The contract's current amount is left unchanged.
    """
    amount = transaction.amount_cents
    plan = HistoryPlan()

    if any(h.new_amount_cents == amount and h.changed_at == transaction.date for h in history):
        return plan

    before, after = _neighbours(history, transaction.date)

    if after is not None:
        old_amount = before.new_amount_cents if before is not None else after.old_amount_cents
        if old_amount != amount:
            plan.inserts.append(
                NewContractHistory(
                    contract_id=contract_id,
                    old_amount_cents=old_amount,
                    new_amount_cents=amount,
                    changed_at=transaction.date,
                )
            )
        if after.old_amount_cents != amount:
            plan.updates.append(replace(after, old_amount_cents=amount))
        return plan

    if amount != current_amount_cents:
        plan.inserts.append(
            NewContractHistory(
                contract_id=contract_id,
                old_amount_cents=amount,
                new_amount_cents=current_amount_cents,
                changed_at=transaction.date,
            )
        )
    if before is not None and before.new_amount_cents != amount:
        plan.updates.append(replace(before, new_amount_cents=amount))
    return plan


def plan_history_removal(
    history: List[ContractHistory],
    transaction: Transaction,
    current_amount_cents: int,
) -> HistoryPlan:
    """
    Undo the history row a transaction introduced.

    The row whose new amount and date equal the transaction's is deleted and
    its neighbours are re-spliced:

    - earlier and later rows: earlier.new becomes the removed row's new amount
    - only a later row:      later.old becomes the removed row's old amount
    - only an earlier row:   current amount collapses to earlier.new
    - no rows:               current amount collapses to the removed row's old amount

    A transaction without a history row (an exact match) yields an empty plan.
    """
    plan = HistoryPlan()
    ordered = _chronological(history)

    index = next(
        (
            i for i, h in enumerate(ordered)
            if h.new_amount_cents == transaction.amount_cents and h.changed_at == transaction.date
        ),
        None,
    )
    if index is None:
        return plan

    removed = ordered[index]
    before = ordered[index - 1] if index > 0 else None
    after = ordered[index + 1] if index + 1 < len(ordered) else None
    plan.deletes.append(removed.id)

    if before is not None and after is not None:
        plan.updates.append(replace(before, new_amount_cents=removed.new_amount_cents))
    elif after is not None:
        plan.updates.append(replace(after, old_amount_cents=removed.old_amount_cents))
    elif before is not None:
        plan.current_amount_cents = before.new_amount_cents
    else:
        plan.current_amount_cents = removed.old_amount_cents

    if plan.current_amount_cents == current_amount_cents:
        plan.current_amount_cents = None

    return plan
