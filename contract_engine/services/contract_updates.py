"""Single-transaction contract maintenance: add, set amount, record old amount, remove"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from contract_engine.config import settings
from contract_engine.domain.exceptions import InvariantViolationError
from contract_engine.domain.history import plan_history_insertion, plan_history_removal
from contract_engine.domain.lifecycle import lapse_end_date, project_reopening
from contract_engine.domain.models import Contract, HistoryPlan, NewContractHistory, Transaction
from contract_engine.infrastructure.database.repositories import (
    ContractHistoryRepository,
    ContractRepository,
    TransactionRepository,
)
from contract_engine.infrastructure.database.session import unit_of_work
from contract_engine.infrastructure.observability.metrics import contracts_reopened_counter


@dataclass
class ContractUpdate:
    """What a maintenance operation did to a contract"""

    contract_id: int
    message: str
    reopened: bool = False
    deleted: bool = False


async def apply_history_plan(session: AsyncSession, contract_id: int, plan: HistoryPlan) -> int:
    """
    Write a history plan to storage.

    Returns:
        Number of history rows inserted
    """
    history_repo = ContractHistoryRepository(session)

    await history_repo.delete_contract_history(plan.deletes)
    for row in plan.updates:
        await history_repo.update_contract_history(row)
    inserted = await history_repo.insert_contract_histories(plan.inserts)

    if plan.current_amount_cents is not None:
        await ContractRepository(session).update_contract_amount(contract_id, plan.current_amount_cents)

    return len(inserted)


def _check_same_bank(transaction: Transaction, contract: Contract) -> None:
    if transaction.bank_id != contract.bank_id:
        raise InvariantViolationError(
            f"Transaction {transaction.id} of bank {transaction.bank_id} "
            f"cannot join contract {contract.id} of bank {contract.bank_id}"
        )


async def _record_new_amount(session: AsyncSession, contract: Contract, transaction: Transaction) -> None:
    await ContractHistoryRepository(session).insert_contract_history(
        NewContractHistory(
            contract_id=contract.id,
            old_amount_cents=contract.current_amount_cents,
            new_amount_cents=transaction.amount_cents,
            changed_at=transaction.date,
        )
    )
    await ContractRepository(session).update_contract_amount(contract.id, transaction.amount_cents)


async def apply_transaction(
    session: AsyncSession,
    contract: Contract,
    transaction: Transaction,
    today: date,
) -> ContractUpdate:
    """
    Link a transaction to a contract and bring the contract up to date.

    - after a closed contract's end date: the amount is updated and the
      contract reopens, or its end date advances, per project_reopening
    - after the last payment of an open contract: the amount is updated
    - anywhere else in the timeline: the amount is spliced into the history

    Runs inside the caller's unit of work.
    """
    _check_same_bank(transaction, contract)
    transaction_repo = TransactionRepository(session)

    last_payments = await transaction_repo.load_last_payment_dates([contract.id])
    last_payment = last_payments.get(contract.id)
    await transaction_repo.link_transactions_to_contract([transaction.id], contract.id)

    if contract.end_date is not None and transaction.date > contract.end_date:
        if transaction.amount_cents != contract.current_amount_cents:
            await _record_new_amount(session, contract, transaction)

        decision = project_reopening(contract, today, settings.reopen_days_per_month)
        await ContractRepository(session).update_contract_end_date(contract.id, decision.end_date)

        if decision.reopened:
            contracts_reopened_counter.inc()
            logging.info("Contract reopened", extra={"contract_id": contract.id, "transaction_id": transaction.id})
            return ContractUpdate(contract.id, "Contract is open again", reopened=True)
        return ContractUpdate(contract.id, f"Contract updated, end date set to {decision.end_date}.")

    if transaction.amount_cents == contract.current_amount_cents:
        return ContractUpdate(contract.id, "Amount is the same, no need to update contract.")

    if contract.end_date is None and (last_payment is None or transaction.date > last_payment):
        await _record_new_amount(session, contract, transaction)
        return ContractUpdate(
            contract.id, f"Contract updated, new amount set to {transaction.amount_cents} cents."
        )

    history = await ContractHistoryRepository(session).load_contract_history(contract.id)
    plan = plan_history_insertion(contract.id, history, transaction, contract.current_amount_cents)
    await apply_history_plan(session, contract.id, plan)
    return ContractUpdate(contract.id, "Contract history added.")


async def add_transaction_to_contract(
    session: AsyncSession,
    transaction_id: int,
    contract_id: int,
    today: Optional[date] = None,
) -> ContractUpdate:
    """Attach one transaction to a contract chosen by the user"""
    async with unit_of_work(session):
        transaction = await TransactionRepository(session).load_transaction(transaction_id)
        contract = await ContractRepository(session).load_contract(contract_id)
        return await apply_transaction(session, contract, transaction, today or date.today())


async def set_transaction_as_current_amount(
    session: AsyncSession,
    transaction_id: int,
    contract_id: int,
    today: Optional[date] = None,
) -> ContractUpdate:
    """
    Make a transaction's amount the contract's current amount.

    A closed contract paid after its end date is reopened unless the payment
    itself is older than the lapse window, in which case it closes at that
    payment. A new amount dated before the latest history row is rejected,
    the change would not be the last one in the timeline.
    """
    today = today or date.today()
    async with unit_of_work(session):
        transaction = await TransactionRepository(session).load_transaction(transaction_id)
        contract = await ContractRepository(session).load_contract(contract_id)
        _check_same_bank(transaction, contract)

        if transaction.amount_cents != contract.current_amount_cents:
            history = await ContractHistoryRepository(session).load_contract_history(contract.id)
            if history and history[-1].changed_at > transaction.date:
                raise InvariantViolationError(
                    f"Transaction {transaction.id} predates the latest amount change of contract "
                    f"{contract.id}; record it as a historic amount instead"
                )

        await TransactionRepository(session).link_transactions_to_contract([transaction.id], contract.id)
        if transaction.amount_cents != contract.current_amount_cents:
            await _record_new_amount(session, contract, transaction)

        reopened = False
        if contract.end_date is not None and contract.end_date < transaction.date:
            end_date = lapse_end_date(transaction.date, today, settings.lapse_days)
            await ContractRepository(session).update_contract_end_date(contract.id, end_date)
            reopened = end_date is None

        return ContractUpdate(contract.id, "Contract updated.", reopened=reopened)


async def record_historic_amount(
    session: AsyncSession,
    transaction_id: int,
    contract_id: int,
) -> ContractUpdate:
    """Attach a transaction as a past amount of the contract without changing its current amount"""
    async with unit_of_work(session):
        transaction = await TransactionRepository(session).load_transaction(transaction_id)
        contract = await ContractRepository(session).load_contract(contract_id)
        _check_same_bank(transaction, contract)

        await TransactionRepository(session).link_transactions_to_contract([transaction.id], contract.id)
        history = await ContractHistoryRepository(session).load_contract_history(contract.id)
        plan = plan_history_insertion(contract.id, history, transaction, contract.current_amount_cents)
        await apply_history_plan(session, contract.id, plan)

        return ContractUpdate(contract.id, "Contract history updated.")


async def remove_transaction_from_contract(
    session: AsyncSession,
    transaction_id: int,
    today: Optional[date] = None,
) -> ContractUpdate:
    """
    Detach a transaction from its contract and undo its history row.

    A contract left without transactions is deleted together with its
    history. Otherwise its end date is recomputed from its last remaining
    payment and the history around the removed amount is re-spliced.
    """
    today = today or date.today()
    async with unit_of_work(session):
        transaction_repo = TransactionRepository(session)
        contract_repo = ContractRepository(session)
        history_repo = ContractHistoryRepository(session)

        transaction = await transaction_repo.load_transaction(transaction_id)
        if transaction.contract_id is None:
            raise InvariantViolationError(f"Transaction {transaction_id} has no contract")
        contract_id = transaction.contract_id

        await transaction_repo.link_transactions_to_contract([transaction_id], None)

        latest = await transaction_repo.load_latest_transaction(contract_id=contract_id)
        if latest is None:
            await history_repo.delete_history_of_contracts([contract_id])
            await contract_repo.delete_contracts([contract_id])
            logging.info("Deleted contract without transactions", extra={"contract_id": contract_id})
            return ContractUpdate(contract_id, "Contract deleted, it had no transactions left.", deleted=True)

        await contract_repo.update_contract_end_date(
            contract_id, lapse_end_date(latest.date, today, settings.lapse_days)
        )

        contract = await contract_repo.load_contract(contract_id)
        history = await history_repo.load_contract_history(contract_id)
        plan = plan_history_removal(history, transaction, contract.current_amount_cents)
        await apply_history_plan(session, contract_id, plan)

        return ContractUpdate(contract_id, "Transaction removed from contract.")
