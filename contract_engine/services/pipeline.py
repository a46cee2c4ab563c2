"""Contract scan - turn a bank's uncontracted transactions into contracts with history"""

import asyncio
import logging
import time
from datetime import date
from typing import List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from contract_engine.config import settings
from contract_engine.domain.classifier import classify_transactions, match_resumed_transactions
from contract_engine.domain.exceptions import DomainException, InvariantViolationError, PipelineTimeoutError
from contract_engine.domain.history import chain_amount_changes, plan_history_insertion
from contract_engine.domain.lifecycle import should_close
from contract_engine.domain.models import PipelineOutcome, Transaction
from contract_engine.domain.synthesizer import synthesize_contracts
from contract_engine.infrastructure.database.repositories import (
    BankRepository,
    ContractHistoryRepository,
    ContractRepository,
    TransactionRepository,
)
from contract_engine.infrastructure.observability.logging import log_pipeline_run
from contract_engine.infrastructure.observability.metrics import (
    pipeline_duration_histogram,
    record_pipeline_failure,
    record_pipeline_outcome,
)
from contract_engine.services.contract_updates import apply_history_plan, apply_transaction


async def _record_drift(
    session: AsyncSession,
    contract_id: int,
    transactions: List[Transaction],
) -> int:
    """Fold drift-matched transactions into a contract's amount and history"""
    contract_repo = ContractRepository(session)
    transaction_repo = TransactionRepository(session)
    history_repo = ContractHistoryRepository(session)

    contract = await contract_repo.load_contract(contract_id)
    last_payment = (await transaction_repo.load_last_payment_dates([contract_id])).get(contract_id)

    later = [t for t in transactions if last_payment is None or t.date > last_payment]
    earlier = [t for t in transactions if last_payment is not None and t.date <= last_payment]

    rows, final_amount = chain_amount_changes(contract_id, contract.current_amount_cents, later)
    inserted = len(await history_repo.insert_contract_histories(rows))
    if final_amount != contract.current_amount_cents:
        await contract_repo.update_contract_amount(contract_id, final_amount)

    for transaction in sorted(earlier, key=lambda t: (t.date, t.id)):
        history = await history_repo.load_contract_history(contract_id)
        plan = plan_history_insertion(contract_id, history, transaction, final_amount)
        inserted += await apply_history_plan(session, contract_id, plan)

    await transaction_repo.link_transactions_to_contract([t.id for t in transactions], contract_id)
    return inserted


async def _match_round(
    session: AsyncSession,
    bank_id: int,
    outcome: PipelineOutcome,
    today: date,
) -> bool:
    """
    One classification pass over the bank's uncontracted transactions.

    Returns:
        True when any transaction was linked
    """
    contract_repo = ContractRepository(session)
    transaction_repo = TransactionRepository(session)

    transactions = await transaction_repo.load_unlinked_transactions(bank_id)
    if not transactions:
        return False

    open_contracts = await contract_repo.load_open_contracts(bank_id)
    classification = classify_transactions(transactions, open_contracts, settings.drift_tolerance)

    for contract_id in sorted(classification.exact):
        matched = classification.exact[contract_id]
        await transaction_repo.link_transactions_to_contract([t.id for t in matched], contract_id)
        outcome.exact_matched += len(matched)

    for contract_id in sorted(classification.drifted):
        matched = classification.drifted[contract_id]
        outcome.history_entries += await _record_drift(session, contract_id, matched)
        outcome.drift_matched += len(matched)

    closed_contracts = await contract_repo.load_closed_contracts(bank_id)
    resumed = match_resumed_transactions(classification.unmatched, closed_contracts, settings.drift_tolerance)
    for contract_id in sorted(resumed):
        for transaction in sorted(resumed[contract_id], key=lambda t: (t.date, t.id)):
            contract = await contract_repo.load_contract(contract_id)
            update = await apply_transaction(session, contract, transaction, today)
            if update.reopened and contract_id not in outcome.reopened_contracts:
                outcome.reopened_contracts.append(contract_id)

    return bool(classification.exact or classification.drifted or resumed)


async def _close_lapsed_contracts(session: AsyncSession, bank_id: int, outcome: PipelineOutcome) -> None:
    contract_repo = ContractRepository(session)
    transaction_repo = TransactionRepository(session)

    latest = await transaction_repo.load_latest_transaction(bank_id=bank_id)
    if latest is None:
        return

    open_contracts = await contract_repo.load_open_contracts(bank_id)
    last_payments = await transaction_repo.load_last_payment_dates([c.id for c in open_contracts])

    for contract in open_contracts:
        last_payment = last_payments.get(contract.id)
        if last_payment is None:
            # nothing to measure the lapse from
            logging.warning("Open contract has no transactions", extra={"contract_id": contract.id})
            continue

        if should_close(contract, last_payment, latest.date, settings.day_tolerance_days):
            await contract_repo.update_contract_end_date(contract.id, last_payment)
            outcome.closed_contracts.append(contract.id)


async def _scan(session: AsyncSession, bank_id: int, today: date) -> PipelineOutcome:
    await BankRepository(session).load_bank(bank_id)
    outcome = PipelineOutcome(bank_id=bank_id)
    transaction_repo = TransactionRepository(session)

    if not await transaction_repo.load_unlinked_transactions(bank_id):
        outcome.skipped = True
        return outcome

    # drift updates move contract amounts, so repeat until nothing else links
    while await _match_round(session, bank_id, outcome, today):
        pass

    remaining = await transaction_repo.load_unlinked_transactions(bank_id)
    synthesized = synthesize_contracts(
        bank_id,
        remaining,
        min_run_length=settings.min_run_length,
        allowable_gap_months=settings.allowable_gap_months,
        cadences=settings.recurring_cadences,
        day_tolerance=settings.day_tolerance_days,
    )

    new_contracts = await ContractRepository(session).insert_contracts([s.contract for s in synthesized])
    if len(new_contracts) != len(synthesized):
        raise InvariantViolationError(
            f"Inserted {len(new_contracts)} contracts for {len(synthesized)} synthesized"
        )

    linked_ids: Set[int] = set()
    for item, contract in zip(synthesized, new_contracts):
        await transaction_repo.link_transactions_to_contract(item.transaction_ids, contract.id)
        linked_ids.update(item.transaction_ids)
    outcome.new_contracts = new_contracts
    outcome.synthesized_linked = len(linked_ids)

    if new_contracts:
        while await _match_round(session, bank_id, outcome, today):
            pass

    await _close_lapsed_contracts(session, bank_id, outcome)
    return outcome


async def scan_bank_for_contracts(
    session: AsyncSession,
    bank_id: int,
    today: Optional[date] = None,
    timeout_seconds: Optional[float] = None,
) -> PipelineOutcome:
    """
    Run the contract pipeline for one bank as a single storage transaction.

    Flow:
    1. Link uncontracted transactions to open contracts (exact, then drift
       with amount history) and resume closed contracts paid again
    2. Synthesize new contracts from recurring leftovers
    3. Match again against the new contracts
    4. Close contracts whose payments lapsed

    Any failure rolls the whole run back and is re-raised.
    """
    start_time = time.time()
    timeout = timeout_seconds if timeout_seconds is not None else settings.pipeline_timeout_seconds

    try:
        outcome = await asyncio.wait_for(_scan(session, bank_id, today or date.today()), timeout=timeout)
        await session.commit()

    except asyncio.TimeoutError as e:
        await session.rollback()
        error = PipelineTimeoutError(f"Contract scan of bank {bank_id} exceeded {timeout}s")
        record_pipeline_failure(error)
        logging.error(str(error), extra={"bank_id": bank_id})
        raise error from e

    except DomainException as e:
        await session.rollback()
        record_pipeline_failure(e)
        logging.error(f"Contract scan failed: {e}", extra={"bank_id": bank_id})
        raise

    except Exception as e:
        await session.rollback()
        record_pipeline_failure(e)
        logging.error(f"Unexpected error during contract scan: {e}", extra={"bank_id": bank_id})
        raise

    duration = time.time() - start_time
    pipeline_duration_histogram.observe(duration)
    record_pipeline_outcome(outcome)
    log_pipeline_run(outcome, duration * 1000)

    return outcome
