"""Merging contracts that describe the same recurring payment"""

import logging
from dataclasses import dataclass
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from contract_engine.domain.exceptions import ContractNotFoundError, InvariantViolationError
from contract_engine.domain.lifecycle import rebase_histories, select_merge_head
from contract_engine.domain.models import Contract
from contract_engine.infrastructure.database.repositories import (
    ContractHistoryRepository,
    ContractRepository,
    TransactionRepository,
)
from contract_engine.infrastructure.database.session import unit_of_work
from contract_engine.infrastructure.observability.metrics import contracts_merged_counter


@dataclass
class MergeResult:
    """Surviving head contract and the ids it absorbed"""

    head: Contract
    absorbed_ids: List[int]
    history_entries: int


async def merge_contracts(session: AsyncSession, contract_ids: List[int]) -> MergeResult:
    """
    Merge contracts of one bank into a single head contract.

    Flow:
    1. Pick the head (earliest end date if all are closed, otherwise the open
       contract paid most recently)
    2. Replace the head's history with the rebased history of all members
    3. Move every member's transactions to the head
    4. Delete the absorbed contracts and their history
    """
    ids = sorted(set(contract_ids))

    async with unit_of_work(session):
        contract_repo = ContractRepository(session)
        transaction_repo = TransactionRepository(session)
        history_repo = ContractHistoryRepository(session)

        contracts = await contract_repo.load_contracts_by_ids(ids)
        found = {c.id for c in contracts}
        missing = [contract_id for contract_id in ids if contract_id not in found]
        if missing:
            raise ContractNotFoundError(missing[0])
        if len(contracts) < 2:
            raise InvariantViolationError("Merging needs at least two contracts")
        if len({c.bank_id for c in contracts}) != 1:
            raise InvariantViolationError("Cannot merge contracts of different banks")

        last_payments = await transaction_repo.load_last_payment_dates(ids)
        head = select_merge_head(contracts, last_payments)
        histories = await history_repo.load_histories(ids)
        rows = rebase_histories(head, contracts, histories, last_payments)

        absorbed_ids = [c.id for c in contracts if c.id != head.id]

        await history_repo.delete_history_of_contracts(ids)
        inserted = await history_repo.insert_contract_histories(rows)
        await transaction_repo.relink_contract_transactions(absorbed_ids, head.id)
        await contract_repo.delete_contracts(absorbed_ids)

        contracts_merged_counter.inc(len(absorbed_ids))
        logging.info(
            "Contracts merged",
            extra={"head_contract_id": head.id, "absorbed_contract_ids": absorbed_ids},
        )

        return MergeResult(head=head, absorbed_ids=absorbed_ids, history_entries=len(inserted))
