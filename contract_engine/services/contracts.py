"""Contract listing and bookkeeping operations"""

import logging
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from contract_engine.domain.exceptions import ContractNotFoundError
from contract_engine.domain.lifecycle import find_merge_candidates
from contract_engine.domain.models import Contract, ContractOverview
from contract_engine.infrastructure.database.repositories import (
    ContractHistoryRepository,
    ContractRepository,
    TransactionRepository,
)
from contract_engine.infrastructure.database.session import unit_of_work


async def list_contracts_with_history(session: AsyncSession, bank_id: int) -> List[ContractOverview]:
    """Contracts of a bank with their amount history and last payment date"""
    contracts = await ContractRepository(session).load_contracts(bank_id)
    ids = [c.id for c in contracts]

    histories = await ContractHistoryRepository(session).load_histories(ids)
    last_payments = await TransactionRepository(session).load_last_payment_dates(ids)

    return [
        ContractOverview(
            contract=contract,
            history=histories.get(contract.id, []),
            last_payment_date=last_payments.get(contract.id),
        )
        for contract in contracts
    ]


async def find_merge_candidates_for_bank(session: AsyncSession, bank_id: int) -> List[List[Contract]]:
    """Contracts of a bank that share a counterparty and could be merged"""
    contracts = await ContractRepository(session).load_contracts(bank_id)
    return find_merge_candidates(contracts)


async def rename_contract(session: AsyncSession, contract_id: int, name: str) -> Contract:
    """Change a contract's display name; matching keeps using its parse name"""
    async with unit_of_work(session):
        contract_repo = ContractRepository(session)
        await contract_repo.update_contract_name(contract_id, name)
        return await contract_repo.load_contract(contract_id)


async def delete_contracts(session: AsyncSession, contract_ids: List[int]) -> List[Contract]:
    """
    Delete contracts chosen by the user.

    Their transactions become uncontracted again and their history is removed.

    Returns:
        The deleted contracts
    """
    ids = sorted(set(contract_ids))

    async with unit_of_work(session):
        contract_repo = ContractRepository(session)
        contracts = await contract_repo.load_contracts_by_ids(ids)
        found = {c.id for c in contracts}
        for contract_id in ids:
            if contract_id not in found:
                raise ContractNotFoundError(contract_id)

        transaction_repo = TransactionRepository(session)
        for contract_id in ids:
            linked = await transaction_repo.load_transactions(contract_id=contract_id)
            await transaction_repo.link_transactions_to_contract([t.id for t in linked], None)

        await ContractHistoryRepository(session).delete_history_of_contracts(ids)
        await contract_repo.delete_contracts(ids)

        logging.info("Contracts deleted", extra={"contract_ids": ids})
        return contracts
