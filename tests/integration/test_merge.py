"""Integration tests for contract merging"""

import pytest
from datetime import date
from contract_engine.domain.exceptions import ContractNotFoundError, InvariantViolationError
from contract_engine.infrastructure.database.repositories import (
    BankRepository,
    ContractHistoryRepository,
    ContractRepository,
    TransactionRepository,
)
from contract_engine.services.merge import merge_contracts


async def test_merge_into_open_contract(session, bank_id, add_transactions, add_contract):
    """Test the open contract absorbs a closed one with a bridging history row"""
    current = await add_contract("Gym", 1000)
    await add_transactions(
        [("Gym", 1000, date(2024, 1, 1)), ("Gym", 1000, date(2024, 2, 1))], contract_id=current.id
    )
    old = await add_contract("Gym", 1200, end_date=date(2023, 12, 1))
    await add_transactions([("Gym", 1200, date(2023, 12, 1))], contract_id=old.id)

    result = await merge_contracts(session, [old.id, current.id])

    assert result.head.id == current.id
    assert result.absorbed_ids == [old.id]
    assert result.history_entries == 1

    history = await ContractHistoryRepository(session).load_contract_history(current.id)
    assert [(h.old_amount_cents, h.new_amount_cents, h.changed_at) for h in history] == [
        (1200, 1000, date(2023, 12, 1))
    ]
    linked = await TransactionRepository(session).load_transactions(contract_id=current.id)
    assert len(linked) == 3
    assert [c.id for c in await ContractRepository(session).load_contracts(bank_id)] == [current.id]


async def test_merge_closed_contracts_keeps_earliest(session, add_transactions, add_contract):
    """Test the contract that ended first survives when all are closed"""
    late = await add_contract("Gym", 1000, end_date=date(2024, 3, 1))
    early = await add_contract("Gym", 1000, end_date=date(2023, 6, 1))
    await add_transactions([("Gym", 1000, date(2024, 3, 1))], contract_id=late.id)
    await add_transactions([("Gym", 1000, date(2023, 6, 1))], contract_id=early.id)

    result = await merge_contracts(session, [late.id, early.id])

    assert result.head.id == early.id
    assert result.history_entries == 0


async def test_merge_unknown_contract(session, add_contract):
    """Test merging a missing contract is rejected"""
    contract = await add_contract("Gym", 1000)

    with pytest.raises(ContractNotFoundError):
        await merge_contracts(session, [contract.id, 9999])


async def test_merge_needs_two_contracts(session, add_contract):
    """Test a single contract cannot be merged"""
    contract = await add_contract("Gym", 1000)

    with pytest.raises(InvariantViolationError):
        await merge_contracts(session, [contract.id, contract.id])


async def test_merge_across_banks_rejected(session, add_transactions, add_contract):
    """Test contracts of different banks stay separate"""
    other_bank = await BankRepository(session).insert_bank("Savings")
    await session.commit()
    first = await add_contract("Gym", 1000)
    second = await add_contract("Gym", 1000, bank=other_bank)
    await add_transactions([("Gym", 1000, date(2024, 1, 1))], contract_id=first.id)
    await add_transactions([("Gym", 1000, date(2024, 1, 1))], bank=other_bank, contract_id=second.id)

    with pytest.raises(InvariantViolationError):
        await merge_contracts(session, [first.id, second.id])

    assert (await ContractRepository(session).load_contract(second.id)).bank_id == other_bank
