"""Pytest fixtures for testing"""

import pytest
from datetime import date
from typing import AsyncIterator, Callable, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from contract_engine.infrastructure.database.models import Base
from contract_engine.infrastructure.database.session import create_engine, create_session_factory
from contract_engine.infrastructure.database.repositories import (
    BankRepository,
    ContractRepository,
    TransactionRepository,
)
from contract_engine.domain.models import Contract, NewContract, NewTransaction, Transaction


@pytest.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """Create test database with the full schema"""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Session bound to the test database"""
    factory = create_session_factory(engine)
    async with factory() as session:
        yield session


@pytest.fixture
async def bank_id(session: AsyncSession) -> int:
    """A committed bank account"""
    bank_id = await BankRepository(session).insert_bank("Checking")
    await session.commit()
    return bank_id


@pytest.fixture
def add_transactions(session: AsyncSession, bank_id: int) -> Callable:
    """
    Seed committed transactions from (counterparty, amount_cents, date) rows.

    Keyword arguments: bank (defaults to the bank_id fixture), contract_id to
    link every row, contract_not_allowed to exclude the rows from matching.
    """

    async def _add(
        rows: List[Tuple[str, int, date]],
        bank: Optional[int] = None,
        contract_id: Optional[int] = None,
        contract_not_allowed: bool = False,
    ) -> List[Transaction]:
        repo = TransactionRepository(session)
        transactions = await repo.insert_transactions(
            [
                NewTransaction(
                    bank_id=bank or bank_id,
                    date=when,
                    counterparty=counterparty,
                    amount_cents=amount,
                    bank_balance_after_cents=100_000,
                    contract_not_allowed=contract_not_allowed,
                )
                for counterparty, amount, when in rows
            ]
        )
        if contract_id is not None:
            await repo.link_transactions_to_contract([t.id for t in transactions], contract_id)
            for transaction in transactions:
                transaction.contract_id = contract_id
        await session.commit()
        return transactions

    return _add


@pytest.fixture
def add_contract(session: AsyncSession, bank_id: int) -> Callable:
    """Seed a committed contract"""

    async def _add(
        name: str,
        amount_cents: int,
        months_between_payment: int = 1,
        end_date: Optional[date] = None,
        bank: Optional[int] = None,
    ) -> Contract:
        contract = await ContractRepository(session).insert_contract(
            NewContract(
                bank_id=bank or bank_id,
                name=name,
                parse_name=name,
                current_amount_cents=amount_cents,
                months_between_payment=months_between_payment,
                end_date=end_date,
            )
        )
        await session.commit()
        return contract

    return _add
