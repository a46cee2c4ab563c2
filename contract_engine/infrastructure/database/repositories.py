"""Data access layer for banks, transactions, contracts, contract history and CSV converters"""

from contextlib import contextmanager
from datetime import date
from typing import Dict, Iterator, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contract_engine.domain.exceptions import (
    BankNotFoundError,
    ContractNotFoundError,
    StorageFailureError,
    TransactionNotFoundError,
)
from contract_engine.domain.models import (
    Bank,
    Contract,
    ContractHistory,
    CsvConverter,
    NewContract,
    NewContractHistory,
    NewTransaction,
    Transaction,
)
from contract_engine.infrastructure.database.models import (
    BankRecord,
    ContractHistoryRecord,
    ContractRecord,
    CsvConverterRecord,
    TransactionRecord,
)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Surface database failures as StorageFailureError, without retrying"""
    try:
        yield
    except SQLAlchemyError as e:
        raise StorageFailureError(f"{operation} failed: {e}") from e


def _to_transaction(record: TransactionRecord) -> Transaction:
    return Transaction(
        id=record.id,
        bank_id=record.bank_id,
        contract_id=record.contract_id,
        date=record.date,
        counterparty=record.counterparty,
        amount_cents=record.amount_cents,
        bank_balance_after_cents=record.bank_balance_after_cents,
        is_hidden=record.is_hidden,
        contract_not_allowed=record.contract_not_allowed,
    )


def _to_contract(record: ContractRecord) -> Contract:
    return Contract(
        id=record.id,
        bank_id=record.bank_id,
        name=record.name,
        parse_name=record.parse_name,
        current_amount_cents=record.current_amount_cents,
        months_between_payment=record.months_between_payment,
        end_date=record.end_date,
    )


def _to_history(record: ContractHistoryRecord) -> ContractHistory:
    return ContractHistory(
        id=record.id,
        contract_id=record.contract_id,
        old_amount_cents=record.old_amount_cents,
        new_amount_cents=record.new_amount_cents,
        changed_at=record.changed_at,
    )


def _to_csv_converter(record: CsvConverterRecord) -> CsvConverter:
    return CsvConverter(
        id=record.id,
        bank_id=record.bank_id,
        date_column=record.date_column,
        counterparty_column=record.counterparty_column,
        amount_column=record.amount_column,
        bank_balance_after_column=record.bank_balance_after_column,
    )


class BankRepository:
    """Repository for bank accounts"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def insert_bank(self, name: str) -> int:
        """Create a bank account and return its id"""
        with storage_errors("insert bank"):
            record = BankRecord(name=name)
            self.session.add(record)
            await self.session.flush()
            return record.id

    async def load_bank(self, bank_id: int) -> Bank:
        """Fetch one bank or raise BankNotFoundError"""
        with storage_errors("load bank"):
            record = await self.session.get(BankRecord, bank_id)
        if record is None:
            raise BankNotFoundError(bank_id)
        return Bank(id=record.id, name=record.name)


class TransactionRepository:
    """Repository for imported transactions"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _select(self, *criteria) -> List[Transaction]:
        stmt = (
            select(TransactionRecord)
            .where(*criteria)
            .order_by(TransactionRecord.date, TransactionRecord.id)
        )
        result = await self.session.execute(stmt)
        return [_to_transaction(r) for r in result.scalars().all()]

    async def insert_transactions(self, transactions: List[NewTransaction]) -> List[Transaction]:
        """Persist imported transactions"""
        with storage_errors("insert transactions"):
            records = [
                TransactionRecord(
                    bank_id=t.bank_id,
                    date=t.date,
                    counterparty=t.counterparty,
                    amount_cents=t.amount_cents,
                    bank_balance_after_cents=t.bank_balance_after_cents,
                    is_hidden=t.is_hidden,
                    contract_not_allowed=t.contract_not_allowed,
                )
                for t in transactions
            ]
            self.session.add_all(records)
            await self.session.flush()
            return [_to_transaction(r) for r in records]

    async def load_transaction(self, transaction_id: int) -> Transaction:
        """Fetch one transaction or raise TransactionNotFoundError"""
        with storage_errors("load transaction"):
            transactions = await self._select(TransactionRecord.id == transaction_id)
        if not transactions:
            raise TransactionNotFoundError(transaction_id)
        return transactions[0]

    async def load_unlinked_transactions(self, bank_id: int) -> List[Transaction]:
        """Transactions without a contract that the user allows to be matched"""
        with storage_errors("load unlinked transactions"):
            return await self._select(
                TransactionRecord.bank_id == bank_id,
                TransactionRecord.contract_id.is_(None),
                TransactionRecord.contract_not_allowed.is_(False),
            )

    async def load_transactions(
        self, bank_id: Optional[int] = None, contract_id: Optional[int] = None
    ) -> List[Transaction]:
        """Transactions of a bank or of a contract, oldest first"""
        with storage_errors("load transactions"):
            return await self._select(self._owner_criterion(bank_id, contract_id))

    async def load_latest_transaction(
        self, bank_id: Optional[int] = None, contract_id: Optional[int] = None
    ) -> Optional[Transaction]:
        """Most recent transaction of a bank or of a contract"""
        stmt = (
            select(TransactionRecord)
            .where(self._owner_criterion(bank_id, contract_id))
            .order_by(TransactionRecord.date.desc(), TransactionRecord.id.desc())
            .limit(1)
        )
        with storage_errors("load latest transaction"):
            record = (await self.session.execute(stmt)).scalars().first()
        return _to_transaction(record) if record is not None else None

    async def load_last_payment_dates(self, contract_ids: List[int]) -> Dict[int, date]:
        """Date of the latest transaction of each contract, in one query"""
        if not contract_ids:
            return {}
        stmt = (
            select(TransactionRecord.contract_id, func.max(TransactionRecord.date))
            .where(TransactionRecord.contract_id.in_(contract_ids))
            .group_by(TransactionRecord.contract_id)
        )
        with storage_errors("load last payment dates"):
            rows = (await self.session.execute(stmt)).all()
        return {contract_id: last_date for contract_id, last_date in rows}

    async def link_transactions_to_contract(
        self, transaction_ids: List[int], contract_id: Optional[int]
    ) -> None:
        """Set (or clear, with None) the contract of the given transactions"""
        if not transaction_ids:
            return
        stmt = (
            update(TransactionRecord)
            .where(TransactionRecord.id.in_(transaction_ids))
            .values(contract_id=contract_id)
        )
        with storage_errors("link transactions"):
            await self.session.execute(stmt)

    async def relink_contract_transactions(self, from_contract_ids: List[int], to_contract_id: int) -> None:
        """Move every transaction of from_contract_ids onto to_contract_id"""
        if not from_contract_ids:
            return
        stmt = (
            update(TransactionRecord)
            .where(TransactionRecord.contract_id.in_(from_contract_ids))
            .values(contract_id=to_contract_id)
        )
        with storage_errors("relink transactions"):
            await self.session.execute(stmt)

    @staticmethod
    def _owner_criterion(bank_id: Optional[int], contract_id: Optional[int]):
        if (bank_id is None) == (contract_id is None):
            raise ValueError("Pass exactly one of bank_id or contract_id")
        if bank_id is not None:
            return TransactionRecord.bank_id == bank_id
        return TransactionRecord.contract_id == contract_id


class ContractRepository:
    """Repository for contracts"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _select(self, *criteria) -> List[Contract]:
        stmt = select(ContractRecord).where(*criteria).order_by(ContractRecord.id)
        result = await self.session.execute(stmt)
        return [_to_contract(r) for r in result.scalars().all()]

    async def load_contracts(self, bank_id: int) -> List[Contract]:
        with storage_errors("load contracts"):
            return await self._select(ContractRecord.bank_id == bank_id)

    async def load_open_contracts(self, bank_id: int) -> List[Contract]:
        """Contracts without an end date"""
        with storage_errors("load open contracts"):
            return await self._select(ContractRecord.bank_id == bank_id, ContractRecord.end_date.is_(None))

    async def load_closed_contracts(self, bank_id: int) -> List[Contract]:
        with storage_errors("load closed contracts"):
            return await self._select(ContractRecord.bank_id == bank_id, ContractRecord.end_date.is_not(None))

    async def load_contracts_by_ids(self, contract_ids: List[int]) -> List[Contract]:
        if not contract_ids:
            return []
        with storage_errors("load contracts by id"):
            return await self._select(ContractRecord.id.in_(contract_ids))

    async def load_contract(self, contract_id: int) -> Contract:
        """Fetch one contract or raise ContractNotFoundError"""
        contracts = await self.load_contracts_by_ids([contract_id])
        if not contracts:
            raise ContractNotFoundError(contract_id)
        return contracts[0]

    async def insert_contracts(self, contracts: List[NewContract]) -> List[Contract]:
        """Persist new contracts, returned in input order with their ids"""
        with storage_errors("insert contracts"):
            records = [
                ContractRecord(
                    bank_id=c.bank_id,
                    name=c.name,
                    parse_name=c.parse_name,
                    current_amount_cents=c.current_amount_cents,
                    months_between_payment=c.months_between_payment,
                    end_date=c.end_date,
                )
                for c in contracts
            ]
            self.session.add_all(records)
            await self.session.flush()
            return [_to_contract(r) for r in records]

    async def insert_contract(self, contract: NewContract) -> Contract:
        return (await self.insert_contracts([contract]))[0]

    async def _update(self, contract_id: int, operation: str, **values) -> None:
        stmt = update(ContractRecord).where(ContractRecord.id == contract_id).values(**values)
        with storage_errors(operation):
            result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise ContractNotFoundError(contract_id)

    async def update_contract_amount(self, contract_id: int, amount_cents: int) -> None:
        await self._update(contract_id, "update contract amount", current_amount_cents=amount_cents)

    async def update_contract_end_date(self, contract_id: int, end_date: Optional[date]) -> None:
        await self._update(contract_id, "update contract end date", end_date=end_date)

    async def update_contract_name(self, contract_id: int, name: str) -> None:
        await self._update(contract_id, "update contract name", name=name)

    async def delete_contracts(self, contract_ids: List[int]) -> None:
        """Delete contracts; callers move or unlink their transactions and history first"""
        if not contract_ids:
            return
        with storage_errors("delete contracts"):
            await self.session.execute(delete(ContractRecord).where(ContractRecord.id.in_(contract_ids)))


class ContractHistoryRepository:
    """Repository for contract amount history"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load_contract_history(self, contract_id: int) -> List[ContractHistory]:
        """History of one contract, oldest change first"""
        histories = await self.load_histories([contract_id])
        return histories.get(contract_id, [])

    async def load_histories(self, contract_ids: List[int]) -> Dict[int, List[ContractHistory]]:
        """History of several contracts keyed by contract id"""
        if not contract_ids:
            return {}
        stmt = (
            select(ContractHistoryRecord)
            .where(ContractHistoryRecord.contract_id.in_(contract_ids))
            .order_by(ContractHistoryRecord.changed_at, ContractHistoryRecord.id)
        )
        with storage_errors("load contract history"):
            records = (await self.session.execute(stmt)).scalars().all()

        histories: Dict[int, List[ContractHistory]] = {}
        for record in records:
            histories.setdefault(record.contract_id, []).append(_to_history(record))
        return histories

    async def insert_contract_histories(self, histories: List[NewContractHistory]) -> List[ContractHistory]:
        """Persist history rows in one flush"""
        if not histories:
            return []
        with storage_errors("insert contract history"):
            records = [
                ContractHistoryRecord(
                    contract_id=h.contract_id,
                    old_amount_cents=h.old_amount_cents,
                    new_amount_cents=h.new_amount_cents,
                    changed_at=h.changed_at,
                )
                for h in histories
            ]
            self.session.add_all(records)
            await self.session.flush()
            return [_to_history(r) for r in records]

    async def insert_contract_history(self, history: NewContractHistory) -> ContractHistory:
        return (await self.insert_contract_histories([history]))[0]

    async def update_contract_history(self, history: ContractHistory) -> None:
        stmt = (
            update(ContractHistoryRecord)
            .where(ContractHistoryRecord.id == history.id)
            .values(
                old_amount_cents=history.old_amount_cents,
                new_amount_cents=history.new_amount_cents,
                changed_at=history.changed_at,
            )
        )
        with storage_errors("update contract history"):
            await self.session.execute(stmt)

    async def delete_contract_history(self, history_ids: List[int]) -> None:
        if not history_ids:
            return
        with storage_errors("delete contract history"):
            await self.session.execute(
                delete(ContractHistoryRecord).where(ContractHistoryRecord.id.in_(history_ids))
            )

    async def delete_history_of_contracts(self, contract_ids: List[int]) -> None:
        if not contract_ids:
            return
        with storage_errors("delete contract history"):
            await self.session.execute(
                delete(ContractHistoryRecord).where(ContractHistoryRecord.contract_id.in_(contract_ids))
            )


class CsvConverterRepository:
    """Repository for per-bank CSV column mappings"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _load_record(self, bank_id: int) -> Optional[CsvConverterRecord]:
        stmt = select(CsvConverterRecord).where(CsvConverterRecord.bank_id == bank_id)
        return (await self.session.execute(stmt)).scalars().first()

    async def load_csv_converter(self, bank_id: int) -> Optional[CsvConverter]:
        with storage_errors("load csv converter"):
            record = await self._load_record(bank_id)
        return _to_csv_converter(record) if record is not None else None

    async def save_csv_converter(self, converter: CsvConverter) -> CsvConverter:
        """Create or replace the column mapping of a bank"""
        with storage_errors("save csv converter"):
            record = await self._load_record(converter.bank_id)
            if record is None:
                record = CsvConverterRecord(bank_id=converter.bank_id)
                self.session.add(record)
            record.date_column = converter.date_column
            record.counterparty_column = converter.counterparty_column
            record.amount_column = converter.amount_column
            record.bank_balance_after_column = converter.bank_balance_after_column
            await self.session.flush()
            return _to_csv_converter(record)
