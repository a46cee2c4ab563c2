"""SQLAlchemy ORM models for banks, transactions, contracts and their history"""

from sqlalchemy import BigInteger, Boolean, Column, Date, ForeignKey, Integer, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class BankRecord(Base):
    """Bank account owning transactions and contracts"""

    __tablename__ = "banks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)

    csv_converter = relationship("CsvConverterRecord", back_populates="bank", uselist=False)


class TransactionRecord(Base):
    """Imported bank statement line"""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bank_id = Column(Integer, ForeignKey("banks.id", ondelete="CASCADE"), nullable=False, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id", ondelete="SET NULL"), nullable=True, index=True)
    date = Column(Date, nullable=False)
    counterparty = Column(Text, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    bank_balance_after_cents = Column(BigInteger, nullable=False)
    is_hidden = Column(Boolean, nullable=False, default=False)
    contract_not_allowed = Column(Boolean, nullable=False, default=False)


class ContractRecord(Base):
    """Recurring payment inferred from transactions"""

    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bank_id = Column(Integer, ForeignKey("banks.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    parse_name = Column(Text, nullable=False)
    current_amount_cents = Column(BigInteger, nullable=False)
    months_between_payment = Column(Integer, nullable=False)
    end_date = Column(Date, nullable=True)

    history = relationship("ContractHistoryRecord", back_populates="contract", cascade="all, delete-orphan")


class ContractHistoryRecord(Base):
    """Amount change of a contract"""

    __tablename__ = "contract_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    contract_id = Column(Integer, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True)
    old_amount_cents = Column(BigInteger, nullable=False)
    new_amount_cents = Column(BigInteger, nullable=False)
    changed_at = Column(Date, nullable=False)

    contract = relationship("ContractRecord", back_populates="history")


class CsvConverterRecord(Base):
    """Column mapping for a bank's CSV statements"""

    __tablename__ = "csv_converters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bank_id = Column(Integer, ForeignKey("banks.id", ondelete="CASCADE"), nullable=False, unique=True)
    date_column = Column(Integer, nullable=True)
    counterparty_column = Column(Integer, nullable=True)
    amount_column = Column(Integer, nullable=True)
    bank_balance_after_column = Column(Integer, nullable=True)

    bank = relationship("BankRecord", back_populates="csv_converter")
