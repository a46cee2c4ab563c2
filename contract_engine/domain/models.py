"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional


@dataclass
class Bank:
    """Bank account owning transactions, contracts and a CSV converter"""

    id: int
    name: str


@dataclass
class Transaction:
    """Bank statement line imported from CSV"""

    id: int
    bank_id: int
    date: date
    counterparty: str
    amount_cents: int
    bank_balance_after_cents: int
    contract_id: Optional[int] = None
    is_hidden: bool = False
    contract_not_allowed: bool = False


@dataclass
class NewTransaction:
    """Transaction payload before it has been stored"""

    bank_id: int
    date: date
    counterparty: str
    amount_cents: int
    bank_balance_after_cents: int
    is_hidden: bool = False
    contract_not_allowed: bool = False


@dataclass
class Contract:
    """Recurring payment inferred from transaction history"""

    id: int
    bank_id: int
    name: str
    parse_name: str  # counterparty string used for matching
    current_amount_cents: int
    months_between_payment: int
    end_date: Optional[date] = None

    @property
    def is_open(self) -> bool:
        return self.end_date is None


@dataclass
class NewContract:
    """Contract payload before it has been stored"""

    bank_id: int
    name: str
    parse_name: str
    current_amount_cents: int
    months_between_payment: int
    end_date: Optional[date] = None


@dataclass
class ContractHistory:
    """Amount change of a contract"""

    id: int
    contract_id: int
    old_amount_cents: int
    new_amount_cents: int
    changed_at: date


@dataclass
class NewContractHistory:
    """History payload before it has been stored"""

    contract_id: int
    old_amount_cents: int
    new_amount_cents: int
    changed_at: date


@dataclass
class CsvConverter:
    """Column mapping used to import a bank's CSV statements"""

    bank_id: int
    date_column: Optional[int] = None
    counterparty_column: Optional[int] = None
    amount_column: Optional[int] = None
    bank_balance_after_column: Optional[int] = None
    id: Optional[int] = None


@dataclass
class Classification:
    """Uncontracted transactions partitioned against a bank's open contracts"""

    exact: Dict[int, List[Transaction]] = field(default_factory=dict)
    drifted: Dict[int, List[Transaction]] = field(default_factory=dict)
    unmatched: List[Transaction] = field(default_factory=list)


@dataclass
class HistoryPlan:
    """Changes to apply to a contract's history and current amount"""

    inserts: List[NewContractHistory] = field(default_factory=list)
    updates: List[ContractHistory] = field(default_factory=list)
    deletes: List[int] = field(default_factory=list)
    current_amount_cents: Optional[int] = None


@dataclass
class SynthesizedContract:
    """New contract together with the transactions that established it"""

    contract: NewContract
    transaction_ids: List[int]


@dataclass
class ContractOverview:
    """Contract with its history and last payment, as shown to the user"""

    contract: Contract
    history: List[ContractHistory]
    last_payment_date: Optional[date]


@dataclass
class PipelineOutcome:
    """Result of one contract scan over a bank"""

    bank_id: int
    new_contracts: List[Contract] = field(default_factory=list)
    exact_matched: int = 0
    drift_matched: int = 0
    synthesized_linked: int = 0
    history_entries: int = 0
    reopened_contracts: List[int] = field(default_factory=list)
    closed_contracts: List[int] = field(default_factory=list)
    skipped: bool = False

    @property
    def message(self) -> str:
        if self.skipped:
            return "No transactions without contract found!"
        message = f"Found {len(self.new_contracts)} new contracts!"
        if self.closed_contracts:
            message += f" Closed {len(self.closed_contracts)} contracts!"
        return message
