"""Transaction classification against a bank's existing contracts"""

from typing import Dict, Iterable, List, Optional

from contract_engine.domain.models import Classification, Contract, Transaction
from contract_engine.utils.money import within_tolerance

DRIFT_TOLERANCE = 0.15


def _in_match_order(contracts: Iterable[Contract]) -> List[Contract]:
    # First qualifying contract wins, so the scan order is part of the result
    return sorted(contracts, key=lambda c: c.id)


def find_exact_contract(transaction: Transaction, contracts: List[Contract]) -> Optional[Contract]:
    """Contract paid with exactly this amount by this counterparty"""
    for contract in contracts:
        if (
            transaction.amount_cents == contract.current_amount_cents
            and transaction.counterparty == contract.parse_name
        ):
            return contract
    return None


def find_drifted_contract(
    transaction: Transaction,
    contracts: List[Contract],
    drift_tolerance: float = DRIFT_TOLERANCE,
) -> Optional[Contract]:
    """Contract of this counterparty whose amount is within drift_tolerance of the transaction"""
    for contract in contracts:
        if transaction.counterparty != contract.parse_name:
            continue
        if within_tolerance(transaction.amount_cents, contract.current_amount_cents, drift_tolerance):
            return contract
    return None


def classify_transactions(
    transactions: List[Transaction],
    contracts: List[Contract],
    drift_tolerance: float = DRIFT_TOLERANCE,
) -> Classification:
    """
    Partition uncontracted transactions against open contracts.

    Exact matches (same amount and counterparty) are taken first. Only the
    transactions left over are tried for a drift match, where the amount may
    deviate from the contract's current amount by drift_tolerance. Contracts
    are scanned in ascending id order and the first qualifying one wins.

    Returns:
        Classification with exact and drifted maps (contract id -> transactions)
        and the unmatched remainder in input order
    """
    ordered = _in_match_order(contracts)
    classification = Classification()

    leftover: List[Transaction] = []
    for transaction in transactions:
        contract = find_exact_contract(transaction, ordered)
        if contract is None:
            leftover.append(transaction)
        else:
            classification.exact.setdefault(contract.id, []).append(transaction)

    for transaction in leftover:
        contract = find_drifted_contract(transaction, ordered, drift_tolerance)
        if contract is None:
            classification.unmatched.append(transaction)
        else:
            classification.drifted.setdefault(contract.id, []).append(transaction)

    return classification


def match_resumed_transactions(
    transactions: List[Transaction],
    closed_contracts: List[Contract],
    drift_tolerance: float = DRIFT_TOLERANCE,
) -> Dict[int, List[Transaction]]:
    """
    Find transactions that resume payment of a closed contract.

    A transaction resumes a contract when it is dated after the contract's
    end date and matches it exactly or within drift_tolerance.
    """
    ordered = _in_match_order(closed_contracts)
    resumed: Dict[int, List[Transaction]] = {}

    for transaction in transactions:
        candidates = [
            c for c in ordered
            if c.end_date is not None and transaction.date > c.end_date
        ]
        contract = find_exact_contract(transaction, candidates) or find_drifted_contract(
            transaction, candidates, drift_tolerance
        )
        if contract is not None:
            resumed.setdefault(contract.id, []).append(transaction)

    return resumed
