"""Contract synthesis - detect new recurring payments in unmatched transactions"""

from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from contract_engine.domain.cadence import DAY_TOLERANCE, months_between
from contract_engine.domain.models import NewContract, SynthesizedContract, Transaction

MIN_RUN_LENGTH = 2
ALLOWABLE_GAP_MONTHS = 6
RECURRING_CADENCES = (1, 2, 3, 6, 12)

# counterparty -> amount in cents -> transactions
TransactionBuckets = Dict[str, Dict[int, List[Transaction]]]


def group_by_counterparty_and_amount(
    transactions: List[Transaction],
    min_run_length: int = MIN_RUN_LENGTH,
) -> TransactionBuckets:
    """Bucket transactions by exact counterparty and amount, dropping buckets too small to recur"""
    buckets: TransactionBuckets = defaultdict(lambda: defaultdict(list))
    for transaction in transactions:
        buckets[transaction.counterparty][transaction.amount_cents].append(transaction)

    return {
        counterparty: {
            amount: bucket for amount, bucket in amounts.items() if len(bucket) >= min_run_length
        }
        for counterparty, amounts in buckets.items()
        if any(len(bucket) >= min_run_length for bucket in amounts.values())
    }


def find_recurring_runs(
    transactions: List[Transaction],
    allowable_gap_months: int = ALLOWABLE_GAP_MONTHS,
    cadences: Sequence[int] = RECURRING_CADENCES,
    day_tolerance: int = DAY_TOLERANCE,
) -> List[Tuple[int, List[Transaction]]]:
    """
    Walk one (counterparty, amount) bucket and cut it into recurring runs.

    A run starts at an anchor and grows while the gap from the last accepted
    transaction is a positive month count that is either a recognized cadence
    or at most allowable_gap_months. The first accepted gap fixes the run's
    cadence; a differing gap beyond the slack bound, or any rejected gap,
    ends the run and the next one starts after its last member.

    Returns:
        (cadence in months, members) for every run that established a cadence
    """
    ordered = sorted(transactions, key=lambda t: (t.date, t.id))
    runs: List[Tuple[int, List[Transaction]]] = []

    i = 0
    while i < len(ordered):
        members = [ordered[i]]
        cadence: Optional[int] = None

        for candidate in ordered[i + 1:]:
            months = months_between(members[-1].date, candidate.date, day_tolerance)
            if months is None or months == 0:
                break
            if months not in cadences and months > allowable_gap_months:
                break
            if cadence is None:
                cadence = months
            elif months != cadence and months > allowable_gap_months:
                break
            members.append(candidate)

        if cadence is not None:
            runs.append((cadence, members))
        i += len(members)

    return runs


def synthesize_contracts(
    bank_id: int,
    transactions: List[Transaction],
    min_run_length: int = MIN_RUN_LENGTH,
    allowable_gap_months: int = ALLOWABLE_GAP_MONTHS,
    cadences: Sequence[int] = RECURRING_CADENCES,
    day_tolerance: int = DAY_TOLERANCE,
) -> List[SynthesizedContract]:
    """
    Create contracts for recurring payments among unmatched transactions.

    Each (counterparty, amount, cadence) triple yields at most one contract;
    further runs resolving to the same triple are attached to it.
    """
    synthesized: Dict[Tuple[str, int, int], SynthesizedContract] = {}

    buckets = group_by_counterparty_and_amount(transactions, min_run_length)
    for counterparty in sorted(buckets):
        for amount_cents in sorted(buckets[counterparty]):
            bucket = buckets[counterparty][amount_cents]
            for cadence, members in find_recurring_runs(bucket, allowable_gap_months, cadences, day_tolerance):
                key = (counterparty, amount_cents, cadence)
                if key not in synthesized:
                    synthesized[key] = SynthesizedContract(
                        contract=NewContract(
                            bank_id=bank_id,
                            name=counterparty,
                            parse_name=counterparty,
                            current_amount_cents=amount_cents,
                            months_between_payment=cadence,
                        ),
                        transaction_ids=[],
                    )
                synthesized[key].transaction_ids.extend(t.id for t in members)

    return list(synthesized.values())
