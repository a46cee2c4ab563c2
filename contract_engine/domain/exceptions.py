"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class NotFoundError(DomainException):
    """A referenced record does not exist"""

    pass


class ContractNotFoundError(NotFoundError):
    """Contract id does not resolve to a stored contract"""

    def __init__(self, contract_id: int):
        super().__init__(f"Contract {contract_id} not found")
        self.contract_id = contract_id


class TransactionNotFoundError(NotFoundError):
    """Transaction id does not resolve to a stored transaction"""

    def __init__(self, transaction_id: int):
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id


class BankNotFoundError(NotFoundError):
    """Bank id does not resolve to a stored bank account"""

    def __init__(self, bank_id: int):
        super().__init__(f"Bank {bank_id} not found")
        self.bank_id = bank_id


class StorageFailureError(DomainException):
    """Underlying database read or write failed"""

    pass


class InvariantViolationError(DomainException):
    """Stored data contradicts an engine invariant; the current run is aborted"""

    pass


class PipelineTimeoutError(DomainException):
    """Contract scan exceeded its wall-clock budget"""

    pass
