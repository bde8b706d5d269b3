class LedgerServiceError(Exception):
    code = "LedgerServiceError"


class UnknownUserError(LedgerServiceError):
    code = "UnknownUser"


class UnknownTaskError(LedgerServiceError):
    code = "UnknownTask"


class UnknownWithdrawalError(LedgerServiceError):
    code = "UnknownWithdrawal"


class AlreadyActiveError(LedgerServiceError):
    code = "AlreadyActive"


class AlreadyCompletedError(LedgerServiceError):
    code = "AlreadyCompleted"


class InvalidAmountError(LedgerServiceError):
    code = "InvalidAmount"


class BelowMinimumError(LedgerServiceError):
    code = "BelowMinimum"


class AboveMaximumError(LedgerServiceError):
    code = "AboveMaximum"


class MissingDestinationError(LedgerServiceError):
    code = "MissingDestination"


class InsufficientBalanceError(LedgerServiceError):
    code = "InsufficientBalance"


class NotPendingError(LedgerServiceError):
    code = "NotPending"


class InvalidSettingsError(LedgerServiceError):
    code = "InvalidSettings"


class UsernameTakenError(LedgerServiceError):
    code = "UsernameTaken"


class InvalidCredentialsError(LedgerServiceError):
    code = "InvalidCredentials"


class AccountPendingError(LedgerServiceError):
    code = "AccountPending"


class PersistenceError(LedgerServiceError):
    """The persistence collaborator could not load or save the snapshot."""

    code = "PersistenceError"
