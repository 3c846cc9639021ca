"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input rejected before anything is computed or written"""

    pass


class NotFoundError(DomainException):
    """Timeline, period, student or payment session does not exist"""

    pass


class PersistenceError(DomainException):
    """Backing store write failed; the whole unit of work was rolled back"""

    pass


class ConcurrencyError(DomainException):
    """Credit balance changed between read and conditional write"""

    pass
