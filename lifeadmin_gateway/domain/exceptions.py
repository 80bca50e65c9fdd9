"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidFormatError(DomainException):
    """Uploaded bytes are not a PDF document"""

    pass


class ParseError(DomainException):
    """PDF could not be decoded (corrupt or encrypted)"""

    pass


class NoTransactionsFound(DomainException):
    """Statement decoded but held no recognisable transaction lines"""

    pass


class ValidationError(DomainException):
    """Client input rejected before any mutation"""

    pass


class InvalidIndexError(ValidationError):
    """Confirmation referenced a suggestion index that does not exist"""

    def __init__(self, index: int, size: int):
        super().__init__(f"Invalid suggestion index: {index} (session has {size} suggestions)")
        self.index = index
        self.size = size


class SessionNotReadyError(ValidationError):
    """Import session has not reached the completed state"""

    pass


class NotFoundError(DomainException):
    """Requested resource does not exist"""

    pass


class ForbiddenError(DomainException):
    """Resource exists but belongs to another principal"""

    pass


class HasAssociatedEntriesError(DomainException):
    """Import session is still referenced by domain records"""

    def __init__(self, session_id: str, count: int):
        super().__init__(f"Import session {session_id} has {count} associated entries")
        self.session_id = session_id
        self.count = count
