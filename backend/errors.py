"""Exception taxonomy for the family archive import pipeline."""


class ArchiveError(Exception):
    """Base class for every error raised by the archive core."""


class MalformedInputError(ArchiveError, ValueError):
    """The source text is not structurally valid GEDCOM."""

    def __init__(self, message: str, line_number: int | None = None):
        super().__init__(message)
        self.line_number = line_number


class UnrecognizedStructureError(ArchiveError, ValueError):
    """Well-formed GEDCOM text that contains no individual records."""


class PersistenceError(ArchiveError, RuntimeError):
    """The underlying key/value store rejected a read or write."""


class SessionStateError(ArchiveError, RuntimeError):
    """An import session operation was called in the wrong state."""


class AnchorNotFoundError(SessionStateError, LookupError):
    """The selected home person is not part of the staged graph."""
