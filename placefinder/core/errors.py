"""Error taxonomy shared by the loader, the query service and the store adapters."""

from typing import Optional


class PlacesError(RuntimeError):
    """Base class for every error raised by placefinder."""


class ConfigError(PlacesError):
    """Raised when configuration values are missing or malformed."""


class ConnectionFailure(PlacesError):
    """Raised when the document store cannot be reached.

    The bulk loader attaches its partial ``LoadReport`` as ``report`` before
    re-raising so callers still see what completed.
    """

    report = None


class SchemaFailure(PlacesError):
    """Raised when the store refuses to create the collection."""


class DecodeFailure(PlacesError):
    """Raised when a store response does not match the declared shape."""


class InvalidQuery(PlacesError):
    """Raised for client errors detected before any store call."""


class SourceUnreadable(PlacesError):
    """Raised when the ingestion source file cannot be opened."""


class MalformedRecord(PlacesError):
    """One source line could not be converted into a Place."""

    def __init__(self, field_index: int, reason: str, line_number: Optional[int] = None) -> None:
        self.field_index = field_index
        self.reason = reason
        self.line_number = line_number
        location = f"line {line_number}, " if line_number is not None else ""
        super().__init__(f"{location}field {field_index}: {reason}")


class StoreRejection(PlacesError):
    """The store refused one document of a batch."""

    def __init__(self, doc_id: int, reason: str) -> None:
        self.doc_id = doc_id
        self.reason = reason
        super().__init__(f"document {doc_id} rejected: {reason}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StoreRejection):
            return NotImplemented
        return (self.doc_id, self.reason) == (other.doc_id, other.reason)

    def __hash__(self) -> int:
        return hash((self.doc_id, self.reason))
