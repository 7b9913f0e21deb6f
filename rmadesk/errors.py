"""Error taxonomy shared by the store, the RMA workflow and the HTTP routes."""

from typing import Any, Optional


class ValidationError(ValueError):
    """Operator input rejected before anything was written."""


class NotFoundError(LookupError):
    """A document id that does not exist in its collection."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


class StoreError(RuntimeError):
    """The document store could not complete a read or write."""

    def __init__(self, message: str = "store unavailable", cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class EmailDeliveryError(RuntimeError):
    """Both email providers refused the message."""

    def __init__(self, message: str, details: Any = None):
        self.details = details
        super().__init__(message)
