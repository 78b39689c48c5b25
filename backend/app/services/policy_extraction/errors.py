"""
Exceptions raised by the policy extraction pipeline.
"""


class ExtractionError(Exception):
    """Base class for extraction pipeline failures."""


class TransportError(ExtractionError):
    """
    The extraction engine could not be reached or answered with a
    non-success status. Retried with backoff before a pass is abandoned.
    """

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class ExtractionCancelled(ExtractionError):
    """Raised when a document run is cancelled between passes."""

    def __init__(self, document_id: str, pass_number: int):
        super().__init__(f"Extraction of '{document_id}' cancelled before pass {pass_number}")
        self.document_id = document_id
        self.pass_number = pass_number
