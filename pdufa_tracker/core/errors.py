"""PDUFA Tracker — Error Taxonomy.

Every boundary (fetcher, normalizer, store, dispatcher, API) raises one of
these so callers can classify failures without inspecting messages.
"""


class PDUFAError(Exception):
    """Base class for all tracker errors."""


class FetchError(PDUFAError):
    """A single upstream source was unreachable or returned unusable data."""

    def __init__(self, source: str, message: str, status_code: int = 0):
        self.source = source
        self.status_code = status_code
        super().__init__(f"{source}: {message}")


class ValidationError(PDUFAError):
    """A candidate record is missing a required field or has a bad date."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class PersistenceError(PDUFAError):
    """The store could not be read or written."""


class DeliveryError(PDUFAError):
    """A webhook delivery failed after all retry attempts."""

    def __init__(self, message: str, status_code: int = 0, attempts: int = 0):
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(message)


class RequestError(PDUFAError):
    """Invalid API input, surfaced to the client as a 4xx."""

    def __init__(self, message: str, status_code: int = 400):
        self.status_code = status_code
        super().__init__(message)


class CycleInProgressError(PDUFAError):
    """A scrape cycle was triggered while another one is still running."""
