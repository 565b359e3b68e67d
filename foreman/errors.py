"""Exception types shared by the fetch layer and the view pipelines."""
from __future__ import annotations


class ForemanError(Exception):
    """Base class for errors raised by foreman."""


class FetchError(ForemanError):
    """A row fetch failed (network, auth, timeout or a non-2xx response)."""
    def __init__(self, resource: str, message: str):
        super().__init__(f"Fetching {resource} failed: {message}")
        self.resource = resource


class MalformedRowError(ForemanError, ValueError):
    """A row is missing a required field or carries a value outside its closed set."""
    def __init__(self, entity: str, row_id: object, detail: str):
        super().__init__(f"Malformed {entity} row {row_id!r}: {detail}")
        self.entity = entity
        self.row_id = row_id
        self.detail = detail
