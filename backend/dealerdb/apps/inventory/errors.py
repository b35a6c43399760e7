from __future__ import annotations

from typing import Optional


class InventoryError(Exception):
    """Base class for inventory engine failures."""


class DecodeError(InventoryError):
    """A serial did not match the grammar. Recorded per record, never fatal to a batch."""

    def __init__(self, serial: str, message: str = "Invalid serial number format") -> None:
        super().__init__(f"{message}: {serial!r}")
        self.serial = serial


class PortalError(InventoryError):
    """The dealer portal could not be reached or rejected the credentials."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SyncError(InventoryError):
    """A lot sync failed before any record was merged. Scoped to one lot."""

    def __init__(self, lot_name: str, message: str) -> None:
        super().__init__(f"Sync failed for lot {lot_name!r}: {message}")
        self.lot_name = lot_name
        self.message = message


class InvalidOverrideError(InventoryError, ValueError):
    pass


class StaleOverrideError(InventoryError):
    """A versioned override write lost against a newer write."""

    def __init__(self, serial: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Override for {serial} is at version {actual_version}, expected {expected_version}"
        )
        self.serial = serial
        self.expected_version = expected_version
        self.actual_version = actual_version


class LotNotFoundError(InventoryError, LookupError):
    pass


class LotExistsError(InventoryError):
    pass


class ImageLimitError(InventoryError):
    pass


class ImageNotFoundError(InventoryError, LookupError):
    pass


class InvalidLotError(InventoryError, ValueError):
    pass
