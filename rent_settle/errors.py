"""Exceptions raised by the settlement engine and its store."""

from __future__ import annotations


class RentSettleError(Exception):
    """Base class for every error the package raises on purpose."""


class InvalidInput(RentSettleError, ValueError):
    """A month, year, amount or percentage outside its accepted domain."""


class InvalidRange(InvalidInput):
    """A period range whose start lies after its end."""


class NotFound(RentSettleError, LookupError):
    entity = "record"

    def __init__(self, identifier) -> None:
        super().__init__(f"{self.entity.capitalize()} {identifier} not found")
        self.identifier = identifier


class ContractNotFound(NotFound):
    entity = "contract"


class OwnerNotFound(NotFound):
    entity = "owner"


class PropertyNotFound(NotFound):
    entity = "property"


class TenantNotFound(NotFound):
    entity = "tenant"


class ReceiptNotFound(NotFound):
    entity = "receipt"


class StoreFailure(RentSettleError):
    """The relational store could not complete an operation.

    The underlying driver/ORM exception is kept as ``__cause__``.
    """


class StoreConflict(StoreFailure):
    """A write collided with a uniqueness constraint."""
