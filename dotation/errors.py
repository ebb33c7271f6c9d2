"""
Typed exception hierarchy for the allocation and reconciliation engine.

Callers catch by type, not by message.  Every exception carries a
machine-readable ``code``, the HTTP status the JSON layer maps it to,
and a structured ``details`` dict naming the offending identifiers
(serial numbers preferred over opaque IDs where available).

    DotationError (base)
    |
    +-- ValidationError   400  malformed or missing input, unresolvable
    |                          reference batches, unavailable equipment
    +-- NotFoundError     404  user / allocation / return / equipment /
    |                          external object does not exist
    +-- ConflictError     409  state-machine violation (already assigned,
    |                          already signed, signature slot filled)
    +-- SyncError              failure talking to the asset system;
                               internal only, never fails a primary
                               operation
"""

from typing import Any


class DotationError(Exception):
    """Base class for all domain errors raised by the service layer."""

    code: str = "DOTATION_ERROR"
    http_status: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON body used by the blueprint error handlers."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DotationError):
    """
    Malformed or missing input.

    ``errors`` holds one dict per violating item so a caller can fix a
    whole batch in one round-trip.
    """

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.errors: list[dict[str, Any]] = errors or []
        merged = dict(details or {})
        if self.errors:
            merged["errors"] = self.errors
        super().__init__(message, merged)


class NotFoundError(DotationError):
    """A referenced record does not exist."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, identifier: Any, message: str | None = None):
        self.entity = entity
        self.identifier = identifier
        super().__init__(
            message or f"{entity} {identifier} not found.",
            {"entity": entity, "identifier": identifier},
        )


class ConflictError(DotationError):
    """The requested transition is not allowed from the current state."""

    code = "CONFLICT"
    http_status = 409


class SyncError(DotationError):
    """
    Failure reaching or parsing a response from the asset system.

    Carries enough context (serial, external ID, attribute IDs) for an
    operator to retry manually.
    """

    code = "SYNC_ERROR"
    http_status = 502

    def __init__(
        self,
        message: str,
        serial_number: str | None = None,
        external_asset_id: str | None = None,
        attribute_ids: list[str] | None = None,
        status: int | None = None,
    ):
        self.serial_number = serial_number
        self.external_asset_id = external_asset_id
        self.attribute_ids = attribute_ids or []
        self.status = status
        super().__init__(
            message,
            {
                "serial_number": serial_number,
                "external_asset_id": external_asset_id,
                "attribute_ids": self.attribute_ids,
                "status": status,
            },
        )

    def with_context(
        self,
        serial_number: str | None = None,
        external_asset_id: str | None = None,
        attribute_ids: list[str] | None = None,
    ) -> "SyncError":
        """Return a copy enriched with equipment context for logging."""
        return SyncError(
            self.message,
            serial_number=serial_number or self.serial_number,
            external_asset_id=external_asset_id or self.external_asset_id,
            attribute_ids=attribute_ids or self.attribute_ids,
            status=self.status,
        )
