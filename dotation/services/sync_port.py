"""
External sync port: the narrow interface the allocation and return
engines use to mirror equipment status into the asset system.

The engines call ``get_sync_port().push_status(...)`` after their
primary commit and never see the asset client.  Implementations must
never raise; failures are logged and recorded in the pending-sync
outbox by the adapter behind the port.

The application factory installs the port in
``app.extensions["dotation.sync_port"]``:
  - ``AssetsSyncPort`` when ``ASSETS_STATUS_ATTR_ID`` or API
    credentials are configured.  It is handed the adapter's push
    function, so this module never imports the adapter.
  - ``NullSyncPort`` otherwise.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable

from flask import current_app

from dotation.services.attribute_detector import AttributeMapping

logger = logging.getLogger(__name__)

EXTENSION_KEY = "dotation.sync_port"


class ExternalSyncPort(ABC):
    """Mirror an equipment's status and owner to the external system."""

    @abstractmethod
    def push_status(self, equipment, status_attributes=None) -> bool:
        """
        Push the current status (and owner) of one equipment row.

        Args:
            equipment:         The Equipment row, already committed.
            status_attributes: Optional ``AttributeMapping`` or dict
                               overriding the configured attribute IDs.

        Returns:
            True when the external system acknowledged the update.
        """

    def push_many(self, equipment_rows: Iterable, status_attributes=None) -> list[str]:
        """
        Push every row that is linked to the external system.

        Returns:
            Serial numbers whose push did not succeed.
        """
        failed = []
        for equipment in equipment_rows:
            if not equipment.external_asset_id:
                continue
            if not self.push_status(equipment, status_attributes):
                failed.append(equipment.serial_number)
        return failed


class NullSyncPort(ExternalSyncPort):
    """Port used when no asset system is configured."""

    def push_status(self, equipment, status_attributes=None) -> bool:
        logger.debug(
            "Sync disabled; not pushing status %s for %s",
            equipment.status,
            equipment.serial_number,
        )
        return False

    def push_many(self, equipment_rows: Iterable, status_attributes=None) -> list[str]:
        # Nothing was attempted, so nothing failed.
        for equipment in equipment_rows:
            self.push_status(equipment, status_attributes)
        return []


class AssetsSyncPort(ExternalSyncPort):
    """
    Port backed by the asset sync adapter.

    ``push`` is the adapter's single-item status update, called as
    ``push(equipment_id, status_attr_id=..., assigned_user_attr_id=...)``.
    The application factory passes ``asset_sync_service.update_status_only``.
    """

    def __init__(
        self,
        push: Callable[..., bool],
        status_attr_id: str | None = None,
        assigned_user_attr_id: str | None = None,
    ) -> None:
        self.push = push
        self.default_mapping = AttributeMapping(
            status=status_attr_id or None,
            assigned_user=assigned_user_attr_id or None,
        )

    def push_status(self, equipment, status_attributes=None) -> bool:
        mapping = AttributeMapping.coerce(status_attributes).merged_with(
            self.default_mapping
        )
        if not mapping.status:
            logger.warning(
                "No status attribute ID available; not pushing %s",
                equipment.serial_number,
            )
            return False

        return self.push(
            equipment.id,
            status_attr_id=mapping.status,
            assigned_user_attr_id=mapping.assigned_user,
        )


def build_sync_port(config, push: Callable[..., bool] | None = None) -> ExternalSyncPort:
    """Choose the port from application config; no adapter means no sync."""
    status_attr_id = config.get("ASSETS_STATUS_ATTR_ID")
    if push is not None and (status_attr_id or config.get("ASSETS_API_TOKEN")):
        return AssetsSyncPort(
            push,
            status_attr_id=status_attr_id,
            assigned_user_attr_id=config.get("ASSETS_ASSIGNED_USER_ATTR_ID"),
        )
    return NullSyncPort()


def get_sync_port() -> ExternalSyncPort:
    """Return the port installed on the current app."""
    port = current_app.extensions.get(EXTENSION_KEY)
    if port is None:
        port = NullSyncPort()
        current_app.extensions[EXTENSION_KEY] = port
    return port
