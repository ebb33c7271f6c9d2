"""
Asset system API client: handles all communication with the Jira
Assets REST API.

Encapsulates authentication, workspace discovery, AQL pagination and
error translation so that ``asset_sync_service`` only deals with raw
object dicts and typed errors.

Every failure (transport, timeout, unexpected status, unparseable
JSON) surfaces as ``SyncError``; a missing object on ``get_object``
surfaces as ``NotFoundError``.  Nothing here touches the database.

Configuration is read from Flask ``current_app.config``:
    - ``ASSETS_SITE_URL``:      e.g. ``https://acme.atlassian.net``
    - ``ASSETS_API_BASE_URL``:  ``https://api.atlassian.com/jsm/assets/workspace``
    - ``ASSETS_WORKSPACE_ID``:  skips discovery when set.
    - ``ASSETS_EMAIL`` / ``ASSETS_API_TOKEN``: Basic-auth credentials.
    - ``ASSETS_TIMEOUT_SECONDS`` / ``ASSETS_BULK_TIMEOUT_SECONDS``.
    - ``ASSETS_PAGE_SIZE``:     AQL page size.
"""

import json
import logging
from typing import Any
from urllib.parse import urlencode

import urllib3
from flask import current_app

from dotation.errors import NotFoundError, SyncError

logger = logging.getLogger(__name__)

# Connect timeout is always short; only the read budget differs
# between normal and bulk calls.
_CONNECT_TIMEOUT_SECONDS = 10.0


class AssetsApiClient:
    """
    Client for the Jira Assets REST API (v1).

    Usage inside a Flask request or app context::

        client = AssetsApiClient()
        obj = client.get_object("12345")
        objects = client.find_objects(schema_name="Parc Informatique",
                                      object_type_name="Laptop")

    Args:
        http: Optional object exposing ``request(method, url, headers=,
              body=, timeout=)`` like ``urllib3.PoolManager``.  Tests
              pass a fake here.
    """

    def __init__(self, http=None) -> None:
        config = current_app.config
        self.site_url: str = config.get("ASSETS_SITE_URL", "").rstrip("/")
        self.api_base_url: str = config["ASSETS_API_BASE_URL"].rstrip("/")
        self.email: str = config.get("ASSETS_EMAIL", "")
        self.api_token: str = config.get("ASSETS_API_TOKEN", "")
        self.timeout: float = config.get("ASSETS_TIMEOUT_SECONDS", 30)
        self.bulk_timeout: float = config.get("ASSETS_BULK_TIMEOUT_SECONDS", 300)
        self.page_size: int = config.get("ASSETS_PAGE_SIZE", 100)
        self._workspace_id: str | None = config.get("ASSETS_WORKSPACE_ID") or None

        self.headers: dict[str, str] = urllib3.make_headers(
            basic_auth=f"{self.email}:{self.api_token}"
        )
        self.headers["Accept"] = "application/json"
        self.headers["Content-Type"] = "application/json"

        self._http = http or urllib3.PoolManager()

        if not self.email or not self.api_token:
            logger.warning(
                "ASSETS_EMAIL / ASSETS_API_TOKEN not configured; asset "
                "system calls will be rejected."
            )

        logger.debug(
            "AssetsApiClient initialized: api_base_url=%s, workspace=%s",
            self.api_base_url,
            self._workspace_id or "(discover)",
        )

    # =================================================================
    # Workspace discovery
    # =================================================================

    def get_workspace_id(self) -> str:
        """
        Return the workspace ID, discovering it once from the site.

        Raises:
            SyncError: If discovery fails or the site has no workspace.
        """
        if self._workspace_id:
            return self._workspace_id

        if not self.site_url:
            raise SyncError(
                "ASSETS_SITE_URL is required to discover the workspace ID."
            )

        data = self._request(
            "GET", f"{self.site_url}/rest/servicedeskapi/assets/workspace"
        )
        values = (data or {}).get("values") or []
        if not values or not values[0].get("workspaceId"):
            raise SyncError("No asset workspace found for this site.")

        self._workspace_id = str(values[0]["workspaceId"])
        logger.info("Discovered asset workspace %s", self._workspace_id)
        return self._workspace_id

    def _object_url(self, path: str) -> str:
        return f"{self.api_base_url}/{self.get_workspace_id()}/v1/{path}"

    # =================================================================
    # Object primitives
    # =================================================================

    def get_object(self, object_id: str, bulk: bool = False) -> dict[str, Any]:
        """
        Fetch one object with its attributes.

        Raises:
            NotFoundError: If the asset system answers 404.
            SyncError:     On any other failure.
        """
        try:
            return self._request("GET", self._object_url(f"object/{object_id}"), bulk=bulk)
        except SyncError as exc:
            if exc.status == 404:
                raise NotFoundError("External asset", object_id) from exc
            raise exc.with_context(external_asset_id=str(object_id))

    def create_object(
        self, object_type_id: str, attributes: list[dict[str, Any]]
    ) -> dict[str, Any]:
        """Create an object and return the created object dict (with ``id``)."""
        return self._request(
            "POST",
            self._object_url("object/create"),
            body={"objectTypeId": object_type_id, "attributes": attributes},
        )

    def update_object(
        self, object_id: str, attributes: list[dict[str, Any]]
    ) -> dict[str, Any]:
        """Replace the given attribute values on an existing object."""
        try:
            return self._request(
                "PUT",
                self._object_url(f"object/{object_id}"),
                body={"attributes": attributes},
            )
        except SyncError as exc:
            raise exc.with_context(
                external_asset_id=str(object_id),
                attribute_ids=[str(a.get("objectTypeAttributeId")) for a in attributes],
            )

    # =================================================================
    # AQL queries
    # =================================================================

    def query(
        self,
        ql_query: str,
        page_size: int | None = None,
        limit: int | None = None,
        bulk: bool = True,
    ) -> list[dict[str, Any]]:
        """
        Run an AQL query and collect every page.

        Paging stops when the server-reported total is reached, when a
        page comes back shorter than requested (servers that omit the
        total), when a page is empty, or when ``limit`` objects have
        been collected.

        Args:
            ql_query:  AQL string.
            page_size: Objects per page; defaults to ``ASSETS_PAGE_SIZE``.
            limit:     Maximum number of objects to return.
            bulk:      Use the bulk read timeout.

        Returns:
            Flat list of raw object dicts, at most ``limit`` long.
        """
        page_size = page_size or self.page_size
        collected: list[dict[str, Any]] = []
        start = 0

        while True:
            params = urlencode({"startAt": start, "maxResults": page_size})
            data = self._request(
                "POST",
                f"{self._object_url('object/aql')}?{params}",
                body={"qlQuery": ql_query},
                bulk=bulk,
            ) or {}

            page = data.get("values") or []
            collected.extend(page)
            total = data.get("total") or data.get("size") or 0

            logger.debug(
                "AQL page at %d: %d objects (collected %d%s)",
                start,
                len(page),
                len(collected),
                f"/{total}" if total else "",
            )

            if not page or data.get("isLast"):
                break
            if total and len(collected) >= total:
                break
            if len(page) < page_size:
                break
            if limit is not None and len(collected) >= limit:
                break
            start += len(page)

        return collected[:limit] if limit is not None else collected

    def find_objects(
        self,
        object_type_id: str | None = None,
        schema_name: str | None = None,
        object_type_name: str | None = None,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """
        Return every object of one type, by ID or by schema and type name.

        Raises:
            ValueError: If neither selector is given.
        """
        return self.query(
            build_type_query(object_type_id, schema_name, object_type_name),
            limit=limit,
        )

    # =================================================================
    # HTTP transport
    # =================================================================

    def _request(
        self,
        method: str,
        url: str,
        body: dict[str, Any] | None = None,
        bulk: bool = False,
    ) -> dict[str, Any] | None:
        """
        Send one HTTP request and return the parsed JSON body.

        Raises:
            SyncError: On transport failure, non-2xx status or bad JSON.
        """
        timeout = urllib3.Timeout(
            connect=_CONNECT_TIMEOUT_SECONDS,
            read=self.bulk_timeout if bulk else self.timeout,
        )
        encoded = json.dumps(body).encode("utf-8") if body is not None else None

        try:
            response = self._http.request(
                method,
                url,
                headers=self.headers,
                body=encoded,
                timeout=timeout,
            )
        except urllib3.exceptions.HTTPError as exc:
            logger.error("Asset API %s %s failed: %s", method, url, exc)
            raise SyncError(f"Asset API unreachable: {exc}") from exc

        if not 200 <= response.status < 300:
            logger.error(
                "Asset API %s %s returned status %d", method, url, response.status
            )
            raise SyncError(
                f"Asset API returned status {response.status}",
                status=response.status,
            )

        if not response.data:
            return None

        try:
            return json.loads(response.data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.error("Invalid JSON from asset API %s %s: %s", method, url, exc)
            raise SyncError(f"Invalid JSON from asset API: {exc}") from exc


def build_type_query(
    object_type_id: str | None = None,
    schema_name: str | None = None,
    object_type_name: str | None = None,
) -> str:
    """Build the AQL selecting one object type."""
    if object_type_id:
        return f"objectTypeId = {object_type_id}"
    if schema_name and object_type_name:
        return f'objectSchema = "{schema_name}" AND objectType = "{object_type_name}"'
    raise ValueError("Either object_type_id or schema_name and object_type_name are required.")
