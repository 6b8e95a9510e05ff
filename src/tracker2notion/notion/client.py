"""Async Notion API client."""

import logging
from collections.abc import AsyncIterator

import httpx

from tracker2notion.exceptions import (
    ConfigurationError,
    InvalidParentError,
    NotionAPIError,
    RateLimitError,
)
from tracker2notion.models import CreatedPage, DatabaseAnalysis, OAuthGrant, RemoteItem

NOTION_API_BASE = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"

# Notion caps page_size at 100
MAX_PAGE_SIZE = 100
# Upper bound on pages fetched by one paginated loop
DEFAULT_MAX_PAGES = 1000

logger = logging.getLogger(__name__)


def _is_archived(page: dict) -> bool:
    return bool(page.get("archived") or page.get("in_trash"))


class NotionClient:
    """Async client for the Notion REST API.

    No call is retried: page creation isn't idempotent, so retrying is left
    to the caller.
    """

    def __init__(
        self,
        token: str | None,
        *,
        notion_version: str = NOTION_VERSION,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_size: int = MAX_PAGE_SIZE,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self.notion_version = notion_version
        self.max_pages = max_pages
        self.page_size = min(page_size, MAX_PAGE_SIZE)
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        if not self.token:
            raise ConfigurationError("No Notion token configured. Run 'tracker2notion connect' first.")
        return {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": self.notion_version,
            "Content-Type": "application/json",
        }

    @staticmethod
    def _raise_for_status(response: httpx.Response, page_id: str | None = None) -> None:
        if response.status_code < 400:
            return

        try:
            payload = response.json()
        except ValueError:
            payload = None
        message = payload.get("message") if isinstance(payload, dict) else None

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                int(retry_after) if retry_after and retry_after.isdigit() else None,
                message or response.text,
            )

        raise NotionAPIError(response.status_code, message or response.text, page_id=page_id)

    async def _request(
        self,
        method: str,
        endpoint: str,
        json: dict | None = None,
        page_id: str | None = None,
    ) -> dict:
        """Make authenticated API request."""
        client = await self._get_client()
        headers = self._headers()

        try:
            response = await client.request(
                method,
                f"{NOTION_API_BASE}{endpoint}",
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise NotionAPIError(None, str(e), page_id=page_id) from e

        self._raise_for_status(response, page_id=page_id)
        return response.json()

    # Databases

    async def get_database(self, database_id: str) -> dict:
        """Retrieve a database object (title and property definitions)."""
        return await self._request("GET", f"/databases/{database_id}")

    async def analyze_database(self, database_id: str) -> DatabaseAnalysis:
        """Title and column layout of an existing database."""
        database = await self.get_database(database_id)
        return DatabaseAnalysis.from_notion_database(database)

    async def create_database(self, parent_id: str | None, title: str, properties: dict) -> str:
        """
        Create a database under a page shared with the integration.

        Args:
            parent_id: Page ID that will contain the database
            title: Database title
            properties: Property definitions keyed by property name

        Returns:
            The new database ID
        """
        if not parent_id:
            raise InvalidParentError(parent_id)

        try:
            result = await self._request(
                "POST",
                "/databases",
                json={
                    "parent": {"type": "page_id", "page_id": parent_id},
                    "title": [{"type": "text", "text": {"content": title}}],
                    "properties": properties,
                },
            )
        except NotionAPIError as e:
            if e.status_code == 404:
                raise InvalidParentError(
                    parent_id,
                    f"Parent page {parent_id} is not shared with the integration: {e.message}",
                ) from e
            raise

        logger.info(f"Created database {result['id']} under page {parent_id}")
        return result["id"]

    async def update_database(self, database_id: str, properties: dict) -> dict:
        """Add or change property definitions on a database."""
        return await self._request(
            "PATCH",
            f"/databases/{database_id}",
            json={"properties": properties},
        )

    async def query_database(
        self,
        database_id: str,
        start_cursor: str | None = None,
        page_size: int | None = None,
    ) -> dict:
        """Fetch one page of query results.

        Returns Notion's raw response: ``results``, ``has_more``, ``next_cursor``.
        """
        body: dict = {"page_size": min(page_size or self.page_size, MAX_PAGE_SIZE)}
        if start_cursor:
            body["start_cursor"] = start_cursor
        return await self._request("POST", f"/databases/{database_id}/query", json=body)

    async def query_database_all(self, database_id: str) -> AsyncIterator[dict]:
        """
        Iterate over every active page in a database.

        Pages are requested one after another, each with the previous cursor.
        Archived pages are dropped because the query endpoint doesn't
        reliably exclude them. Stops after ``max_pages`` requests.
        """
        cursor = None
        for _ in range(self.max_pages):
            data = await self.query_database(database_id, start_cursor=cursor)

            for page in data.get("results", []):
                if _is_archived(page):
                    continue
                yield page

            cursor = data.get("next_cursor")
            if not data.get("has_more") or not cursor:
                return

        logger.warning(
            f"Stopped querying database {database_id} after {self.max_pages} pages; "
            "results may be incomplete"
        )

    # Pages

    async def create_page(self, database_id: str, properties: dict) -> CreatedPage:
        """Create a page (record) in a database."""
        result = await self._request(
            "POST",
            "/pages",
            json={
                "parent": {"database_id": database_id},
                "properties": properties,
            },
        )
        return CreatedPage.from_notion_page(result)

    async def update_page(self, page_id: str, properties: dict) -> dict:
        """Patch a page's properties."""
        return await self._request(
            "PATCH",
            f"/pages/{page_id}",
            json={"properties": properties},
            page_id=page_id,
        )

    async def archive_page(self, page_id: str) -> None:
        """Archive a page. Notion has no hard delete for pages."""
        await self._request(
            "PATCH",
            f"/pages/{page_id}",
            json={"archived": True},
            page_id=page_id,
        )
        logger.info(f"Archived Notion page {page_id}")

    # Onboarding

    async def search(self, kind: str | None = None) -> list[RemoteItem]:
        """
        Find pages and databases shared with the integration.

        Args:
            kind: "page" or "database" to restrict results, None for both

        Returns:
            Search hits, most recently edited first
        """
        body: dict = {
            "sort": {"direction": "descending", "timestamp": "last_edited_time"},
            "page_size": self.page_size,
        }
        if kind:
            body["filter"] = {"property": "object", "value": kind}

        items: list[RemoteItem] = []
        for _ in range(self.max_pages):
            data = await self._request("POST", "/search", json=body)
            items.extend(RemoteItem.from_notion(obj) for obj in data.get("results", []) if not _is_archived(obj))

            cursor = data.get("next_cursor")
            if not data.get("has_more") or not cursor:
                break
            body["start_cursor"] = cursor
        return items

    async def exchange_oauth_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str | None = None,
    ) -> OAuthGrant:
        """Exchange an OAuth authorization code for an access token."""
        client = await self._get_client()
        body = {"grant_type": "authorization_code", "code": code}
        if redirect_uri:
            body["redirect_uri"] = redirect_uri

        try:
            response = await client.post(
                f"{NOTION_API_BASE}/oauth/token",
                json=body,
                auth=(client_id, client_secret),
                headers={"Notion-Version": self.notion_version},
            )
        except httpx.HTTPError as e:
            raise NotionAPIError(None, str(e)) from e

        self._raise_for_status(response)
        data = response.json()
        return OAuthGrant(
            access_token=data["access_token"],
            workspace=data.get("workspace_name"),
            bot_id=data.get("bot_id"),
        )
