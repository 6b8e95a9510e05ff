"""Authenticated server-side boundary for Notion operations.

Browsers can't call the Notion API directly, so clients go through these
operations. Each one checks the caller's identity token, then its required
arguments, and only then talks to Notion.
"""

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Protocol

from tracker2notion.config import Settings
from tracker2notion.exceptions import (
    ConfigurationError,
    InvalidArgumentError,
    InvalidParentError,
    NotionAPIError,
    UnauthenticatedError,
)
from tracker2notion.models import (
    ArchiveResult,
    ConnectionStatus,
    CreatedPage,
    DatabaseAnalysis,
    OAuthGrant,
    Record,
    RemoteItem,
    Schema,
)
from tracker2notion.notion.client import NotionClient
from tracker2notion.notion.properties import build_database_properties, normalize_values, to_remote_properties
from tracker2notion.notion.schema import DEFAULT_DATABASE_TITLE, legacy_field_values
from tracker2notion.notion.sync import ClientFactory, fetch_remote_records, fields_for

logger = logging.getLogger(__name__)


class IdentityVerifier(Protocol):
    """Turns a caller identity token into a user id."""

    def verify(self, id_token: str | None) -> str:
        """Return the caller's user id, raising UnauthenticatedError if the token is not valid."""
        ...


class StaticTokenVerifier:
    """Verifier backed by a fixed token → user id mapping."""

    def __init__(self, tokens: Mapping[str, str]):
        self._tokens = dict(tokens)

    def verify(self, id_token: str | None) -> str:
        if not id_token or id_token not in self._tokens:
            raise UnauthenticatedError()
        return self._tokens[id_token]


def _require(**arguments: object) -> None:
    missing = [name for name, value in arguments.items() if not value]
    if missing:
        raise InvalidArgumentError(f"Missing required arguments: {', '.join(missing)}")


class NotionGateway:
    """Notion operations exposed to authenticated callers."""

    def __init__(
        self,
        verifier: IdentityVerifier,
        settings: Settings | None = None,
        client_factory: ClientFactory = NotionClient,
    ):
        self.verifier = verifier
        self.settings = settings
        self.client_factory = client_factory

    def _authenticate(self, id_token: str | None) -> str:
        return self.verifier.verify(id_token)

    @asynccontextmanager
    async def _client(self, api_key: str | None) -> AsyncIterator[NotionClient]:
        client = self.client_factory(api_key)
        try:
            yield client
        finally:
            await client.close()

    async def exchange_auth_code(self, id_token: str | None, code: str | None) -> OAuthGrant:
        """Exchange a Notion OAuth code for an access token."""
        self._authenticate(id_token)
        _require(code=code)

        settings = self.settings
        if settings is None or not settings.notion_client_id or not settings.notion_client_secret:
            raise ConfigurationError("NOTION_CLIENT_ID and NOTION_CLIENT_SECRET must be set")

        async with self._client(None) as client:
            return await client.exchange_oauth_code(
                code,
                settings.notion_client_id,
                settings.notion_client_secret,
                settings.notion_redirect_uri,
            )

    async def search_collections(
        self,
        id_token: str | None,
        api_key: str | None,
        kind: str | None = None,
    ) -> list[RemoteItem]:
        """Pages and databases shared with the integration (onboarding only)."""
        self._authenticate(id_token)
        _require(api_key=api_key)

        async with self._client(api_key) as client:
            return await client.search(kind)

    async def create_collection(
        self,
        id_token: str | None,
        api_key: str | None,
        parent_id: str | None,
        schema: Schema | None = None,
    ) -> str:
        """Create a database laid out after ``schema`` (or the legacy layout)."""
        self._authenticate(id_token)
        _require(api_key=api_key)
        if not parent_id:
            raise InvalidParentError(parent_id)

        properties = build_database_properties(fields_for(schema))
        title = schema.name if schema is not None else DEFAULT_DATABASE_TITLE
        async with self._client(api_key) as client:
            return await client.create_database(parent_id, title, properties)

    async def verify_connection(
        self,
        id_token: str | None,
        api_key: str | None,
        collection_id: str | None,
    ) -> ConnectionStatus:
        """Check the database is reachable. Notion errors give is_valid=False."""
        self._authenticate(id_token)
        _require(api_key=api_key, collection_id=collection_id)

        async with self._client(api_key) as client:
            try:
                await client.get_database(collection_id)
            except NotionAPIError as e:
                logger.warning(f"Connection check failed for database {collection_id}: {e}")
                return ConnectionStatus(is_valid=False)
        return ConnectionStatus(is_valid=True)

    async def analyze_collection(
        self,
        id_token: str | None,
        api_key: str | None,
        collection_id: str | None,
    ) -> DatabaseAnalysis:
        self._authenticate(id_token)
        _require(api_key=api_key, collection_id=collection_id)

        async with self._client(api_key) as client:
            return await client.analyze_database(collection_id)

    async def push_record(
        self,
        id_token: str | None,
        api_key: str | None,
        collection_id: str | None,
        record: Record | None,
        schema: Schema | None = None,
    ) -> CreatedPage:
        """Create a Notion page for ``record``. Not idempotent: don't retry blindly."""
        self._authenticate(id_token)
        _require(api_key=api_key, collection_id=collection_id, record=record)

        fields = fields_for(schema)
        values = record.field_values
        if schema is None:
            values = legacy_field_values(values, record.timestamp)
        properties = to_remote_properties(fields, normalize_values(fields, values, record.timestamp))

        async with self._client(api_key) as client:
            return await client.create_page(collection_id, properties)

    async def pull_records(
        self,
        id_token: str | None,
        api_key: str | None,
        collection_id: str | None,
        schema: Schema | None = None,
    ) -> list[Record]:
        """All active pages of the database as records, paginated internally."""
        user_id = self._authenticate(id_token)
        _require(api_key=api_key, collection_id=collection_id)

        async with self._client(api_key) as client:
            return await fetch_remote_records(
                client,
                collection_id,
                fields_for(schema),
                user_id,
                schema.id if schema is not None else None,
            )

    async def archive_record(
        self,
        id_token: str | None,
        api_key: str | None,
        remote_id: str | None,
    ) -> ArchiveResult:
        """Archive a page. Notion's error propagates as NotionAPIError."""
        self._authenticate(id_token)
        _require(api_key=api_key, remote_id=remote_id)

        async with self._client(api_key) as client:
            await client.archive_page(remote_id)
        return ArchiveResult(success=True)
