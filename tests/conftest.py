"""
Shared fixtures: an in-memory store and a fake Notion API.

The fake answers the endpoints NotionClient uses through httpx.MockTransport,
so the real client code (headers, pagination, error mapping) runs in tests.
"""

import json
import uuid

import httpx
import pytest

from tracker2notion.notion.client import NotionClient
from tracker2notion.store import LocalStore

USER_ID = "user-1"
DATABASE_ID = "db-1"
API_KEY = "secret_test"


def notion_page(page_id: str | None, name: str = "", date: str | None = None, **extra) -> dict:
    """A Notion page object laid out with the legacy properties."""
    page = {
        "object": "page",
        "created_time": "2024-01-01T00:00:00.000Z",
        "url": f"https://www.notion.so/{page_id}",
        "archived": False,
        "properties": {
            "Name": {"type": "title", "title": [{"plain_text": name}] if name else []},
            "Date": {"type": "date", "date": {"start": date} if date else None},
            "Summary": {"type": "rich_text", "rich_text": []},
            "Photo": {"type": "url", "url": None},
        },
    }
    if page_id is not None:
        page["id"] = page_id
    page.update(extra)
    return page


def _as_stored(properties: dict) -> dict:
    """Echo written property values back the way Notion returns them."""
    stored = {}
    for name, value in properties.items():
        value = dict(value)
        for key in ("title", "rich_text"):
            if key in value:
                value[key] = [
                    {"plain_text": run["text"]["content"], **run} for run in value[key]
                ]
        stored[name] = value
    return stored


class FakeNotion:
    """Minimal stand-in for the Notion REST API."""

    def __init__(self):
        self.databases: dict[str, dict] = {}
        self.pages: dict[str, list[dict]] = {}
        self.search_results: list[dict] = []
        self.requests: list[httpx.Request] = []
        # "METHOD /v1/path" -> (status, message)
        self.errors: dict[str, tuple[int, str]] = {}
        self.transport = httpx.MockTransport(self.handle)

    def add_database(self, database_id: str, title: str = "Food Log", properties: dict | None = None) -> None:
        self.databases[database_id] = {
            "object": "database",
            "id": database_id,
            "title": [{"plain_text": title}],
            "properties": properties or {},
        }
        self.pages.setdefault(database_id, [])

    def add_pages(self, database_id: str, pages: list[dict]) -> None:
        self.pages.setdefault(database_id, []).extend(pages)

    def requests_to(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def find_page(self, page_id: str) -> dict | None:
        for pages in self.pages.values():
            for page in pages:
                if page.get("id") == page_id:
                    return page
        return None

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        body = json.loads(request.content) if request.content else {}

        error = self.errors.get(f"{request.method} {path}")
        if error is not None:
            status, message = error
            return httpx.Response(status, json={"object": "error", "status": status, "message": message})

        parts = path.strip("/").split("/")[1:]

        if parts == ["search"]:
            results = self.search_results
            kind = body.get("filter", {}).get("value")
            if kind:
                results = [r for r in results if r.get("object") == kind]
            return httpx.Response(200, json={"results": results, "has_more": False, "next_cursor": None})

        if parts == ["oauth", "token"]:
            return httpx.Response(
                200,
                json={"access_token": "secret_oauth", "workspace_name": "Home", "bot_id": "bot-1"},
            )

        if parts == ["databases"] and request.method == "POST":
            database_id = f"db-{uuid.uuid4().hex[:8]}"
            self.databases[database_id] = {"object": "database", "id": database_id, **body}
            self.pages[database_id] = []
            return httpx.Response(200, json=self.databases[database_id])

        if len(parts) == 3 and parts[0] == "databases" and parts[2] == "query":
            database_id = parts[1]
            if database_id not in self.databases:
                return self._not_found(database_id)
            pages = self.pages[database_id]
            start = int(body.get("start_cursor") or 0)
            end = start + body.get("page_size", 100)
            has_more = end < len(pages)
            return httpx.Response(
                200,
                json={
                    "results": pages[start:end],
                    "has_more": has_more,
                    "next_cursor": str(end) if has_more else None,
                },
            )

        if len(parts) == 2 and parts[0] == "databases":
            database = self.databases.get(parts[1])
            if database is None:
                return self._not_found(parts[1])
            if request.method == "PATCH":
                database.setdefault("properties", {}).update(body.get("properties", {}))
            return httpx.Response(200, json=database)

        if parts == ["pages"] and request.method == "POST":
            database_id = body["parent"]["database_id"]
            if database_id not in self.databases:
                return self._not_found(database_id)
            page_id = uuid.uuid4().hex
            page = {
                "object": "page",
                "id": page_id,
                "url": f"https://www.notion.so/{page_id}",
                "created_time": "2024-01-01T00:00:00.000Z",
                "archived": False,
                "properties": _as_stored(body.get("properties", {})),
            }
            self.pages[database_id].append(page)
            return httpx.Response(200, json=page)

        if len(parts) == 2 and parts[0] == "pages":
            page = self.find_page(parts[1])
            if page is None:
                return self._not_found(parts[1])
            if request.method == "PATCH":
                if "archived" in body:
                    page["archived"] = body["archived"]
                page["properties"].update(_as_stored(body.get("properties", {})))
            return httpx.Response(200, json=page)

        return httpx.Response(400, json={"object": "error", "message": f"Unsupported request: {path}"})

    @staticmethod
    def _not_found(object_id: str) -> httpx.Response:
        return httpx.Response(
            404,
            json={
                "object": "error",
                "status": 404,
                "code": "object_not_found",
                "message": f"Could not find object with ID: {object_id}.",
            },
        )


@pytest.fixture
def fake_notion() -> FakeNotion:
    fake = FakeNotion()
    fake.add_database(DATABASE_ID)
    return fake


@pytest.fixture
def client_factory(fake_notion):
    def factory(token, **kwargs):
        return NotionClient(token, transport=fake_notion.transport, **kwargs)

    return factory


@pytest.fixture
def store() -> LocalStore:
    return LocalStore()


@pytest.fixture
def connected_store(store) -> LocalStore:
    store.save_user_settings(USER_ID, notion_api_key=API_KEY, notion_database_id=DATABASE_ID)
    return store
