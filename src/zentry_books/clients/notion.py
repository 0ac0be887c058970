"""Notion API client used as the workspace store for sync actions."""

from typing import Any

import httpx
import structlog

from zentry_books.config import get_settings
from zentry_books.errors import ExecutionError, WorkspaceUnavailableError

logger = structlog.get_logger(__name__)


class NotionClient:
    """Async client for the pieces of the Notion API the agent uses.

    Only database pages are touched: creating a page and querying a
    database by title.
    """

    def __init__(
        self,
        api_key: str | None = None,
        database_id: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        key = api_key or (
            settings.notion_api_key.get_secret_value() if settings.notion_api_key else None
        )
        if not key:
            raise WorkspaceUnavailableError("Notion API key is not configured")

        self._api_key = key
        self.default_database_id = database_id or settings.notion_database_id
        self.base_url = (base_url or settings.notion_api_url).rstrip("/")
        self._timeout = timeout or settings.notion_timeout
        self._notion_version = settings.notion_version

        self._client: httpx.AsyncClient | None = None
        self._logger = logger.bind(client="notion")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Notion-Version": self._notion_version,
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "NotionClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def resolve_database(self, database_id: str | None) -> str:
        """Pick the explicit database id or fall back to the configured one."""
        resolved = database_id or self.default_database_id
        if not resolved:
            raise WorkspaceUnavailableError("Notion database ID is required")
        return resolved

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self._logger.error(
                "notion_api_error",
                path=path,
                status=e.response.status_code,
                error=str(e),
            )
            raise ExecutionError(
                f"Notion API returned {e.response.status_code} for {path}"
            ) from e
        except httpx.RequestError as e:
            self._logger.error("notion_connection_error", path=path, error=str(e))
            raise ExecutionError(f"Could not reach Notion: {e}") from e

        data = response.json()
        if not isinstance(data, dict):
            raise ExecutionError("Invalid Notion response format")
        return data

    async def create_page(
        self,
        title: str,
        database_id: str | None = None,
        content: str | None = None,
        properties: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create a page in a database.

        Returns:
            Dict with the page id and a shareable URL.
        """
        target = self.resolve_database(database_id)
        payload: dict[str, Any] = {
            "parent": {"database_id": target},
            "properties": {
                "title": {"title": [{"text": {"content": title}}]},
                **(properties or {}),
            },
        }
        if content:
            payload["children"] = [
                {
                    "object": "block",
                    "type": "paragraph",
                    "paragraph": {"rich_text": [{"type": "text", "text": {"content": content}}]},
                }
            ]

        page = await self._post("/pages", payload)
        page_id = str(page.get("id", ""))
        url = page.get("url") or f"https://notion.so/{page_id.replace('-', '')}"
        self._logger.info("notion_page_created", database_id=target, page_id=page_id)
        return {"page_id": page_id, "url": url}

    async def query_database(
        self, query: str, database_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Find pages whose title contains ``query``."""
        target = self.resolve_database(database_id)
        data = await self._post(
            f"/databases/{target}/query",
            {"filter": {"property": "title", "title": {"contains": query}}},
        )
        results = [
            {
                "id": page.get("id"),
                "url": page.get("url"),
                "properties": page.get("properties", {}),
            }
            for page in data.get("results", [])
        ]
        self._logger.info("notion_database_queried", database_id=target, results=len(results))
        return results
