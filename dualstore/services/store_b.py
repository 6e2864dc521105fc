"""
Store B adapter: hosted backend-as-a-service (Supabase-compatible REST).

Tables are reached through PostgREST under /rest/v1, auth identities through
the auth admin API under /auth/v1. The service role key is sent as both the
apikey header and the bearer token.

Usage:
    adapter = StoreBAdapter(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    outcome = await adapter.write(WriteRecord(collection="stories", payload={...}))
    user = await adapter.get_auth_user(user_id)
    await adapter.aclose()
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from dualstore.core.errors import BackendWriteError
from dualstore.schemas import WriteOutcome, WriteRecord
from dualstore.services.adapters import STORE_B

logger = structlog.get_logger(__name__)


class StoreBAdapter:
    name = STORE_B

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._client.headers.update(headers)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise BackendWriteError(STORE_B, f"Store B request failed: {e}") from e

        if response.status_code >= 400:
            raise BackendWriteError(
                STORE_B,
                f"Store B returned {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )
        return response

    async def write(self, record: WriteRecord) -> WriteOutcome:
        row: Dict[str, Any] = {**record.payload, "id": record.id}
        if record.user_id is not None:
            row["user_id"] = record.user_id

        response = await self._request(
            "POST",
            f"/rest/v1/{record.collection}",
            json=row,
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )

        rows = response.json() if response.content else []
        data = rows[0] if isinstance(rows, list) and rows else row
        return WriteOutcome(backend=STORE_B, record_id=record.id, data=data)

    async def read(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        response = await self._request(
            "GET",
            f"/rest/v1/{collection}",
            params={"id": f"eq.{record_id}", "select": "*"},
        )
        rows = response.json()
        return rows[0] if rows else None

    async def health_check(self) -> bool:
        try:
            await self._request("GET", "/auth/v1/health")
            return True
        except BackendWriteError as e:
            logger.warning("Store B health check failed", error=str(e))
            return False

    async def get_auth_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one raw auth identity; None when Store B does not know the id.

        Validation is left to the identity contract so malformed identities
        surface as SchemaViolation there.
        """
        try:
            response = await self._request("GET", f"/auth/v1/admin/users/{user_id}")
        except BackendWriteError as e:
            if e.status_code == 404:
                return None
            raise
        return response.json()

    async def list_auth_users(self, page: int = 1, per_page: int = 50) -> List[Dict[str, Any]]:
        """
        One page of raw auth identities.

        Rows are returned unvalidated so one malformed identity fails its own
        sync instead of the whole listing.
        """
        response = await self._request(
            "GET",
            "/auth/v1/admin/users",
            params={"page": page, "per_page": per_page},
        )
        return response.json().get("users", [])


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("msg") or body.get("error") or body)
    return str(body)
