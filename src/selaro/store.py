import logging
from dataclasses import dataclass

import httpx

from selaro.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

DEFAULT_CLINIC_NAME = "Zahnarztpraxis Stela Xhelili"
FALLBACK_INSTRUCTIONS = "Sie sind eine freundliche Rezeptionistin für eine Zahnarztpraxis in Leipzig."


class StoreError(Exception):
    """A datastore request failed."""


class StoreUnavailable(StoreError):
    """The circuit breaker is open; the request was not sent."""


@dataclass
class Clinic:
    id: str
    name: str
    instructions: str
    phone_number: str = ""
    address: str = ""


class SupabaseClient:
    """Thin PostgREST client for the `clinics` and `leads` tables.

    Every request goes through a circuit breaker: after 3 consecutive
    failures the store is skipped for 60s and StoreUnavailable is raised
    without touching the network. Callers decide what the fallback is.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="Supabase",
        )
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/rest/v1",
                headers={
                    "apikey": service_key,
                    "Authorization": f"Bearer {service_key}",
                    "Content-Type": "application/json",
                    "Prefer": "return=representation",
                },
                timeout=self.timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, label: str, **kwargs):
        if not self._circuit.should_try():
            logger.warning("Supabase circuit breaker open, skipping %s", label)
            raise StoreUnavailable(f"{label}: datastore unavailable")
        try:
            resp = await self._client.request(method, path, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            # Rejected rows (4xx) say nothing about the store's health
            if e.response.status_code >= 500:
                self._circuit.record_failure()
            logger.error("%s failed: %s %s", label, e.response.status_code, e.response.text)
            raise StoreError(f"{label}: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            self._circuit.record_failure()
            logger.error("%s failed: %s", label, e)
            raise StoreError(f"{label}: {e}") from e
        self._circuit.record_success()
        return resp.json() if resp.content else []

    async def get_clinic(self, clinic_id: str) -> dict | None:
        rows = await self._request(
            "GET", "/clinics", "get_clinic",
            params={"id": f"eq.{clinic_id}", "select": "*"},
        )
        return rows[0] if rows else None

    async def update_clinic(self, clinic_id: str, fields: dict) -> dict | None:
        rows = await self._request(
            "PATCH", "/clinics", "update_clinic",
            params={"id": f"eq.{clinic_id}"}, json=fields,
        )
        return rows[0] if rows else None

    async def insert_lead(self, row: dict) -> dict:
        rows = await self._request("POST", "/leads", "insert_lead", json=[row])
        if not rows:
            raise StoreError("insert_lead: no row returned")
        return rows[0]

    async def update_lead(self, lead_id: str, fields: dict) -> dict | None:
        rows = await self._request(
            "PATCH", "/leads", "update_lead",
            params={"id": f"eq.{lead_id}"}, json=fields,
        )
        return rows[0] if rows else None

    async def list_leads(self, limit: int = 20) -> list[dict]:
        return await self._request(
            "GET", "/leads", "list_leads",
            params={"select": "*", "order": "created_at.desc", "limit": str(limit)},
        )


async def load_clinic(store: SupabaseClient, clinic_id: str) -> Clinic:
    """Read the clinic fresh. Falls back to built-in instructions when the store fails."""
    try:
        row = await store.get_clinic(clinic_id)
    except StoreError as e:
        logger.warning("Clinic lookup failed, using fallback instructions: %s", e)
        row = None

    if not row:
        return Clinic(id=clinic_id, name=DEFAULT_CLINIC_NAME, instructions=FALLBACK_INSTRUCTIONS)
    return Clinic(
        id=str(row.get("id", clinic_id)),
        name=row.get("name") or DEFAULT_CLINIC_NAME,
        instructions=row.get("instructions") or FALLBACK_INSTRUCTIONS,
        phone_number=row.get("phone_number") or "",
        address=row.get("address") or "",
    )
