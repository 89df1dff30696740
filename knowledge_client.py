"""
knowledge_client.py
-------------------
RxGuard — Medication Safety Validation Engine — Remote interaction knowledge base
---------------------------------------------------------------------------------
Async HTTP client for an external drug-interaction knowledge base. Any
transport failure, non-2xx status or unparseable body is raised as
``KnowledgeSourceError``; the engine never reads a failed lookup as "no
interactions".

Endpoint:
    POST {base_url}/interactions
        request:  {"drug_ids": ["11289", "1191", ...]}
        response: {"interactions": [DrugInteractionRule, ...]}

Usage (async context manager, one connection pool for many lookups):
    async with HttpKnowledgeSource("https://kb.internal") as kb:
        rules = await kb.find_interactions(["11289", "1191"])

Usage (one-off; a client is opened and closed per call):
    rules = await HttpKnowledgeSource(url).find_interactions(ids)

Project: RxGuard — Medication Safety Validation Engine
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from collaborators import KnowledgeSourceError
from schemas import DrugInteractionRule

logger = logging.getLogger(__name__)

_RULES_ADAPTER = TypeAdapter(List[DrugInteractionRule])


class HttpKnowledgeSource:
    """
    Interaction knowledge source backed by a JSON HTTP service.

    Args:
        base_url:  Service root, e.g. ``https://kb.internal/api``.
        timeout:   Request timeout in seconds.
        transport: Optional ``httpx`` transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def connect(self) -> None:
        if self._http is None:
            self._http = self._new_client()
            logger.debug("HttpKnowledgeSource: HTTP transport initialised for %s.", self.base_url)

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.debug("HttpKnowledgeSource: HTTP transport closed.")

    async def __aenter__(self) -> "HttpKnowledgeSource":
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    # ── Lookup ───────────────────────────────────────────────────────────────

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> httpx.Response:
        try:
            return await client.post(f"{self.base_url}/interactions", json=payload)
        except httpx.HTTPError as exc:
            raise KnowledgeSourceError(
                f"Interaction knowledge base unreachable: {exc}"
            ) from exc

    async def find_interactions(self, drug_ids: List[str]) -> List[DrugInteractionRule]:
        """
        Ask the knowledge base for every rule whose drugs are all in ``drug_ids``.

        Raises:
            KnowledgeSourceError: on transport errors, non-2xx responses, or a
                body that is not ``{"interactions": [...]}`` of valid rules.
        """
        payload = {"drug_ids": list(drug_ids)}
        if self._http is not None:
            resp = await self._post(self._http, payload)
        else:
            async with self._new_client() as client:
                resp = await self._post(client, payload)

        if resp.status_code not in range(200, 300):
            raise KnowledgeSourceError(
                f"Interaction knowledge base returned {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )

        try:
            body = resp.json()
            rules = _RULES_ADAPTER.validate_python(body["interactions"])
        except (ValueError, KeyError, TypeError, ValidationError) as exc:
            raise KnowledgeSourceError(
                f"Interaction knowledge base sent an unreadable response: {exc}",
                status_code=resp.status_code,
            ) from exc

        logger.info(
            "HttpKnowledgeSource: %d interaction rule(s) for %d drug(s).",
            len(rules), len(payload["drug_ids"]),
        )
        return rules
