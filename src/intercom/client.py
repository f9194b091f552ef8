"""Intercom REST API client using httpx."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from src.config import settings
from src.errors import IntercomError

logger = logging.getLogger(__name__)

# Custom attributes must exist in the Intercom workspace before they can be set.
GROUP_ID_ATTRIBUTE = "telegram_group_id"
GROUP_NAME_ATTRIBUTE = "telegram_group_name"


class IntercomClient:
    """Thin async wrapper over the endpoints the bridge needs.

    Every non-2xx response raises ``IntercomError`` with the status code and
    decoded body; network failures raise it with ``status=None``.

    Singleton accessed via ``IntercomClient.get()``.  Pass *transport* (an
    ``httpx.MockTransport``) for tests.
    """

    _instance: IntercomClient | None = None

    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str | None = None,
        version: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token if token is not None else settings.intercom_access_token
        self._base_url = (base_url or settings.intercom_api_url).rstrip("/")
        self._version = version or settings.intercom_api_version
        self._timeout = timeout or settings.intercom_timeout_seconds
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @classmethod
    def get(cls) -> IntercomClient:
        """Return the shared IntercomClient instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "Intercom-Version": self._version,
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> dict:
        try:
            resp = await self._client().request(method, path, json=json)
        except httpx.HTTPError as exc:
            msg = f"Intercom {method} {path} failed: {exc}"
            raise IntercomError(msg) from exc

        if resp.status_code >= 400:
            try:
                body: Any = resp.json()
            except ValueError:
                body = resp.text[:500]
            logger.warning(
                "Intercom %s %s returned %d: %s", method, path, resp.status_code, body
            )
            msg = f"Intercom {method} {path} returned {resp.status_code}"
            raise IntercomError(msg, status=resp.status_code, body=body)

        if not resp.content:
            return {}
        return resp.json()

    # -- Contacts --------------------------------------------------------------

    async def resolve_or_create_contact(self, user_id: str, profile: dict[str, Any]) -> str:
        """Return the Intercom contact id for a Telegram user, creating it if needed.

        *profile* carries ``name``, ``username``, ``group_id`` and
        ``group_name``.  A 409 on create means the external id already
        exists: the contact is looked up and refreshed instead.
        """
        attributes = {
            "telegram_user_id": user_id,
            "telegram_username": profile.get("username"),
            GROUP_NAME_ATTRIBUTE: profile.get("group_name"),
            GROUP_ID_ATTRIBUTE: profile.get("group_id"),
        }
        payload = {
            "role": "user",
            "external_id": user_id,
            "name": profile.get("name"),
            "custom_attributes": attributes,
        }
        try:
            contact = await self._request("POST", "/contacts", json=payload)
            logger.info("Created Intercom contact %s for user=%s", contact["id"], user_id)
            return contact["id"]
        except IntercomError as exc:
            if not exc.is_conflict:
                raise

        logger.info("Contact exists for user=%s, searching by external_id", user_id)
        existing = await self._search_contact(user_id)
        if existing is None:
            msg = f"Intercom reported a conflict for user {user_id} but search found nothing"
            raise IntercomError(msg, status=409)

        updated = await self._request(
            "PUT",
            f"/contacts/{existing['id']}",
            json={
                "role": "user",
                "name": profile.get("name"),
                "custom_attributes": attributes,
            },
        )
        logger.info("Updated Intercom contact %s for user=%s", updated["id"], user_id)
        return updated["id"]

    async def _search_contact(self, user_id: str) -> dict | None:
        result = await self._request(
            "POST",
            "/contacts/search",
            json={
                "query": {
                    "operator": "AND",
                    "value": [
                        {"field": "external_id", "operator": "=", "value": user_id},
                        {"field": "role", "operator": "=", "value": "user"},
                    ],
                },
                "pagination": {"per_page": 1},
            },
        )
        if result.get("total_count", 0) > 0 and result.get("data"):
            return result["data"][0]
        return None

    # -- Conversations ---------------------------------------------------------

    async def create_conversation(
        self,
        user_id: str,
        display_name: str,
        initial_text: str,
        metadata: dict[str, Any],
    ) -> str:
        """Start a conversation from contact *user_id* and tag it with the group.

        *metadata* carries ``group_id``, ``group_name`` and
        ``first_message_time`` (a datetime).
        """
        created = await self._request(
            "POST",
            "/conversations",
            json={"from": {"type": "user", "id": user_id}, "body": initial_text},
        )
        conversation_id = str(created.get("conversation_id") or created["id"])
        logger.info(
            "Created Intercom conversation %s for group=%s (%s)",
            conversation_id,
            metadata.get("group_id"),
            display_name,
        )

        first_message_time = metadata.get("first_message_time")
        attributes = {
            GROUP_NAME_ATTRIBUTE: metadata.get("group_name"),
            GROUP_ID_ATTRIBUTE: metadata.get("group_id"),
        }
        if isinstance(first_message_time, datetime):
            attributes["conversation_start_time"] = first_message_time.isoformat()

        # The conversation exists either way; tagging is best-effort.
        try:
            await self._request(
                "PUT",
                f"/conversations/{conversation_id}",
                json={"custom_attributes": attributes},
            )
        except IntercomError:
            logger.exception("Failed to tag conversation %s with group attributes", conversation_id)

        return conversation_id

    async def send_reply(self, conversation_id: str, text: str, user_id: str) -> None:
        """Post *text* into the conversation as contact *user_id*."""
        await self._request(
            "POST",
            f"/conversations/{conversation_id}/reply",
            json={
                "message_type": "comment",
                "type": "user",
                "intercom_user_id": user_id,
                "body": text,
            },
        )
        logger.info("Reply sent to Intercom conversation %s", conversation_id)

    async def get_conversation(self, conversation_id: str) -> dict:
        return await self._request("GET", f"/conversations/{conversation_id}")

    async def find_conversation_by_group_id(self, group_id: str) -> dict | None:
        """Search for a conversation tagged with *group_id*. Errors yield None."""
        try:
            result = await self._request(
                "POST",
                "/conversations/search",
                json={
                    "query": {
                        "field": f"custom_attributes.{GROUP_ID_ATTRIBUTE}",
                        "operator": "=",
                        "value": group_id,
                    }
                },
            )
        except IntercomError:
            logger.exception("Conversation search failed for group=%s", group_id)
            return None

        conversations = result.get("conversations") or []
        if result.get("total_count", 0) > 0 and conversations:
            logger.info("Found conversation %s for group=%s", conversations[0].get("id"), group_id)
            return conversations[0]
        return None
