"""Healthie GraphQL client utilities.

This module provides the single gateway used to talk to Healthie's GraphQL
API. Every call is one POST of ``{query, variables}``; GraphQL ``errors`` and
transport failures are normalized into the exception hierarchy below so that
callers only have to reason about a handful of error types.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests
from requests import Response

from .queries import (
    CREATE_CONVERSATION_MUTATION,
    CREATE_NOTE_MUTATION,
    CURRENT_USER_QUERY,
    USERS_WITH_APPOINTMENTS_QUERY,
)

__all__ = [
    "HealthieClient",
    "HealthieClientError",
    "UpstreamError",
    "UpstreamTransportError",
    "UpstreamValidationError",
]


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 30
API_URL_ENV = "HEALTHIE_API_URL"
API_KEY_ENV = "HEALTHIE_API_KEY"


class HealthieClientError(RuntimeError):
    """Base exception for Healthie client errors."""


class UpstreamError(HealthieClientError):
    """Raised when Healthie answers with a GraphQL ``errors`` list."""

    def __init__(self, messages: Sequence[str]) -> None:
        self.messages = [str(message) for message in messages]
        super().__init__(", ".join(self.messages))


class UpstreamTransportError(HealthieClientError):
    """Raised when the HTTP exchange itself fails."""


class UpstreamValidationError(HealthieClientError):
    """Raised when a mutation returns validation messages instead of a result."""

    def __init__(self, operation: str, messages: Optional[Sequence[Mapping[str, Any]]] = None) -> None:
        self.operation = operation
        if not isinstance(messages, (list, tuple)):
            messages = []
        self.messages = [dict(message) for message in messages if isinstance(message, Mapping)]
        self.detail = format_validation_messages(self.messages)
        super().__init__(f"{operation} was rejected: {self.detail or 'no detail returned'}")


def format_validation_messages(messages: Sequence[Mapping[str, Any]]) -> str:
    """Render ``[{field, message}]`` entries as ``"field: message, ..."``."""

    return ", ".join(f"{message.get('field')}: {message.get('message')}" for message in messages)


def _error_messages(payload: Any) -> Optional[List[str]]:
    if not isinstance(payload, Mapping):
        return None
    errors = payload.get("errors")
    if not errors:
        return None
    messages: List[str] = []
    for error in errors:
        if isinstance(error, Mapping):
            messages.append(str(error.get("message", "")))
        else:
            messages.append(str(error))
    return messages


def _mutation_result(data: Mapping[str, Any], operation: str) -> Mapping[str, Any]:
    result = data.get(operation)
    if result is None:
        return {}
    if not isinstance(result, Mapping):
        raise UpstreamValidationError(
            operation, [{"field": operation, "message": f"unexpected payload {result!r}"}]
        )
    return result


class HealthieClient:
    """Client for Healthie's GraphQL endpoint."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        base_url = base_url or os.getenv(API_URL_ENV)
        api_key = api_key or os.getenv(API_KEY_ENV)
        if not base_url:
            raise ValueError("base_url is required for HealthieClient (set HEALTHIE_API_URL)")
        if not api_key:
            raise ValueError("api_key is required for HealthieClient (set HEALTHIE_API_KEY)")

        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Basic {self.api_key}",
            "AuthorizationSource": "API",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def execute(self, query: str, variables: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Send one GraphQL operation and return its ``data`` object."""

        if not query or not isinstance(query, str):
            raise ValueError("query must be a non-empty string")

        body = {"query": query, "variables": dict(variables or {})}
        try:
            response = self.session.post(
                self.base_url,
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Request to Healthie failed: %s", exc)
            raise UpstreamTransportError(f"Healthie request failed: {exc}") from exc

        if not response.ok:
            messages = _error_messages(self._safe_json(response))
            if messages:
                raise UpstreamError(messages)
            self._log_error_response(response)
            raise UpstreamTransportError(
                f"Healthie responded with unexpected status {response.status_code}: {response.text[:512]}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamTransportError("Healthie response was not valid JSON") from exc

        messages = _error_messages(payload)
        if messages:
            raise UpstreamError(messages)

        data = payload.get("data") if isinstance(payload, Mapping) else None
        return dict(data) if isinstance(data, Mapping) else {}

    @staticmethod
    def _safe_json(response: Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _log_error_response(response: Response) -> None:
        logger.error(
            "Healthie error response: status=%s body=%s", response.status_code, response.text[:2048]
        )

    def get_current_user(self) -> Dict[str, Any]:
        """Return ``{id, first_name, last_name}`` for the API key's owner."""

        data = self.execute(CURRENT_USER_QUERY)
        return data.get("currentUser") or {}

    def get_users_with_appointments(self) -> Dict[str, Any]:
        """Return the raw ``users`` result including ``next_app`` and ``appointments``."""

        return self.execute(USERS_WITH_APPOINTMENTS_QUERY)

    def create_conversation(self, doc_share_id: str, name: str) -> str:
        """Open a conversation with a single provider and return its id."""

        if not doc_share_id:
            raise ValueError("doc_share_id must be provided")
        data = self.execute(
            CREATE_CONVERSATION_MUTATION,
            {"simple_added_users": str(doc_share_id), "name": name},
        )
        result = _mutation_result(data, "createConversation")
        conversation = result.get("conversation")
        conversation_id = conversation.get("id") if isinstance(conversation, Mapping) else None
        if not conversation_id:
            raise UpstreamValidationError("createConversation", result.get("messages"))
        return str(conversation_id)

    def create_note(self, user_id: str, content: str, conversation_id: str) -> Dict[str, Any]:
        """Post a note into a conversation and return the created note."""

        data = self.execute(
            CREATE_NOTE_MUTATION,
            {"user_id": str(user_id), "content": content, "conversation_id": str(conversation_id)},
        )
        result = _mutation_result(data, "createNote")
        note = result.get("note")
        if not isinstance(note, Mapping) or not note:
            raise UpstreamValidationError("createNote", result.get("messages"))
        return note
