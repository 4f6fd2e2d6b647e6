"""
Persistence collaborator: writes runs, goals and achievements to a
Supabase (PostgREST) backend.

Every failure, whatever its cause, surfaces as PersistenceFailure so the
offline queue can treat it as retryable.
"""
from __future__ import annotations

import asyncio
import logging

import aiohttp

from .const import GOALS_TABLE, REQUEST_ATTEMPTS, REQUEST_TIMEOUT, RUNS_TABLE, USER_ACHIEVEMENTS_TABLE
from .errors import PersistenceFailure
from .models import (
    ActionKind,
    CreateGoalPayload,
    DeleteGoalPayload,
    QueuedAction,
    RecordAchievementPayload,
    SaveRunPayload,
    UpdateGoalPayload,
)
from .requests import ApiResponseError, make_request

_LOGGER = logging.getLogger(__name__)


class SupabaseBackend:
    """Thin PostgREST client for the tables the tracker writes to."""

    def __init__(
        self,
        url: str,
        api_key: str,
        access_token: str | None = None,
        timeout: int = REQUEST_TIMEOUT,
        max_attempts: int = REQUEST_ATTEMPTS,
    ) -> None:
        self.url = url.rstrip("/")
        self._api_key = api_key
        self.access_token = access_token
        self._timeout = timeout
        self._max_attempts = max_attempts

    @property
    def headers(self) -> dict:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self.access_token or self._api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }

    def table_url(self, table: str) -> str:
        return f"{self.url}/rest/v1/{table}"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save_run(self, payload: SaveRunPayload) -> None:
        await self._request("POST", RUNS_TABLE, payload=[payload.to_dict()])

    async def create_goal(self, payload: CreateGoalPayload) -> None:
        await self._request("POST", GOALS_TABLE, payload=[payload.to_dict()])

    async def update_goal(self, payload: UpdateGoalPayload) -> None:
        await self._request(
            "PATCH", GOALS_TABLE, payload=dict(payload.updates),
            params={"id": f"eq.{payload.goal_id}"},
        )

    async def delete_goal(self, payload: DeleteGoalPayload) -> None:
        await self._request("DELETE", GOALS_TABLE, params={"id": f"eq.{payload.goal_id}"})

    async def record_achievement(self, payload: RecordAchievementPayload) -> None:
        body = {k: v for k, v in payload.to_dict().items() if v is not None}
        await self._request("POST", USER_ACHIEVEMENTS_TABLE, payload=[body])

    async def execute(self, action: QueuedAction) -> None:
        """Replay a queued action against the matching write."""
        handlers = {
            ActionKind.SAVE_RUN: self.save_run,
            ActionKind.CREATE_GOAL: self.create_goal,
            ActionKind.UPDATE_GOAL: self.update_goal,
            ActionKind.DELETE_GOAL: self.delete_goal,
            ActionKind.RECORD_ACHIEVEMENT: self.record_achievement,
        }
        handler = handlers.get(action.kind)
        if handler is None:
            raise PersistenceFailure(f"Unknown action: {action.kind}", action.id)
        try:
            await handler(action.payload)
        except PersistenceFailure as exc:
            exc.action_id = action.id
            raise

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, table: str, payload=None, params: dict | None = None):
        url = self.table_url(table)
        try:
            return await make_request(
                method, url, self.headers, payload=payload, params=params,
                timeout=self._timeout, max_attempts=self._max_attempts,
            )
        except ApiResponseError as exc:
            raise PersistenceFailure(f"{method} {table} rejected: {exc.error_json}") from exc
        except (asyncio.TimeoutError, TimeoutError) as exc:
            raise PersistenceFailure(f"{method} {table} timed out") from exc
        except (aiohttp.ClientError, ValueError) as exc:
            raise PersistenceFailure(f"{method} {table} failed: {exc}") from exc
