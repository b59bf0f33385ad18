"""Polling of asynchronous provider actions.

Every mutating Hetzner Cloud call returns an action. ActionPoller blocks
until that action reaches a terminal status, re-fetching it at a fixed
interval. There is no overall timeout: only a legitimately running action
keeps the loop alive, while API or network failures propagate at once.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import Any

import requests
from hcloud import Client, HCloudException
from hcloud.actions import BoundAction
from loguru import logger
from tenacity import retry, retry_if_exception_type, wait_fixed

from hcutils.exceptions import ActionFailed, TransportError

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
TERMINAL_STATUSES = frozenset({STATUS_SUCCESS, STATUS_ERROR})


class _ActionPendingError(Exception):
    """Action still running - poll again."""


def _error_message(action: BoundAction) -> str:
    error: Any = getattr(action, "error", None)
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or "unknown error")
    return str(error or "unknown error")


class ActionPoller:
    """Blocks until provider actions finish.

    Example:
        >>> poller = ActionPoller(client)
        >>> poller.wait(client.servers.delete(server))
    """

    def __init__(
        self,
        client: Client,
        interval: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._interval = interval
        self._sleep = sleep

    def wait(self, action: BoundAction) -> BoundAction:
        """Wait for a single action to reach success or error.

        Returns:
            The action in its final (successful) state.

        Raises:
            ActionFailed: If the action ends in the error state.
            TransportError: If re-fetching the action fails.
        """
        current = action

        @retry(
            wait=wait_fixed(self._interval),
            retry=retry_if_exception_type(_ActionPendingError),
            sleep=self._sleep,
            reraise=True,
        )
        def _poll() -> BoundAction:
            nonlocal current
            if current.status in TERMINAL_STATUSES:
                return current
            try:
                current = self._client.actions.get_by_id(current.id)
            except (HCloudException, requests.RequestException) as e:
                raise TransportError(f"Could not fetch action {current.id}: {e}") from e
            if current.status not in TERMINAL_STATUSES:
                raise _ActionPendingError()
            return current

        final = _poll()
        if final.status == STATUS_ERROR:
            raise ActionFailed(final.id, getattr(final, "command", ""), _error_message(final))
        logger.debug("Action {id} ({command}) succeeded", id=final.id, command=getattr(final, "command", ""))
        return final

    def wait_all(self, actions: Iterable[BoundAction]) -> None:
        """Wait for each action in order."""
        for action in actions:
            self.wait(action)
