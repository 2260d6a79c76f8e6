"""Periodic page introspection feeding unread signals."""

from __future__ import annotations

import asyncio
import logging

from site_shell.host.base import BasePageHost
from site_shell.session.manager import TabSessionManager
from site_shell.session.models import LoadPhase

logger = logging.getLogger(__name__)


class UnreadPoller:
    """Asks the page host for each loaded tab's badge on a fixed interval.

    Raw results go through each tab's two-poll stability filter; this class
    only schedules the queries.
    """

    def __init__(self, host: BasePageHost, sessions: TabSessionManager, interval: float = 5.0):
        self.host = host
        self.sessions = sessions
        self.interval = interval

    async def poll_once(self) -> int:
        """Query every loaded tab once; returns how many unread values changed."""
        changed = 0
        for session in self.sessions.sessions():
            if session.phase is not LoadPhase.LOADED:
                continue
            try:
                raw = await self.host.query_badge(session.site_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug("Badge query failed for %s: %s", session.site_id, e)
                continue
            machine = self.sessions.get(session.site_id)
            if machine is not None and machine.on_unread_signal(raw):
                changed += 1
        return changed

    async def run(self) -> None:
        """Poll until cancelled."""
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval)
