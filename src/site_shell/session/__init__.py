"""Tab sessions: load state, favicon, unread signal and persistence."""

from site_shell.session.badge import UnreadSignalFilter, parse_title_count
from site_shell.session.manager import TabSessionManager
from site_shell.session.models import LoadPhase, TabSession, WindowState
from site_shell.session.tab import TabSessionMachine
from site_shell.session.unread import UnreadPoller

__all__ = [
    "LoadPhase",
    "TabSession",
    "TabSessionMachine",
    "TabSessionManager",
    "UnreadPoller",
    "UnreadSignalFilter",
    "WindowState",
    "parse_title_count",
]
