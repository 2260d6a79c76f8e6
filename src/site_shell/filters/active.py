"""Single point of replacement for the rule set in use."""

from __future__ import annotations

import logging
import threading

from site_shell.filters.models import CompiledFilterRuleSet

logger = logging.getLogger(__name__)


class ActiveRuleSet:
    """Holds the current CompiledFilterRuleSet.

    Readers call ``current()`` and keep the returned snapshot for the whole
    request; ``swap()`` replaces the reference in one assignment, so a reader
    sees either the old or the new complete set.
    """

    def __init__(self, initial: CompiledFilterRuleSet | None = None):
        self._current = initial if initial is not None else CompiledFilterRuleSet.empty()
        self._lock = threading.Lock()

    def current(self) -> CompiledFilterRuleSet:
        return self._current

    def swap(self, new_set: CompiledFilterRuleSet) -> CompiledFilterRuleSet:
        """Install `new_set`; returns the set it replaced."""
        with self._lock:
            old = self._current
            self._current = new_set
        logger.info(
            "Active filter rules v%d -> v%d (%d rules)",
            old.version, new_set.version, len(new_set),
        )
        return old
