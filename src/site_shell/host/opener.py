"""Default-browser handoff."""

from __future__ import annotations

import logging
import webbrowser

from site_shell.host.base import BaseExternalOpener

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = ("http://", "https://", "mailto:", "tel:")


class SystemBrowserOpener(BaseExternalOpener):
    """Opens URLs with the platform's registered default browser."""

    def open(self, url: str) -> bool:
        if not url.lower().startswith(_ALLOWED_SCHEMES):
            logger.warning("Refusing to open unsupported URL externally: %s", url[:200])
            return False
        try:
            opened = webbrowser.open(url, new=2)
        except webbrowser.Error as e:
            logger.warning("Default browser handoff failed for %s: %s", url[:200], e)
            return False
        if not opened:
            logger.warning("No default browser accepted %s", url[:200])
        return bool(opened)
