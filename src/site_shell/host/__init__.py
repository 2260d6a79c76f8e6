"""Interfaces to the page host and the OS default browser."""

from site_shell.host.base import BaseExternalOpener, BasePageHost
from site_shell.host.opener import SystemBrowserOpener

__all__ = ["BasePageHost", "BaseExternalOpener", "SystemBrowserOpener"]
