"""Site favicons with generated monochrome fallbacks."""

from site_shell.favicon.fallback import generate_mono_icon
from site_shell.favicon.resolver import FaviconResolver, FaviconResult

__all__ = ["FaviconResolver", "FaviconResult", "generate_mono_icon"]
