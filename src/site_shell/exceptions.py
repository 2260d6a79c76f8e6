"""Unified exception hierarchy for site-shell."""


class SiteShellError(Exception):
    """Base exception for all site-shell errors."""


# Whitelist
class WhitelistError(SiteShellError):
    """Base exception for whitelist configuration errors."""


class InvalidPatternError(WhitelistError):
    """A site pattern is not a usable host pattern."""


class DuplicatePatternError(WhitelistError):
    """A site pattern normalizes to a host that is already configured."""


class UnknownSiteError(WhitelistError):
    """No configured site has the given id."""


# Filters
class FilterError(SiteShellError):
    """Base exception for content filtering operations."""


class FilterListFetchError(FilterError):
    """Failed to fetch the remote block-list."""


class CompilationRejectedError(FilterError):
    """The page host refused the compiled content rule payload."""


# Favicon
class FaviconError(SiteShellError):
    """Base exception for favicon operations."""


class FaviconFetchError(FaviconError):
    """Failed to fetch a usable favicon image."""


# Persistence
class PersistenceError(SiteShellError):
    """Failed to read or write persisted shell state."""
