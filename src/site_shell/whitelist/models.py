"""Data models for the whitelist module."""

from __future__ import annotations

from dataclasses import asdict, dataclass

MAX_SHORTCUTS = 9


@dataclass(frozen=True)
class SiteEntry:
    """One configured site; owns exactly one tab."""

    site_id: str
    name: str
    pattern: str  # canonical host, e.g. "mail.example.com"
    position: int
    include_subdomains: bool = False
    start_url: str = ""

    @property
    def shortcut(self) -> int | None:
        """Cmd+N binding (1-9) for the first nine sites, else None."""
        if 0 <= self.position < MAX_SHORTCUTS:
            return self.position + 1
        return None

    @property
    def url(self) -> str:
        return self.start_url or f"https://{self.pattern}"

    def to_record(self) -> dict:
        return asdict(self)

    @classmethod
    def from_record(cls, record: dict) -> "SiteEntry":
        return cls(
            site_id=str(record["site_id"]),
            name=str(record.get("name") or record["pattern"]),
            pattern=str(record["pattern"]),
            position=int(record.get("position", 0)),
            include_subdomains=bool(record.get("include_subdomains", False)),
            start_url=str(record.get("start_url") or ""),
        )


@dataclass(frozen=True)
class WhitelistChange:
    """Notification payload emitted on every whitelist mutation."""

    kind: str  # "added" | "removed" | "reordered" | "renamed" | "loaded"
    entry: SiteEntry | None = None
