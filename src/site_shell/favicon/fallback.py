"""Deterministic monochrome fallback icons."""

from __future__ import annotations

import hashlib
from xml.sax.saxutils import escape

from site_shell.whitelist.patterns import canonical_host

ICON_SIZE = 28


def icon_letter(host: str) -> str:
    """First alphanumeric character of the canonical host, uppercased."""
    for ch in canonical_host(host):
        if ch.isalnum():
            return ch.upper()
    return "?"


def generate_mono_icon(host: str, size: int = ICON_SIZE) -> bytes:
    """SVG bytes showing the host's initial on a grey tile.

    The shade is derived from a hash of the host, so the same site always
    gets the same icon and neighbouring sites are easy to tell apart.
    """
    canonical = canonical_host(host) or host.lower()
    digest = hashlib.sha256(canonical.encode("utf-8")).digest()
    level = 0x30 + digest[0] % 0x60  # dark grey band, keeps white text legible
    fill = f"#{level:02x}{level:02x}{level:02x}"
    letter = escape(icon_letter(canonical))
    font_size = int(size * 0.57)
    svg = (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{size}" height="{size}" '
        f'viewBox="0 0 {size} {size}">'
        f'<rect width="{size}" height="{size}" rx="{size // 5}" fill="{fill}"/>'
        f'<text x="50%" y="50%" dominant-baseline="central" text-anchor="middle" '
        f'font-family="-apple-system, Helvetica, Arial, sans-serif" font-weight="bold" '
        f'font-size="{font_size}" fill="#ffffff">{letter}</text>'
        "</svg>"
    )
    return svg.encode("utf-8")
