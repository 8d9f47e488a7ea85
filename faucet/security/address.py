from __future__ import annotations

import re

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_address(raw: str | None) -> bool:
    """Hex account address: 0x + 20 bytes. Checksum casing is not enforced."""
    if not raw:
        return False
    return bool(_ADDRESS_RE.match(raw.strip()))


def normalize_identity(raw: str) -> str:
    # same account regardless of checksum casing
    return raw.strip().lower()
