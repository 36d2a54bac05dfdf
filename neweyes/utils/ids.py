from __future__ import annotations

import re
import uuid

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def is_uuid(value: object) -> bool:
    if isinstance(value, uuid.UUID):
        return True
    return isinstance(value, str) and bool(_UUID_RE.match(value.strip()))

