from __future__ import annotations

import re
import secrets
import threading
import time
from datetime import date, datetime, timezone
from typing import Iterable


_PROJECT_ID_PATTERN = re.compile(r"^PROJ-(\d{4})-(\d+)$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def now_iso() -> str:
    return iso_timestamp(utc_now())


def today_iso() -> str:
    return date.today().isoformat()


_SUFFIX_LOCK = threading.Lock()
_LAST_SUFFIX: dict[str, int] = {}


def _timestamp_suffix(prefix: str, digits: int = 6) -> str:
    """Millisecond clock suffix, bumped when two ids of a prefix land on the same tick."""
    modulus = 10**digits
    with _SUFFIX_LOCK:
        value = int(time.time() * 1000) % modulus
        last = _LAST_SUFFIX.get(prefix)
        if last is not None and 0 <= last - value < modulus // 2:
            value = (last + 1) % modulus
        _LAST_SUFFIX[prefix] = value
    return f"{value:0{digits}d}"


def new_solicitation_id(year: int | None = None) -> str:
    return f"SOL-{year or utc_now().year}-{_timestamp_suffix('SOL')}"


def new_contract_id(year: int | None = None) -> str:
    return f"CONT-{year or utc_now().year}-{_timestamp_suffix('CONT')}"


def new_notification_id() -> str:
    return f"notif-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def new_portfolio_id() -> str:
    return f"portfolio-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def new_entity_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def next_project_id(existing_ids: Iterable[str], year: int | None = None) -> str:
    """Next free `PROJ-<year>-<nnn>` id; legacy `PROJ-<n>` ids are ignored."""
    target_year = year or utc_now().year
    highest = 0
    for project_id in existing_ids:
        match = _PROJECT_ID_PATTERN.match(str(project_id or "").strip())
        if not match or int(match.group(1)) != target_year:
            continue
        highest = max(highest, int(match.group(2)))
    return f"PROJ-{target_year}-{highest + 1:03d}"
