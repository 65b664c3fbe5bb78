"""Signed audit trail of trustee changes made through the CoreService CLI.

Each change to a user or group is appended as one JSON line carrying an
HMAC-SHA256 signature over its canonical form. The trail can be queried per
trustee and verified line by line.
"""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import os
import sys
from pathlib import Path
from typing import Any, Iterator, Literal, NamedTuple, Optional

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "trustee-events.jsonl"

SIGNING_KEY_ENV = "AUDIT_LOG_SIGNING_KEY"
SIGNING_KEY_FILE_ENV = "AUDIT_LOG_SIGNING_KEY_FILE"
SIGNING_KEY_SECRET = Path("/run/secrets/audit_log_signing_key")
LOCAL_SIGNING_KEY = Path(".runtime/secrets/audit_log_signing_key")

EventType = Literal["user_create", "user_enable", "user_disable", "group_create"]


class AuditVerification(NamedTuple):
    total: int
    valid: int
    invalid_lines: list[int]

    @property
    def ok(self) -> bool:
        return not self.invalid_lines


def _read_key_file(path: Path) -> Optional[bytes]:
    try:
        key = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return key.encode("utf-8") if key else None


def _get_signing_key() -> bytes:
    """Signing key: key file named by env > env value > Docker secret > local secret file.

    An empty key disables signing.
    """
    key_file = os.environ.get(SIGNING_KEY_FILE_ENV)
    if key_file:
        key = _read_key_file(Path(key_file))
        if key:
            return key
    if SIGNING_KEY_ENV in os.environ:
        return os.environ[SIGNING_KEY_ENV].strip().encode("utf-8")
    for path in (SIGNING_KEY_SECRET, LOCAL_SIGNING_KEY):
        key = _read_key_file(path)
        if key:
            return key
    return b""


def _sign_event(event: dict[str, Any], key: bytes) -> str:
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_trustee_event(
    event_type: EventType,
    trustee: str,
    *,
    operator: str = "system",
    host: str = "",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> dict[str, Any]:
    """Append a trustee change to the audit trail and return the written event.

    Args:
        event_type: Kind of change (user_create, user_disable, ...)
        trustee: User/group name or TCM URI affected
        operator: Who performed the change
        host: CoreService host the change was made on
        details: Additional context (ids, memberships, errors)
        success: Whether the operation succeeded
    """
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "host": host,
        "trustee": trustee,
        "operator": operator,
        "success": success,
        "details": details or {},
    }
    key = _get_signing_key()
    if key:
        event["signature"] = _sign_event(event, key)

    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")
    AUDIT_LOG_FILE.chmod(0o600)
    return event


def safe_log_trustee_event(event_type: EventType, trustee: str, **kwargs) -> bool:
    """Log a trustee event; failures are reported on stderr and never raised.

    Returns:
        True if the event was written
    """
    try:
        log_trustee_event(event_type, trustee, **kwargs)
        return True
    except (OSError, TypeError, ValueError) as e:
        print(f"[audit] Warning: Failed to log {event_type} event for {trustee}: {e}", file=sys.stderr)
        return False


def _iter_lines(path: Path) -> Iterator[tuple[int, str]]:
    if not path.exists():
        return
    with path.open("r", encoding="utf-8") as f:
        for number, line in enumerate(f, start=1):
            if line.strip():
                yield number, line


def trustee_history(
    trustee: Optional[str] = None,
    event_type: Optional[str] = None,
    host: Optional[str] = None,
) -> list[dict[str, Any]]:
    """Events for a trustee (case-insensitive), optionally narrowed by type and host.

    Unreadable lines are skipped; verify_audit_log() reports them.
    """
    events = []
    for _, line in _iter_lines(AUDIT_LOG_FILE):
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if trustee and str(event.get("trustee", "")).lower() != trustee.lower():
            continue
        if event_type and event.get("event_type") != event_type:
            continue
        if host and event.get("host") != host:
            continue
        events.append(event)
    return events


def verify_audit_log() -> AuditVerification:
    """Check every signature in the trail.

    Lines that are not JSON, unsigned, or whose signature does not match are
    reported by line number.
    """
    key = _get_signing_key()
    total = 0
    valid = 0
    invalid: list[int] = []
    for number, line in _iter_lines(AUDIT_LOG_FILE):
        total += 1
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            invalid.append(number)
            continue
        stored = event.pop("signature", "")
        if key and stored and hmac.compare_digest(stored, _sign_event(event, key)):
            valid += 1
        else:
            invalid.append(number)
    return AuditVerification(total, valid, invalid)


if __name__ == "__main__":
    result = verify_audit_log()
    print(f"Audit log: {result.valid}/{result.total} events with valid signatures")
    sys.exit(0 if result.ok else 1)
