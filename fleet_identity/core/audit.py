"""Audit trail for administrative operations.

Each entry is one JSON line in ``<audit_log_dir>/admin-operations.jsonl``,
signed with HMAC-SHA256 over its canonical JSON form. Recording is
best-effort: a failure to write is logged and never fails the operation
being audited.
"""
from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Literal, Optional

from .models import AdminOperationLogEntry

logger = logging.getLogger(__name__)

AUDIT_LOG_FILENAME = "admin-operations.jsonl"
DEFAULT_RECENT_LIMIT = 50

Action = Literal[
    "provision_identity",
    "create_user",
    "password_reset",
    "sync_audit",
]
Outcome = Literal["success", "failure", "rejected"]


class OperationAuditor:
    """Append-only, signed log of administrative actions."""

    def __init__(self, log_dir: str | Path, signing_key: str = ""):
        self.log_dir = Path(log_dir)
        self.log_file = self.log_dir / AUDIT_LOG_FILENAME
        self._signing_key = signing_key.strip().encode("utf-8")

    def _ensure_audit_dir(self) -> None:
        """Create audit directory with restricted permissions."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.chmod(0o700)

    def _sign(self, entry: dict[str, Any]) -> str:
        if not self._signing_key:
            return ""
        canonical = json.dumps(entry, sort_keys=True, separators=(",", ":"))
        return hmac.new(self._signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()

    def log_operation(
        self,
        actor_id: str,
        action: Action,
        target_id: Optional[str],
        *,
        metadata: dict[str, Any] | None = None,
        outcome: Outcome = "success",
    ) -> AdminOperationLogEntry:
        """Append one signed entry. Raises on I/O failure.

        Args:
            actor_id: Profile id of the caller, or the shared-secret marker
            action: Administrative action performed
            target_id: Profile/identity id or email the action applied to
            metadata: Additional context (never passwords)
            outcome: success, failure or rejected
        """
        self._ensure_audit_dir()

        entry = AdminOperationLogEntry(
            id=str(uuid.uuid4()),
            actor_id=actor_id,
            action=action,
            target_id=target_id,
            created_at=datetime.datetime.now(datetime.timezone.utc).isoformat(),
            outcome=outcome,
            metadata=dict(metadata or {}),
        )
        record = entry.to_dict()
        signature = self._sign(record)
        if signature:
            record["signature"] = signature

        with self.log_file.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        self.log_file.chmod(0o600)
        return entry

    def record(
        self,
        actor_id: str,
        action: Action,
        target_id: Optional[str],
        metadata: dict[str, Any] | None = None,
        outcome: Outcome = "success",
    ) -> bool:
        """Log an operation without ever raising.

        Returns:
            True if the entry was written, False if logging failed
        """
        try:
            self.log_operation(actor_id, action, target_id, metadata=metadata, outcome=outcome)
            return True
        except Exception as exc:
            logger.warning("[audit] Failed to record %s for %s: %s", action, target_id, exc)
            return False

    def recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[dict[str, Any]]:
        """Return the newest ``limit`` entries, newest first."""
        if limit < 1 or not self.log_file.exists():
            return []
        entries: list[dict[str, Any]] = []
        with self.log_file.open("r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("[audit] Skipping malformed line in %s", self.log_file)
                    continue
                entry.pop("signature", None)
                entries.append(entry)
        # file order is append order
        entries.reverse()
        return entries[:limit]

    def verify(self) -> tuple[int, int]:
        """Verify all signatures in the audit log.

        Returns:
            Tuple of (total_entries, valid_signatures)
        """
        if not self.log_file.exists():
            return 0, 0

        total = 0
        valid = 0
        with self.log_file.open("r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                total += 1
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                stored_sig = entry.pop("signature", "")
                if not stored_sig:
                    continue
                if hmac.compare_digest(stored_sig, self._sign(entry)):
                    valid += 1
        return total, valid
