# archivist/services/retention/audit_chain.py
"""
Immutable audit chain.

Append-only, hash-linked log per category. Each entry's hash covers its
timestamp, event type, data and the previous entry's hash, keyed with the
platform secret (HMAC-SHA256). Tampering is detected by re-verification.

Files per category under IMMUTABLE_LOG_PATH:
- {name}-immutable.log: one JSON entry per line
- {name}-chain.json: {index, lastHash, lastUpdate, totalEntries}
"""

import hashlib
import hmac
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from archivist.constants import ChainDefaults
from archivist.services.retention.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryConfig:
    name: str
    immutable: bool
    retention_days: int


class ChainCategory(Enum):
    """Platform audit categories; only immutable ones accept chain entries."""

    ADMIN_ACTIONS = CategoryConfig("admin-actions", True, 2555)
    CROSS_TENANT_OPERATIONS = CategoryConfig("cross-tenant-ops", True, 1825)
    SECURITY_EVENTS = CategoryConfig("security-events", True, 2555)
    COMPLIANCE_EVENTS = CategoryConfig("compliance-events", True, 2555)
    SYSTEM_HEALTH = CategoryConfig("system-health", False, 365)
    LICENSE_MANAGEMENT = CategoryConfig("license-mgmt", True, 2555)
    INFRASTRUCTURE_EVENTS = CategoryConfig("infrastructure", False, 730)

    @property
    def file_name(self) -> str:
        return self.value.name

    @property
    def immutable(self) -> bool:
        return self.value.immutable

    @classmethod
    def parse(cls, category: "ChainCategory | str") -> "ChainCategory":
        """Accept a member, its key (COMPLIANCE_EVENTS) or its name (compliance-events)."""
        if isinstance(category, cls):
            return category
        for member in cls:
            if category in (member.name, member.value.name):
                return member
        raise ConfigurationError(f"Unknown audit category: {category}")


@dataclass
class ChainVerificationReport:
    """Outcome of replaying one category's chain."""

    category: str
    valid: bool
    total_entries: int = 0
    valid_entries: int = 0
    invalid_entries: int = 0
    integrity_score: float = 1.0
    errors: list[dict[str, Any]] = field(default_factory=list)
    message: str | None = None


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _canonical(value: Any) -> Any:
    """Round-trip through JSON so stored and hashed data are identical."""
    return json.loads(json.dumps(value, default=str))


class ImmutableAuditChain:
    """
    Per-category hash chains on the local filesystem.

    Appends to one category are serialized by an in-process lock; appends to
    different categories proceed independently.
    """

    def __init__(self, base_path: str | Path, secret: str):
        if not secret:
            raise ConfigurationError("Immutable audit chain requires a secret")
        self._base_path = Path(base_path)
        self._secret = secret.encode("utf-8")
        self._locks: dict[ChainCategory, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _lock_for(self, category: ChainCategory) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(category, threading.Lock())

    def log_path(self, category) -> Path:
        member = ChainCategory.parse(category)
        return self._base_path / f"{member.file_name}{ChainDefaults.LOG_SUFFIX}"

    def state_path(self, category) -> Path:
        member = ChainCategory.parse(category)
        return self._base_path / f"{member.file_name}{ChainDefaults.STATE_SUFFIX}"

    def compute_hash(self, timestamp: str, event_type: str, data: Any, previous_hash: str) -> str:
        """HMAC-SHA256 over the canonical JSON of the hashed fields."""
        message = json.dumps(
            {
                "timestamp": timestamp,
                "eventType": event_type,
                "data": data,
                "previousHash": previous_hash,
            },
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    @staticmethod
    def _require_immutable(category) -> ChainCategory:
        member = ChainCategory.parse(category)
        if not member.immutable:
            raise ConfigurationError(f"Category {member.file_name} is not configured for immutable logging")
        return member

    def get_state(self, category) -> dict:
        """
        Current {index, lastHash, lastUpdate, totalEntries}.

        A missing or unreadable state file is rebuilt from the last log line,
        so a crash between the log append and the state write cannot fork
        the chain.
        """
        member = ChainCategory.parse(category)
        state_path = self.state_path(member)
        log_last = self._last_entry(member)

        state = None
        if state_path.exists():
            try:
                state = json.loads(state_path.read_text())
            except (UnicodeDecodeError, json.JSONDecodeError, OSError) as e:
                logger.warning(f"Unreadable chain state for {member.file_name}: {e}")

        if log_last is not None and (state is None or state.get("index", 0) < log_last.get("index", 0)):
            return {
                "index": log_last["index"],
                "lastHash": log_last["hash"],
                "lastUpdate": log_last.get("timestamp"),
                "totalEntries": log_last["index"],
            }
        if state is None:
            return {"index": 0, "lastHash": ChainDefaults.GENESIS_HASH, "lastUpdate": None, "totalEntries": 0}
        return state

    def _last_entry(self, category: ChainCategory) -> dict | None:
        log_path = self.log_path(category)
        if not log_path.exists():
            return None
        last = None
        with log_path.open("rb") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    continue
                if isinstance(entry, dict) and "index" in entry and "hash" in entry:
                    last = entry
        return last

    def append(self, category, event_type: str, data: Any) -> dict:
        """
        Append one entry and advance the chain state.

        Raises:
            ConfigurationError: unknown or non-immutable category
        """
        member = self._require_immutable(category)

        with self._lock_for(member):
            self._base_path.mkdir(parents=True, exist_ok=True)
            state = self.get_state(member)

            timestamp = _now_iso()
            data = _canonical(data)
            previous_hash = state.get("lastHash") or ChainDefaults.GENESIS_HASH
            entry = {
                "index": state.get("index", 0) + 1,
                "timestamp": timestamp,
                "category": member.file_name,
                "eventType": event_type,
                "data": data,
                "previousHash": previous_hash,
            }
            entry["hash"] = self.compute_hash(timestamp, event_type, data, previous_hash)

            with self.log_path(member).open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
                f.flush()
                os.fsync(f.fileno())

            new_state = {
                "index": entry["index"],
                "lastHash": entry["hash"],
                "lastUpdate": timestamp,
                "totalEntries": entry["index"],
            }
            state_path = self.state_path(member)
            tmp_path = state_path.with_name(state_path.name + ".tmp")
            tmp_path.write_text(json.dumps(new_state, indent=2))
            os.replace(tmp_path, state_path)

        logger.debug(
            f"Appended {event_type} to {member.file_name} chain at index {entry['index']}",
            extra={"event": "chain_append", "category": member.file_name},
        )
        return entry

    def read_entries(self, category) -> Iterator[dict]:
        """Yield parsed entries in order; unparseable lines are skipped."""
        member = ChainCategory.parse(category)
        log_path = self.log_path(member)
        if not log_path.exists():
            return
        with log_path.open("rb") as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    yield json.loads(line.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    logger.warning(f"Skipping unparseable line {line_number} in {log_path.name}")

    def verify(self, category) -> ChainVerificationReport:
        """
        Replay the chain and recompute every hash.

        Each entry is checked against the previous entry's stored hash, so a
        modified entry is reported without cascading into its successors.
        Malformed lines are reported, never raised.

        Raises:
            ConfigurationError: unknown or non-immutable category
        """
        member = self._require_immutable(category)
        log_path = self.log_path(member)
        report = ChainVerificationReport(category=member.file_name, valid=True)

        if not log_path.exists():
            report.message = "No immutable log file found"
            return report

        try:
            # Decoded per line so one corrupt byte only costs its own entry
            lines = [line for line in log_path.read_bytes().split(b"\n") if line.strip()]
        except OSError as e:
            report.valid = False
            report.integrity_score = 0.0
            report.message = f"Unreadable log file: {e}"
            return report

        previous_hash: str | None = ChainDefaults.GENESIS_HASH
        for position, line in enumerate(lines, start=1):
            try:
                entry = json.loads(line.decode("utf-8"))
                if not isinstance(entry, dict):
                    raise ValueError("entry is not an object")
                expected = self.compute_hash(
                    entry["timestamp"], entry["eventType"], entry["data"], entry["previousHash"]
                )
            except (ValueError, KeyError, TypeError) as e:
                report.invalid_entries += 1
                report.errors.append({"index": position, "error": "parse error", "message": str(e)})
                # Link to the next entry is unknown; trust its declared previousHash
                previous_hash = None
                continue

            linked = previous_hash is None or entry["previousHash"] == previous_hash
            if linked and hmac.compare_digest(str(entry.get("hash", "")), expected):
                report.valid_entries += 1
            else:
                report.invalid_entries += 1
                report.errors.append({
                    "index": position,
                    "entryIndex": entry.get("index"),
                    "error": "hash mismatch",
                    "expected": expected,
                    "actual": entry.get("hash"),
                })
            previous_hash = entry.get("hash")

        report.total_entries = report.valid_entries + report.invalid_entries
        report.valid = report.invalid_entries == 0
        if report.total_entries:
            report.integrity_score = report.valid_entries / report.total_entries
        return report

    def verify_all(self) -> dict[str, ChainVerificationReport]:
        """Verify every immutable category. Never raises."""
        results = {}
        for member in ChainCategory:
            if not member.immutable:
                continue
            try:
                results[member.name] = self.verify(member)
            except Exception as e:
                logger.error(f"Chain verification failed for {member.file_name}: {e}", exc_info=True)
                results[member.name] = ChainVerificationReport(
                    category=member.file_name,
                    valid=False,
                    integrity_score=0.0,
                    message=str(e),
                )
        return results
