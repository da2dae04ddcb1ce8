"""Persist user settings to redhelper.conf.

Values are written as ``VAR="value"`` lines. Existing assignments (and
``# (default) VAR=...`` placeholders) are rewritten in place so comments and
layout survive; variables missing from the file are appended. Writes are
debounced so a burst of changes costs one disk write.
"""

from __future__ import annotations

import fcntl
import logging
import re
import shutil
import threading
from pathlib import Path

LOGGER = logging.getLogger(__name__)

DEBOUNCE_DELAY_SECONDS = 2.0
LOCK_FILE_SUFFIX = ".lock"

_ASSIGNMENT_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")
_DEFAULT_COMMENT_RE = re.compile(r"^#\s*\(default\)\s*([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")


def quote_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def apply_changes(content: str, changes: dict[str, str]) -> str:
    """Return ``content`` with ``changes`` applied."""
    remaining = dict(changes)
    result: list[str] = []
    for line in content.splitlines(keepends=True):
        stripped = line.rstrip("\r\n")
        match = _DEFAULT_COMMENT_RE.match(stripped) or _ASSIGNMENT_RE.match(stripped)
        if match and match.group(1) in remaining:
            name = match.group(1)
            ending = line[len(stripped) :]
            result.append(f"{name}={quote_value(remaining.pop(name))}{ending}")
            continue
        result.append(line)

    if remaining:
        if result and not result[-1].endswith("\n"):
            result.append("\n")
        for name, value in remaining.items():
            result.append(f"{name}={quote_value(value)}\n")
    return "".join(result)


class SettingsPersister:
    """Debounced writer for the config file."""

    def __init__(
        self,
        config_path: Path,
        debounce_seconds: float = DEBOUNCE_DELAY_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config_path = config_path
        self._debounce_seconds = debounce_seconds
        self._logger = logger or LOGGER
        self._pending: dict[str, str] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._timer: threading.Timer | None = None

    def update(self, var_name: str, value: str) -> None:
        with self._lock:
            self._pending[var_name] = value
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce_seconds, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        """Write pending changes now."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if not self._pending:
                return
            changes = self._pending.copy()
            self._pending.clear()
        try:
            self._write(changes)
        except OSError as exc:
            self._logger.error("[settings] Failed to persist settings to '%s': %s", self._config_path, exc)

    def stop(self) -> None:
        self.flush()

    def _write(self, changes: dict[str, str]) -> None:
        with self._write_lock:
            self._config_path.parent.mkdir(parents=True, exist_ok=True)
            lock_path = Path(str(self._config_path) + LOCK_FILE_SUFFIX)
            with open(lock_path, "w") as lock_fd:
                fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX)
                try:
                    content = self._config_path.read_text(encoding="utf-8") if self._config_path.exists() else ""
                    if content:
                        backup_path = Path(str(self._config_path) + ".backup")
                        try:
                            shutil.copy2(self._config_path, backup_path)
                        except OSError as exc:
                            self._logger.warning("[settings] Failed to create config backup: %s", exc)
                    self._config_path.write_text(apply_changes(content, changes), encoding="utf-8")
                finally:
                    fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)
        self._logger.info(
            "[settings] Persisted %d change(s) to '%s': %s",
            len(changes),
            self._config_path,
            ", ".join(f"{k}={v!r}" for k, v in changes.items()),
        )
