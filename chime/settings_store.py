"""Key/value preference storage in a ``KEY="value"`` conf file.

Updates are batched and written after a short delay to avoid excessive disk
I/O. Writes keep the file's comments and layout; keys that are not present yet
are appended at the end.
"""

from __future__ import annotations

import fcntl
import logging
import re
import shutil
import threading
from collections.abc import Callable
from pathlib import Path

LOGGER = logging.getLogger("chime.settings_store")

# Wait this long after the last change before writing
DEBOUNCE_DELAY_SECONDS = 2.0

LOCK_FILE_SUFFIX = ".lock"

# VAR_NAME="value" or VAR_NAME=value
_ASSIGNMENT_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")

# Commented-out default: # (default) VAR_NAME="value"
_DEFAULT_COMMENT_RE = re.compile(r"^#\s*\(default\)\s*([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")


def _strip_quotes(value: str) -> str:
    """Remove matching single or double quotes from a value."""
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


def _quote_value(value: str) -> str:
    """Wrap a value in double quotes, escaping as needed."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unquote_value(raw: str) -> str:
    """Inverse of :func:`_quote_value` for double-quoted values."""
    stripped = raw.strip()
    if len(stripped) >= 2 and stripped[0] == stripped[-1] == '"':
        return re.sub(r"\\(.)", r"\1", stripped[1:-1])
    return _strip_quotes(stripped)


class SettingsStore:
    """Reads preferences and applies debounced writes to the settings file."""

    def __init__(
        self,
        path: Path,
        debounce_seconds: float = DEBOUNCE_DELAY_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.path = path
        self._debounce_seconds = debounce_seconds
        self._logger = logger or LOGGER
        self._pending_changes: dict[str, str] = {}
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._write_lock = threading.Lock()

    def read_all(self) -> dict[str, str]:
        """Current values, with queued but unwritten changes applied on top."""
        values: dict[str, str] = {}
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            content = ""
        except OSError as exc:
            self._logger.warning("Failed to read settings file '%s': %s", self.path, exc)
            content = ""
        for line in content.splitlines():
            match = _ASSIGNMENT_RE.match(line.strip())
            if match:
                values[match.group(1)] = _unquote_value(match.group(2))
        with self._lock:
            values.update(self._pending_changes)
        return values

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.read_all().get(key, default)

    def update(self, key: str, value: str) -> None:
        """Queue a variable update. The write will be debounced."""
        with self._lock:
            self._pending_changes[key] = value
            self._schedule_write()

    def _schedule_write(self) -> None:
        """Schedule a debounced write. Must be called with self._lock held."""
        if self._timer is not None:
            self._timer.cancel()
        self._timer = threading.Timer(self._debounce_seconds, self._flush)
        self._timer.daemon = True
        self._timer.start()

    def _flush(self) -> None:
        with self._lock:
            if not self._pending_changes:
                return
            changes = self._pending_changes.copy()
            self._pending_changes.clear()
            self._timer = None

        try:
            self._write_changes(changes)
        except Exception as exc:
            self._logger.error("Failed to persist settings: %s", exc)

    def _write_changes(self, changes: dict[str, str]) -> None:
        with self._write_lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch(exist_ok=True)
            self._write_changes_locked(changes)

    def _write_changes_locked(self, changes: dict[str, str]) -> None:
        """Write changes with file locking. Must be called with _write_lock held."""
        lock_path = Path(str(self.path) + LOCK_FILE_SUFFIX)
        lock_fd = None
        try:
            try:
                lock_fd = open(lock_path, "w")  # noqa: SIM115
                fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX)
            except OSError as exc:
                self._logger.warning("Could not acquire settings lock: %s", exc)

            try:
                content = self.path.read_text(encoding="utf-8")
            except OSError as exc:
                self._logger.error("Failed to read settings file: %s", exc)
                return

            if content:
                backup_path = Path(str(self.path) + ".backup")
                try:
                    shutil.copy2(self.path, backup_path)
                except OSError as exc:
                    self._logger.warning("Failed to create settings backup: %s", exc)

            new_content = self._apply_changes(content, changes)
            try:
                self.path.write_text(new_content, encoding="utf-8")
                self._logger.info(
                    "Persisted %d setting(s) to '%s': %s",
                    len(changes),
                    self.path,
                    ", ".join(f"{k}={v!r}" for k, v in changes.items()),
                )
            except OSError as exc:
                self._logger.error("Failed to write settings file: %s", exc)
        finally:
            if lock_fd is not None:
                try:
                    fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)
                    lock_fd.close()
                except OSError:
                    pass

    def _apply_changes(self, content: str, changes: dict[str, str]) -> str:
        lines = content.splitlines(keepends=True)
        remaining = dict(changes)
        result: list[str] = []

        for line in lines:
            stripped = line.rstrip("\n\r")
            match = _DEFAULT_COMMENT_RE.match(stripped) or _ASSIGNMENT_RE.match(stripped)
            if match and match.group(1) in remaining:
                var_name = match.group(1)
                new_line = f"{var_name}={_quote_value(remaining.pop(var_name))}"
                if line.endswith("\n"):
                    new_line += "\n"
                result.append(new_line)
                continue
            result.append(line)

        if remaining and result and not result[-1].endswith("\n"):
            result[-1] += "\n"
        for var_name, value in remaining.items():
            result.append(f"{var_name}={_quote_value(value)}\n")

        return "".join(result)

    def flush_sync(self) -> None:
        """Immediately flush any pending changes (blocking)."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if not self._pending_changes:
                return
            changes = self._pending_changes.copy()
            self._pending_changes.clear()

        try:
            self._write_changes(changes)
        except Exception as exc:
            self._logger.error("Failed to persist settings: %s", exc)

    def stop(self) -> None:
        """Stop the store and flush any pending changes."""
        self.flush_sync()


def _on_off(value: str) -> str:
    return "true" if value.strip().lower() in {"on", "true", "1", "yes"} else "false"


# Preference key -> (settings variable, value transformer)
PREFERENCE_TO_SETTING: dict[str, tuple[str, Callable[[str], str]]] = {
    "speech_enabled": ("CHIME_TTS_ENABLED", _on_off),
    "speak_am_pm": ("CHIME_SPEAK_AMPM", _on_off),
    "speech_format": ("CHIME_SPEECH_FORMAT", str),
    "speech_template": ("CHIME_SPEECH_TEMPLATE", str),
    "snooze_delay": ("CHIME_SNOOZE_DELAY", str),
    "use_24_hour": ("CHIME_USE_24_HOUR", _on_off),
    "week_start": ("CHIME_WEEK_START", str),
}


def persist_preference(
    store: SettingsStore,
    preference_key: str,
    value: str,
    *,
    logger: logging.Logger | None = None,
) -> bool:
    """Persist a preference change using its logical key.

    Returns:
        True if the preference was recognized and queued for persistence,
        False if the preference key is unknown.
    """
    mapping = PREFERENCE_TO_SETTING.get(preference_key)
    if mapping is None:
        (logger or LOGGER).warning("Unknown preference key '%s', not persisting", preference_key)
        return False
    var_name, transformer = mapping
    store.update(var_name, transformer(value))
    return True
