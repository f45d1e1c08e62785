"""Configuration manager that loads config.yaml into swappable snapshots."""

import threading
import time
from pathlib import Path

import yaml

from chaincord.core.config.settings import BotConfig


class ConfigFileNotFoundError(FileNotFoundError):
    """Raised when a configuration file cannot be found."""

    def __init__(self, filename: str) -> None:
        """Initialize the error with the missing filename."""
        self.filename = filename
        super().__init__(filename)

    def __str__(self) -> str:
        """Return a readable error message."""
        return (
            f"Config file '{self.filename}' not found in current directory or "
            "/etc/secrets/"
        )


class ConfigFileEmptyError(ValueError):
    """Raised when a configuration file is empty or corrupted."""

    def __init__(self, path: Path) -> None:
        """Initialize the error with the invalid config path."""
        self.path = path
        super().__init__(path)

    def __str__(self) -> str:
        """Return a readable error message."""
        return f"Config file is empty or corrupted: {self.path}"


CONFIG_CACHE_TTL = 5  # Check file modification time every 5 seconds


def _resolve_config_path(filename: str) -> Path:
    candidates = [Path(filename), Path("/etc/secrets") / filename]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    raise ConfigFileNotFoundError(filename)


def load_config_file(path: Path) -> BotConfig:
    """Parse one YAML file into a new snapshot."""
    with path.open(encoding="utf-8") as file:
        loaded_config = yaml.safe_load(file)
    # Handle empty/corrupted YAML that returns None
    if loaded_config is None:
        raise ConfigFileEmptyError(path)
    return BotConfig.from_mapping(loaded_config)


class ConfigStore:
    """Holds the current configuration snapshot.

    Readers call :meth:`current` once per operation and keep using that
    object. Reloads build a complete new snapshot first and then replace the
    reference, so a reader sees either the old or the new config, never a
    mix of both.
    """

    def __init__(
        self,
        filename: str = "config.yaml",
        *,
        snapshot: BotConfig | None = None,
    ) -> None:
        """Create a store, optionally seeded with an in-memory snapshot."""
        self.filename = filename
        self._snapshot = snapshot
        self._mtime: float = 0
        self._check_time: float = 0
        self._swap_lock = threading.Lock()

    def current(self) -> BotConfig:
        """Return the active snapshot, loading the file on first use."""
        snapshot = self._snapshot
        if snapshot is None:
            return self.reload()
        return snapshot

    def swap(self, snapshot: BotConfig) -> BotConfig:
        """Atomically replace the active snapshot and return the old one."""
        with self._swap_lock:
            previous = self._snapshot
            self._snapshot = snapshot
        return previous or snapshot

    def reload(self) -> BotConfig:
        """Re-read the config file unconditionally."""
        filepath = _resolve_config_path(self.filename)
        snapshot = load_config_file(filepath)
        with self._swap_lock:
            self._mtime = filepath.stat().st_mtime
            self._snapshot = snapshot
        return snapshot

    def refresh_if_changed(self) -> BotConfig:
        """Reload only if the file changed since the last load.

        The file's mtime is checked at most every `CONFIG_CACHE_TTL` seconds.
        """
        current_time = time.time()
        if (
            self._snapshot is not None
            and current_time - self._check_time <= CONFIG_CACHE_TTL
        ):
            return self._snapshot

        self._check_time = current_time
        filepath = _resolve_config_path(self.filename)
        if self._snapshot is None or filepath.stat().st_mtime != self._mtime:
            return self.reload()
        return self._snapshot


_CONFIG_STORE = ConfigStore()


def get_config_store() -> ConfigStore:
    """Return the process-wide config store."""
    return _CONFIG_STORE


def get_config() -> BotConfig:
    """Return the latest config snapshot, picking up file edits."""
    return _CONFIG_STORE.refresh_if_changed()
