"""
VOLRISK - Hot-Reload Configuration Manager
===========================================

Polls a YAML override file and swaps in a new VolRiskConfig whenever the file
changes and the new document validates.

The YAML document mirrors VolRiskConfig: top-level sections `volatility`,
`regime`, `portfolio`, `scoring`, `sizing`, each overriding the defaults of
the matching component config. An invalid edit is logged, counted and
ignored; the running config stays in place.

Version: 1.0
"""

import yaml
import time
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from threading import Event, Lock, Thread
import logging

from .risk_config import VolRiskConfig
from .risk_types import ConfigurationError
from . import risk_metrics as metrics

logger = logging.getLogger(__name__)

ConfigCallback = Callable[[VolRiskConfig, VolRiskConfig], None]


def _callback_name(callback: ConfigCallback) -> str:
    return getattr(callback, '__qualname__', repr(callback))


class ConfigManager:
    """
    Watches one YAML file and publishes validated VolRiskConfig objects.

    Readers use `config` (typed) or `get()` (raw document by dot path).
    Subscribers registered with `register_callback` receive
    `(old_config, new_config)` after every successful reload.
    """

    def __init__(self, config_path: str = "config/volrisk_config.yaml", poll_interval: int = 5):
        """
        Initialize config manager and load the file once if it exists.

        Args:
            config_path: YAML override file
            poll_interval: Seconds between mtime checks when watching
        """
        self.config_path = Path(config_path)
        self.poll_interval = poll_interval

        self._lock = Lock()
        self._document: Dict = {}
        self._config = VolRiskConfig()
        self._seen_mtime = 0.0
        self._subscribers: List[ConfigCallback] = []

        self._stop = Event()
        self._watcher: Optional[Thread] = None

        self.reload_count = 0
        self.failed_reloads = 0

        self.reload_config()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_config(self) -> Any:
        """Read the YAML document (empty mapping on read or parse errors)."""
        try:
            with open(self.config_path, 'r') as f:
                document = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Cannot read {self.config_path}: {e}")
            return {}
        return {} if document is None else document

    def _parse(self, document: Any) -> Tuple[Optional[VolRiskConfig], Optional[str]]:
        if not isinstance(document, dict):
            return None, f"root must be a mapping, got {type(document).__name__}"
        try:
            return VolRiskConfig.from_dict(document), None
        except (ConfigurationError, TypeError, ValueError) as e:
            return None, str(e)

    def validate_config(self, document: Any) -> bool:
        """
        Check a raw document without applying it.

        Returns:
            True if it converts to a valid VolRiskConfig
        """
        _, error = self._parse(document)
        if error is not None:
            logger.error(f"Invalid config: {error}")
        return error is None

    def reload_config(self) -> bool:
        """
        Apply the file if its mtime moved since the last attempt.

        Returns:
            True if a new config was applied
        """
        if not self.config_path.exists():
            logger.warning(f"Config file not found: {self.config_path}")
            return False

        mtime = os.path.getmtime(self.config_path)
        if mtime <= self._seen_mtime:
            return False
        self._seen_mtime = mtime

        document = self.load_config()
        new_config, error = self._parse(document)
        if error is not None:
            self.failed_reloads += 1
            metrics.record_config_reload("error")
            logger.error(f"Rejected {self.config_path} ({error}); previous config kept")
            return False

        with self._lock:
            old_config = self._config
            self._document = document
            self._config = new_config
            self.reload_count += 1

        metrics.record_config_reload("success")
        logger.info(f"Config #{self.reload_count} applied from {self.config_path}")

        for callback in list(self._subscribers):
            try:
                callback(old_config, new_config)
            except Exception as e:
                logger.error(f"Config callback {_callback_name(callback)} failed: {e}")

        return True

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def config(self) -> VolRiskConfig:
        """Current validated configuration."""
        with self._lock:
            return self._config

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Raw value from the loaded document by dot path.

        Example:
            >>> manager.get('sizing.kelly_multiplier')
            0.25
        """
        with self._lock:
            node = self._document
        for key in key_path.split('.'):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return default if node is None else node

    def get_all(self) -> Dict:
        """Shallow copy of the loaded document."""
        with self._lock:
            return dict(self._document)

    def register_callback(self, callback: ConfigCallback):
        """Subscribe to successful reloads: callback(old_config, new_config)."""
        self._subscribers.append(callback)
        logger.debug(f"Config subscriber added: {_callback_name(callback)}")

    # ------------------------------------------------------------------
    # Watcher
    # ------------------------------------------------------------------

    @property
    def watcher_running(self) -> bool:
        return self._watcher is not None and self._watcher.is_alive()

    def start_watcher(self):
        """Poll the file from a daemon thread."""
        if self._watcher is not None:
            logger.warning("Config watcher already running")
            return

        self._stop.clear()
        self._watcher = Thread(target=self._watch, name="volrisk-config-watcher", daemon=True)
        self._watcher.start()
        logger.info(f"Watching {self.config_path} every {self.poll_interval}s")

    def stop_watcher(self):
        """Stop polling and wait for the thread to exit."""
        self._stop.set()
        if self._watcher is not None:
            self._watcher.join(timeout=self.poll_interval + 1)
            self._watcher = None
            logger.info("Config watcher stopped")

    def _watch(self):
        while not self._stop.is_set():
            try:
                self.reload_config()
            except OSError as e:
                logger.error(f"Config poll failed: {e}")
            self._stop.wait(self.poll_interval)

    def get_state(self) -> Dict:
        """Get current state for monitoring."""
        return {
            'config_path': str(self.config_path),
            'config_exists': self.config_path.exists(),
            'last_modified': self._seen_mtime,
            'watcher_running': self.watcher_running,
            'callback_count': len(self._subscribers),
            'poll_interval_sec': self.poll_interval,
            'reload_count': self.reload_count,
            'failed_reloads': self.failed_reloads,
            'checked_at': time.time()
        }
