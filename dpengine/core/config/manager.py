from __future__ import annotations

import os
from typing import Any, Dict, Optional

from pydantic import ValidationError

from dpengine.core.config.io import (
    ReadResult,
    atomic_write_json,
    ensure_dirs,
    read_json_file,
    recover_from_corrupt,
    snapshot_last_known_good,
)
from dpengine.core.config.models import EngineConfigFile
from dpengine.core.config.paths import ConfigFsPaths
from dpengine.core.errors import ConfigError


class ConfigManager:
    """
    Loads and saves config/engine.json.

    Missing file: defaults are written. Corrupt JSON: the file is moved to
    backups and the last-known-good copy restored (defaults if there is none).
    Schema errors raise ConfigError and leave the file untouched.
    """

    def __init__(self, *, fs: Optional[ConfigFsPaths] = None, logger=None, read_only: bool = False):
        self.fs = fs or ConfigFsPaths(".")
        self.logger = logger
        self.read_only = read_only
        self._cfg: Optional[EngineConfigFile] = None

    # ---------- public API ----------
    def load(self) -> EngineConfigFile:
        if not self.read_only:
            ensure_dirs(self.fs.config_dir, self.fs.backups_dir, self.fs.last_known_good_dir)

        raw = self._load_raw()
        cfg = self._validate(raw)
        if not raw and not self.read_only:
            atomic_write_json(self.fs.engine, cfg.model_dump(mode="json"), self.fs.backups_dir, max_backups=cfg.max_backups)
            if self.logger:
                self.logger.info(f"Config defaults written: {self.fs.engine}")

        self._cfg = cfg
        if not self.read_only and os.path.exists(self.fs.engine):
            snapshot_last_known_good(self.fs.engine, self.fs.last_known_good_dir)
        return cfg

    def get(self) -> EngineConfigFile:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg

    def save(self, data: Dict[str, Any]) -> EngineConfigFile:
        """
        Validate, then write atomically with a pre-write backup.
        """
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        if not isinstance(data, dict):
            raise ConfigError("Config data must be an object.")
        cfg = self._validate(data)
        atomic_write_json(self.fs.engine, cfg.model_dump(mode="json"), self.fs.backups_dir, max_backups=cfg.max_backups)
        snapshot_last_known_good(self.fs.engine, self.fs.last_known_good_dir)
        self._cfg = cfg
        if self.logger:
            self.logger.info("Config saved: engine.json")
        return cfg

    def open_paths(self) -> Dict[str, str]:
        return {
            "config_dir": self.fs.config_dir,
            "engine": self.fs.engine,
            "backups_dir": self.fs.backups_dir,
            "last_known_good_dir": self.fs.last_known_good_dir,
        }

    def resolve_path(self, path: str) -> str:
        """Relative paths in the config are relative to the root directory."""
        return path if os.path.isabs(path) else os.path.join(self.fs.root, path)

    # ---------- internals ----------
    def _load_raw(self) -> Dict[str, Any]:
        rr: ReadResult = read_json_file(self.fs.engine)
        if rr.ok:
            return rr.data
        if rr.error and (rr.error.startswith("corrupt_json") or rr.error == "not_object"):
            if self.read_only:
                raise ConfigError("engine.json is corrupt.", path=self.fs.engine, error=rr.error[:200])
            data, recovered = recover_from_corrupt(self.fs.engine, self.fs.backups_dir, self.fs.last_known_good_dir)
            if self.logger:
                self.logger.warning(f"Corrupt config engine.json -> recovered={recovered}")
            return data
        if rr.error and rr.error != "missing" and self.logger:
            self.logger.warning(f"Config engine.json unreadable: {rr.error}")
        return {}

    def _validate(self, raw: Dict[str, Any]) -> EngineConfigFile:
        try:
            return EngineConfigFile.model_validate(raw or {})
        except ValidationError as e:
            fields = sorted({".".join(str(x) for x in err.get("loc") or ()) for err in e.errors()})
            raise ConfigError("engine.json invalid.", fields=fields) from e
