"""Persisted arbitration config, replaced atomically on every write."""

import dataclasses
import json
import logging
import os
import tempfile
from pathlib import Path

from fusion_vm.config import ARBITRATION_CONFIG_PATH
from fusion_vm.exceptions import ConfigurationError
from fusion_vm.models import ArbitrationConfig

logger = logging.getLogger(__name__)


class ArbitrationConfigStore:
    """File-backed ``ArbitrationConfig``; last writer wins."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or ARBITRATION_CONFIG_PATH

    def load(self) -> ArbitrationConfig | None:
        """Read the config, or None if no environment was ever created."""
        try:
            raw = self.path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ConfigurationError(f"Cannot read {self.path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Corrupt arbitration config {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Corrupt arbitration config {self.path}: not an object")

        return ArbitrationConfig.from_dict(data)

    def require(self) -> ArbitrationConfig:
        """Read the config, failing if it does not exist yet."""
        config = self.load()
        if config is None:
            raise ConfigurationError(
                f"No arbitration config at {self.path}; create an environment first"
            )
        return config

    def save(self, config: ArbitrationConfig) -> None:
        """Write to a temp file in the same directory, then rename over the target."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(config.to_dict(), indent=2) + "\n"

        with tempfile.NamedTemporaryFile(
            "w", dir=self.path.parent, prefix=f".{self.path.name}.", delete=False
        ) as tmp:
            tmp_path = Path(tmp.name)
            try:
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            except OSError:
                tmp_path.unlink(missing_ok=True)
                raise

        try:
            tmp_path.replace(self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.info("Saved arbitration config to %s", self.path)

    def update(self, **changes: object) -> ArbitrationConfig:
        """Read-modify-write the stored config."""
        updated = dataclasses.replace(self.require(), **changes)
        self.save(updated)
        return updated
