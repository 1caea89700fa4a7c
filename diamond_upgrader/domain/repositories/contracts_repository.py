"""
Contracts Repository.
Reads and writes the JSON record of deployed contracts per (chainId, network, env).
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from diamond_upgrader.core.config import Settings
from diamond_upgrader.core.exceptions import ConfigError, PersistenceError
from diamond_upgrader.core.logging import get_logger
from diamond_upgrader.domain.models.contracts import ContractsFile

logger = get_logger(__name__)


class ContractsRepository:
    """Repository for contracts files."""

    def __init__(self, settings: Settings):
        """Initialize contracts repository."""
        self.addresses_dir = Path(settings.ADDRESSES_DIR)

    def path_for(self, chain_id: int, network: str, env: str) -> Path:
        return self.addresses_dir / f"{chain_id}-{network.lower()}-{env}.json"

    async def read(self, chain_id: int, network: str, env: str) -> ContractsFile:
        """
        Read a contracts file.

        Args:
            chain_id: Chain ID
            network: Network name
            env: Deployment environment

        Returns:
            Parsed contracts file

        Raises:
            ConfigError: if the file is missing or malformed
        """
        path = self.path_for(chain_id, network, env)
        if not path.exists():
            raise ConfigError(f"Contracts file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            contracts_file = ContractsFile.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigError(f"Malformed contracts file {path}: {e}")

        logger.info(f"Read {len(contracts_file.contracts)} contracts from {path}")
        return contracts_file

    async def write(self, contracts_file: ContractsFile, version: Optional[str] = None) -> Path:
        """
        Write a contracts file atomically.

        The new content goes to a temporary file in the same directory which
        then replaces the target, so readers see either the old or the new file.

        Args:
            contracts_file: Contracts to persist
            version: Protocol version to record, keeps the current one when None

        Returns:
            Path of the written file

        Raises:
            PersistenceError: if the file cannot be written
        """
        if version is not None:
            contracts_file = contracts_file.model_copy(update={"protocol_version": version})

        path = self.path_for(contracts_file.chain_id, contracts_file.network, contracts_file.env)
        tmp_path = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(contracts_file.to_json_dict(), f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise PersistenceError(f"Could not write {path}: {e}", details={"path": str(path)})

        logger.info(f"Contracts written to {path}")
        return path
