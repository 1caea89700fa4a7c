"""
Artifact store.
Loads compiled contract artifacts, build info and interface ids from the
Hardhat output directory.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from diamond_upgrader.core.config import Settings
from diamond_upgrader.core.exceptions import ConfigError
from diamond_upgrader.core.logging import get_logger
from diamond_upgrader.infrastructure.blockchain.selectors import compute_interface_id

logger = get_logger(__name__)


class ArtifactStore:
    """Read-only access to compiled artifacts, cached per instance."""

    def __init__(self, settings: Settings):
        self.artifacts_dir = Path(settings.ARTIFACTS_DIR)
        self.build_info_dir = Path(settings.BUILD_INFO_DIR)
        self.interfaces_config_path = Path(settings.INTERFACES_CONFIG_PATH)
        self._artifacts: Dict[str, Dict[str, Any]] = {}
        self._interfaces_config: Optional[Dict[str, Any]] = None

    def load(self, contract_name: str) -> Dict[str, Any]:
        """
        Load the artifact of a contract.

        Args:
            contract_name: Contract name, e.g. SellerHandlerFacet

        Returns:
            Artifact dict with at least abi, bytecode and sourceName

        Raises:
            ConfigError: if no artifact exists for the name
        """
        if contract_name not in self._artifacts:
            candidates = [
                path
                for path in self.artifacts_dir.rglob(f"{contract_name}.json")
                if not path.name.endswith(".dbg.json")
            ]
            if not candidates:
                raise ConfigError(
                    f"No compiled artifact for {contract_name}",
                    details={"artifacts_dir": str(self.artifacts_dir)},
                )
            with open(candidates[0], "r", encoding="utf-8") as f:
                self._artifacts[contract_name] = json.load(f)
        return self._artifacts[contract_name]

    def abi(self, contract_name: str) -> List[Dict[str, Any]]:
        return self.load(contract_name)["abi"]

    def _interfaces(self) -> Dict[str, Any]:
        if self._interfaces_config is None:
            if not self.interfaces_config_path.exists():
                logger.warning(f"No interfaces config at {self.interfaces_config_path}")
                self._interfaces_config = {"implementers": {}, "inherits": {}}
            else:
                with open(self.interfaces_config_path, "r", encoding="utf-8") as f:
                    self._interfaces_config = json.load(f)
        return self._interfaces_config

    def interface_id_for(self, facet_name: str) -> str:
        """
        ERC-165 interface id implemented by a facet.

        Returns:
            0x-prefixed interface id, empty string if the facet has none
        """
        config = self._interfaces()
        interface_name = config.get("implementers", {}).get(facet_name)
        if not interface_name:
            return ""
        parents = config.get("inherits", {}).get(interface_name, [])
        return compute_interface_id(
            self.abi(interface_name), [self.abi(parent) for parent in parents]
        )

    def storage_layout(self, contract_name: str) -> List[Dict[str, Any]]:
        """Storage layout of a contract from its build info."""
        source_name = self.load(contract_name).get("sourceName")
        for path in sorted(self.build_info_dir.glob("*.json")):
            with open(path, "r", encoding="utf-8") as f:
                build_info = json.load(f)
            contract = (
                build_info.get("output", {})
                .get("contracts", {})
                .get(source_name, {})
                .get(contract_name)
            )
            if contract and "storageLayout" in contract:
                return contract["storageLayout"].get("storage", [])
        raise ConfigError(f"No storage layout found for {contract_name}")
