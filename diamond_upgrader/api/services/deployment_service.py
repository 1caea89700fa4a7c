"""
Deployment Service.
Deploys new facet and client implementation contracts and encodes their
initializer calls.
"""

from typing import Any, Dict, List, Optional, Sequence

from eth_abi import encode as abi_encode
from eth_abi.exceptions import EncodingError

from diamond_upgrader.core.config import ZERO_ADDRESS
from diamond_upgrader.core.exceptions import ConfigError
from diamond_upgrader.core.logging import get_logger
from diamond_upgrader.domain.models.contracts import DeployedFacet
from diamond_upgrader.domain.models.upgrade_plan import UpgradePlan
from diamond_upgrader.infrastructure.artifacts.artifact_store import ArtifactStore
from diamond_upgrader.infrastructure.blockchain.contract_client import ChainClient
from diamond_upgrader.infrastructure.blockchain.selectors import (
    canonical_type,
    function_signature,
    selector_for,
)

logger = get_logger(__name__)


def find_initializer(abi: Sequence[Dict[str, Any]], arg_count: int) -> Optional[Dict[str, Any]]:
    """The initialize(...) overload taking arg_count arguments, if any."""
    for entry in abi:
        if (
            entry.get("type") == "function"
            and entry.get("name") == "initialize"
            and len(entry.get("inputs", [])) == arg_count
        ):
            return entry
    return None


def encode_initializer_call(abi: Sequence[Dict[str, Any]], args: List[Any]) -> str:
    """
    Encode initialize(...) calldata for a facet.

    Raises:
        ConfigError: if the facet has no initializer matching the arguments
    """
    entry = find_initializer(abi, len(args))
    if entry is None:
        raise ConfigError(
            f"No initialize function taking {len(args)} arguments",
            details={"args": args},
        )
    types = [canonical_type(param) for param in entry.get("inputs", [])]
    try:
        encoded = abi_encode(types, args)
    except (EncodingError, TypeError, ValueError) as e:
        raise ConfigError(
            f"Invalid arguments for {function_signature(entry)}: {e}",
            details={"args": args},
        )
    return selector_for(function_signature(entry)) + encoded.hex()


class FacetDeployer:
    """Deploys the facets named by an upgrade plan."""

    def __init__(self, chain: ChainClient, artifacts: ArtifactStore):
        self.chain = chain
        self.artifacts = artifacts

    def validate_plan(self, plan: UpgradePlan) -> None:
        """
        Check every facet to deploy has an artifact and valid init arguments.

        Runs before any transaction is sent.

        Raises:
            ConfigError: on a missing artifact or an init config the ABI rejects
        """
        for name in plan.add_or_upgrade:
            abi = self.artifacts.abi(name)
            init_config = plan.init_for(name)
            if init_config is not None:
                encode_initializer_call(abi, init_config.init)

    async def deploy_facets(self, plan: UpgradePlan, dry_run: bool = False) -> List[DeployedFacet]:
        """
        Deploy every facet of plan.add_or_upgrade in order.

        Args:
            plan: Validated upgrade plan
            dry_run: Skip deployment, facets get the zero address

        Returns:
            Deployed facets with their init calldata
        """
        self.validate_plan(plan)

        deployed = []
        for name in plan.add_or_upgrade:
            artifact = self.artifacts.load(name)
            init_config = plan.init_for(name)
            constructor_args = init_config.constructor_args if init_config else []
            init_calldata = encode_initializer_call(artifact["abi"], init_config.init) if init_config else None

            if dry_run:
                address = ZERO_ADDRESS
            else:
                address = await self.chain.deploy(name, artifact["abi"], artifact["bytecode"], constructor_args)

            deployed.append(
                DeployedFacet(
                    name=name,
                    address=address,
                    abi=artifact["abi"],
                    init_calldata=init_calldata,
                    constructor_args=constructor_args,
                )
            )

        logger.info(f"Deployed {len(deployed)} facets", dry_run=dry_run)
        return deployed

    async def deploy_implementation(self, name: str, constructor_args: List[Any]) -> str:
        artifact = self.artifacts.load(name)
        return await self.chain.deploy(name, artifact["abi"], artifact["bytecode"], constructor_args)
