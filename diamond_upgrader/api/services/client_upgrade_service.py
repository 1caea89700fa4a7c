"""
Client Upgrade Service.
Points a client beacon at a freshly deployed implementation.
"""

from typing import Any, Dict, List, Optional

from eth_abi import encode as abi_encode
from pydantic import BaseModel, Field

from diamond_upgrader.api.services.upgrade_service import UpgradeContext
from diamond_upgrader.core.exceptions import ConfigError, PersistenceError
from diamond_upgrader.core.logging import get_logger
from diamond_upgrader.domain.models.upgrade_plan import ClientUpgradeConfig
from diamond_upgrader.infrastructure.blockchain.abis import BEACON_ABI
from diamond_upgrader.infrastructure.blockchain.access_control import Role
from diamond_upgrader.infrastructure.blockchain.selectors import FUNCTION_SIGNATURES, selector_for

logger = get_logger(__name__)


class ClientUpgradeResult(BaseModel):
    client: str
    beacon_address: str
    previous_implementation: Optional[str] = None
    implementation_address: str
    constructor_args: List[Any] = Field(default_factory=list)
    tx_hash: Optional[str] = None
    contracts_path: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        return self.model_dump()


class ClientUpgradeService:
    """Service for beacon client upgrades."""

    def __init__(self, context: UpgradeContext):
        self.context = context
        self.settings = context.settings

    async def upgrade_clients(self, config: ClientUpgradeConfig, env: str) -> ClientUpgradeResult:
        """
        Deploy a new client implementation and set it on the client beacon.

        Args:
            config: Client to upgrade and its constructor args per network
            env: Deployment environment of the contracts file

        Returns:
            ClientUpgradeResult

        Raises:
            ConfigError: if the beacon is not in the contracts file
            AuthorizationError: if the admin lacks the upgrader role
            PersistenceError: if the contracts file cannot be written after the beacon update
        """
        chain = self.context.chain
        chain_id = await chain.chain_id()
        contracts_file = await self.context.repository.read(chain_id, self.settings.NETWORK, env)

        admin = self.context.role_guard.check_admin(chain.signer_address)
        await self.context.role_guard.check_role(contracts_file, Role.UPGRADER, admin)

        beacon_address = contracts_file.address_of(config.beacon_name)
        if not beacon_address:
            raise ConfigError(f"{config.beacon_name} address not found in contracts file")

        previous = await chain.call_function(beacon_address, BEACON_ABI, "getImplementation")
        logger.info(f"{config.beacon_name} implementation before upgrade: {previous}")

        constructor_args = config.constructor_args.get(self.settings.NETWORK, [])
        implementation = await self.context.deployer.deploy_implementation(
            config.implementation_name, constructor_args
        )

        data = bytes.fromhex(selector_for(FUNCTION_SIGNATURES["setImplementation"])[2:]) + abi_encode(
            ["address"], [implementation]
        )
        receipt = await chain.send_transaction(beacon_address, data, "setImplementation")

        updated = contracts_file.without(config.logic_name).deployment_complete(
            config.logic_name, implementation, constructor_args
        )
        try:
            path = await self.context.repository.write(updated)
        except PersistenceError as e:
            e.requires_manual_reconciliation = True
            e.details["requires_manual_reconciliation"] = True
            e.details["implementation"] = implementation
            raise

        logger.info(f"{config.client} upgraded to {implementation}")
        return ClientUpgradeResult(
            client=config.client,
            beacon_address=beacon_address,
            previous_implementation=previous,
            implementation_address=implementation,
            constructor_args=constructor_args,
            tx_hash=receipt.get("transactionHash"),
            contracts_path=str(path),
        )
