"""
Role checks against the protocol's AccessController.
"""

from enum import Enum

from eth_utils import keccak, to_checksum_address

from diamond_upgrader.core.config import ZERO_ADDRESS, Settings
from diamond_upgrader.core.exceptions import AuthorizationError, ConfigError
from diamond_upgrader.core.logging import get_logger
from diamond_upgrader.domain.models.contracts import ContractsFile
from diamond_upgrader.infrastructure.blockchain.abis import ACCESS_CONTROLLER_ABI
from diamond_upgrader.infrastructure.blockchain.contract_client import ChainClient

logger = get_logger(__name__)


class Role(str, Enum):
    """Access control roles, keccak256 of the role name."""

    ADMIN = "ADMIN"
    PAUSER = "PAUSER"
    PROTOCOL = "PROTOCOL"
    CLIENT = "CLIENT"
    UPGRADER = "UPGRADER"
    FEE_COLLECTOR = "FEE_COLLECTOR"

    @property
    def role_hash(self) -> bytes:
        return keccak(text=self.value)


class RoleGuard:
    """Checks that the operator may perform an upgrade."""

    def __init__(self, chain: ChainClient, settings: Settings):
        self.chain = chain
        self.settings = settings

    def check_admin(self, signer_address: str) -> str:
        """
        Validate the configured admin address against the signing account.

        Returns:
            The checksummed admin address
        """
        admin = self.settings.ADMIN_ADDRESS
        if not admin or admin.lower() == ZERO_ADDRESS:
            raise ConfigError("Admin address must not be zero address")
        if admin.lower() != signer_address.lower():
            raise AuthorizationError(
                "Admin account is not the signing account",
                details={"admin": admin, "signer": signer_address},
            )
        logger.info(f"Admin account: {admin}")
        return to_checksum_address(admin)

    async def has_role(self, contracts: ContractsFile, role: Role, address: str) -> bool:
        access_controller = contracts.address_of(self.settings.ACCESS_CONTROLLER_NAME)
        if not access_controller:
            raise ConfigError(
                f"{self.settings.ACCESS_CONTROLLER_NAME} address not found in contracts file"
            )
        return await self.chain.call_function(
            access_controller,
            ACCESS_CONTROLLER_ABI,
            "hasRole",
            [role.role_hash, to_checksum_address(address)],
        )

    async def check_role(self, contracts: ContractsFile, role: Role, address: str) -> None:
        """
        Raise unless the address holds the role.

        Raises:
            AuthorizationError: if the role is missing
        """
        if not await self.has_role(contracts, role, address):
            raise AuthorizationError(
                f"Address {address} does not have {role.value} role",
                details={"role": role.value, "address": address},
            )
