"""
Contracts Router for the Diamond Upgrader.
Read-only view of the persisted contracts files.
"""

from fastapi import APIRouter, Depends

from diamond_upgrader.api.deps.operator_guard import get_upgrade_context, require_operator
from diamond_upgrader.api.dto.upgrade_dto import ContractRecordDTO, ContractsResponseDTO
from diamond_upgrader.api.services.upgrade_service import UpgradeContext
from diamond_upgrader.core.exceptions import UpgraderException, create_http_exception
from diamond_upgrader.core.logging import get_logger

logger = get_logger(__name__)

# Create router
router = APIRouter()


@router.get("/{env}", response_model=ContractsResponseDTO)
async def get_contracts(
    env: str,
    _: str = Depends(require_operator),
    context: UpgradeContext = Depends(get_upgrade_context),
) -> ContractsResponseDTO:
    """
    Get the contracts recorded for the configured network and an environment.

    Args:
        env: Deployment environment

    Returns:
        ContractsResponseDTO with the recorded contracts
    """
    try:
        chain_id = await context.chain.chain_id()
        contracts_file = await context.repository.read(chain_id, context.settings.NETWORK, env)
    except UpgraderException as e:
        logger.error(f"Error reading contracts for {env}: {e.message}")
        raise create_http_exception(e)

    return ContractsResponseDTO(
        success=True,
        message=f"{len(contracts_file.contracts)} contracts",
        chain_id=contracts_file.chain_id,
        protocol_version=contracts_file.protocol_version,
        contracts=[
            ContractRecordDTO(name=c.name, address=c.address, interface_id=c.interface_id)
            for c in contracts_file.contracts
        ],
    )
