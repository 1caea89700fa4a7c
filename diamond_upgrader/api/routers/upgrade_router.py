"""
Upgrade Router for the Diamond Upgrader.
Handles dry-run planning and execution of facet and client upgrades.
"""

from fastapi import APIRouter, Depends

from diamond_upgrader.api.deps.operator_guard import get_upgrade_context, require_operator
from diamond_upgrader.api.dto.upgrade_dto import (
    UpgradeClientsRequestDTO,
    UpgradeFacetsRequestDTO,
    UpgradeResponseDTO,
)
from diamond_upgrader.api.services.client_upgrade_service import ClientUpgradeService
from diamond_upgrader.api.services.collision_resolver import fail_on_collision
from diamond_upgrader.api.services.upgrade_service import UpgradeContext, UpgradeService
from diamond_upgrader.core.exceptions import UpgraderException, create_http_exception
from diamond_upgrader.core.logging import get_logger, log_error

logger = get_logger(__name__)

# Create router
router = APIRouter()


@router.post("/facets/plan", response_model=UpgradeResponseDTO)
async def plan_facet_upgrade(
    request: UpgradeFacetsRequestDTO,
    _: str = Depends(require_operator),
    context: UpgradeContext = Depends(get_upgrade_context),
) -> UpgradeResponseDTO:
    """
    Compute the diamond cut for a plan without deploying or submitting anything.

    Collisions without a resolution in the plan are reported as 409.

    Args:
        request: Environment and upgrade plan

    Returns:
        UpgradeResponseDTO with the planned cut
    """
    logger.info(f"Planning facet upgrade for {request.env}")
    try:
        result = await UpgradeService(context).upgrade_facets(
            request.plan,
            request.env,
            allow_same_version=request.allow_same_version,
            dry_run=True,
            collision_policy=fail_on_collision,
        )
    except UpgraderException as e:
        logger.error(f"Upgrade planning failed: {e.message}")
        raise create_http_exception(e)

    return UpgradeResponseDTO(
        success=True,
        message=f"Planned {len(result.cut)} cut entries",
        data=result.summary(),
    )


@router.post("/facets", response_model=UpgradeResponseDTO)
async def apply_facet_upgrade(
    request: UpgradeFacetsRequestDTO,
    _: str = Depends(require_operator),
    context: UpgradeContext = Depends(get_upgrade_context),
) -> UpgradeResponseDTO:
    """
    Deploy the plan's facets and submit the diamond cut.

    Collisions must be settled up front through collisionResolutions, the
    HTTP surface never prompts.

    Args:
        request: Environment and upgrade plan

    Returns:
        UpgradeResponseDTO with the applied cut and transaction hash
    """
    logger.info(f"Applying facet upgrade for {request.env}")
    try:
        result = await UpgradeService(context).upgrade_facets(
            request.plan,
            request.env,
            allow_same_version=request.allow_same_version,
            collision_policy=fail_on_collision,
        )
    except UpgraderException as e:
        log_error(e, {"env": request.env, "stage": e.stage})
        raise create_http_exception(e)

    return UpgradeResponseDTO(
        success=True,
        message=f"Upgraded to version {result.version}",
        data=result.summary(),
    )


@router.post("/clients", response_model=UpgradeResponseDTO)
async def upgrade_clients(
    request: UpgradeClientsRequestDTO,
    _: str = Depends(require_operator),
    context: UpgradeContext = Depends(get_upgrade_context),
) -> UpgradeResponseDTO:
    """
    Deploy a new client implementation and point its beacon at it.

    Args:
        request: Environment and client upgrade config

    Returns:
        UpgradeResponseDTO with the new implementation address
    """
    logger.info(f"Upgrading client {request.config.client} for {request.env}")
    try:
        result = await ClientUpgradeService(context).upgrade_clients(request.config, request.env)
    except UpgraderException as e:
        log_error(e, {"env": request.env, "client": request.config.client})
        raise create_http_exception(e)

    return UpgradeResponseDTO(
        success=True,
        message=f"{result.client} upgraded",
        data=result.summary(),
    )
