from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from diamond_upgrader.domain.models.upgrade_plan import ClientUpgradeConfig, UpgradePlan


# Request DTOs
class UpgradeFacetsRequestDTO(BaseModel):
    """Request DTO for planning or applying a facet upgrade."""

    env: str = Field(..., description="Deployment environment, e.g. test, staging, prod")
    plan: UpgradePlan = Field(..., description="Upgrade plan")
    allow_same_version: bool = Field(
        False, description="Allow upgrading to the version already recorded"
    )


class UpgradeClientsRequestDTO(BaseModel):
    """Request DTO for a beacon client upgrade."""

    env: str = Field(..., description="Deployment environment")
    config: ClientUpgradeConfig = Field(..., description="Client upgrade config")


# Response DTOs
class ContractRecordDTO(BaseModel):
    """Response DTO for one deployed contract."""

    name: str = Field(..., description="Contract name")
    address: str = Field(..., description="Deployment address")
    interface_id: str = Field("", description="ERC-165 interface id")


class ContractsResponseDTO(BaseModel):
    """Response DTO for a contracts file."""

    success: bool = Field(..., description="Operation success status")
    message: str = Field(..., description="Response message")
    chain_id: Optional[int] = Field(None, description="Chain ID")
    protocol_version: Optional[str] = Field(None, description="Recorded protocol version")
    contracts: List[ContractRecordDTO] = Field(default_factory=list, description="Deployed contracts")


class UpgradeResponseDTO(BaseModel):
    """Response DTO for upgrade operations."""

    success: bool = Field(..., description="Operation success status")
    message: str = Field(..., description="Response message")
    data: Optional[Dict[str, Any]] = Field(None, description="Upgrade summary")
