"""
Models for deployed contracts and diamond cuts.
"""

from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class FacetCutAction(IntEnum):
    """Diamond cut action, encoded as uint8 on chain."""

    ADD = 0
    REPLACE = 1
    REMOVE = 2


class ContractRecord(BaseModel):
    """A deployed contract (facet or otherwise) as stored in the contracts file."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Contract name")
    address: str = Field(..., description="Deployment address")
    args: List[Any] = Field(default_factory=list, description="Constructor arguments")
    interface_id: str = Field(
        "", alias="interfaceId", description="ERC-165 interface id, empty if none"
    )


class ContractsFile(BaseModel):
    """Persisted record of a deployment, one per (chainId, network, env)."""

    model_config = ConfigDict(populate_by_name=True)

    chain_id: int = Field(..., alias="chainId", description="Chain ID")
    network: str = Field(..., description="Network name")
    env: str = Field(..., description="Deployment environment")
    protocol_version: str = Field(
        "", alias="protocolVersion", description="Protocol version recorded at last write"
    )
    contracts: List[ContractRecord] = Field(default_factory=list)

    def find(self, name: str) -> Optional[ContractRecord]:
        for record in self.contracts:
            if record.name == name:
                return record
        return None

    def address_of(self, name: str) -> Optional[str]:
        record = self.find(name)
        return record.address if record else None

    def without(self, name: str) -> "ContractsFile":
        """Return a copy with every record of the given name dropped."""
        return self.model_copy(
            update={"contracts": [c for c in self.contracts if c.name != name]},
            deep=True,
        )

    def deployment_complete(
        self,
        name: str,
        address: str,
        args: Optional[List[Any]] = None,
        interface_id: str = "",
    ) -> "ContractsFile":
        """Return a copy with a new record appended."""
        updated = self.model_copy(deep=True)
        updated.contracts.append(
            ContractRecord(
                name=name, address=address, args=args or [], interface_id=interface_id
            )
        )
        return updated

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class CutEntry(BaseModel):
    """One (facetAddress, action, selectors) entry of a diamond cut."""

    facet_address: str = Field(..., description="Target facet, zero address for removals")
    action: FacetCutAction = Field(..., description="Cut action")
    selectors: List[str] = Field(..., description="0x-prefixed 4-byte selectors")

    def to_struct(self) -> Tuple[str, int, List[bytes]]:
        """ABI-ready tuple for diamondCut((address,uint8,bytes4[])[],address,bytes)."""
        return (
            self.facet_address,
            int(self.action),
            [bytes.fromhex(selector[2:]) for selector in self.selectors],
        )

    def to_log_dict(self) -> Dict[str, Any]:
        return {
            "facet_address": self.facet_address,
            "action": self.action.name.capitalize(),
            "selectors": list(self.selectors),
        }


class DeployedFacet(BaseModel):
    """A facet freshly deployed by the deployment pipeline."""

    name: str = Field(..., description="Facet name")
    address: str = Field(..., description="Deployment address")
    abi: List[Dict[str, Any]] = Field(..., description="Compiled ABI")
    init_calldata: Optional[str] = Field(
        None, description="Encoded initializer call, None when the facet is not initialized"
    )
    constructor_args: List[Any] = Field(default_factory=list)
