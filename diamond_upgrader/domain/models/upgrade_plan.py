"""
Upgrade plan models.

The plan is what an operator writes to describe one protocol upgrade. It
accepts the camelCase keys used by the facet config files, e.g.::

    {
        "version": "2.4.0",
        "addOrUpgrade": ["SellerHandlerFacet", "OfferHandlerFacet"],
        "remove": ["OrchestrationHandlerFacet"],
        "skipSelectors": {"SellerHandlerFacet": ["createSeller(...)"]},
        "facetsToInit": {"OfferHandlerFacet": {"init": [], "constructorArgs": []}},
        "collisionResolutions": {"OfferHandlerFacet": {"0x12345678": "replace"}}
    }
"""

import json
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from diamond_upgrader.core.exceptions import ConfigError
from diamond_upgrader.infrastructure.blockchain.selectors import validate_selector_entry


class CollisionChoice(str, Enum):
    """Operator decision for a selector already served by another facet."""

    REPLACE = "replace"
    SKIP = "skip"


def _check_selector_entries(entries) -> None:
    for entry in entries:
        try:
            validate_selector_entry(entry)
        except ConfigError as e:
            raise ValueError(e.message)


class FacetInitConfig(BaseModel):
    """Initializer arguments and constructor arguments for one facet."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    init: List[Any] = Field(default_factory=list, description="initialize(...) arguments")
    constructor_args: List[Any] = Field(
        default_factory=list, alias="constructorArgs", description="Constructor arguments"
    )


class UpgradePlan(BaseModel):
    """Facets to add, upgrade or remove in one diamond cut."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    version: Optional[str] = Field(None, description="Target protocol version")
    add_or_upgrade: List[str] = Field(default_factory=list, alias="addOrUpgrade")
    remove: List[str] = Field(default_factory=list)
    skip_selectors: Dict[str, List[str]] = Field(default_factory=dict, alias="skipSelectors")
    facets_to_init: Dict[str, FacetInitConfig] = Field(
        default_factory=dict, alias="facetsToInit"
    )
    collision_resolutions: Dict[str, Dict[str, CollisionChoice]] = Field(
        default_factory=dict, alias="collisionResolutions"
    )

    @field_validator("skip_selectors")
    @classmethod
    def check_skip_selectors(cls, v):
        for entries in v.values():
            _check_selector_entries(entries)
        return v

    @field_validator("collision_resolutions")
    @classmethod
    def check_collision_selectors(cls, v):
        for choices in v.values():
            _check_selector_entries(choices)
        return v

    @model_validator(mode="after")
    def check_facet_names(self) -> "UpgradePlan":
        duplicates = {name for name in self.add_or_upgrade if self.add_or_upgrade.count(name) > 1}
        if duplicates:
            raise ValueError(f"Facets listed more than once in addOrUpgrade: {sorted(duplicates)}")

        both = set(self.add_or_upgrade) & set(self.remove)
        if both:
            raise ValueError(f"Facets cannot be both upgraded and removed: {sorted(both)}")

        unknown_init = set(self.facets_to_init) - set(self.add_or_upgrade)
        if unknown_init:
            raise ValueError(f"facetsToInit references facets not in addOrUpgrade: {sorted(unknown_init)}")

        unknown_skip = set(self.skip_selectors) - set(self.add_or_upgrade) - set(self.remove)
        if unknown_skip:
            raise ValueError(f"skipSelectors references facets not in the plan: {sorted(unknown_skip)}")

        unknown_resolutions = set(self.collision_resolutions) - set(self.add_or_upgrade)
        if unknown_resolutions:
            raise ValueError(
                f"collisionResolutions references facets not in addOrUpgrade: {sorted(unknown_resolutions)}"
            )
        return self

    def skip_for(self, facet_name: str) -> List[str]:
        return list(self.skip_selectors.get(facet_name, []))

    def init_for(self, facet_name: str) -> Optional[FacetInitConfig]:
        return self.facets_to_init.get(facet_name)


class ClientUpgradeConfig(BaseModel):
    """Beacon client to upgrade and its implementation constructor arguments per network."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    client: str = Field(..., description="Client name, e.g. BosonVoucher")
    implementation: Optional[str] = Field(
        None, description="Implementation artifact name, defaults to the client name"
    )
    constructor_args: Dict[str, List[Any]] = Field(
        default_factory=dict, alias="constructorArgs", description="Constructor args by network"
    )

    @property
    def implementation_name(self) -> str:
        return self.implementation or self.client

    @property
    def beacon_name(self) -> str:
        return f"{self.client} Beacon"

    @property
    def logic_name(self) -> str:
        return f"{self.client} Logic"


def load_upgrade_plan(data: Union[str, Dict[str, Any]]) -> UpgradePlan:
    """
    Validate an upgrade plan given as a JSON string or a dict.

    Raises:
        ConfigError: if the plan does not match the schema
    """
    try:
        if isinstance(data, str):
            data = json.loads(data)
        return UpgradePlan.model_validate(data)
    except (ValueError, ValidationError) as e:
        raise ConfigError(f"Invalid upgrade plan: {e}", details={"plan": data if isinstance(data, dict) else None})


def load_client_upgrade_config(data: Union[str, Dict[str, Any]]) -> ClientUpgradeConfig:
    """
    Raises:
        ConfigError: if the config does not match the schema
    """
    try:
        if isinstance(data, str):
            data = json.loads(data)
        return ClientUpgradeConfig.model_validate(data)
    except (ValueError, ValidationError) as e:
        raise ConfigError(f"Invalid client upgrade config: {e}")
