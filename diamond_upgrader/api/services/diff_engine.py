"""
Diff Engine.

Computes, per facet, which selectors a diamond cut has to add, replace or
remove, and which ERC-165 interface ids have to be added to or removed from
the diamond. The selector diff is a pure function of its inputs; interface
bookkeeping reads the live interface registry through a supplied callable.
"""

from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from diamond_upgrader.core.config import ZERO_ADDRESS
from diamond_upgrader.core.logging import get_logger
from diamond_upgrader.domain.models.contracts import ContractRecord, ContractsFile
from diamond_upgrader.infrastructure.blockchain.selectors import normalize_selector, remove_selectors

logger = get_logger(__name__)

SupportsInterface = Callable[[str], Awaitable[bool]]


class FacetDiff(BaseModel):
    """Selector actions for one facet. The three action lists are pairwise disjoint."""

    facet_name: str = Field(..., description="Facet name")
    facet_address: str = Field(..., description="New facet address, zero address for removals")
    old_address: Optional[str] = Field(None, description="Address of the facet being replaced")
    to_add: List[str] = Field(default_factory=list)
    to_replace: List[str] = Field(default_factory=list)
    to_remove: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    removal: bool = Field(False, description="True when the whole facet is removed")
    signatures: Dict[str, str] = Field(default_factory=dict, description="selector -> signature")

    @property
    def changes_selector_set(self) -> bool:
        return bool(self.to_add or self.to_remove)

    def signature_of(self, selector: str) -> str:
        return self.signatures.get(selector, selector)


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for item in items:
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


def compute_facet_diff(
    old_selectors: Sequence[str],
    new_selectors: Sequence[str],
    skip_selectors: Iterable[str] = (),
    facet_name: str = "",
    facet_address: str = ZERO_ADDRESS,
    old_address: Optional[str] = None,
    signatures: Optional[Dict[str, str]] = None,
) -> FacetDiff:
    """
    Diff the selectors a facet serves now against the ones its new version serves.

    replace = old & new, remove = old - replace, add = new - replace, and
    skipped selectors are taken out of all three.

    Args:
        old_selectors: Selectors registered for the current facet, empty for new facets
        new_selectors: Selectors of the new facet, initializer already excluded
        skip_selectors: Selectors the operator wants left untouched

    Returns:
        FacetDiff with ordered, pairwise disjoint action lists
    """
    old = _unique(old_selectors)
    new = _unique(new_selectors)
    skip = {normalize_selector(s) for s in skip_selectors}

    new_set = set(new)
    to_replace = [s for s in old if s in new_set]
    replace_set = set(to_replace)
    to_remove = [s for s in old if s not in replace_set]
    to_add = [s for s in new if s not in replace_set]

    return FacetDiff(
        facet_name=facet_name,
        facet_address=facet_address,
        old_address=old_address,
        to_add=remove_selectors(to_add, skip),
        to_replace=remove_selectors(to_replace, skip),
        to_remove=remove_selectors(to_remove, skip),
        skipped=[s for s in _unique(old + new) if s in skip],
        signatures=dict(signatures or {}),
    )


def compute_removal_diff(
    old_selectors: Sequence[str],
    skip_selectors: Iterable[str] = (),
    facet_name: str = "",
    old_address: Optional[str] = None,
    signatures: Optional[Dict[str, str]] = None,
) -> FacetDiff:
    """Diff for a facet removed entirely: every registered selector goes, except skipped ones."""
    diff = compute_facet_diff(
        old_selectors,
        [],
        skip_selectors,
        facet_name=facet_name,
        facet_address=ZERO_ADDRESS,
        old_address=old_address,
        signatures=signatures,
    )
    diff.removal = True
    return diff


class InterfaceBookkeeper:
    """
    Tracks interface ids to add and remove while the contracts registry is rewritten.

    An interface id ends up removed only if no record left after the upgrade
    still claims it, and added only if the diamond does not support it yet.
    Records of facets deployed in this upgrade carry their own interface id
    and are never re-pointed.
    """

    def __init__(
        self,
        contracts: ContractsFile,
        supports_interface: SupportsInterface,
        deployed_names: Iterable[str] = (),
    ):
        self.contracts = contracts
        self.supports_interface = supports_interface
        self.deployed_names = set(deployed_names)
        self.interfaces_to_add: List[str] = []
        self.interfaces_to_remove: List[str] = []

    def _schedule(self, target: List[str], interface_id: str) -> None:
        if interface_id and interface_id not in target:
            target.append(interface_id)

    def _repoint(self, old_id: str, new_id: str) -> None:
        for record in self.contracts.contracts:
            if record.interface_id == old_id and record.name not in self.deployed_names:
                record.interface_id = new_id

    async def _add_if_unsupported(self, interface_id: str) -> None:
        if not interface_id or interface_id in self.interfaces_to_add:
            return
        if not await self.supports_interface(interface_id):
            self.interfaces_to_add.append(interface_id)

    async def facet_upgraded(
        self,
        old_record: Optional[ContractRecord],
        new_interface_id: str,
        diff: FacetDiff,
    ) -> None:
        """
        Record the interface effect of adding or upgrading a facet.

        Args:
            old_record: Registry record of the replaced facet, None for new facets
            new_interface_id: Interface id of the new facet, may be empty
            diff: Resolved selector diff of the facet
        """
        if old_record is None:
            await self._add_if_unsupported(new_interface_id)
            return

        if not diff.changes_selector_set:
            return

        if not old_record.interface_id:
            logger.warning(
                f"Could not find interface id for old facet {old_record.name}. "
                "You might need to remove its interfaceId from supportsInterface manually."
            )
        elif old_record.interface_id == new_interface_id:
            # Interface shared across facets and already carried over
            return
        else:
            self._schedule(self.interfaces_to_remove, old_record.interface_id)
            self._repoint(old_record.interface_id, new_interface_id)

        await self._add_if_unsupported(new_interface_id)

    def facet_removed(self, old_record: ContractRecord) -> None:
        if not old_record.interface_id:
            logger.warning(
                f"Could not find interface id for old facet {old_record.name}. "
                "You might need to remove its interfaceId from supportsInterface manually."
            )
            return
        self._schedule(self.interfaces_to_remove, old_record.interface_id)

    def finalize(self) -> ContractsFile:
        """Drop removals of ids still claimed by a remaining record."""
        claimed = {record.interface_id for record in self.contracts.contracts if record.interface_id}
        kept = [i for i in self.interfaces_to_remove if i not in claimed]
        for interface_id in self.interfaces_to_remove:
            if interface_id in claimed:
                logger.info(f"Interface {interface_id} still claimed by another facet, not removed")
        self.interfaces_to_remove = kept
        return self.contracts
