"""
Cut Builder.
Turns resolved facet diffs into an ordered diamond cut and encodes the
diamondCut and protocol initializer calldata.
"""

from typing import List, Sequence, Tuple

from eth_abi import encode as abi_encode

from diamond_upgrader.api.services.diff_engine import FacetDiff
from diamond_upgrader.core.config import ZERO_ADDRESS
from diamond_upgrader.core.exceptions import CollisionError, ConfigError
from diamond_upgrader.domain.models.contracts import CutEntry, FacetCutAction
from diamond_upgrader.infrastructure.blockchain.selectors import (
    FUNCTION_SIGNATURES,
    PROTOCOL_INITIALIZER,
    selector_for,
)

DIAMOND_CUT_TYPES = ["(address,uint8,bytes4[])[]", "address", "bytes"]
INITIALIZE_TYPES = ["bytes32", "address[]", "bytes[]", "bool", "bytes4[]", "bytes4[]"]


def facet_cut_entries(diff: FacetDiff) -> List[CutEntry]:
    """Add, Replace and Remove entries of one facet, empty actions left out."""
    if diff.removal:
        if not diff.to_remove:
            return []
        return [CutEntry(facet_address=ZERO_ADDRESS, action=FacetCutAction.REMOVE, selectors=diff.to_remove)]

    entries = []
    if diff.to_add:
        entries.append(CutEntry(facet_address=diff.facet_address, action=FacetCutAction.ADD, selectors=diff.to_add))
    if diff.to_replace:
        entries.append(
            CutEntry(facet_address=diff.facet_address, action=FacetCutAction.REPLACE, selectors=diff.to_replace)
        )
    if diff.to_remove:
        # Remove entries must point at the zero address
        entries.append(CutEntry(facet_address=ZERO_ADDRESS, action=FacetCutAction.REMOVE, selectors=diff.to_remove))
    return entries


def assert_disjoint(entries: Sequence[CutEntry]) -> None:
    """
    Raises:
        CollisionError: if a selector appears in more than one entry
    """
    seen = {}
    for index, entry in enumerate(entries):
        for selector in entry.selectors:
            if selector in seen:
                raise CollisionError(
                    selector,
                    f"Selector {selector} appears in cut entries {seen[selector]} and {index}",
                    details={"entries": [seen[selector], index]},
                )
            seen[selector] = index


def build_cut(diffs: Sequence[FacetDiff]) -> List[CutEntry]:
    """
    Assemble the diamond cut.

    Entries of added or upgraded facets come first in plan order, each facet
    contributing Add, Replace then Remove. Entries of removed facets follow,
    also in plan order.
    """
    entries: List[CutEntry] = []
    for diff in diffs:
        if not diff.removal:
            entries.extend(facet_cut_entries(diff))
    for diff in diffs:
        if diff.removal:
            entries.extend(facet_cut_entries(diff))
    assert_disjoint(entries)
    return entries


def version_to_bytes32(version: str) -> bytes:
    """Encode a version string as a right-padded bytes32, e.g. 2.4.0."""
    raw = version.encode("utf-8")
    if len(raw) > 31:
        raise ConfigError(f"Version string too long for bytes32: {version}")
    return raw.ljust(32, b"\x00")


def encode_initialize_calldata(
    version: str,
    facets_to_init: Sequence[Tuple[str, str]],
    interfaces_to_remove: Sequence[str],
    interfaces_to_add: Sequence[str],
    is_upgrade: bool = True,
) -> bytes:
    """
    Encode the protocol initializer call run by diamondCut.

    Args:
        version: Target protocol version
        facets_to_init: (facet address, hex init calldata) pairs in plan order
        interfaces_to_remove: Interface ids to unregister
        interfaces_to_add: Interface ids to register
        is_upgrade: Always true for upgrades

    Returns:
        Selector-prefixed calldata
    """
    return bytes.fromhex(selector_for(PROTOCOL_INITIALIZER)[2:]) + abi_encode(
        INITIALIZE_TYPES,
        [
            version_to_bytes32(version),
            [address for address, _ in facets_to_init],
            [bytes.fromhex(calldata[2:]) for _, calldata in facets_to_init],
            is_upgrade,
            [bytes.fromhex(i[2:]) for i in interfaces_to_remove],
            [bytes.fromhex(i[2:]) for i in interfaces_to_add],
        ],
    )


def encode_diamond_cut_calldata(entries: Sequence[CutEntry], init_address: str, init_calldata: bytes) -> bytes:
    """Encode diamondCut(cut, initAddress, initCalldata)."""
    return bytes.fromhex(selector_for(FUNCTION_SIGNATURES["diamondCut"])[2:]) + abi_encode(
        DIAMOND_CUT_TYPES,
        [[entry.to_struct() for entry in entries], init_address, init_calldata],
    )
