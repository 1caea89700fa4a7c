"""
Function selector extraction for diamond facets.

Selectors are kept as lowercase 0x-prefixed hex strings throughout the
upgrader. They are only converted to bytes when calldata is encoded.
"""

import re
from functools import reduce
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from eth_utils import keccak

from diamond_upgrader.core.exceptions import ConfigError
from diamond_upgrader.core.logging import get_logger

logger = get_logger(__name__)

NO_ARG_INITIALIZER = "initialize()"
PROTOCOL_INITIALIZER = "initialize(bytes32,address[],bytes[],bool,bytes4[],bytes4[])"

_SELECTOR = re.compile(r"0[xX][0-9a-fA-F]{8}")

# Signatures of the endpoints the upgrader encodes calldata for.
FUNCTION_SIGNATURES: Dict[str, str] = {
    "diamondCut": "diamondCut((address,uint8,bytes4[])[],address,bytes)",
    "setImplementation": "setImplementation(address)",
}


def selector_for(signature: str) -> str:
    """Return the 0x-prefixed selector hex for a function signature."""
    return "0x" + keccak(text=signature)[:4].hex()


def is_selector(value: str) -> bool:
    """True for a well-formed 0x-prefixed 4-byte selector."""
    return bool(_SELECTOR.fullmatch(value))


def normalize_selector(value: str) -> str:
    """
    Accept either a selector or a signature and return the selector.

    Any 0x-prefixed value is taken as a selector and only lowercased.
    Values containing "(" are hashed as signatures.

    Raises:
        ConfigError: if the value is neither
    """
    if value[:2].lower() == "0x":
        return value.lower()
    if "(" in value:
        return selector_for(value)
    raise ConfigError(f"Not a selector or function signature: {value}")


def validate_selector_entry(value: str) -> str:
    """
    Check a selector or signature written by an operator.

    Raises:
        ConfigError: on a 0x value that is not exactly 4 bytes of hex
    """
    if value[:2].lower() == "0x" and not is_selector(value):
        raise ConfigError(f"Malformed selector {value}, expected 0x followed by 8 hex digits")
    return normalize_selector(value)


def canonical_type(param: Dict[str, Any]) -> str:
    """Canonical ABI type of a parameter, expanding tuples into (a,b,...)."""
    abi_type = param["type"]
    if not abi_type.startswith("tuple"):
        return abi_type
    suffix = abi_type[len("tuple"):]
    inner = ",".join(canonical_type(component) for component in param.get("components", []))
    return f"({inner}){suffix}"


def function_signature(entry: Dict[str, Any]) -> str:
    types = ",".join(canonical_type(param) for param in entry.get("inputs", []))
    return f"{entry['name']}({types})"


class SelectorSet:
    """Ordered selectors of a contract with a selector -> signature mapping."""

    def __init__(self, selectors: Iterable[str], signature_to_name: Dict[str, str]):
        self.selectors: List[str] = list(selectors)
        self.signature_to_name = signature_to_name

    def __iter__(self) -> Iterator[str]:
        return iter(self.selectors)

    def __len__(self) -> int:
        return len(self.selectors)

    def __contains__(self, value: str) -> bool:
        return normalize_selector(value) in self.selectors

    def remove(self, items: Iterable[str]) -> "SelectorSet":
        """Return a copy without the given selectors or signatures."""
        drop = {normalize_selector(item) for item in items}
        return SelectorSet(
            [s for s in self.selectors if s not in drop], self.signature_to_name
        )

    def name_of(self, selector: str) -> str:
        return self.signature_to_name.get(selector, selector)


def get_selectors(abi: Sequence[Dict[str, Any]], exclude: Iterable[str] = ()) -> SelectorSet:
    """
    Selectors of every function in an ABI.

    Args:
        abi: Compiled contract ABI
        exclude: Signatures or selectors to leave out

    Returns:
        SelectorSet in ABI order
    """
    drop = {normalize_selector(item) for item in exclude}
    selectors: List[str] = []
    names: Dict[str, str] = {}
    for entry in abi:
        if entry.get("type") != "function":
            continue
        signature = function_signature(entry)
        selector = selector_for(signature)
        names[selector] = signature
        if selector not in drop and selector not in selectors:
            selectors.append(selector)
    return SelectorSet(selectors, names)


def remove_selectors(selectors: Iterable[str], to_skip: Iterable[str]) -> List[str]:
    """Drop skipped entries (selectors or signatures) from a selector list, keeping order."""
    drop = {normalize_selector(item) for item in to_skip}
    return [s for s in selectors if s not in drop]


def exclude_initializer(
    selector_set: SelectorSet,
    facet_name: str,
    init_calldata: Optional[str],
    initialization_facet_name: str,
) -> SelectorSet:
    """
    Remove the facet's initializer so it never becomes a dispatchable selector.

    The initializer is identified by the first 4 bytes of the facet's init
    calldata, falling back to initialize(). The initialization facet uses the
    multi-argument protocol initializer instead. A missing initializer is
    logged and nothing is subtracted.
    """
    if facet_name == initialization_facet_name:
        initializer = selector_for(PROTOCOL_INITIALIZER)
    elif init_calldata:
        initializer = init_calldata[:10].lower()
    else:
        initializer = selector_for(NO_ARG_INITIALIZER)

    if initializer not in selector_set.selectors:
        logger.warning(
            f"Initializer {selector_set.name_of(initializer)} not found on {facet_name}, "
            "nothing subtracted"
        )
        return selector_set
    return selector_set.remove([initializer])


def compute_interface_id(
    abi: Sequence[Dict[str, Any]], inherited_abis: Sequence[Sequence[Dict[str, Any]]] = ()
) -> str:
    """
    ERC-165 interface id: XOR of the interface's own function selectors.

    Functions declared by inherited interfaces are excluded, as Solidity's
    type(I).interfaceId does.
    """
    inherited = set()
    for parent in inherited_abis:
        inherited.update(get_selectors(parent).selectors)
    own = [s for s in get_selectors(abi).selectors if s not in inherited]
    value = reduce(lambda acc, s: acc ^ int(s, 16), own, 0)
    return "0x" + value.to_bytes(4, "big").hex()
