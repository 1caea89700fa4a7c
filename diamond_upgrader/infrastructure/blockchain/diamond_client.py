"""
Diamond client: reads the live dispatch table and interface registry,
and submits diamond cuts.
"""

from typing import Any, Dict, List, Optional

from eth_utils import to_checksum_address

from diamond_upgrader.core.config import ZERO_ADDRESS
from diamond_upgrader.core.logging import get_logger
from diamond_upgrader.infrastructure.blockchain.abis import (
    DIAMOND_LOUPE_ABI,
    ERC165_ABI,
    PROTOCOL_INITIALIZATION_ABI,
)
from diamond_upgrader.infrastructure.blockchain.contract_client import ChainClient

logger = get_logger(__name__)


def _selector_hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


class DiamondClient:
    """Loupe, ERC-165 and cut access to one protocol diamond."""

    def __init__(self, chain: ChainClient, address: str):
        self.chain = chain
        self.address = to_checksum_address(address)

    async def get_registered_selectors(self, facet_address: Optional[str]) -> List[str]:
        """
        Selectors currently served by a facet address.

        Args:
            facet_address: Deployed facet address, None for a new facet

        Returns:
            List of 0x-prefixed selectors, empty for new facets
        """
        if not facet_address:
            return []
        result = await self.chain.call_function(
            self.address,
            DIAMOND_LOUPE_ABI,
            "facetFunctionSelectors",
            [to_checksum_address(facet_address)],
        )
        return [_selector_hex(selector) for selector in result]

    async def facet_address(self, selector: str) -> str:
        """Facet serving a selector, the zero address when unregistered."""
        result = await self.chain.call_function(
            self.address, DIAMOND_LOUPE_ABI, "facetAddress", [bytes.fromhex(selector[2:])]
        )
        return to_checksum_address(result) if result else ZERO_ADDRESS

    async def supports_interface(self, interface_id: str) -> bool:
        return await self.chain.call_function(
            self.address, ERC165_ABI, "supportsInterface", [bytes.fromhex(interface_id[2:])]
        )

    async def get_version(self) -> str:
        version = await self.chain.call_function(
            self.address, PROTOCOL_INITIALIZATION_ABI, "getVersion"
        )
        return version.rstrip("\x00")

    async def has_code(self) -> bool:
        code = await self.chain.get_code(self.address)
        return len(code) > 0

    async def diamond_cut(self, calldata: bytes) -> Dict[str, Any]:
        """Submit encoded diamondCut calldata as one transaction."""
        return await self.chain.send_transaction(self.address, calldata, "diamondCut")
