"""
Minimal ABIs of the on-chain endpoints the upgrader reads from.
Writes are encoded directly with eth_abi in the services.
"""

DIAMOND_LOUPE_ABI = [
    {
        "inputs": [{"name": "_facet", "type": "address"}],
        "name": "facetFunctionSelectors",
        "outputs": [{"name": "facetFunctionSelectors_", "type": "bytes4[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "_functionSelector", "type": "bytes4"}],
        "name": "facetAddress",
        "outputs": [{"name": "facetAddress_", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

ERC165_ABI = [
    {
        "inputs": [{"name": "interfaceId", "type": "bytes4"}],
        "name": "supportsInterface",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    }
]

PROTOCOL_INITIALIZATION_ABI = [
    {
        "inputs": [],
        "name": "getVersion",
        "outputs": [{"name": "version", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    }
]

ACCESS_CONTROLLER_ABI = [
    {
        "inputs": [
            {"name": "role", "type": "bytes32"},
            {"name": "account", "type": "address"},
        ],
        "name": "hasRole",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    }
]

BEACON_ABI = [
    {
        "inputs": [],
        "name": "getImplementation",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    }
]
