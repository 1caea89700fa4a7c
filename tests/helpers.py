"""In-memory fakes and fixture data shared by the test suites."""

import json

from diamond_upgrader.core.config import ZERO_ADDRESS
from diamond_upgrader.infrastructure.blockchain.access_control import Role
from diamond_upgrader.infrastructure.blockchain.selectors import selector_for

OPERATOR_TOKEN = "operator-secret"

ADMIN = "0x" + "ad" * 20
ACCESS_CONTROLLER = "0x" + "a1" * 20
DIAMOND = "0x" + "d1" * 20
INIT_FACET = "0x" + "b1" * 20
SELLER_FACET = "0x" + "51" * 20
ORCHESTRATION_FACET = "0x" + "71" * 20
VOUCHER_BEACON = "0x" + "be" * 20
VOUCHER_LOGIC = "0x" + "10" * 20

OLD_SELLER_INTERFACE = "0x11111111"
ORCHESTRATION_INTERFACE = "0x22222222"


def fn(name, *types):
    """ABI entry of a nonpayable function."""
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": f"arg{i}", "type": t} for i, t in enumerate(types)],
        "outputs": [],
        "stateMutability": "nonpayable",
    }


ARTIFACTS = {
    "ProtocolInitializationHandlerFacet": [
        fn("initialize", "bytes32", "address[]", "bytes[]", "bool", "bytes4[]", "bytes4[]"),
        fn("getVersion"),
    ],
    "SellerHandlerFacet": [
        fn("createSeller", "address"),
        fn("updateSeller", "address", "uint256"),
        fn("getSeller", "uint256"),
    ],
    "ISellerHandler": [
        fn("createSeller", "address"),
        fn("updateSeller", "address", "uint256"),
        fn("getSeller", "uint256"),
    ],
    "OfferHandlerFacet": [
        fn("initialize"),
        fn("createOffer", "uint256"),
        fn("voidOffer", "uint256"),
    ],
    "ExchangeHandlerFacet": [
        fn("initialize", "uint256"),
        fn("commitToOffer", "uint256"),
    ],
    "DisputeHandlerFacet": [
        fn("commitToOffer", "uint256"),
        fn("raiseDispute", "uint256"),
    ],
    "BosonVoucher": [
        fn("burn", "uint256"),
    ],
}

INTERFACES_CONFIG = {
    "implementers": {"SellerHandlerFacet": "ISellerHandler"},
    "inherits": {"ISellerHandler": []},
}

OLD_SELLER_SELECTORS = [
    selector_for("createSeller(address)"),
    selector_for("updateSeller(address)"),
    selector_for("getSeller(uint256)"),
]
ORCHESTRATION_SELECTORS = [
    selector_for("createSellerAndOffer(address,uint256)"),
    selector_for("createOffer(uint256)"),
]


def contracts_file_data():
    return {
        "chainId": 31337,
        "network": "localhost",
        "env": "test",
        "protocolVersion": "2.3.0",
        "contracts": [
            {"name": "AccessController", "address": ACCESS_CONTROLLER, "args": [], "interfaceId": ""},
            {"name": "ProtocolDiamond", "address": DIAMOND, "args": [], "interfaceId": ""},
            {"name": "ProtocolInitializationHandlerFacet", "address": INIT_FACET, "args": [], "interfaceId": ""},
            {"name": "SellerHandlerFacet", "address": SELLER_FACET, "args": [], "interfaceId": OLD_SELLER_INTERFACE},
            {
                "name": "OrchestrationHandlerFacet",
                "address": ORCHESTRATION_FACET,
                "args": [],
                "interfaceId": ORCHESTRATION_INTERFACE,
            },
            {"name": "BosonVoucher Beacon", "address": VOUCHER_BEACON, "args": [], "interfaceId": ""},
            {"name": "BosonVoucher Logic", "address": VOUCHER_LOGIC, "args": [], "interfaceId": ""},
        ],
    }


class FakeChain:
    """In-memory stand-in for ChainClient."""

    def __init__(self, signer: str = ADMIN):
        self.signer_address = signer
        self.upgraders = {ADMIN.lower()}
        self.implementations = {VOUCHER_BEACON.lower(): VOUCHER_LOGIC}
        self.deployed = []
        self.transactions = []
        self._next_address = 0xF000

    async def chain_id(self) -> int:
        return 31337

    async def call_function(self, address, abi, function_name, args=None):
        if function_name == "hasRole":
            role, account = args
            return role == Role.UPGRADER.role_hash and account.lower() in self.upgraders
        if function_name == "getImplementation":
            return self.implementations.get(address.lower(), ZERO_ADDRESS)
        raise AssertionError(f"Unexpected call: {function_name}")

    async def deploy(self, name, abi, bytecode, constructor_args=None):
        self._next_address += 1
        address = "0x" + f"{self._next_address:040x}"
        self.deployed.append((name, list(constructor_args or []), address))
        return address

    async def send_transaction(self, to, data, method, gas_limit=None):
        self.transactions.append((to, data, method))
        return {"transactionHash": "0x" + "ab" * 32, "blockNumber": 7, "status": 1}


class FakeDiamond:
    """In-memory dispatch table and interface registry of a diamond."""

    def __init__(self, facets, supported):
        self.facets = {address.lower(): list(selectors) for address, selectors in facets.items()}
        self.supported = set(supported)
        self.cuts = []
        self.supports_calls = []
        self.fail_with = None
        self.version = "2.4.0"

    async def get_registered_selectors(self, facet_address):
        if not facet_address:
            return []
        return list(self.facets.get(facet_address.lower(), []))

    async def facet_address(self, selector):
        for address, selectors in self.facets.items():
            if selector in selectors:
                return address
        return ZERO_ADDRESS

    async def supports_interface(self, interface_id):
        self.supports_calls.append(interface_id)
        return interface_id in self.supported

    async def has_code(self):
        return True

    async def get_version(self):
        return self.version

    async def diamond_cut(self, calldata):
        if self.fail_with is not None:
            raise self.fail_with
        self.cuts.append(calldata)
        return {"transactionHash": "0x" + "cd" * 32, "blockNumber": 9, "status": 1}


def write_artifacts(root, artifacts):
    for name, abi in artifacts.items():
        folder = root / "contracts" / f"{name}.sol"
        folder.mkdir(parents=True, exist_ok=True)
        artifact = {"contractName": name, "sourceName": f"contracts/{name}.sol", "abi": abi, "bytecode": "0x"}
        (folder / f"{name}.json").write_text(json.dumps(artifact))
    (root / "build-info").mkdir(parents=True, exist_ok=True)


