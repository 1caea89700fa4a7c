import json

import pytest
from eth_abi import decode as abi_decode

from diamond_upgrader.api.services.cut_builder import DIAMOND_CUT_TYPES, INITIALIZE_TYPES
from diamond_upgrader.api.services.upgrade_service import UpgradeService, UpgradeStage
from diamond_upgrader.core.config import ZERO_ADDRESS
from diamond_upgrader.core.exceptions import (
    AuthorizationError,
    CollisionError,
    ConfigError,
    PersistenceError,
    SubmissionError,
)
from diamond_upgrader.domain.models.contracts import FacetCutAction
from diamond_upgrader.domain.models.upgrade_plan import load_upgrade_plan
from diamond_upgrader.infrastructure.blockchain.selectors import compute_interface_id, selector_for
from tests.helpers import (
    ARTIFACTS,
    INIT_FACET,
    OLD_SELLER_INTERFACE,
    ORCHESTRATION_FACET,
    ORCHESTRATION_INTERFACE,
)

pytestmark = pytest.mark.anyio


def persisted(world):
    return json.loads(world.contracts_path.read_text())


def record(data, name):
    return next((c for c in data["contracts"] if c["name"] == name), None)


async def test_upgrade_replaces_adds_and_removes_selectors(world):
    plan = load_upgrade_plan({"version": "2.4.0", "addOrUpgrade": ["SellerHandlerFacet"]})

    result = await UpgradeService(world.context).upgrade_facets(plan, "test")

    [(name, _, new_address)] = world.chain.deployed
    assert name == "SellerHandlerFacet"
    assert [(e.facet_address, e.action, e.selectors) for e in result.cut] == [
        (new_address, FacetCutAction.ADD, [selector_for("updateSeller(address,uint256)")]),
        (
            new_address,
            FacetCutAction.REPLACE,
            [selector_for("createSeller(address)"), selector_for("getSeller(uint256)")],
        ),
        (ZERO_ADDRESS, FacetCutAction.REMOVE, [selector_for("updateSeller(address)")]),
    ]

    new_interface = compute_interface_id(ARTIFACTS["ISellerHandler"])
    assert result.interfaces_to_remove == [OLD_SELLER_INTERFACE]
    assert result.interfaces_to_add == [new_interface]

    assert world.diamond.cuts == [bytes.fromhex(result.diamond_cut_calldata[2:])]
    assert result.stage == UpgradeStage.REGISTRY_PERSISTED
    assert result.tx_hash == "0x" + "cd" * 32

    data = persisted(world)
    assert data["protocolVersion"] == "2.4.0"
    seller = record(data, "SellerHandlerFacet")
    assert seller["address"] == new_address
    assert seller["interfaceId"] == new_interface
    assert len([c for c in data["contracts"] if c["name"] == "SellerHandlerFacet"]) == 1


async def test_initializer_calldata_carries_version_and_init_calls(world):
    plan = load_upgrade_plan(
        {
            "version": "2.4.0",
            "addOrUpgrade": ["OfferHandlerFacet", "ExchangeHandlerFacet"],
            "facetsToInit": {"OfferHandlerFacet": {"init": []}, "ExchangeHandlerFacet": {"init": [5]}},
        }
    )
    world.diamond.facets.pop(ORCHESTRATION_FACET)

    result = await UpgradeService(world.context).upgrade_facets(plan, "test")

    entries, init_address, init_calldata = abi_decode(DIAMOND_CUT_TYPES, world.diamond.cuts[0][4:])
    assert init_address.lower() == INIT_FACET
    version, addresses, calldatas, is_upgrade, _, _ = abi_decode(INITIALIZE_TYPES, init_calldata[4:])
    assert version.rstrip(b"\x00") == b"2.4.0"
    assert [a.lower() for a in addresses] == [address for _, _, address in world.chain.deployed]
    assert calldatas[0] == bytes.fromhex(selector_for("initialize()")[2:])
    assert calldatas[1][:4] == bytes.fromhex(selector_for("initialize(uint256)")[2:])
    assert is_upgrade is True

    added = [s for e in result.cut for s in e.selectors]
    assert selector_for("initialize()") not in added
    assert selector_for("initialize(uint256)") not in added


async def test_removed_facet_selectors_and_interface_go_away(world):
    plan = load_upgrade_plan({"version": "2.4.0", "remove": ["OrchestrationHandlerFacet"]})

    result = await UpgradeService(world.context).upgrade_facets(plan, "test")

    assert world.chain.deployed == []
    assert [(e.facet_address, e.action, e.selectors) for e in result.cut] == [
        (
            ZERO_ADDRESS,
            FacetCutAction.REMOVE,
            [selector_for("createSellerAndOffer(address,uint256)"), selector_for("createOffer(uint256)")],
        )
    ]
    assert result.interfaces_to_remove == [ORCHESTRATION_INTERFACE]
    assert record(persisted(world), "OrchestrationHandlerFacet") is None


async def test_removing_unknown_facet_is_skipped_with_warning(world):
    plan = load_upgrade_plan(
        {"version": "2.4.0", "addOrUpgrade": ["SellerHandlerFacet"], "remove": ["GhostFacet"]}
    )

    result = await UpgradeService(world.context).upgrade_facets(plan, "test")

    assert any("GhostFacet" in warning for warning in result.warnings)
    assert result.stage == UpgradeStage.REGISTRY_PERSISTED


async def test_selector_vacated_by_removed_facet_moves_to_new_facet(world):
    plan = load_upgrade_plan(
        {
            "version": "2.4.0",
            "addOrUpgrade": ["OfferHandlerFacet"],
            "remove": ["OrchestrationHandlerFacet"],
            "facetsToInit": {"OfferHandlerFacet": {"init": []}},
        }
    )

    result = await UpgradeService(world.context).upgrade_facets(plan, "test")

    [(_, _, offer_address)] = world.chain.deployed
    assert [(e.facet_address, e.action, e.selectors) for e in result.cut] == [
        (offer_address, FacetCutAction.ADD, [selector_for("voidOffer(uint256)")]),
        (offer_address, FacetCutAction.REPLACE, [selector_for("createOffer(uint256)")]),
        (ZERO_ADDRESS, FacetCutAction.REMOVE, [selector_for("createSellerAndOffer(address,uint256)")]),
    ]


async def test_unresolved_collision_aborts_before_submission(world):
    before = world.contracts_path.read_bytes()
    plan = load_upgrade_plan({"version": "2.4.0", "addOrUpgrade": ["OfferHandlerFacet"]})

    with pytest.raises(CollisionError) as exc_info:
        await UpgradeService(world.context).upgrade_facets(plan, "test")

    assert exc_info.value.stage == UpgradeStage.DIFF_COMPUTED.value
    assert exc_info.value.details["last_completed_stage"] == "DIFF_COMPUTED"
    assert world.diamond.cuts == []
    assert world.contracts_path.read_bytes() == before


async def test_plan_collision_resolution_skips_selector(world):
    plan = load_upgrade_plan(
        {
            "version": "2.4.0",
            "addOrUpgrade": ["OfferHandlerFacet"],
            "collisionResolutions": {"OfferHandlerFacet": {"createOffer(uint256)": "skip"}},
        }
    )

    result = await UpgradeService(world.context).upgrade_facets(plan, "test")

    selectors = [s for e in result.cut for s in e.selectors]
    assert selector_for("createOffer(uint256)") not in selectors
    assert result.diffs[0].skipped == [selector_for("createOffer(uint256)")]


async def test_two_new_facets_claiming_one_selector_fail(world):
    plan = load_upgrade_plan(
        {"version": "2.4.0", "addOrUpgrade": ["ExchangeHandlerFacet", "DisputeHandlerFacet"]}
    )

    with pytest.raises(CollisionError):
        await UpgradeService(world.context).upgrade_facets(plan, "test")


async def test_submission_error_leaves_contracts_file_byte_identical(world):
    before = world.contracts_path.read_bytes()
    world.diamond.fail_with = SubmissionError("diamondCut would revert", details={"method": "diamondCut"})
    plan = load_upgrade_plan({"version": "2.4.0", "addOrUpgrade": ["SellerHandlerFacet"]})

    with pytest.raises(SubmissionError) as exc_info:
        await UpgradeService(world.context).upgrade_facets(plan, "test")

    assert exc_info.value.stage == UpgradeStage.COLLISIONS_RESOLVED.value
    assert world.contracts_path.read_bytes() == before


async def test_unconfirmed_cut_reports_submitted_stage(world):
    before = world.contracts_path.read_bytes()
    world.diamond.fail_with = SubmissionError(
        "diamondCut not confirmed", details={"tx_hash": "0x01", "submitted": True}
    )
    plan = load_upgrade_plan({"version": "2.4.0", "addOrUpgrade": ["SellerHandlerFacet"]})

    with pytest.raises(SubmissionError) as exc_info:
        await UpgradeService(world.context).upgrade_facets(plan, "test")

    assert exc_info.value.stage == UpgradeStage.CUT_SUBMITTED.value
    assert world.contracts_path.read_bytes() == before


async def test_persistence_failure_after_confirmation_needs_reconciliation(world, monkeypatch):
    async def failing_write(contracts_file, version=None):
        raise PersistenceError("disk full")

    monkeypatch.setattr(world.repository, "write", failing_write)
    plan = load_upgrade_plan({"version": "2.4.0", "addOrUpgrade": ["SellerHandlerFacet"]})

    with pytest.raises(PersistenceError) as exc_info:
        await UpgradeService(world.context).upgrade_facets(plan, "test")

    assert exc_info.value.requires_manual_reconciliation is True
    assert exc_info.value.stage == UpgradeStage.CONFIRMED.value
    assert len(world.diamond.cuts) == 1


async def test_dry_run_deploys_and_submits_nothing(world):
    before = world.contracts_path.read_bytes()
    plan = load_upgrade_plan({"version": "2.4.0", "addOrUpgrade": ["SellerHandlerFacet"]})

    result = await UpgradeService(world.context).upgrade_facets(plan, "test", dry_run=True)

    assert result.dry_run is True
    assert result.stage == UpgradeStage.COLLISIONS_RESOLVED
    assert len(result.cut) == 3
    assert world.chain.deployed == []
    assert world.diamond.cuts == []
    assert world.contracts_path.read_bytes() == before


async def test_same_version_is_rejected_unless_allowed(world):
    plan = load_upgrade_plan({"version": "2.3.0", "addOrUpgrade": ["SellerHandlerFacet"]})
    service = UpgradeService(world.context)

    with pytest.raises(ConfigError) as exc_info:
        await service.upgrade_facets(plan, "test")
    assert exc_info.value.stage is None
    assert world.chain.deployed == []

    result = await service.upgrade_facets(plan, "test", allow_same_version=True)
    assert result.stage == UpgradeStage.REGISTRY_PERSISTED


async def test_wrong_init_arguments_fail_before_any_deployment(world):
    plan = load_upgrade_plan(
        {
            "version": "2.4.0",
            "addOrUpgrade": ["ExchangeHandlerFacet"],
            "facetsToInit": {"ExchangeHandlerFacet": {"init": [1, 2]}},
        }
    )

    with pytest.raises(ConfigError):
        await UpgradeService(world.context).upgrade_facets(plan, "test")
    assert world.chain.deployed == []


async def test_signer_without_upgrader_role_is_rejected(world):
    world.chain.upgraders.clear()
    plan = load_upgrade_plan({"version": "2.4.0", "addOrUpgrade": ["SellerHandlerFacet"]})

    with pytest.raises(AuthorizationError):
        await UpgradeService(world.context).upgrade_facets(plan, "test")
    assert world.chain.deployed == []


def test_plan_rejects_facet_both_added_and_removed():
    with pytest.raises(ConfigError):
        load_upgrade_plan({"addOrUpgrade": ["SellerHandlerFacet"], "remove": ["SellerHandlerFacet"]})


def test_plan_rejects_init_for_facet_outside_the_plan():
    with pytest.raises(ConfigError):
        load_upgrade_plan({"addOrUpgrade": ["SellerHandlerFacet"], "facetsToInit": {"OfferHandlerFacet": {"init": []}}})


@pytest.mark.parametrize(
    "plan",
    [
        {"addOrUpgrade": ["SellerHandlerFacet"], "skipSelectors": {"SellerHandlerFacet": ["0xAABBCCD"]}},
        {"addOrUpgrade": ["SellerHandlerFacet"], "skipSelectors": {"SellerHandlerFacet": ["createSeller"]}},
        {"addOrUpgrade": ["OfferHandlerFacet"], "collisionResolutions": {"OfferHandlerFacet": {"0x1234": "skip"}}},
    ],
)
def test_plan_rejects_malformed_selector_entries(plan):
    with pytest.raises(ConfigError):
        load_upgrade_plan(plan)


async def test_skipped_selector_is_left_on_the_old_facet(world):
    plan = load_upgrade_plan(
        {
            "version": "2.4.0",
            "addOrUpgrade": ["SellerHandlerFacet"],
            "skipSelectors": {"SellerHandlerFacet": ["0x" + selector_for("updateSeller(address)")[2:].upper()]},
        }
    )

    result = await UpgradeService(world.context).upgrade_facets(plan, "test")

    removed = [s for e in result.cut if e.action == FacetCutAction.REMOVE for s in e.selectors]
    assert selector_for("updateSeller(address)") not in removed
    assert result.diffs[0].skipped == [selector_for("updateSeller(address)")]
