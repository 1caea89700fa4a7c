import json

from diamond_upgrader.api.services.storage_layout_service import (
    check_storage_compatibility,
    compare_storage_layouts,
)
from diamond_upgrader.core.config import Settings
from diamond_upgrader.infrastructure.artifacts.artifact_store import ArtifactStore
from tests.helpers import fn, write_artifacts


def var(label, slot, type_name, offset=0):
    return {"astId": 1, "contract": "contracts/Voucher.sol:BosonVoucher", "label": label,
            "offset": offset, "slot": str(slot), "type": type_name}


BEFORE = [
    var("_owner", 0, "t_address"),
    var("_paused", 0, "t_bool", offset=20),
    var("_offers", 1, "t_mapping(t_uint256,t_struct(Offer)1234_storage)"),
    var("__gap", 2, "t_array(t_uint256)48_storage"),
]


def test_identical_layout_is_compatible():
    report = compare_storage_layouts(BEFORE, list(BEFORE), contract="BosonVoucher")

    assert report.compatible is True
    assert report.mismatches == []


def test_appended_variable_and_gap_change_are_allowed():
    after = BEFORE[:3] + [var("_royalties", 2, "t_uint256"), var("__gap", 3, "t_array(t_uint256)47_storage")]

    report = compare_storage_layouts(BEFORE, after)

    assert report.compatible is True
    assert report.added == ["_royalties"]


def test_ast_ids_in_type_names_are_ignored():
    after = BEFORE[:2] + [var("_offers", 1, "t_mapping(t_uint256,t_struct(Offer)5678_storage)")]

    assert compare_storage_layouts(BEFORE, after).compatible is True


def test_moved_renamed_and_retyped_variables_are_reported():
    after = [
        var("owner", 0, "t_address"),
        var("_paused", 0, "t_uint8", offset=20),
        var("_offers", 5, "t_mapping(t_uint256,t_struct(Offer)1234_storage)"),
    ]

    report = compare_storage_layouts(BEFORE, after)

    assert report.compatible is False
    assert {(m.label, m.reason) for m in report.mismatches} == {
        ("_owner", "renamed"),
        ("_paused", "type changed"),
        ("_offers", "removed"),
    }


def test_layouts_are_read_from_build_info(tmp_path):
    def build(root, layout):
        write_artifacts(root, {"BosonVoucher": [fn("burn", "uint256")]})
        build_info = {
            "output": {
                "contracts": {
                    "contracts/BosonVoucher.sol": {"BosonVoucher": {"storageLayout": {"storage": layout}}}
                }
            }
        }
        (root / "build-info" / "abc123.json").write_text(json.dumps(build_info))
        return ArtifactStore(
            Settings(ARTIFACTS_DIR=str(root / "contracts"), BUILD_INFO_DIR=str(root / "build-info"))
        )

    before = build(tmp_path / "before", BEFORE)
    after = build(tmp_path / "after", BEFORE[:1])

    [report] = check_storage_compatibility(before, after, ["BosonVoucher"])

    assert report.contract == "BosonVoucher"
    assert report.compatible is False
