"""
Storage layout compatibility check.
Compares the storage layout of a contract in two builds so an upgrade does
not move or retype existing state.
"""

import re
from typing import Any, Dict, List, Sequence

from pydantic import BaseModel, Field

from diamond_upgrader.core.logging import get_logger
from diamond_upgrader.infrastructure.artifacts.artifact_store import ArtifactStore

logger = get_logger(__name__)

GAP_LABEL = "__gap"

# AST ids inside type names differ between otherwise identical builds
_AST_ID = re.compile(r"\)\d+")


def normalize_type(type_name: str) -> str:
    return _AST_ID.sub(")", type_name)


class StorageMismatch(BaseModel):
    label: str
    reason: str
    before: Dict[str, Any] = Field(default_factory=dict)
    after: Dict[str, Any] = Field(default_factory=dict)


class StorageLayoutReport(BaseModel):
    contract: str = ""
    compatible: bool = True
    mismatches: List[StorageMismatch] = Field(default_factory=list)
    added: List[str] = Field(default_factory=list)


def _key(entry: Dict[str, Any]) -> tuple:
    return (str(entry.get("slot")), int(entry.get("offset", 0)))


def compare_storage_layouts(
    before: Sequence[Dict[str, Any]],
    after: Sequence[Dict[str, Any]],
    contract: str = "",
) -> StorageLayoutReport:
    """
    Compare two solc storage layouts.

    Every variable of the old layout must keep its label, slot, offset and
    type in the new one. __gap variables are ignored and new variables are
    reported as added.
    """
    report = StorageLayoutReport(contract=contract)
    after_by_position = {_key(entry): entry for entry in after if entry.get("label") != GAP_LABEL}

    for entry in before:
        label = entry.get("label", "")
        if label == GAP_LABEL:
            continue
        match = after_by_position.pop(_key(entry), None)
        if match is None:
            report.mismatches.append(StorageMismatch(label=label, reason="removed", before=entry))
        elif match.get("label") != label:
            report.mismatches.append(
                StorageMismatch(label=label, reason="renamed", before=entry, after=match)
            )
        elif normalize_type(match.get("type", "")) != normalize_type(entry.get("type", "")):
            report.mismatches.append(
                StorageMismatch(label=label, reason="type changed", before=entry, after=match)
            )

    report.added = [entry.get("label", "") for entry in after_by_position.values()]
    report.compatible = not report.mismatches
    if report.compatible:
        logger.info(f"Storage layout of {contract or 'contract'} is compatible", added=report.added)
    else:
        logger.warning(
            f"Storage layout of {contract or 'contract'} is incompatible",
            mismatches=[f"{m.label}: {m.reason}" for m in report.mismatches],
        )
    return report


def check_storage_compatibility(
    before: ArtifactStore, after: ArtifactStore, contract_names: Sequence[str]
) -> List[StorageLayoutReport]:
    """Compare the storage layouts of several contracts between two builds."""
    return [
        compare_storage_layouts(before.storage_layout(name), after.storage_layout(name), contract=name)
        for name in contract_names
    ]
