"""
Upgrade Service.

Orchestrates one protocol upgrade: deploy the new facets, diff them against
the live diamond, resolve selector collisions, submit a single diamondCut
with the protocol initializer, and persist the contracts file once the cut
is confirmed.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from diamond_upgrader.api.services.collision_resolver import (
    CollisionPolicy,
    InteractiveCollisionPolicy,
    StaticCollisionPolicy,
    fail_on_collision,
    resolve_collisions,
)
from diamond_upgrader.api.services.cut_builder import (
    build_cut,
    encode_diamond_cut_calldata,
    encode_initialize_calldata,
)
from diamond_upgrader.api.services.deployment_service import FacetDeployer
from diamond_upgrader.api.services.diff_engine import (
    FacetDiff,
    InterfaceBookkeeper,
    compute_facet_diff,
    compute_removal_diff,
)
from diamond_upgrader.core.config import Settings
from diamond_upgrader.core.exceptions import (
    ChainCallError,
    ConfigError,
    PersistenceError,
    PreconditionError,
    SubmissionError,
    UpgraderException,
)
from diamond_upgrader.core.logging import (
    get_logger,
    log_facet_cut,
    log_interface_changes,
    log_upgrade_stage,
)
from diamond_upgrader.domain.models.contracts import ContractsFile, CutEntry, DeployedFacet
from diamond_upgrader.domain.models.upgrade_plan import UpgradePlan
from diamond_upgrader.domain.repositories.contracts_repository import ContractsRepository
from diamond_upgrader.infrastructure.artifacts.artifact_store import ArtifactStore
from diamond_upgrader.infrastructure.blockchain.access_control import Role, RoleGuard
from diamond_upgrader.infrastructure.blockchain.contract_client import ChainClient
from diamond_upgrader.infrastructure.blockchain.diamond_client import DiamondClient
from diamond_upgrader.infrastructure.blockchain.selectors import (
    exclude_initializer,
    get_selectors,
)

logger = get_logger(__name__)

UPGRADE_TEST_ENVIRONMENT = "upgrade-test"


class UpgradeStage(str, Enum):
    """Stages of an upgrade run, in order."""

    PLANNED = "PLANNED"
    FACETS_DEPLOYED = "FACETS_DEPLOYED"
    DIFF_COMPUTED = "DIFF_COMPUTED"
    COLLISIONS_RESOLVED = "COLLISIONS_RESOLVED"
    CUT_SUBMITTED = "CUT_SUBMITTED"
    CONFIRMED = "CONFIRMED"
    REGISTRY_PERSISTED = "REGISTRY_PERSISTED"


class StageTracker:
    """Remembers the last completed stage of a run."""

    def __init__(self, version: Optional[str] = None):
        self.version = version
        self.last: Optional[UpgradeStage] = None

    def complete(self, stage: UpgradeStage, **kwargs) -> None:
        self.last = stage
        log_upgrade_stage(stage.value, self.version, **kwargs)

    @property
    def last_value(self) -> Optional[str]:
        return self.last.value if self.last else None


class UpgradeResult(BaseModel):
    """Outcome of an upgrade run."""

    version: str
    dry_run: bool = False
    stage: Optional[UpgradeStage] = None
    diffs: List[FacetDiff] = Field(default_factory=list)
    cut: List[CutEntry] = Field(default_factory=list)
    interfaces_to_add: List[str] = Field(default_factory=list)
    interfaces_to_remove: List[str] = Field(default_factory=list)
    initialization_address: str = ""
    diamond_cut_calldata: str = ""
    contracts: ContractsFile
    tx_hash: Optional[str] = None
    new_version: Optional[str] = None
    contracts_path: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "dry_run": self.dry_run,
            "stage": self.stage.value if self.stage else None,
            "cut": [entry.to_log_dict() for entry in self.cut],
            "skipped": {diff.facet_name: diff.skipped for diff in self.diffs if diff.skipped},
            "interfaces_to_add": self.interfaces_to_add,
            "interfaces_to_remove": self.interfaces_to_remove,
            "initialization_address": self.initialization_address,
            "diamond_cut_calldata": self.diamond_cut_calldata,
            "tx_hash": self.tx_hash,
            "new_version": self.new_version,
            "contracts_path": self.contracts_path,
            "warnings": self.warnings,
        }


class UpgradeContext:
    """Collaborators of an upgrade run, built once from settings."""

    def __init__(
        self,
        settings: Settings,
        chain: ChainClient,
        repository: ContractsRepository,
        artifacts: ArtifactStore,
        deployer: FacetDeployer,
        role_guard: RoleGuard,
        collision_policy: CollisionPolicy = fail_on_collision,
        diamond_factory: Optional[Callable[[str], DiamondClient]] = None,
    ):
        self.settings = settings
        self.chain = chain
        self.repository = repository
        self.artifacts = artifacts
        self.deployer = deployer
        self.role_guard = role_guard
        self.collision_policy = collision_policy
        self.diamond_factory = diamond_factory or (lambda address: DiamondClient(chain, address))

    @classmethod
    def from_settings(cls, settings: Settings) -> "UpgradeContext":
        chain = ChainClient(settings)
        artifacts = ArtifactStore(settings)
        if settings.COLLISION_POLICY == "interactive":
            policy = InteractiveCollisionPolicy(settings.COLLISION_PROMPT_MAX_ATTEMPTS)
        else:
            policy = fail_on_collision
        return cls(
            settings=settings,
            chain=chain,
            repository=ContractsRepository(settings),
            artifacts=artifacts,
            deployer=FacetDeployer(chain, artifacts),
            role_guard=RoleGuard(chain, settings),
            collision_policy=policy,
        )


class UpgradeService:
    """Service for diamond facet upgrades."""

    def __init__(self, context: UpgradeContext):
        self.context = context
        self.settings = context.settings

    def check_version(self, version: str, contracts_file: ContractsFile, allow_same_version: bool = False) -> None:
        """
        Raises:
            ConfigError: if the target version equals the recorded one
        """
        if version != contracts_file.protocol_version:
            return
        if allow_same_version or self.settings.ENVIRONMENT == UPGRADE_TEST_ENVIRONMENT:
            logger.warning(f"Upgrading to the already recorded version {version}")
            return
        raise ConfigError(
            "Protocol version has not been updated",
            details={"version": version, "recorded": contracts_file.protocol_version},
        )

    def _collision_policy(self, plan: UpgradePlan, policy: Optional[CollisionPolicy]) -> CollisionPolicy:
        base = policy or self.context.collision_policy
        if plan.collision_resolutions:
            return StaticCollisionPolicy(plan.collision_resolutions, fallback=base)
        return base

    async def upgrade_facets(
        self,
        plan: UpgradePlan,
        env: str,
        allow_same_version: bool = False,
        dry_run: bool = False,
        collision_policy: Optional[CollisionPolicy] = None,
    ) -> UpgradeResult:
        """
        Run a full facet upgrade.

        Args:
            plan: Validated upgrade plan
            env: Deployment environment of the contracts file
            allow_same_version: Permit re-running the recorded version
            dry_run: Compute the cut without deploying or submitting anything
            collision_policy: Overrides the configured policy

        Returns:
            UpgradeResult

        Raises:
            UpgraderException: with the last completed stage recorded
        """
        version = plan.version or self.settings.PROTOCOL_VERSION
        tracker = StageTracker(version)
        try:
            chain_id = await self.context.chain.chain_id()
            contracts_file = await self.context.repository.read(chain_id, self.settings.NETWORK, env)
            self.check_version(version, contracts_file, allow_same_version)

            admin = self.context.role_guard.check_admin(self.context.chain.signer_address)
            await self.context.role_guard.check_role(contracts_file, Role.UPGRADER, admin)

            self.context.deployer.validate_plan(plan)
            tracker.complete(UpgradeStage.PLANNED, env=env, dry_run=dry_run)

            deployed = await self.context.deployer.deploy_facets(plan, dry_run=dry_run)
            tracker.complete(UpgradeStage.FACETS_DEPLOYED, facets=[f.name for f in deployed])
        except UpgraderException as e:
            raise e.with_stage(tracker.last_value)

        result = await self.plan_and_apply_upgrade(
            contracts_file,
            plan,
            deployed,
            version=version,
            dry_run=dry_run,
            collision_policy=collision_policy,
            tracker=tracker,
        )
        if dry_run:
            return result

        try:
            path = await self.context.repository.write(result.contracts, version)
        except PersistenceError as e:
            e.requires_manual_reconciliation = True
            e.details["requires_manual_reconciliation"] = True
            e.details["tx_hash"] = result.tx_hash
            raise e.with_stage(tracker.last_value)

        tracker.complete(UpgradeStage.REGISTRY_PERSISTED, path=str(path))
        result.stage = tracker.last
        result.contracts_path = str(path)
        result.contracts = result.contracts.model_copy(update={"protocol_version": version})
        return result

    async def plan_and_apply_upgrade(
        self,
        contracts_file: ContractsFile,
        plan: UpgradePlan,
        deployed_facets: List[DeployedFacet],
        version: Optional[str] = None,
        dry_run: bool = False,
        collision_policy: Optional[CollisionPolicy] = None,
        tracker: Optional[StageTracker] = None,
    ) -> UpgradeResult:
        """
        Compute and submit the diamond cut for already deployed facets.

        The contracts file passed in is never modified. The updated copy is
        returned in the result and only describes the chain once the cut is
        confirmed.

        Args:
            contracts_file: Current contracts file
            plan: Upgrade plan
            deployed_facets: Facets of plan.add_or_upgrade, in plan order
            version: Target protocol version
            dry_run: Stop before submitting the cut
            collision_policy: Overrides the configured policy
            tracker: Stage tracker of the enclosing run

        Returns:
            UpgradeResult
        """
        version = version or plan.version or self.settings.PROTOCOL_VERSION
        tracker = tracker or StageTracker(version)
        try:
            return await self._plan_and_apply(
                contracts_file, plan, deployed_facets, version, dry_run, collision_policy, tracker
            )
        except UpgraderException as e:
            raise e.with_stage(tracker.last_value)

    async def _plan_and_apply(
        self,
        contracts_file: ContractsFile,
        plan: UpgradePlan,
        deployed_facets: List[DeployedFacet],
        version: str,
        dry_run: bool,
        collision_policy: Optional[CollisionPolicy],
        tracker: StageTracker,
    ) -> UpgradeResult:
        diamond_name = self.settings.DIAMOND_CONTRACT_NAME
        diamond_address = contracts_file.address_of(diamond_name)
        if not diamond_address:
            raise ConfigError(f"{diamond_name} address not found in contracts file")
        diamond = self.context.diamond_factory(diamond_address)
        if not await diamond.has_code():
            raise ConfigError(f"No contract code at {diamond_name} address {diamond_address}")

        warnings: List[str] = []
        removed_records = []
        for name in plan.remove:
            record = contracts_file.find(name)
            if record is None:
                error = PreconditionError(name, details={"action": "remove"})
                logger.warning(f"Skipping removal: {error.message}")
                warnings.append(error.message)
                continue
            removed_records.append(record)

        # Snapshot reads are independent of each other
        old_records = [contracts_file.find(facet.name) for facet in deployed_facets]
        snapshots = await asyncio.gather(
            *[diamond.get_registered_selectors(r.address if r else None) for r in old_records],
            *[diamond.get_registered_selectors(r.address) for r in removed_records],
        )
        upgrade_snapshots = snapshots[: len(deployed_facets)]
        removal_snapshots = snapshots[len(deployed_facets):]

        diffs: List[FacetDiff] = []
        for facet, old_record, old_selectors in zip(deployed_facets, old_records, upgrade_snapshots):
            selector_set = get_selectors(facet.abi)
            new_selectors = exclude_initializer(
                selector_set, facet.name, facet.init_calldata, self.settings.INITIALIZATION_FACET_NAME
            )
            diffs.append(
                compute_facet_diff(
                    old_selectors,
                    new_selectors.selectors,
                    plan.skip_for(facet.name),
                    facet_name=facet.name,
                    facet_address=facet.address,
                    old_address=old_record.address if old_record else None,
                    signatures=selector_set.signature_to_name,
                )
            )

        for record, old_selectors in zip(removed_records, removal_snapshots):
            signatures = {}
            try:
                signatures = get_selectors(self.context.artifacts.abi(record.name)).signature_to_name
            except ConfigError:
                logger.info(f"No artifact for removed facet {record.name}, logging raw selectors")
            diffs.append(
                compute_removal_diff(
                    old_selectors,
                    plan.skip_for(record.name),
                    facet_name=record.name,
                    old_address=record.address,
                    signatures=signatures,
                )
            )
        tracker.complete(UpgradeStage.DIFF_COMPUTED, facets=len(diffs))

        await resolve_collisions(
            diffs, diamond.facet_address, self._collision_policy(plan, collision_policy)
        )
        tracker.complete(UpgradeStage.COLLISIONS_RESOLVED)

        # Registry rewrite and interface bookkeeping, on a copy
        working = contracts_file.model_copy(deep=True)
        bookkeeper = InterfaceBookkeeper(
            working, diamond.supports_interface, deployed_names=[f.name for f in deployed_facets]
        )
        for facet, old_record, diff in zip(deployed_facets, old_records, diffs):
            interface_id = self.context.artifacts.interface_id_for(facet.name)
            bookkeeper.contracts = bookkeeper.contracts.without(facet.name).deployment_complete(
                facet.name, facet.address, facet.constructor_args, interface_id
            )
            await bookkeeper.facet_upgraded(old_record, interface_id, diff)
        for record in removed_records:
            bookkeeper.contracts = bookkeeper.contracts.without(record.name)
            bookkeeper.facet_removed(record)
        updated_contracts = bookkeeper.finalize()

        init_name = self.settings.INITIALIZATION_FACET_NAME
        init_address = updated_contracts.address_of(init_name)
        if not init_address:
            raise ConfigError(f"{init_name} address not found in contracts file")

        initialize_calldata = encode_initialize_calldata(
            version,
            [(f.address, f.init_calldata) for f in deployed_facets if f.init_calldata],
            bookkeeper.interfaces_to_remove,
            bookkeeper.interfaces_to_add,
        )
        cut = build_cut(diffs)
        calldata = encode_diamond_cut_calldata(cut, init_address, initialize_calldata)

        for diff in diffs:
            log_facet_cut(
                diff.facet_name,
                [entry.to_log_dict() for entry in build_cut([diff])],
                diff.signatures,
            )
            if diff.skipped:
                logger.info(f"Skipped selectors on {diff.facet_name}", selectors=diff.skipped)
        log_interface_changes(bookkeeper.interfaces_to_add, bookkeeper.interfaces_to_remove)

        result = UpgradeResult(
            version=version,
            dry_run=dry_run,
            stage=tracker.last,
            diffs=diffs,
            cut=cut,
            interfaces_to_add=bookkeeper.interfaces_to_add,
            interfaces_to_remove=bookkeeper.interfaces_to_remove,
            initialization_address=init_address,
            diamond_cut_calldata="0x" + calldata.hex(),
            contracts=updated_contracts,
            warnings=warnings,
        )
        if dry_run:
            logger.info("Dry run, diamond cut not submitted", entries=len(cut))
            return result

        try:
            receipt = await diamond.diamond_cut(calldata)
        except SubmissionError as e:
            if e.details.get("submitted"):
                tracker.complete(UpgradeStage.CUT_SUBMITTED, tx_hash=e.details.get("tx_hash"))
            raise
        result.tx_hash = receipt.get("transactionHash")
        tracker.complete(UpgradeStage.CUT_SUBMITTED, tx_hash=result.tx_hash)
        tracker.complete(UpgradeStage.CONFIRMED, block_number=receipt.get("blockNumber"))
        result.stage = tracker.last

        try:
            result.new_version = await diamond.get_version()
            logger.info(f"Protocol version after upgrade: {result.new_version}")
        except ChainCallError as e:
            logger.warning(f"Could not read protocol version after upgrade: {e.message}")
            result.warnings.append(e.message)

        return result

