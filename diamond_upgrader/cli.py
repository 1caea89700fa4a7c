"""
diamond_upgrader.cli
--------------------

Operator commands for terminal use. Unlike the HTTP surface, facet upgrades
started here may settle selector collisions interactively.

Examples
--------
# Show the cut an upgrade plan would submit
python -m diamond_upgrader.cli upgrade-facets --env test --plan upgrade-2.4.0.json --dry-run

# Deploy facets and submit the cut, asking about every collision
python -m diamond_upgrader.cli upgrade-facets --env prod --plan upgrade-2.4.0.json --interactive

# Point the BosonVoucher beacon at a new implementation
python -m diamond_upgrader.cli upgrade-clients --env prod --config clients.json
"""

import asyncio
import json
from pathlib import Path
from typing import List

import typer

from diamond_upgrader.api.services.client_upgrade_service import ClientUpgradeService
from diamond_upgrader.api.services.collision_resolver import InteractiveCollisionPolicy
from diamond_upgrader.api.services.storage_layout_service import check_storage_compatibility
from diamond_upgrader.api.services.upgrade_service import UpgradeContext, UpgradeService
from diamond_upgrader.core.config import settings
from diamond_upgrader.core.exceptions import UpgraderException
from diamond_upgrader.core.logging import log_error, setup_logging
from diamond_upgrader.domain.models.upgrade_plan import load_client_upgrade_config, load_upgrade_plan
from diamond_upgrader.infrastructure.artifacts.artifact_store import ArtifactStore

app = typer.Typer(
    name="diamond-upgrader",
    add_completion=False,
    no_args_is_help=True,
    help="Plan and apply diamond facet and client upgrades.",
)


def _prompt(message: str) -> str:
    return typer.prompt(message.rstrip(), default="", show_default=False)


def _fail(error: UpgraderException) -> None:
    log_error(error, {"stage": error.stage})
    typer.echo(json.dumps({"error_code": error.error_code, "message": error.message, "details": error.details},
                          indent=2, default=str), err=True)
    raise typer.Exit(1)


@app.command("upgrade-facets")
def upgrade_facets(
    env: str = typer.Option(..., "--env", help="Deployment environment of the contracts file."),
    plan: Path = typer.Option(..., "--plan", exists=True, dir_okay=False, help="Upgrade plan JSON."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Compute the cut without sending transactions."),
    allow_same_version: bool = typer.Option(
        False, "--allow-same-version", help="Allow re-running the recorded protocol version."
    ),
    interactive: bool = typer.Option(False, "--interactive", help="Prompt on selector collisions."),
) -> None:
    """Deploy the plan's facets and submit one diamond cut."""
    setup_logging()
    context = UpgradeContext.from_settings(settings)
    policy = None
    if interactive:
        policy = InteractiveCollisionPolicy(settings.COLLISION_PROMPT_MAX_ATTEMPTS, input_fn=_prompt)

    try:
        upgrade_plan = load_upgrade_plan(plan.read_text(encoding="utf-8"))
        result = asyncio.run(
            UpgradeService(context).upgrade_facets(
                upgrade_plan,
                env,
                allow_same_version=allow_same_version,
                dry_run=dry_run,
                collision_policy=policy,
            )
        )
    except UpgraderException as e:
        _fail(e)
    typer.echo(json.dumps(result.summary(), indent=2, default=str))


@app.command("upgrade-clients")
def upgrade_clients(
    env: str = typer.Option(..., "--env", help="Deployment environment of the contracts file."),
    config: Path = typer.Option(..., "--config", exists=True, dir_okay=False, help="Client upgrade JSON."),
) -> None:
    """Deploy a client implementation and set it on the client beacon."""
    setup_logging()
    context = UpgradeContext.from_settings(settings)
    try:
        client_config = load_client_upgrade_config(config.read_text(encoding="utf-8"))
        result = asyncio.run(ClientUpgradeService(context).upgrade_clients(client_config, env))
    except UpgraderException as e:
        _fail(e)
    typer.echo(json.dumps(result.summary(), indent=2, default=str))


@app.command("check-storage")
def check_storage(
    before: Path = typer.Option(..., "--before", exists=True, file_okay=False, help="Old artifacts root."),
    after: Path = typer.Option(..., "--after", exists=True, file_okay=False, help="New artifacts root."),
    contracts: List[str] = typer.Argument(..., help="Contract names to compare."),
) -> None:
    """Compare storage layouts of contracts between two builds."""
    setup_logging()

    def store(root: Path) -> ArtifactStore:
        return ArtifactStore(
            settings.model_copy(
                update={"ARTIFACTS_DIR": str(root / "contracts"), "BUILD_INFO_DIR": str(root / "build-info")}
            )
        )

    try:
        reports = check_storage_compatibility(store(before), store(after), contracts)
    except UpgraderException as e:
        _fail(e)
    typer.echo(json.dumps([report.model_dump() for report in reports], indent=2))
    if not all(report.compatible for report in reports):
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
