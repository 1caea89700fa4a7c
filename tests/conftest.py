import json
import os
import sys
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from asgi_lifespan import LifespanManager

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)
os.environ.setdefault("ANYIO_BACKEND", "asyncio")

from diamond_upgrader.main import app  # noqa: E402
from diamond_upgrader.api.deps.operator_guard import get_upgrade_context  # noqa: E402
from diamond_upgrader.api.services.deployment_service import FacetDeployer  # noqa: E402
from diamond_upgrader.api.services.upgrade_service import UpgradeContext  # noqa: E402
from diamond_upgrader.core.config import Settings, settings  # noqa: E402
from diamond_upgrader.domain.repositories.contracts_repository import ContractsRepository  # noqa: E402
from diamond_upgrader.infrastructure.artifacts.artifact_store import ArtifactStore  # noqa: E402
from diamond_upgrader.infrastructure.blockchain.access_control import RoleGuard  # noqa: E402
from diamond_upgrader.infrastructure.blockchain.selectors import selector_for  # noqa: E402
from tests.helpers import (  # noqa: E402
    ADMIN,
    ARTIFACTS,
    INIT_FACET,
    INTERFACES_CONFIG,
    OLD_SELLER_INTERFACE,
    OLD_SELLER_SELECTORS,
    OPERATOR_TOKEN,
    ORCHESTRATION_FACET,
    ORCHESTRATION_INTERFACE,
    ORCHESTRATION_SELECTORS,
    SELLER_FACET,
    FakeChain,
    FakeDiamond,
    contracts_file_data,
    write_artifacts,
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def world(tmp_path):
    """A deployed protocol: contracts file, artifacts, fake chain and diamond."""
    write_artifacts(tmp_path / "artifacts", ARTIFACTS)
    interfaces_path = tmp_path / "config" / "supported-interfaces.json"
    interfaces_path.parent.mkdir(parents=True)
    interfaces_path.write_text(json.dumps(INTERFACES_CONFIG))

    test_settings = Settings(
        ENVIRONMENT="test",
        NETWORK="localhost",
        CHAIN_ID=31337,
        ADMIN_ADDRESS=ADMIN,
        ARTIFACTS_DIR=str(tmp_path / "artifacts" / "contracts"),
        BUILD_INFO_DIR=str(tmp_path / "artifacts" / "build-info"),
        ADDRESSES_DIR=str(tmp_path / "addresses"),
        INTERFACES_CONFIG_PATH=str(interfaces_path),
        PROTOCOL_VERSION="2.4.0",
    )

    repository = ContractsRepository(test_settings)
    contracts_path = repository.path_for(31337, "localhost", "test")
    contracts_path.parent.mkdir(parents=True)
    contracts_path.write_text(json.dumps(contracts_file_data(), indent=2))

    chain = FakeChain()
    diamond = FakeDiamond(
        {
            SELLER_FACET: OLD_SELLER_SELECTORS,
            ORCHESTRATION_FACET: ORCHESTRATION_SELECTORS,
            INIT_FACET: [selector_for("getVersion()")],
        },
        {OLD_SELLER_INTERFACE, ORCHESTRATION_INTERFACE},
    )
    artifacts = ArtifactStore(test_settings)
    context = UpgradeContext(
        settings=test_settings,
        chain=chain,
        repository=repository,
        artifacts=artifacts,
        deployer=FacetDeployer(chain, artifacts),
        role_guard=RoleGuard(chain, test_settings),
        diamond_factory=lambda address: diamond,
    )
    return SimpleNamespace(
        settings=test_settings,
        chain=chain,
        diamond=diamond,
        repository=repository,
        contracts_path=contracts_path,
        context=context,
    )


@pytest.fixture
def operator_headers(monkeypatch):
    monkeypatch.setattr(settings, "OPERATOR_TOKEN", OPERATOR_TOKEN)
    return {"X-Operator-Token": OPERATOR_TOKEN}


@pytest.fixture(autouse=True)
def override_upgrade_context(request):
    """
    Route the HTTP surface to the in-memory world when a test uses it,
    so no request reaches a real node.
    """
    if "world" in request.fixturenames:
        world = request.getfixturevalue("world")
        app.dependency_overrides[get_upgrade_context] = lambda: world.context
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client():
    """Shared HTTPX async client with FastAPI lifespan handling."""
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
