"""Pytest configuration for tests.

No sys.path hacks - tests should import from installed livebuild package.
"""

import json
import os
import pytest
from pathlib import Path

from livebuild.settings import Settings

SCHEMA_A = """
type A {
  id: ID!
  name: String
}
"""

SCHEMA_AB = """
type A {
  id: ID!
  name: String
}

type B {
  id: ID!
  amount: BigInt!
  owner: A
}
"""

CONFIG = {
    "networks": [{"name": "mainnet", "chain_id": 1, "rpc_url": "http://localhost:8545"}],
    "contracts": [
        {
            "name": "Token",
            "network": [{"name": "mainnet", "address": "0x0000000000000000000000000000000000000001"}],
            "abi": [
                {"type": "event", "name": "Transfer", "inputs": []},
                {"type": "event", "name": "Approval", "inputs": []},
                {"type": "function", "name": "balanceOf", "inputs": []},
            ],
        }
    ],
}


def pytest_addoption(parser):
    """Add gated integration test option."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run real filesystem watch tests (gated)."
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration-marked tests unless --run-integration is set."""
    if config.getoption("--run-integration"):
        return
    skip_integration = pytest.mark.skip(reason="integration tests gated; pass --run-integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def write_config(path: Path, data=None) -> Path:
    path.write_text(json.dumps(CONFIG if data is None else data, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def project(tmp_path):
    """A project directory with a valid config and a single-entity schema."""
    write_config(tmp_path / "livebuild.config.json")
    (tmp_path / "schema.graphql").write_text(SCHEMA_A, encoding="utf-8")
    return tmp_path


@pytest.fixture
def settings(project):
    """Settings anchored at the project directory."""
    return Settings(max_workers=2).resolve(project)


def pytest_sessionfinish(session, exitstatus):
    """Best-effort cleanup for basetemp on Windows without patching pytest internals."""
    if os.name != "nt":
        return
    basetemp = getattr(session.config.option, "basetemp", None)
    if not basetemp:
        return
    basetemp_path = Path(basetemp)
    if not basetemp_path.exists():
        return
    try:
        import shutil
        shutil.rmtree(basetemp_path)
    except (PermissionError, OSError):
        # If cleanup fails, let it surface as a warning rather than masking errors.
        import warnings
        warnings.warn(f"Could not remove basetemp: {basetemp_path}")
