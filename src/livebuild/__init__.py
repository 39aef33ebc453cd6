"""livebuild: keeps schema-derived artifacts consistent with their source files."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("livebuild")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
from livebuild.api import DevSession, build_rules, check
from livebuild.codes import FailureCode
from livebuild.kernel.orchestrator import ChainReport, StepFailure
from livebuild.settings import Settings

__all__ = [
    "__version__",
    "DevSession",
    "build_rules",
    "check",
    "ChainReport",
    "StepFailure",
    "FailureCode",
    "Settings",
]
