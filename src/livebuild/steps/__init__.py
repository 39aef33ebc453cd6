"""Default derivation steps invoked by the orchestrator."""

from .config import ProjectConfig, parse_config
from .schema import ParsedSchema, parse_schema
from .gql import build_gql_schema
from .db import DbSchema, MigrationResult, SqliteMigrator, build_db_schema
from .context import HandlerContext, build_handler_context
from .typegen import TypeGenerator
from .server import ApiServer

__all__ = [
    "ProjectConfig",
    "parse_config",
    "ParsedSchema",
    "parse_schema",
    "build_gql_schema",
    "DbSchema",
    "MigrationResult",
    "SqliteMigrator",
    "build_db_schema",
    "HandlerContext",
    "build_handler_context",
    "TypeGenerator",
    "ApiServer",
]
