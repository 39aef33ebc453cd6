"""Identifiers for watched inputs and derived artifacts."""

from enum import Enum
from typing import Union


class InputKind(str, Enum):
    """A watched source file whose content changes trigger regeneration."""

    CONFIG_FILE = "config_file"
    SCHEMA_FILE = "schema_file"


class ArtifactKind(str, Enum):
    """A derived value cached in the artifact store."""

    PARSED_CONFIG = "parsed_config"
    PARSED_SCHEMA = "parsed_schema"
    GQL_SCHEMA = "gql_schema"
    DB_SCHEMA = "db_schema"
    MIGRATED_DB = "migrated_db"
    HANDLER_CONTEXT = "handler_context"


Node = Union[InputKind, ArtifactKind]


def node_key(node: Node) -> str:
    """Stable sort key for graph nodes."""
    return node.value
