"""In-process holder for the schema the API serves.

Transport (HTTP) is outside this package; ``ApiServer`` only swaps the
active schema atomically so requests see either the old or the new schema.
"""

from __future__ import annotations

import threading
from typing import Any, Optional

from graphql import ExecutionResult, GraphQLSchema, graphql_sync

from livebuild._internal.logging import get_logger

logger = get_logger(__name__)


class ApiServer:
    def __init__(self) -> None:
        self._schema: Optional[GraphQLSchema] = None
        self._lock = threading.Lock()
        self.restarts = 0

    @property
    def schema(self) -> Optional[GraphQLSchema]:
        with self._lock:
            return self._schema

    def restart(self, schema: GraphQLSchema) -> None:
        with self._lock:
            self._schema = schema
            self.restarts += 1
            restarts = self.restarts
        logger.info("server_restarted", restarts=restarts, types=len(schema.type_map))

    def execute(self, source: str, root_value: Any = None) -> ExecutionResult:
        """Run a GraphQL request against the active schema."""
        schema = self.schema
        if schema is None:
            raise RuntimeError("No schema is being served yet")
        return graphql_sync(schema, source, root_value=root_value)
