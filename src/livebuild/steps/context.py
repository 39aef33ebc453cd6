"""Handler execution context built from the configuration and database schema."""

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from livebuild.kernel.errors import BuildError

from .config import ProjectConfig, ResolvedContractNetwork
from .db import DbSchema


class EntityBinding(BaseModel):
    """Table backing one entity in handler code."""
    model_config = ConfigDict(frozen=True)

    name: str
    table: str
    columns: List[str]


class ContractBinding(BaseModel):
    """A configured contract as seen by handler code."""
    model_config = ConfigDict(frozen=True)

    name: str
    events: List[str]
    networks: List[ResolvedContractNetwork]


class HandlerContext(BaseModel):
    """What event handlers can reach: entity tables and contracts."""
    model_config = ConfigDict(frozen=True)

    entities: Dict[str, EntityBinding] = Field(default_factory=dict)
    contracts: Dict[str, ContractBinding] = Field(default_factory=dict)

    @property
    def entity_names(self) -> List[str]:
        return sorted(self.entities)

    @property
    def handler_names(self) -> List[str]:
        """``Contract:Event`` keys a handler can be registered under."""
        return sorted(
            f"{contract.name}:{event}"
            for contract in self.contracts.values()
            for event in contract.events
        )


def build_handler_context(config: ProjectConfig, db_schema: DbSchema) -> HandlerContext:
    """Combine configured contracts with the migrated entity tables.

    Raises:
        BuildError: If a contract network cannot be resolved
    """
    entities = {
        table.name: EntityBinding(name=table.name, table=table.name, columns=table.column_names)
        for table in db_schema.tables
    }
    contracts = {}
    for contract in config.contracts:
        try:
            networks = contract.resolve()
        except ValueError as e:
            raise BuildError(str(e)) from e
        contracts[contract.name] = ContractBinding(
            name=contract.name,
            events=contract.event_names,
            networks=networks,
        )
    return HandlerContext(entities=entities, contracts=contracts)
