"""Pydantic models for the project configuration file with strict validation."""

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from livebuild.kernel.errors import ParseError


class Network(BaseModel):
    """A blockchain network. Names must be unique across all networks."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    chain_id: int
    rpc_url: Optional[str] = None
    polling_interval: int = 1_000  # ms
    max_rpc_request_concurrency: int = 10


class Factory(BaseModel):
    """Factory contract that creates instances of a child contract."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    address: str
    event: Dict[str, Any]  # ABI event announcing a new child contract
    parameter: str  # event parameter holding the child address


class EventFilter(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    event: Union[str, List[str]]
    args: Optional[Dict[str, Any]] = None


class ContractFilterFields(BaseModel):
    """Fields that may be set on a contract or overridden per network."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    address: Optional[Union[str, List[str]]] = None
    factory: Optional[Factory] = None
    start_block: int = 0
    end_block: Optional[int] = None
    max_block_range: Optional[int] = None
    filter: Optional[EventFilter] = None


class ContractNetworkOverride(BaseModel):
    """Per-network deployment entry of a contract."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    address: Optional[Union[str, List[str]]] = None
    factory: Optional[Factory] = None
    start_block: Optional[int] = None
    end_block: Optional[int] = None
    max_block_range: Optional[int] = None
    filter: Optional[EventFilter] = None


class ResolvedContractNetwork(BaseModel):
    """A contract's effective settings on one network, after overrides."""
    model_config = ConfigDict(frozen=True)

    network: str
    address: Optional[Union[str, List[str]]] = None
    factory: Optional[Factory] = None
    start_block: int = 0
    end_block: Optional[int] = None
    max_block_range: Optional[int] = None
    filter: Optional[EventFilter] = None


class Contract(ContractFilterFields):
    """Contract to sync and index events from. Names are unique."""

    name: str
    abi: List[Dict[str, Any]] = Field(default_factory=list)
    network: List[ContractNetworkOverride]

    @property
    def event_names(self) -> List[str]:
        return [item["name"] for item in self.abi if item.get("type") == "event" and "name" in item]

    def resolve(self) -> List[ResolvedContractNetwork]:
        """Merge per-network overrides over the contract-level fields."""
        resolved = []
        for override in self.network:
            factory = override.factory or self.factory
            address = override.address or self.address
            if factory and address:
                raise ValueError(
                    f"Contract '{self.name}' on network '{override.name}': "
                    "factory and address cannot both be defined"
                )
            resolved.append(ResolvedContractNetwork(
                network=override.name,
                address=address,
                factory=factory,
                start_block=override.start_block if override.start_block is not None else self.start_block,
                end_block=override.end_block if override.end_block is not None else self.end_block,
                max_block_range=(
                    override.max_block_range if override.max_block_range is not None else self.max_block_range
                ),
                filter=override.filter or self.filter,
            ))
        return resolved


class Options(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_healthcheck_duration: int = 240  # seconds


class ProjectConfig(BaseModel):
    """The parsed configuration file."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    networks: List[Network] = Field(default_factory=list)
    contracts: List[Contract] = Field(default_factory=list)
    options: Options = Field(default_factory=Options)

    @model_validator(mode="after")
    def check_references(self) -> "ProjectConfig":
        network_names = [n.name for n in self.networks]
        duplicates = sorted({n for n in network_names if network_names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate network names: {duplicates}")

        contract_names = [c.name for c in self.contracts]
        duplicates = sorted({n for n in contract_names if contract_names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate contract names: {duplicates}")

        known = set(network_names)
        for contract in self.contracts:
            for override in contract.network:
                if override.name not in known:
                    raise ValueError(
                        f"Contract '{contract.name}' network '{override.name}' "
                        "does not match a network in 'networks'"
                    )
            contract.resolve()
        return self

    def get_contract(self, name: str) -> Optional[Contract]:
        for contract in self.contracts:
            if contract.name == name:
                return contract
        return None


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def parse_config(raw: bytes) -> ProjectConfig:
    """Parse and validate raw configuration file content.

    Raises:
        ParseError: If the content is not valid JSON or fails validation
    """
    try:
        data = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise ParseError(f"Configuration is not valid UTF-8: {e}") from e
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON at line {e.lineno} column {e.colno}: {e.msg}") from e
    except (ValueError, RecursionError) as e:
        # Oversized integers and excessive nesting
        raise ParseError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseError("Configuration must be a JSON object")
    try:
        return ProjectConfig.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"Invalid configuration: {_format_validation_error(e)}") from e
