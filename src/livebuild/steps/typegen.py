"""Generated type modules written into the output directory.

Every file is overwritten wholesale (written to a temporary file, then
renamed over the target) and stamped as autogenerated.
"""

from __future__ import annotations

import keyword
import os
import re
import tempfile
from pathlib import Path
from typing import Dict, List, Union

from graphql import (
    GraphQLSchema,
    get_named_type,
    is_enum_type,
    is_list_type,
    is_non_null_type,
    is_object_type,
    print_schema,
)

from livebuild._internal.logging import get_logger

from .config import ProjectConfig
from .db import DbSchema

logger = get_logger(__name__)

HEADER = "Autogenerated file. Do not edit manually."

PYTHON_SCALARS: Dict[str, str] = {
    "ID": "str",
    "String": "str",
    "Int": "int",
    "Float": "float",
    "Boolean": "bool",
    "BigInt": "str",
    "Bytes": "str",
}


def python_identifier(name: str) -> str:
    """Turn an arbitrary name into a valid Python identifier."""
    ident = re.sub(r"\W", "_", name)
    if not ident or ident[0].isdigit():
        ident = f"_{ident}"
    if keyword.iskeyword(ident):
        ident += "_"
    return ident


def _python_type(gql_type) -> str:
    if is_non_null_type(gql_type):
        return _python_type_required(gql_type.of_type)
    return f"Optional[{_python_type_required(gql_type)}]"


def _python_type_required(gql_type) -> str:
    if is_list_type(gql_type):
        return f"List[{_python_type(gql_type.of_type)}]"
    named = get_named_type(gql_type)
    if is_enum_type(named):
        return python_identifier(named.name)
    if is_object_type(named):
        return "str"  # referenced entity id
    return PYTHON_SCALARS.get(named.name, "Any")


def _entity_types(schema: GraphQLSchema) -> List:
    query = schema.query_type
    return [
        t for name, t in schema.type_map.items()
        if is_object_type(t) and not name.startswith("__") and t is not query
    ]


class TypeGenerator:
    """Writes generated modules into ``output_dir``."""

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir)

    def write_file(self, filename: str, body: str, comment: str = "#") -> Path:
        """Atomically replace ``filename`` with a stamped ``body``."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        target = self.output_dir / filename
        content = f"{comment} {HEADER}\n\n{body.rstrip()}\n"
        fd, tmp_name = tempfile.mkstemp(dir=self.output_dir, prefix=f".{filename}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return target

    def generate_schema(self, schema: GraphQLSchema) -> Path:
        path = self.write_file("schema.graphql", print_schema(schema))
        logger.info("generated_file", file=path.name)
        return path

    def generate_entity_types(self, schema: GraphQLSchema) -> Path:
        lines = [
            "from typing import Any, List, Literal, Optional, TypedDict",
            "",
        ]
        for name, t in schema.type_map.items():
            if is_enum_type(t) and not name.startswith("__"):
                values = ", ".join(repr(v) for v in t.values)
                lines.append(f"{python_identifier(name)} = Literal[{values}]")
        names = []
        for t in _entity_types(schema):
            fields = ", ".join(
                f"{name!r}: {_python_type(f.type)}" for name, f in t.fields.items()
            )
            ident = python_identifier(t.name)
            names.append(ident)
            lines.append(f"{ident} = TypedDict({t.name!r}, {{{fields}}})")
        lines.append("")
        lines.append(f"__all__ = {names!r}")
        path = self.write_file("entities.py", "\n".join(lines))
        logger.info("generated_file", file=path.name, entities=len(names))
        return path

    def generate_contract_types(self, config: ProjectConfig) -> Path:
        lines = ["from typing import Tuple", ""]
        names = []
        for contract in config.contracts:
            ident = python_identifier(contract.name)
            names.append(ident)
            networks = tuple(n.name for n in contract.network)
            lines.extend([
                "",
                f"class {ident}:",
                f"    name = {contract.name!r}",
                f"    events: Tuple[str, ...] = {tuple(contract.event_names)!r}",
                f"    networks: Tuple[str, ...] = {networks!r}",
                "",
            ])
        lines.append("")
        lines.append(f"__all__ = {names!r}")
        path = self.write_file("contracts.py", "\n".join(lines))
        logger.info("generated_file", file=path.name, contracts=len(names))
        return path

    def generate_handler_types(self, config: ProjectConfig) -> Path:
        handler_names = sorted(
            f"{contract.name}:{event}"
            for contract in config.contracts
            for event in contract.event_names
        )
        literal = ", ".join(repr(n) for n in handler_names) or "''"
        lines = [
            "from typing import Literal, Tuple",
            "",
            f"HandlerName = Literal[{literal}]",
            "",
            f"HANDLER_NAMES: Tuple[str, ...] = {tuple(handler_names)!r}",
        ]
        path = self.write_file("handlers.py", "\n".join(lines))
        logger.info("generated_file", file=path.name, handlers=len(handler_names))
        return path

    def generate_context_type(self, config: ProjectConfig, db_schema: DbSchema) -> Path:
        entity_names = [python_identifier(t.name) for t in db_schema.tables]
        contract_names = [python_identifier(c.name) for c in config.contracts]
        lines = ["from typing import Type, TypedDict", ""]
        if entity_names:
            lines.append(f"from .entities import {', '.join(entity_names)}")
        if contract_names:
            lines.append(f"from .contracts import {', '.join(contract_names)}")
        entity_fields = ", ".join(f"{t.name!r}: Type[{python_identifier(t.name)}]" for t in db_schema.tables)
        contract_fields = ", ".join(f"{c.name!r}: Type[{python_identifier(c.name)}]" for c in config.contracts)
        lines.extend([
            "",
            f"ContextEntities = TypedDict('ContextEntities', {{{entity_fields}}})",
            f"ContextContracts = TypedDict('ContextContracts', {{{contract_fields}}})",
            "",
            "",
            "class Context(TypedDict):",
            "    entities: ContextEntities",
            "    contracts: ContextContracts",
        ])
        path = self.write_file("context.py", "\n".join(lines))
        logger.info("generated_file", file=path.name)
        return path
