"""Build the served GraphQL schema from the abstract schema."""

from typing import List

from graphql import GraphQLError, GraphQLSchema, build_schema

from livebuild.kernel.errors import BuildError

from .schema import CUSTOM_SCALARS, Entity, ParsedSchema

DEFAULT_PAGE_SIZE = 100


def _lower_first(name: str) -> str:
    return name[:1].lower() + name[1:]


def plural_field_name(entity_name: str) -> str:
    return f"{_lower_first(entity_name)}s"


def singular_field_name(entity_name: str) -> str:
    return _lower_first(entity_name)


def _entity_sdl(entity: Entity) -> str:
    lines = []
    if entity.description:
        escaped = entity.description.replace('"""', '\\"""')
        lines.append(f'"""{escaped}"""')
    lines.append(f"type {entity.name} {{")
    for f in entity.fields:
        lines.append(f"  {f.name}: {f.type_ref}")
    lines.append("}")
    return "\n".join(lines)


def _query_sdl(parsed: ParsedSchema) -> str:
    lines = ["type Query {"]
    for entity in parsed.entities:
        id_type = entity.get_field("id").type_name
        lines.append(f"  {singular_field_name(entity.name)}(id: {id_type}!): {entity.name}")
        lines.append(
            f"  {plural_field_name(entity.name)}("
            f"skip: Int = 0, first: Int = {DEFAULT_PAGE_SIZE}, "
            f"orderBy: String = \"id\", orderDirection: String = \"asc\"): "
            f"[{entity.name}!]!"
        )
    lines.append("}")
    return "\n".join(lines)


def render_sdl(parsed: ParsedSchema) -> str:
    """SDL text of the served schema (scalars, enums, entities, Query)."""
    parts: List[str] = [f"scalar {name}" for name in CUSTOM_SCALARS]
    for name, values in parsed.enums.items():
        parts.append(f"enum {name} {{\n" + "\n".join(f"  {v}" for v in values) + "\n}")
    parts.extend(_entity_sdl(entity) for entity in parsed.entities)
    parts.append(_query_sdl(parsed))
    return "\n\n".join(parts) + "\n"


def build_gql_schema(parsed: ParsedSchema) -> GraphQLSchema:
    """Build a queryable GraphQL schema with singular and plural entity fields.

    Raises:
        BuildError: If there are no entities or the generated SDL is invalid
    """
    if not parsed.entities:
        raise BuildError("Schema defines no entity types")

    sdl = render_sdl(parsed)
    try:
        return build_schema(sdl)
    except (GraphQLError, TypeError) as e:
        raise BuildError(f"Generated GraphQL schema is invalid: {e}") from e
