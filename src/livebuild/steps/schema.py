"""Parse the user schema file (GraphQL SDL) into an abstract schema."""

from typing import Dict, List, Optional

from graphql import (
    GraphQLError,
    GraphQLObjectType,
    build_ast_schema,
    concat_ast,
    get_named_type,
    is_enum_type,
    is_list_type,
    is_non_null_type,
    is_object_type,
    is_scalar_type,
    parse,
)
from graphql.language import ScalarTypeDefinitionNode
from pydantic import BaseModel, ConfigDict, Field

from livebuild.kernel.errors import ParseError

CUSTOM_SCALARS = ("BigInt", "Bytes")
ROOT_TYPE_NAMES = frozenset({"Query", "Mutation", "Subscription"})
ID_TYPES = frozenset({"ID", "String", "Int", "BigInt", "Bytes"})


class EntityField(BaseModel):
    """A field of an entity type.

    ``kind`` is "scalar", "enum" or "entity" (a reference to another entity).
    """
    model_config = ConfigDict(frozen=True)

    name: str
    type_name: str
    kind: str
    non_null: bool = False
    is_list: bool = False
    item_non_null: bool = False

    @property
    def type_ref(self) -> str:
        """SDL type reference, e.g. ``[String!]!``."""
        ref = self.type_name
        if self.is_list:
            ref = f"[{ref}{'!' if self.item_non_null else ''}]"
        if self.non_null:
            ref += "!"
        return ref


class Entity(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    fields: List[EntityField]
    description: Optional[str] = None

    def get_field(self, name: str) -> Optional[EntityField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


class ParsedSchema(BaseModel):
    """The abstract schema: user entities and enums, in declaration order."""
    model_config = ConfigDict(frozen=True)

    entities: List[Entity] = Field(default_factory=list)
    enums: Dict[str, List[str]] = Field(default_factory=dict)

    @property
    def entity_names(self) -> List[str]:
        return [e.name for e in self.entities]

    def get_entity(self, name: str) -> Optional[Entity]:
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None


def _describe_field(name: str, field_type, entity_name: str) -> EntityField:
    non_null = is_non_null_type(field_type)
    if non_null:
        field_type = field_type.of_type
    is_list = is_list_type(field_type)
    item_non_null = False
    if is_list:
        field_type = field_type.of_type
        item_non_null = is_non_null_type(field_type)
        if item_non_null:
            field_type = field_type.of_type
        if is_list_type(field_type):
            raise ParseError(f"{entity_name}.{name}: nested list types are not supported")

    named = get_named_type(field_type)
    if is_enum_type(named):
        kind = "enum"
    elif is_object_type(named):
        kind = "entity"
    elif is_scalar_type(named):
        kind = "scalar"
    else:
        raise ParseError(
            f"{entity_name}.{name}: unsupported field type {named.name} "
            "(only scalars, enums and entity references are allowed)"
        )
    return EntityField(
        name=name,
        type_name=named.name,
        kind=kind,
        non_null=non_null,
        is_list=is_list,
        item_non_null=item_non_null,
    )


def _extract_entity(type_: GraphQLObjectType) -> Entity:
    fields = [_describe_field(name, f.type, type_.name) for name, f in type_.fields.items()]
    entity = Entity(name=type_.name, fields=fields, description=type_.description)

    id_field = entity.get_field("id")
    if id_field is None:
        raise ParseError(f"Entity '{type_.name}' must define an 'id' field")
    if not id_field.non_null or id_field.is_list or id_field.type_name not in ID_TYPES:
        raise ParseError(
            f"Entity '{type_.name}' id field must be a non-null "
            f"{', '.join(sorted(ID_TYPES))}, got {id_field.type_ref}"
        )
    return entity


def parse_schema(raw: bytes) -> ParsedSchema:
    """Parse raw SDL content into a ParsedSchema.

    ``BigInt`` and ``Bytes`` scalars are implicitly available.

    Raises:
        ParseError: If the SDL is malformed, invalid, or uses unsupported types
    """
    try:
        source = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"Schema is not valid UTF-8: {e}") from e

    try:
        document = parse(source)
        declared = {
            d.name.value for d in document.definitions
            if isinstance(d, ScalarTypeDefinitionNode)
        }
        implicit = [f"scalar {name}" for name in CUSTOM_SCALARS if name not in declared]
        if implicit:
            document = concat_ast([parse("\n".join(implicit)), document])
        schema = build_ast_schema(document)
    except GraphQLError as e:
        raise ParseError(f"Invalid schema: {e.message}") from e
    except (TypeError, RecursionError) as e:
        raise ParseError(f"Invalid schema: {e}") from e

    entities = []
    enums: Dict[str, List[str]] = {}
    for name, type_ in schema.type_map.items():
        if name.startswith("__") or name in ROOT_TYPE_NAMES:
            continue
        if is_object_type(type_):
            entities.append(_extract_entity(type_))
        elif is_enum_type(type_):
            enums[name] = list(type_.values)

    return ParsedSchema(entities=entities, enums=enums)
