"""GraphQL syntax tree nodes used when building and formatting queries."""

from __future__ import annotations

import dataclasses
from enum import Enum
from typing import Iterator, List, Optional, Union


class ValueKind(Enum):
    """Kind of a literal or variable value in a GraphQL document."""

    VARIABLE = "variable"
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    BLOCK = "block"
    BOOLEAN = "boolean"
    NULL = "null"
    ENUM = "enum"
    LIST = "list"
    OBJECT = "object"


class DefinitionKind(Enum):
    """Kind of a named type definition in a schema."""

    SCALAR = "SCALAR"
    OBJECT = "OBJECT"
    INTERFACE = "INTERFACE"
    UNION = "UNION"
    ENUM = "ENUM"
    INPUT_OBJECT = "INPUT_OBJECT"


_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
}


def _escape_char(char: str) -> str:
    if char in ('"', "\\"):
        return "\\" + char
    if char == " " or (char.isprintable() and not char.isspace()):
        return char
    if char in _ESCAPES:
        return _ESCAPES[char]
    code = ord(char)
    if code < 0x20 or code == 0x7F:
        return f"\\x{code:02x}"
    if code < 0x10000:
        return f"\\u{code:04x}"
    return f"\\U{code:08x}"


def _quote(text: str) -> str:
    """Quote a string as a double-quoted literal with backslash escapes."""
    return '"' + "".join(_escape_char(char) for char in text) + '"'


@dataclasses.dataclass
class Type:
    """A type reference: a named type or a list of another type."""

    named_type: str = ""
    elem: Optional[Type] = None
    non_null: bool = False

    @property
    def name(self) -> str:
        """The innermost named type."""
        if self.named_type:
            return self.named_type
        return self.elem.name if self.elem is not None else ""

    def to_graphql(self) -> str:
        text = f"[{self.elem.to_graphql()}]" if self.elem is not None else self.named_type
        return text + "!" if self.non_null else text


@dataclasses.dataclass
class ChildValue:
    """An element of a list value or a named entry of an object value."""

    value: Value
    name: str = ""


@dataclasses.dataclass
class Value:
    """A value written in a document: a literal, a variable or a composite."""

    kind: ValueKind
    raw: str = ""
    children: List[ChildValue] = dataclasses.field(default_factory=list)
    expected_type: Optional[Type] = None

    def to_graphql(self) -> str:
        """Render the value as GraphQL source text."""
        if self.kind is ValueKind.VARIABLE:
            return "$" + self.raw
        if self.kind in (ValueKind.STRING, ValueKind.BLOCK):
            return _quote(self.raw)
        if self.kind is ValueKind.LIST:
            return "[" + ",".join(child.value.to_graphql() for child in self.children) + "]"
        if self.kind is ValueKind.OBJECT:
            return (
                "{"
                + ",".join(f"{child.name}:{child.value.to_graphql()}" for child in self.children)
                + "}"
            )
        return self.raw


@dataclasses.dataclass
class Argument:
    """A named argument of a field or directive."""

    name: str
    value: Value


@dataclasses.dataclass
class Directive:
    """A directive applied to a selection."""

    name: str
    arguments: List[Argument] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class FieldDefinition:
    """A field as declared on a schema type."""

    name: str
    type: Type


@dataclasses.dataclass
class Definition:
    """A named type declared in a schema."""

    name: str
    kind: DefinitionKind = DefinitionKind.OBJECT
    fields: List[FieldDefinition] = dataclasses.field(default_factory=list)
    interfaces: List[str] = dataclasses.field(default_factory=list)
    types: List[str] = dataclasses.field(default_factory=list)

    def is_abstract_type(self) -> bool:
        return self.kind in (DefinitionKind.INTERFACE, DefinitionKind.UNION)


@dataclasses.dataclass
class Schema:
    """A schema: its types and, for each type, the abstract types it implements."""

    types: dict = dataclasses.field(default_factory=dict)
    implements: dict = dataclasses.field(default_factory=dict)
    query: Optional[Definition] = None
    mutation: Optional[Definition] = None
    subscription: Optional[Definition] = None


@dataclasses.dataclass
class Position:
    """Line and column of a node in its source document."""

    line: int
    column: int


@dataclasses.dataclass
class Field:
    """A field selection, with its alias, arguments and sub-selections."""

    name: str
    alias: str = ""
    arguments: List[Argument] = dataclasses.field(default_factory=list)
    directives: List[Directive] = dataclasses.field(default_factory=list)
    selection_set: list = dataclasses.field(default_factory=list)
    definition: Optional[FieldDefinition] = None
    object_definition: Optional[Definition] = None
    position: Optional[Position] = None

    def __post_init__(self) -> None:
        if not self.alias:
            self.alias = self.name


@dataclasses.dataclass
class InlineFragment:
    """An inline fragment: ``... on Type { ... }``."""

    type_condition: str
    selection_set: list = dataclasses.field(default_factory=list)
    directives: List[Directive] = dataclasses.field(default_factory=list)
    object_definition: Optional[Definition] = None
    position: Optional[Position] = None


@dataclasses.dataclass
class FragmentDefinition:
    """A named fragment declared in a document."""

    name: str
    type_condition: str
    selection_set: list = dataclasses.field(default_factory=list)
    object_definition: Optional[Definition] = None


@dataclasses.dataclass
class FragmentSpread:
    """A reference to a named fragment: ``...Name``."""

    name: str
    definition: Optional[FragmentDefinition] = None
    directives: List[Directive] = dataclasses.field(default_factory=list)
    object_definition: Optional[Definition] = None
    position: Optional[Position] = None


@dataclasses.dataclass
class VariableDefinition:
    """A variable declared by an operation."""

    variable: str
    type: Type


@dataclasses.dataclass
class OperationDefinition:
    """A query, mutation or subscription operation."""

    operation: str = "query"
    name: str = ""
    variable_definitions: List[VariableDefinition] = dataclasses.field(default_factory=list)
    selection_set: list = dataclasses.field(default_factory=list)


Selection = Union[Field, InlineFragment, FragmentSpread]


def _iter_fields(selection_set: list) -> Iterator[Field]:
    for selection in selection_set:
        if isinstance(selection, Field):
            yield selection
        elif isinstance(selection, InlineFragment):
            yield from _iter_fields(selection.selection_set)
        elif isinstance(selection, FragmentSpread) and selection.definition is not None:
            yield from _iter_fields(selection.definition.selection_set)


def selection_set_to_fields(selection_set: list) -> List[Field]:
    """Return the fields of a selection set, flattening fragments in place."""
    return list(_iter_fields(selection_set))