"""Rendering of selection sets and operations as GraphQL documents."""

from __future__ import annotations

import dataclasses
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bramble.ast import (
    Argument,
    Directive,
    Field,
    FragmentSpread,
    InlineFragment,
    OperationDefinition,
    Schema,
    Value,
    ValueKind,
)

_WHITESPACE = re.compile(r"[\t\n\f\r ]+")


@dataclasses.dataclass
class OperationContext:
    """The operation being executed and the variables it was sent with."""

    operation_name: str = ""
    variables: Dict[str, Any] = dataclasses.field(default_factory=dict)
    operation: Optional[OperationDefinition] = None


def format_document(
    op_ctx: Optional[OperationContext],
    schema: Optional[Schema],
    operation_type: str,
    selection_set: list,
) -> Tuple[str, Optional[Dict[str, Any]]]:
    """Build a full document for the selection set and the variables it uses."""
    operation, variables = format_operation(op_ctx, selection_set)
    document = (
        operation_type.lower() + " " + operation + format_selection_set(op_ctx, schema, selection_set)
    )
    return document, variables


def format_operation(
    op_ctx: Optional[OperationContext], selection_set: list
) -> Tuple[str, Optional[Dict[str, Any]]]:
    """Return the operation header and the variables the selection set uses."""
    if op_ctx is None:
        return "", None

    referenced = set(selection_set_variables(selection_set))
    definitions = op_ctx.operation.variable_definitions if op_ctx.operation else []

    arguments: List[str] = []
    used: Dict[str, Any] = {}
    for definition in definitions:
        if definition.variable not in referenced:
            continue
        if definition.variable in op_ctx.variables:
            used[definition.variable] = op_ctx.variables[definition.variable]
        arguments.append(f"${definition.variable}: {definition.type.to_graphql()}")

    if not arguments:
        return op_ctx.operation_name, None
    return f"{op_ctx.operation_name}({','.join(arguments)})", used


def _value_variables(value: Value) -> Iterator[str]:
    if value.kind is ValueKind.VARIABLE:
        yield value.raw
        return
    for child in value.children:
        yield from _value_variables(child.value)


def _argument_variables(arguments: List[Argument]) -> Iterator[str]:
    for argument in arguments:
        yield from _value_variables(argument.value)


def _directive_variables(directives: List[Directive]) -> Iterator[str]:
    for directive in directives:
        yield from _argument_variables(directive.arguments)


def _iter_selection_set_variables(selection_set: list) -> Iterator[str]:
    for selection in selection_set:
        if isinstance(selection, Field):
            yield from _directive_variables(selection.directives)
            yield from _argument_variables(selection.arguments)
            yield from _iter_selection_set_variables(selection.selection_set)
        elif isinstance(selection, InlineFragment):
            yield from _directive_variables(selection.directives)
            yield from _iter_selection_set_variables(selection.selection_set)
        elif isinstance(selection, FragmentSpread):
            yield from _directive_variables(selection.directives)


def selection_set_variables(selection_set: list) -> List[str]:
    """Names of the variables referenced in the selection set, in order."""
    return list(_iter_selection_set_variables(selection_set))


def _indent(level: int, suffix: str = "") -> str:
    return "\n" + "  " * (level + 1) + suffix


def _format_arguments(schema: Optional[Schema], variables: Dict[str, Any], arguments: List[Argument]) -> str:
    if not arguments:
        return ""
    rendered = ", ".join(
        f"{argument.name}: {format_argument(schema, argument.value, variables)}" for argument in arguments
    )
    return f"({rendered})"


def _nested_selection_set(
    schema: Optional[Schema], variables: Dict[str, Any], level: int, selection_set: list
) -> Iterator[str]:
    yield " {"
    yield from _selection_chunks(schema, variables, level + 1, selection_set)
    yield _indent(level, "}")


def _selection_chunks(
    schema: Optional[Schema], variables: Dict[str, Any], level: int, selection_set: list
) -> Iterator[str]:
    for selection in selection_set:
        yield _indent(level)
        if isinstance(selection, Field):
            if selection.alias != selection.name:
                yield f"{selection.alias}: {selection.name}"
            else:
                yield selection.alias
            yield _format_arguments(schema, variables, selection.arguments)
            for directive in selection.directives:
                yield " @" + directive.name
                yield _format_arguments(schema, variables, directive.arguments)
            if selection.selection_set:
                yield from _nested_selection_set(schema, variables, level, selection.selection_set)
        elif isinstance(selection, InlineFragment):
            yield f"... on {selection.type_condition}"
            yield from _nested_selection_set(schema, variables, level, selection.selection_set)
        elif isinstance(selection, FragmentSpread):
            yield "..." + selection.name


def format_selection_set(
    op_ctx: Optional[OperationContext], schema: Optional[Schema], selection_set: list
) -> str:
    """Render the selection set as an indented multi-line block."""
    variables = op_ctx.variables if op_ctx is not None else {}
    body = "".join(_selection_chunks(schema, variables, 0, selection_set))
    return "{" + body + "\n}"


def format_selection_set_single_line(
    op_ctx: Optional[OperationContext], schema: Optional[Schema], selection_set: list
) -> str:
    """Render the selection set on a single line."""
    return _WHITESPACE.sub(" ", format_selection_set(op_ctx, schema, selection_set))


def format_argument(schema: Optional[Schema], value: Optional[Value], variables: Dict[str, Any]) -> str:
    """Render an argument value, keeping variables as references."""
    if value is None:
        return "<nil>"
    if schema is None:
        return value.to_graphql()

    kind = value.kind
    if kind is ValueKind.VARIABLE:
        return "$" + value.raw
    if kind in (ValueKind.INT, ValueKind.FLOAT, ValueKind.ENUM, ValueKind.BOOLEAN, ValueKind.NULL):
        return value.raw
    if kind in (ValueKind.STRING, ValueKind.BLOCK):
        return value.to_graphql()
    if kind is ValueKind.LIST:
        return "[" + ",".join(format_argument(schema, child.value, variables) for child in value.children) + "]"
    if kind is ValueKind.OBJECT:
        return (
            "{"
            + ",".join(
                f"{child.name}:{format_argument(schema, child.value, variables)}" for child in value.children
            )
            + "}"
        )
    raise ValueError(f"unknown value kind {kind!r}")