"""Merging of downstream results and shaping them into the final response."""

from __future__ import annotations

import dataclasses
import json
from typing import Any, Dict, List, Optional, Tuple, Union

from bramble.ast import Field, FragmentSpread, InlineFragment, Position, Schema, Type
from bramble.selection import extract_typename_field, union_and_trim_selection_set

PathElement = Union[str, int]


@dataclasses.dataclass
class GraphQLError:
    """An error entry of a GraphQL response."""

    message: str
    path: List[PathElement] = dataclasses.field(default_factory=list)
    locations: List[Position] = dataclasses.field(default_factory=list)
    extensions: Optional[Dict[str, Any]] = None
    cause: Optional[BaseException] = dataclasses.field(default=None, compare=False)


@dataclasses.dataclass
class ExecutionResult:
    """Data returned by one service for one step, and where it belongs."""

    service_url: str = ""
    insertion_point: List[str] = dataclasses.field(default_factory=list)
    data: Any = None
    errors: List[GraphQLError] = dataclasses.field(default_factory=list)


class ResultError(Exception):
    """Raised when results cannot be merged or checked."""


class NullBubbledToRoot(ResultError):
    """A null value propagated all the way up to the root of the response."""

    def __init__(self, errors: List[GraphQLError]) -> None:
        super().__init__("bubbleUpNullValuesInPlace: null bubbled up to root")
        self.errors = errors


def _merge_maps(dst: Dict[str, Any], src: Dict[str, Any]) -> None:
    for key, value in src.items():
        existing = dst.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            _merge_maps(existing, value)
        else:
            dst[key] = value


def merge_execution_results(results: List[ExecutionResult]) -> Optional[Dict[str, Any]]:
    """Merge step results into the data of the first one."""
    if not results:
        raise ResultError("mergeExecutionResults: nothing to merge")

    data = results[0].data
    if len(results) == 1:
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ResultError(
                f"a complete graphql response should be a map, got {type(data).__name__}"
            )
        return data

    if data is None:
        data = {}
    for result in results[1:]:
        _merge_into(result.data, data, result.insertion_point)

    if not isinstance(data, dict):
        raise ResultError(f"merged execution results should be a map, got {type(data).__name__}")
    return data


def _merge_boundary_results(src: list, dst: Dict[str, Any]) -> None:
    boundary_results = _boundary_field_results(src)
    dst_type = boundary_type_from_map(dst)
    for result in boundary_results:
        if boundary_type_from_map(result) != dst_type:
            continue
        dst_id = boundary_id_from_map(dst)
        if boundary_id_from_map(result) == dst_id:
            dst.update((key, value) for key, value in result.items() if key != "_bramble_id")


def _merge_into(src: Any, dst: Any, insertion_point: List[str]) -> None:
    if not insertion_point:
        if dst is None:
            return
        if isinstance(dst, dict):
            if isinstance(src, dict):
                _merge_maps(dst, src)
            elif isinstance(src, list):
                _merge_boundary_results(src, dst)
            return
        if isinstance(dst, list):
            for inner in dst:
                _merge_into(src, inner, insertion_point)
            return
        raise ResultError(
            f"mergeExecutionResultsRec: unexpected type '{type(dst).__name__}' for top-level merge"
        )

    if isinstance(dst, dict):
        child = dst.get(insertion_point[0])
        if isinstance(child, list):
            for inner in child:
                _merge_into(src, inner, insertion_point[1:])
        else:
            _merge_into(src, child, insertion_point[1:])
    elif isinstance(dst, list):
        for inner in dst:
            _merge_into(src, inner, insertion_point)
    elif dst is None:
        return
    else:
        raise ResultError(
            f"mergeExecutionResultsRec: unexpected type '{type(dst).__name__}' for non top-level merge"
        )


def boundary_id_from_map(boundary_map: Dict[str, Any]) -> str:
    """The boundary identifier recorded in a response object."""
    boundary_id = boundary_map.get("_bramble_id")
    if isinstance(boundary_id, str):
        return boundary_id
    raise ResultError('boundaryIDFromMap: "_bramble_id" not found')


def boundary_type_from_map(boundary_map: Dict[str, Any]) -> str:
    """The concrete type name recorded in a response object."""
    typename = boundary_map.get("_bramble__typename")
    if isinstance(typename, str):
        return typename
    raise ResultError('boundaryTypeFromMap: "_bramble__typename" not found')


def _boundary_field_results(src: list) -> List[Dict[str, Any]]:
    results = []
    for index, element in enumerate(src):
        if element is None:
            continue
        if not isinstance(element, dict):
            raise ResultError(
                f"getBoundaryFieldResults: expect value at index {index} to be a map "
                f"but got '{type(element).__name__}'"
            )
        results.append(element)
    return results


def bubble_up_null_values_in_place(
    schema: Optional[Schema], selection_set: list, result: Dict[str, Any]
) -> List[GraphQLError]:
    """Null out parents of unexpected nulls as the schema requires.

    Returns an error for each unexpected null. Raises NullBubbledToRoot,
    carrying those errors, when the null reaches the root.
    """
    errors, bubble_up = _bubble_up(schema, None, selection_set, result, [])
    if bubble_up:
        raise NullBubbledToRoot(errors)
    return errors


def _bubble_up(
    schema: Optional[Schema],
    current_type: Optional[Type],
    selection_set: list,
    result: Any,
    path: List[PathElement],
) -> Tuple[List[GraphQLError], bool]:
    errors: List[GraphQLError] = []
    bubble_up = False

    if isinstance(result, dict):
        typename = extract_typename_field(result)
        for selection in union_and_trim_selection_set(typename, schema, selection_set):
            if isinstance(selection, Field):
                if selection.name.startswith("__"):
                    continue
                alias = selection.alias
                field_type = selection.definition.type
                value = result.get(alias)
                if value is None:
                    if field_type.non_null:
                        errors.append(
                            GraphQLError(
                                message=f'got a null response for non-nullable field "{alias}"',
                                path=path + [alias],
                            )
                        )
                        bubble_up = True
                    return errors, bubble_up
                if selection.selection_set:
                    lower_errors, lower_bubble = _bubble_up(
                        schema, field_type, selection.selection_set, value, path + [alias]
                    )
                    if lower_bubble:
                        if field_type.non_null:
                            bubble_up = True
                        else:
                            result[alias] = None
                    errors.extend(lower_errors)
            elif isinstance(selection, InlineFragment):
                lower_errors, bubble_up = _bubble_up(schema, None, selection.selection_set, result, path)
                errors.extend(lower_errors)
            elif isinstance(selection, FragmentSpread):
                lower_errors, bubble_up = _bubble_up(
                    schema, None, selection.definition.selection_set, result, path
                )
                errors.extend(lower_errors)
            else:
                raise ResultError(f"unknown selection type: {type(selection).__name__}")
    elif isinstance(result, list):
        for index, value in enumerate(result):
            lower_errors, lower_bubble = _bubble_up(
                schema, current_type, selection_set, value, path + [index]
            )
            if lower_bubble:
                if current_type.elem.non_null:
                    bubble_up = True
                else:
                    result[index] = None
            errors.extend(lower_errors)
    else:
        raise ResultError(
            f"bubbleUpNullValuesInPlaceRec: unexpected result type '{type(result).__name__}'"
        )
    return errors, bubble_up


_JSON_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026", "\u2028": "\\u2028", "\u2029": "\\u2029"}


def _to_json(value: Any) -> str:
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    for char, escape in _JSON_ESCAPES.items():
        text = text.replace(char, escape)
    return text


def format_response_data(
    schema: Optional[Schema], selection_set: list, result: Dict[str, Any]
) -> str:
    """Render the result as JSON, with keys in the order of the selection set."""
    return _format(schema, selection_set, result, False)


def _format(schema: Optional[Schema], selection_set: list, result: Any, inside_fragment: bool) -> str:
    if result is None:
        return "null"
    if isinstance(result, dict):
        if not result:
            return "null"
        typename = extract_typename_field(result)
        parts = []
        for selection in union_and_trim_selection_set(typename, schema, selection_set):
            if isinstance(selection, InlineFragment):
                body = _format(schema, selection.selection_set, result, True)
            elif isinstance(selection, FragmentSpread):
                body = _format(schema, selection.definition.selection_set, result, True)
            elif isinstance(selection, Field):
                alias = selection.alias
                if alias not in result:
                    rendered = "null"
                elif selection.selection_set:
                    rendered = _format(schema, selection.selection_set, result[alias], False)
                else:
                    rendered = _to_json(result[alias])
                body = f'"{alias}":{rendered}'
            else:
                body = ""
            if body:
                parts.append(body)
        inner = ",".join(parts)
        return inner if inside_fragment else "{" + inner + "}"
    if isinstance(result, list):
        return "[" + ",".join(_format(schema, selection_set, item, False) for item in result) + "]"
    return ""