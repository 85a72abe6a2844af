"""Reshaping of selection sets to match the shape of a response object."""

from __future__ import annotations

import dataclasses
from typing import Any, Dict, List, Optional

from bramble.ast import (
    Definition,
    Field,
    FragmentSpread,
    InlineFragment,
    Schema,
)

TYPENAME_KEY = "_bramble__typename"


class SelectionSetMerger:
    """Accumulates selections, folding fragment fields into already seen ones.

    The merger works on copies of the fields and fragments it is given, so the
    selection set it was built from is left untouched.
    """

    def __init__(self) -> None:
        self.selection_set: list = []
        self._seen_fields: Dict[str, Field] = {}

    def add_field(self, field: Field) -> None:
        claimed = self._claim_field(field)
        if claimed is not None:
            self.selection_set.append(claimed)

    def add_inline_fragment(self, fragment: InlineFragment) -> None:
        deduped = self._dedupe_fragment_selection_set(fragment.selection_set)
        if deduped:
            self.selection_set.append(dataclasses.replace(fragment, selection_set=deduped))

    def add_fragment_spread(self, fragment: FragmentSpread) -> None:
        definition = fragment.definition
        if definition is None:
            return
        deduped = self._dedupe_fragment_selection_set(definition.selection_set)
        if deduped:
            new_definition = dataclasses.replace(definition, selection_set=deduped)
            self.selection_set.append(dataclasses.replace(fragment, definition=new_definition))

    def _claim_field(self, field: Field) -> Optional[Field]:
        """Return a copy of the field if its alias is new, otherwise merge it away."""
        seen = self._seen_fields.get(field.alias)
        if seen is None:
            own = dataclasses.replace(field, selection_set=list(field.selection_set))
            self._seen_fields[field.alias] = own
            return own
        if seen.name == field.name and seen.selection_set and field.selection_set:
            seen.selection_set.extend(field.selection_set)
        return None

    def _dedupe_fragment_selection_set(self, selection_set: list) -> list:
        filtered = []
        for selection in selection_set:
            if isinstance(selection, Field):
                claimed = self._claim_field(selection)
                if claimed is not None:
                    filtered.append(claimed)
            elif isinstance(selection, (InlineFragment, FragmentSpread)):
                filtered.append(selection)
        return filtered


def union_and_trim_selection_set(
    response_typename: str, schema: Optional[Schema], selection_set: list
) -> list:
    """Drop fragments that do not apply to the response type, then fold fragment fields."""
    filtered = eliminate_unwanted_fragments(response_typename, schema, selection_set)
    return merge_with_top_level_fragment_fields(filtered)


def eliminate_unwanted_fragments(
    response_typename: str, schema: Optional[Schema], selection_set: list
) -> list:
    """Keep fields, and fragments that may apply to the response object type."""
    filtered = []
    for selection in selection_set:
        if isinstance(selection, Field):
            filtered.append(selection)
            continue
        if isinstance(selection, InlineFragment):
            object_definition = selection.object_definition
            type_condition = selection.type_condition
        elif isinstance(selection, FragmentSpread):
            object_definition = selection.object_definition
            type_condition = selection.definition.type_condition if selection.definition else ""
        else:
            continue
        if object_definition is not None and include_fragment(
            response_typename, schema, object_definition, type_condition
        ):
            filtered.append(selection)
    return filtered


def _implemented_names(schema: Optional[Schema], typename: str) -> List[str]:
    if schema is None:
        return []
    return [
        entry if isinstance(entry, str) else entry.name
        for entry in schema.implements.get(typename, [])
    ]


def include_fragment(
    response_typename: str,
    schema: Optional[Schema],
    object_definition: Definition,
    type_condition: str,
) -> bool:
    """Whether a fragment applies to an object whose concrete type is response_typename."""
    implements_abstract = object_definition.name in _implemented_names(schema, type_condition)
    return not (
        object_definition.is_abstract_type()
        and implements_abstract
        and type_condition != response_typename
    )


def merge_with_top_level_fragment_fields(selection_set: list) -> list:
    """Fold fields repeated inside fragments into the fields at this level."""
    merger = SelectionSetMerger()
    for selection in selection_set:
        if isinstance(selection, Field):
            merger.add_field(selection)
        elif isinstance(selection, InlineFragment):
            merger.add_inline_fragment(selection)
        elif isinstance(selection, FragmentSpread):
            merger.add_fragment_spread(selection)
    return merger.selection_set


def extract_typename_field(result: Dict[str, Any]) -> str:
    """The concrete type name recorded in a response object, or an empty string."""
    typename = result.get(TYPENAME_KEY)
    if typename is None and TYPENAME_KEY not in result:
        return ""
    if not isinstance(typename, str):
        raise TypeError(f"{TYPENAME_KEY} should be a string, got {type(typename).__name__}")
    return typename