# bramble

The execution core of a federated GraphQL gateway. It runs a query plan
against downstream services and merges their partial results into one
response. It propagates unexpected nulls as the GraphQL specification
describes. It also renders the selection sets and documents that are sent
downstream.

The package has no dependencies beyond the standard library.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

### `bramble.ast`

These are the nodes of GraphQL documents and schemas that the rest of the
package works on. Nodes are built directly as dataclasses; there is no parser.

- Document nodes: `Field`, `InlineFragment`, `FragmentSpread`,
  `FragmentDefinition`, `OperationDefinition` and `VariableDefinition`.
  When a `Field` is given no alias, its alias is its name.
- Schema nodes:
  - `Schema`, with `types`, `implements`, `query`, `mutation` and
    `subscription`.
  - `Definition`, whose `is_abstract_type()` is true for interfaces and
    unions.
  - `FieldDefinition`.
  - `DefinitionKind`.
- Values and types: `Value` with `ValueKind`, `ChildValue`, `Argument`,
  `Directive`, `Position` and `Type`. Both `Value.to_graphql()` and
  `Type.to_graphql()` render GraphQL source text.
- `selection_set_to_fields(selection_set)` returns the fields of a selection
  set. Fields inside inline fragments and fragment spreads are included in
  place.

### `bramble.formatting`

This module renders selection sets back to GraphQL text. The operation being
executed, together with its variables, is passed as an `OperationContext`
(`operation_name`, `variables`, `operation`). Pass `None` when there is no
operation.

- `format_selection_set` renders an indented, multi-line block.
- `format_selection_set_single_line` renders the same block with whitespace
  collapsed to single spaces.
- `format_document(op_ctx, schema, operation_type, selection_set)` returns a
  full document and the variables it uses. The operation type is lower-cased.
- `format_operation` returns the operation header and the variables used.
  The header is the operation name, followed by the declarations of those
  variables.
- `selection_set_variables` lists the variables referenced in a selection
  set.
- `format_argument` renders a value. Variables are kept as `$name`
  references.

```python
from bramble.ast import Field
from bramble.formatting import format_selection_set_single_line

selection = [Field(name="gizmo", selection_set=[Field(name="name")])]
format_selection_set_single_line(None, None, selection)
# '{ gizmo { name } }'
```

### `bramble.selection`

This module reshapes a selection set to fit the concrete type of a response
object.

- `union_and_trim_selection_set` does two things. First, it drops fragments
  on abstract types whose type condition is a different concrete type (see
  `eliminate_unwanted_fragments` and `include_fragment`). Second, it folds
  fragment fields into the fields at the same level
  (`merge_with_top_level_fragment_fields`, `SelectionSetMerger`).
- The merger works on copies, so the selection set passed in is left
  unchanged.
- `extract_typename_field` reads the `_bramble__typename` entry of a response
  object.

### `bramble.results`

- `merge_execution_results(results)` merges a list of `ExecutionResult`s into
  the data of the first one.
  - A result with an empty insertion point is merged map into map.
  - A list of boundary objects is merged at its `insertion_point`. It is
    matched on `_bramble__typename` and `_bramble_id`.
  - Null destinations are skipped.
- `bubble_up_null_values_in_place(schema, selection_set, result)` finds nulls
  in non-nullable fields. It nulls out the nearest nullable parent and
  returns one `GraphQLError` for each such null. When a null reaches the
  root, it raises `NullBubbledToRoot`, whose `errors` attribute carries the
  errors.
- `format_response_data(schema, selection_set, result)` renders the result as
  a JSON string. Keys follow the order of the selection set, and internal
  fields that were not selected are left out.
- `boundary_id_from_map` and `boundary_type_from_map` read the boundary
  markers of a response object.
- Malformed data raises `ResultError`.

```python
from bramble.results import ExecutionResult, merge_execution_results

root = ExecutionResult(
    service_url="http://service-a",
    insertion_point=[],
    data={"movie": {"_bramble_id": "1", "_bramble__typename": "Movie", "title": "Alien"}},
)
child = ExecutionResult(
    service_url="http://service-b",
    insertion_point=["movie"],
    data=[{"_bramble_id": "1", "_bramble__typename": "Movie", "release": 1979}],
)
merged = merge_execution_results([root, child])
# merged["movie"]["release"] == 1979
```

### `bramble.execution`

`QueryExecution(client, schema, boundary_fields, max_requests=50, op_ctx=None, max_workers=None)`
runs a `QueryPlan` of `PlanStep`s on a thread pool. Its `execute(plan)`
method returns the list of `ExecutionResult`s.

Steps run as follows:

- Root steps run in parallel.
- Steps for the internal service `"bramble"` are answered locally with
  `execute_internal_step`. They may only select `__typename`.
- Child steps start once the boundary ids they need have been extracted
  from their parent's data (`extract_and_dedupe_boundary_ids`).
- Boundary ids are looked up through the service's `BoundaryField`.
  - A non-array boundary field is queried in batches of 50 aliased
    selections (`batch_by`, `build_boundary_query_documents`).
  - An array boundary field is queried in a single `_result` query.
- Each step records a `StepResult`.
- More than `max_requests` child requests is an error.

The client is any object with this method:

```python
request(service_url, query, variables, operation_name, operation_type)
```

It returns the response data. It should raise `DownstreamErrors` for GraphQL
errors reported by a service, and `TimeoutError` when a request times out.

A failing request does not stop execution. Its errors are attached to that
step's result, with the selection set, path and locations added. A
`TimeoutError` becomes "downstream request timed out". Failures of execution
itself make `execute` raise `DownstreamErrors`. These include exceeding the
request limit, a missing boundary field and malformed data.

## What this package does not do

- It does not parse GraphQL. Schemas and documents are built as `bramble.ast`
  nodes.
- It does not plan queries. A `QueryPlan` has to be built by the caller.
- It includes no HTTP client. Requests go through the client object given to
  `QueryExecution`.
- It does not merge schemas.
- It does not check permissions.
- It does not run a server.