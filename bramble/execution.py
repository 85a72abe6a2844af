"""Execution of a query plan against downstream services."""

from __future__ import annotations

import dataclasses
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Mapping, Optional, Protocol, Set, Tuple

from bramble.ast import Schema, Value, ValueKind, selection_set_to_fields
from bramble.formatting import (
    OperationContext,
    format_document,
    format_operation,
    format_selection_set_single_line,
)
from bramble.results import (
    ExecutionResult,
    GraphQLError,
    ResultError,
    boundary_id_from_map,
    boundary_type_from_map,
)

INTERNAL_SERVICE_NAME = "bramble"
QUERY_OBJECT_NAME = "Query"
MUTATION_OBJECT_NAME = "Mutation"
BOUNDARY_BATCH_SIZE = 50


class _Client(Protocol):
    def request(
        self,
        service_url: str,
        query: str,
        variables: Optional[Dict[str, Any]],
        operation_name: str,
        operation_type: str,
    ) -> Optional[Dict[str, Any]]:
        ...


@dataclasses.dataclass
class BoundaryField:
    """The query field a service exposes to look up boundary objects by id."""

    field: str
    argument: str
    array: bool = False


@dataclasses.dataclass
class StepResult:
    """What happened when a plan step was executed."""

    executed: bool = False
    error: Optional[BaseException] = None
    time_taken: float = 0.0


@dataclasses.dataclass
class PlanStep:
    """A selection set sent to one service, with the steps that depend on it."""

    service_url: str
    parent_type: str
    selection_set: list = dataclasses.field(default_factory=list)
    insertion_point: List[str] = dataclasses.field(default_factory=list)
    then: List["PlanStep"] = dataclasses.field(default_factory=list)
    service_name: str = ""
    execution_result: Optional[StepResult] = dataclasses.field(default=None, compare=False)


@dataclasses.dataclass
class QueryPlan:
    """The steps to run for an operation, starting from its root steps."""

    root_steps: List[PlanStep] = dataclasses.field(default_factory=list)


class DownstreamErrors(Exception):
    """A list of GraphQL errors, reported by a service or by execution itself."""

    def __init__(self, errors: List[GraphQLError]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(error.message for error in self.errors) or "graphql errors")


_ChildTask = Tuple[PlanStep, List[str]]


class QueryExecution:
    """Runs a query plan concurrently and collects each step's result.

    The client's ``request`` method receives the service URL, the document,
    its variables, the operation name and the operation type, and returns the
    response data. It raises DownstreamErrors for GraphQL errors and
    TimeoutError when the service does not answer in time.
    """

    def __init__(
        self,
        client: _Client,
        schema: Optional[Schema],
        boundary_fields: Mapping[str, Mapping[str, BoundaryField]],
        max_requests: int = 50,
        op_ctx: Optional[OperationContext] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.client = client
        self.schema = schema
        self.boundary_fields = boundary_fields
        self.max_requests = max_requests
        self.op_ctx = op_ctx
        self.max_workers = max_workers
        self._request_count = 0
        self._lock = threading.Lock()

    @property
    def operation_name(self) -> str:
        return self.op_ctx.operation_name if self.op_ctx is not None else ""

    def execute(self, plan: QueryPlan) -> List[ExecutionResult]:
        """Run every step of the plan; raise DownstreamErrors if execution fails."""
        results: List[ExecutionResult] = []
        remote_steps = []
        for step in plan.root_steps:
            if step.service_url != INTERNAL_SERVICE_NAME:
                remote_steps.append(step)
                continue
            start = time.monotonic()
            try:
                result = execute_internal_step(step)
            except ResultError as exc:
                raise DownstreamErrors(self._errors_for(step, exc)) from exc
            step.execution_result = StepResult(True, None, time.monotonic() - start)
            results.append(result)

        if not remote_steps:
            return results

        failure: Optional[BaseException] = None
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            pending: Set[Future] = {pool.submit(self._execute_root_step, step) for step in remote_steps}
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    try:
                        result, children = future.result()
                    except ResultError as exc:
                        failure = failure or exc
                        continue
                    results.append(result)
                    if failure is None:
                        pending |= {
                            pool.submit(self._execute_child_step, child, ids) for child, ids in children
                        }
        if failure is not None:
            raise DownstreamErrors([GraphQLError(message=str(failure), cause=failure)]) from failure
        return results

    def _execute_root_step(self, step: PlanStep) -> Tuple[ExecutionResult, List[_ChildTask]]:
        if step.parent_type not in (QUERY_OBJECT_NAME, MUTATION_OBJECT_NAME):
            raise ResultError("expected mutation or query root step")
        start = time.monotonic()
        document, variables = format_document(
            self.op_ctx, self.schema, step.parent_type, step.selection_set
        )
        data = None
        error: Optional[BaseException] = None
        try:
            data = self.client.request(
                step.service_url, document, variables, self.operation_name, step.parent_type
            )
        except Exception as exc:
            error = exc
        result = self._result_for(step, data, error)
        step.execution_result = StepResult(True, error, time.monotonic() - start)
        if error is not None:
            return result, []

        children = []
        for child in step.then:
            ids = extract_and_dedupe_boundary_ids(data, child.insertion_point, child.parent_type)
            if ids:
                children.append((child, ids))
        return result, children

    def _execute_child_step(
        self, step: PlanStep, boundary_ids: List[str]
    ) -> Tuple[ExecutionResult, List[_ChildTask]]:
        with self._lock:
            self._request_count += 1
            count = self._request_count
        if count > self.max_requests:
            raise ResultError(f"exceeded max requests of {self.max_requests}")
        start = time.monotonic()

        boundary_field = self._boundary_field(step.service_url, step.parent_type)
        documents, variables = build_boundary_query_documents(
            self.op_ctx, self.schema, step, boundary_ids, boundary_field, BOUNDARY_BATCH_SIZE
        )

        data: Optional[List[Any]] = None
        error: Optional[BaseException] = None
        try:
            data = self._execute_boundary_query(documents, step.service_url, variables, boundary_field)
        except Exception as exc:
            error = exc
        result = self._result_for(step, data, error)
        step.execution_result = StepResult(True, error, time.monotonic() - start)
        if error is not None:
            return result, []

        non_nil = extract_non_nil_boundary_results(data)
        children = []
        if non_nil:
            for child in step.then:
                insertion_point = trim_insertion_point_for_nested_boundary_step(
                    non_nil, child.insertion_point
                )
                ids = extract_and_dedupe_boundary_ids(non_nil, insertion_point, child.parent_type)
                if ids:
                    children.append((child, ids))
        return result, children

    def _boundary_field(self, service_url: str, type_name: str) -> BoundaryField:
        field = self.boundary_fields.get(service_url, {}).get(type_name)
        if field is None:
            raise ResultError(
                f"could not find boundary field for type {type_name!r} on service {service_url!r}"
            )
        return field

    def _execute_boundary_query(
        self,
        documents: List[str],
        service_url: str,
        variables: Optional[Dict[str, Any]],
        boundary_field: BoundaryField,
    ) -> Optional[List[Any]]:
        if not boundary_field.array:
            output: List[Any] = []
            for document in documents:
                partial = self.client.request(
                    service_url, document, variables, self.operation_name, QUERY_OBJECT_NAME
                )
                output.extend((partial or {}).values())
            return output

        if len(documents) != 1:
            raise ResultError(
                "there should only be a single document for array boundary field lookups"
            )
        data = self.client.request(
            service_url, documents[0], variables, self.operation_name, QUERY_OBJECT_NAME
        )
        return (data or {}).get("_result")

    def _result_for(
        self, step: PlanStep, data: Any, error: Optional[BaseException]
    ) -> ExecutionResult:
        result = ExecutionResult(
            service_url=step.service_url,
            insertion_point=step.insertion_point,
            data=data,
        )
        if error is not None:
            result.errors = self._errors_for(step, error)
        return result

    def _errors_for(self, step: PlanStep, error: BaseException) -> List[GraphQLError]:
        path: List[Any] = list(step.insertion_point)
        locations = []
        for field in selection_set_to_fields(step.selection_set):
            if field.position is None:
                continue
            locations.append(field.position)
            if field.selection_set:
                path.append(field.alias)

        selection_set = format_selection_set_single_line(self.op_ctx, self.schema, step.selection_set)

        if isinstance(error, DownstreamErrors):
            output = []
            for downstream in error.errors:
                extensions = dict(downstream.extensions or {})
                extensions["selectionSet"] = selection_set
                extensions["selectionPath"] = list(path)
                extensions["serviceName"] = step.service_name
                extensions["serviceUrl"] = step.service_url
                output.append(
                    GraphQLError(
                        message=downstream.message,
                        path=downstream.path,
                        locations=list(locations),
                        extensions=extensions,
                        cause=error,
                    )
                )
            return output

        message = "downstream request timed out" if isinstance(error, TimeoutError) else str(error)
        return [
            GraphQLError(
                message=message,
                path=path,
                locations=locations,
                extensions={"selectionSet": selection_set},
                cause=error,
            )
        ]


def extract_non_nil_boundary_results(data: Optional[List[Any]]) -> List[Any]:
    """The boundary results that are not null."""
    return [item for item in data or [] if item is not None]


def trim_insertion_point_for_nested_boundary_step(
    data: List[Any], child_insertion_point: List[str]
) -> List[str]:
    """Cut the insertion point down to the part found inside a boundary result.

    Boundary results hold only part of the response tree, so the insertion
    point is trimmed up to the first key that the first result contains.
    """
    if not data:
        raise ResultError("no boundary results to process")
    first = data[0]
    if not isinstance(first, dict):
        raise ResultError("a single boundary result should be a map")
    for index, point in enumerate(child_insertion_point):
        if point in first:
            return child_insertion_point[index:]
    raise ResultError("could not find any insertion points inside boundary data")


def execute_internal_step(step: PlanStep) -> ExecutionResult:
    """Answer a step that only asks for type names, without any request."""
    data = build_typename_response_map(step.selection_set, step.parent_type)
    return ExecutionResult(service_url=INTERNAL_SERVICE_NAME, insertion_point=[], data=data)


def build_typename_response_map(selection_set: list, parent_type_name: str) -> Dict[str, Any]:
    """Build response data for a selection set made only of __typename fields."""
    result: Dict[str, Any] = {}
    for field in selection_set_to_fields(selection_set):
        if field.selection_set:
            if field.definition is None or not field.definition.type.named_type:
                raise ResultError("buildTypenameResponseMap: expected named type")
            result[field.alias] = build_typename_response_map(
                field.selection_set, field.definition.type.name
            )
        else:
            if field.name != "__typename":
                raise ResultError("buildTypenameResponseMap: expected __typename")
            result[field.alias] = parent_type_name
    return result


def extract_and_dedupe_boundary_ids(
    data: Any, insertion_point: List[str], parent_type: str
) -> List[str]:
    """Boundary ids found at the insertion point, without duplicates."""
    return list(dict.fromkeys(extract_boundary_ids(data, insertion_point, parent_type)))


def extract_boundary_ids(data: Any, insertion_point: List[str], parent_type: str) -> List[str]:
    """Boundary ids of objects of parent_type found at the insertion point."""
    if data is None:
        return []
    if isinstance(data, list):
        ids: List[str] = []
        for item in data:
            ids.extend(extract_boundary_ids(item, insertion_point, parent_type))
        return ids
    if not isinstance(data, dict):
        raise ResultError(f"extractBoundaryIDs: unexpected type: {type(data).__name__}")
    if insertion_point:
        return extract_boundary_ids(data.get(insertion_point[0]), insertion_point[1:], parent_type)
    if boundary_type_from_map(data) != parent_type:
        return []
    return [boundary_id_from_map(data)]


def batch_by(items: List[str], batch_size: int) -> List[List[str]]:
    """Split items into batches of batch_size; the last batch holds the rest."""
    batches = []
    while batch_size < len(items):
        batches.append(items[:batch_size])
        items = items[batch_size:]
    batches.append(items)
    return batches


def build_boundary_query_documents(
    op_ctx: Optional[OperationContext],
    schema: Optional[Schema],
    step: PlanStep,
    ids: List[str],
    boundary_field: BoundaryField,
    batch_size: int,
) -> Tuple[List[str], Optional[Dict[str, Any]]]:
    """Build the documents that look up the given boundary ids, and their variables."""
    operation, variables = format_operation(op_ctx, step.selection_set)
    selection_set_ql = format_selection_set_single_line(op_ctx, schema, step.selection_set)

    def quoted(boundary_id: str) -> str:
        return Value(ValueKind.STRING, boundary_id).to_graphql()

    if boundary_field.array:
        ids_ql = "[" + ", ".join(quoted(boundary_id) for boundary_id in ids) + "]"
        document = (
            f"query {operation} {{ _result: {boundary_field.field}"
            f"({boundary_field.argument}: {ids_ql}) {selection_set_ql} }}"
        )
        return [document], variables

    documents = []
    index = 0
    for batch in batch_by(ids, batch_size):
        selections = []
        for boundary_id in batch:
            selections.append(
                f"_{index}: {boundary_field.field}({boundary_field.argument}: {quoted(boundary_id)}) "
                f"{selection_set_ql}"
            )
            index += 1
        documents.append(f"query {operation} {{ {' '.join(selections)} }}")
    return documents, variables