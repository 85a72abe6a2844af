import pytest

from bramble.ast import Argument, Field, FieldDefinition, Position, Type, Value, ValueKind
from bramble.execution import (
    INTERNAL_SERVICE_NAME,
    BoundaryField,
    DownstreamErrors,
    PlanStep,
    QueryExecution,
    QueryPlan,
    batch_by,
    build_boundary_query_documents,
    build_typename_response_map,
    execute_internal_step,
    extract_and_dedupe_boundary_ids,
    extract_boundary_ids,
    extract_non_nil_boundary_results,
    trim_insertion_point_for_nested_boundary_step,
)
from bramble.results import GraphQLError, ResultError, merge_execution_results


class FakeClient:
    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def request(self, service_url, query, variables, operation_name, operation_type):
        self.calls.append((service_url, query, operation_type))
        return self.handler(service_url, query)


def boundary_keys():
    return [Field("id", alias="_bramble_id"), Field("__typename", alias="_bramble__typename")]


def movie_root(then, position=None, service_url="http://a"):
    return PlanStep(
        service_url=service_url,
        parent_type="Query",
        selection_set=[
            Field(
                "movie",
                arguments=[Argument("id", Value(ValueKind.STRING, "1"))],
                selection_set=[Field("id"), Field("title")] + boundary_keys(),
                position=position,
            )
        ],
        then=then,
    )


def test_batch_by():
    assert batch_by(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]
    assert batch_by(["a", "b", "c", "d"], 2) == [["a", "b"], ["c", "d"]]
    assert batch_by([], 3) == [[]]


def test_extract_boundary_ids_nested_lists_and_types():
    data = {
        "gizmos": [
            {"owner": {"_bramble_id": "1", "_bramble__typename": "Owner"}},
            {"owner": None},
            {"owner": {"_bramble_id": "2", "_bramble__typename": "Agent"}},
            {"owner": {"_bramble_id": "1", "_bramble__typename": "Owner"}},
        ]
    }
    assert extract_boundary_ids(data, ["gizmos", "owner"], "Owner") == ["1", "1"]
    assert extract_and_dedupe_boundary_ids(data, ["gizmos", "owner"], "Owner") == ["1"]
    assert extract_boundary_ids(None, ["x"], "Owner") == []


def test_extract_boundary_ids_errors():
    with pytest.raises(ResultError, match="unexpected type"):
        extract_boundary_ids({"a": 5}, ["a"], "Owner")
    with pytest.raises(ResultError, match="_bramble__typename"):
        extract_boundary_ids({"a": {"_bramble_id": "1"}}, ["a"], "Owner")


def test_extract_non_nil_boundary_results():
    assert extract_non_nil_boundary_results([None, {"a": 1}, None]) == [{"a": 1}]
    assert extract_non_nil_boundary_results(None) == []


def test_trim_insertion_point():
    data = [{"_bramble_id": "MOVIE1", "compTitles": [{"_bramble_id": "1"}]}]
    point = ["foo", "bar", "movies", "movie", "compTitles"]
    assert trim_insertion_point_for_nested_boundary_step(data, point) == ["compTitles"]
    with pytest.raises(ResultError, match="no boundary results"):
        trim_insertion_point_for_nested_boundary_step([], point)
    with pytest.raises(ResultError, match="could not find"):
        trim_insertion_point_for_nested_boundary_step([{"x": 1}], point)
    with pytest.raises(ResultError, match="should be a map"):
        trim_insertion_point_for_nested_boundary_step(["x"], point)


def test_build_typename_response_map():
    selection = [
        Field("__typename"),
        Field(
            "movie",
            selection_set=[Field("__typename")],
            definition=FieldDefinition("movie", Type("MovieQuery", non_null=True)),
        ),
    ]
    assert build_typename_response_map(selection, "Query") == {
        "__typename": "Query",
        "movie": {"__typename": "MovieQuery"},
    }


def test_build_typename_response_map_errors():
    with pytest.raises(ResultError, match="expected __typename"):
        build_typename_response_map([Field("id")], "Query")
    listed = Field(
        "movies",
        selection_set=[Field("__typename")],
        definition=FieldDefinition("movies", Type(elem=Type("Movie"))),
    )
    with pytest.raises(ResultError, match="expected named type"):
        build_typename_response_map([listed], "Query")


def test_execute_internal_step():
    step = PlanStep(INTERNAL_SERVICE_NAME, "Query", [Field("__typename")])
    result = execute_internal_step(step)
    assert result.service_url == INTERNAL_SERVICE_NAME
    assert result.insertion_point == []
    assert result.data == {"__typename": "Query"}


def test_build_boundary_query_documents_single_lookups():
    step = PlanStep("http://b", "Movie", [Field("title")])
    docs, variables = build_boundary_query_documents(
        None, None, step, ["1", "2"], BoundaryField("movie", "id"), 50
    )
    assert docs == ['query  { _0: movie(id: "1") { title } _1: movie(id: "2") { title } }']
    assert variables is None

    docs, _ = build_boundary_query_documents(None, None, step, ["1", "2"], BoundaryField("movie", "id"), 1)
    assert docs == ['query  { _0: movie(id: "1") { title } }', 'query  { _1: movie(id: "2") { title } }']


def test_build_boundary_query_documents_array():
    step = PlanStep("http://b", "Movie", [Field("title")])
    docs, _ = build_boundary_query_documents(
        None, None, step, ["1", "2"], BoundaryField("movies", "ids", array=True), 1
    )
    assert docs == ['query  { _result: movies(ids: ["1", "2"]) { title } }']


def test_execute_multiple_services():
    child = PlanStep(
        "http://b", "Movie", [Field("release")] + boundary_keys(), insertion_point=["movie"]
    )

    def handler(url, query):
        if url == "http://a":
            return {"movie": {"_bramble_id": "1", "_bramble__typename": "Movie", "id": "1", "title": "Test title"}}
        return {"_0": {"_bramble_id": "1", "_bramble__typename": "Movie", "id": "1", "release": 2007}}

    client = FakeClient(handler)
    execution = QueryExecution(client, None, {"http://b": {"Movie": BoundaryField("movie", "id")}})
    results = execution.execute(QueryPlan([movie_root([child])]))

    assert client.calls[1] == (
        "http://b",
        'query  { _0: movie(id: "1") { release _bramble_id: id _bramble__typename: __typename } }',
        "Query",
    )
    assert child.execution_result.executed
    assert merge_execution_results(results) == {
        "movie": {
            "_bramble_id": "1",
            "_bramble__typename": "Movie",
            "id": "1",
            "title": "Test title",
            "release": 2007,
        }
    }


def test_execute_nested_array_boundary_steps():
    grandchild = PlanStep(
        "http://one", "Movie", [Field("title")] + boundary_keys(),
        insertion_point=["randomMovie", "compTitles"],
    )
    child = PlanStep(
        "http://two", "Movie",
        [Field("compTitles", selection_set=[Field("id")] + boundary_keys())] + boundary_keys(),
        insertion_point=["randomMovie"], then=[grandchild],
    )
    root = PlanStep(
        "http://one", "Query",
        [Field("randomMovie", selection_set=[Field("id"), Field("title")] + boundary_keys())],
        then=[child],
    )

    def handler(url, query):
        if url == "http://one" and "randomMovie" in query:
            return {"randomMovie": {"_bramble_id": "1", "_bramble__typename": "Movie", "id": "1", "title": "Movie 1"}}
        if url == "http://one":
            return {"_result": [
                {"_bramble_id": n, "_bramble__typename": "Movie", "id": n, "title": f"Movie {n}"}
                for n in ("2", "3", "4")
            ]}
        return {"_result": [{
            "_bramble_id": "1",
            "_bramble__typename": "Movie",
            "compTitles": [
                {"_bramble_id": n, "_bramble__typename": "Movie", "id": n} for n in ("2", "3", "4")
            ],
        }]}

    client = FakeClient(handler)
    array_field = BoundaryField("movies", "ids", array=True)
    execution = QueryExecution(
        client, None, {"http://one": {"Movie": array_field}, "http://two": {"Movie": array_field}}
    )
    results = execution.execute(QueryPlan([root]))

    assert len(client.calls) == 3
    assert 'movies(ids: ["2", "3", "4"])' in client.calls[2][1]
    merged = merge_execution_results(results)
    assert merged["randomMovie"]["title"] == "Movie 1"
    assert [(m["id"], m["title"]) for m in merged["randomMovie"]["compTitles"]] == [
        ("2", "Movie 2"), ("3", "Movie 3"), ("4", "Movie 4"),
    ]


def test_all_null_boundary_results_stop_descent():
    grandchild = PlanStep("http://c", "Wizzle", [Field("bazingaFactor")] + boundary_keys(),
                          insertion_point=["tastyGizmos", "wizzle"])
    child = PlanStep("http://b", "Gizmo",
                     [Field("wizzle", selection_set=[Field("id")] + boundary_keys())] + boundary_keys(),
                     insertion_point=["tastyGizmos"], then=[grandchild])
    root = PlanStep("http://a", "Query",
                    [Field("tastyGizmos", selection_set=[Field("id")] + boundary_keys())], then=[child])

    def handler(url, query):
        if url == "http://a":
            return {"tastyGizmos": [
                {"_bramble_id": n, "_bramble__typename": "Gizmo", "id": n} for n in ("bee", "umlaut", "banana")
            ]}
        if url == "http://b":
            return {"_result": [None, None, None]}
        raise AssertionError("should not be called")

    client = FakeClient(handler)
    array_field = BoundaryField("gizmo", "ids", array=True)
    execution = QueryExecution(
        client, None, {"http://b": {"Gizmo": array_field}, "http://c": {"Wizzle": array_field}}
    )
    results = execution.execute(QueryPlan([root]))
    assert [call[0] for call in client.calls] == ["http://a", "http://b"]
    assert len(results) == 2


@pytest.mark.parametrize("movies", [None, []])
def test_no_boundary_ids_means_no_child_request(movies):
    child = PlanStep("http://b", "Movie", [Field("title")] + boundary_keys(), insertion_point=["movies"])
    root = PlanStep("http://a", "Query", [Field("movies", selection_set=[Field("id")] + boundary_keys())],
                    then=[child])
    client = FakeClient(lambda url, query: {"movies": movies})
    execution = QueryExecution(client, None, {"http://b": {"Movie": BoundaryField("movie", "id")}})
    results = execution.execute(QueryPlan([root]))
    assert len(client.calls) == 1
    assert merge_execution_results(results) == {"movies": movies}


def test_downstream_error_is_reported_with_context():
    def handler(url, query):
        raise DownstreamErrors([
            GraphQLError("Movie does not exist", path=["movie"], extensions={"code": "NOT_FOUND"})
        ])

    root = movie_root([], position=Position(2, 4))
    root.selection_set[0].selection_set = [Field("id"), Field("title")]
    execution = QueryExecution(FakeClient(handler), None, {})
    results = execution.execute(QueryPlan([root]))

    assert len(results) == 1
    (error,) = results[0].errors
    assert error.message == "Movie does not exist"
    assert error.path == ["movie"]
    assert error.locations == [Position(2, 4)]
    assert error.extensions == {
        "code": "NOT_FOUND",
        "selectionSet": '{ movie(id: "1") { id title } }',
        "selectionPath": ["movie"],
        "serviceName": "",
        "serviceUrl": "http://a",
    }
    assert root.execution_result.error is not None


def test_timeout_in_child_step():
    child = PlanStep(
        "http://b", "Movie",
        [Field("slowField", position=Position(5, 5))] + boundary_keys(),
        insertion_point=["movie"],
    )

    def handler(url, query):
        if url == "http://a":
            return {"movie": {"_bramble_id": "1", "_bramble__typename": "Movie", "id": "1", "title": "Test title"}}
        raise TimeoutError("timed out")

    execution = QueryExecution(FakeClient(handler), None, {"http://b": {"Movie": BoundaryField("movie", "id")}})
    results = execution.execute(QueryPlan([movie_root([child])]))
    child_result = next(r for r in results if r.service_url == "http://b")
    (error,) = child_result.errors
    assert error.message == "downstream request timed out"
    assert error.path == ["movie"]
    assert error.locations == [Position(5, 5)]
    assert error.extensions == {"selectionSet": "{ slowField _bramble_id: id _bramble__typename: __typename }"}
    assert isinstance(error.cause, TimeoutError)
    assert merge_execution_results(results)["movie"]["title"] == "Test title"


def test_exceeding_max_requests_fails_execution():
    child = PlanStep("http://b", "Movie", [Field("release")] + boundary_keys(), insertion_point=["movie"])
    client = FakeClient(lambda url, query: {
        "movie": {"_bramble_id": "1", "_bramble__typename": "Movie", "id": "1", "title": "t"}
    })
    execution = QueryExecution(client, None, {"http://b": {"Movie": BoundaryField("movie", "id")}}, max_requests=0)
    with pytest.raises(DownstreamErrors) as info:
        execution.execute(QueryPlan([movie_root([child])]))
    assert [e.message for e in info.value.errors] == ["exceeded max requests of 0"]


def test_missing_boundary_field_fails_execution():
    child = PlanStep("http://b", "Movie", [Field("release")] + boundary_keys(), insertion_point=["movie"])
    client = FakeClient(lambda url, query: {
        "movie": {"_bramble_id": "1", "_bramble__typename": "Movie", "id": "1", "title": "t"}
    })
    with pytest.raises(DownstreamErrors, match="boundary field"):
        QueryExecution(client, None, {}).execute(QueryPlan([movie_root([child])]))


def test_root_step_with_unexpected_parent_type():
    step = PlanStep("http://a", "Movie", [Field("id")])
    client = FakeClient(lambda url, query: {})
    with pytest.raises(DownstreamErrors) as info:
        QueryExecution(client, None, {}).execute(QueryPlan([step]))
    assert info.value.errors[0].message == "expected mutation or query root step"
    assert client.calls == []


def test_internal_step_in_plan():
    step = PlanStep(INTERNAL_SERVICE_NAME, "Query", [Field("__typename")])
    client = FakeClient(lambda url, query: {})
    results = QueryExecution(client, None, {}).execute(QueryPlan([step]))
    assert [r.data for r in results] == [{"__typename": "Query"}]
    assert step.execution_result.executed
    assert client.calls == []


def test_internal_step_error():
    step = PlanStep(INTERNAL_SERVICE_NAME, "Query", [Field("id")])
    with pytest.raises(DownstreamErrors) as info:
        QueryExecution(FakeClient(lambda url, query: {}), None, {}).execute(QueryPlan([step]))
    assert info.value.errors[0].message == "buildTypenameResponseMap: expected __typename"