import pytest

from spacerec.api.operations import (
    Operation,
    OperationCatalog,
    extract_operations,
    extract_string_properties,
)
from spacerec.errors import OperationNotFound, OperationsNotFound


def test_extract_string_properties_identifier_and_quoted_keys():
    props = extract_string_properties('{queryId:"abc","operationName":"Foo",n:1,flags:{a:!0}}')
    assert props == {"queryId": "abc", "operationName": "Foo"}


def test_extract_operations_from_bundle():
    src = (
        'function(e){e.exports={queryId:"q1",operationName:"AudioSpaceById",operationType:"query",'
        'metadata:{featureSwitches:["a","b"]}}},'
        'function(e){e.exports={queryId:"q2",operationName:"CreateTweet",operationType:"mutation"}}'
    )
    ops = extract_operations(src)
    assert ops == {
        "AudioSpaceById": Operation(query_id="q1", name="AudioSpaceById", kind="query"),
        "CreateTweet": Operation(query_id="q2", name="CreateTweet", kind="mutation"),
    }


def test_extract_operations_skips_partial_and_malformed():
    src = (
        'a={operationName:"NoId",operationType:"query"};'
        'b={queryId:"x",operationName:"Broken",operationType:"query",oops:};'
        'c={queryId:"q3",operationName:"Good",operationType:"query"};'
        'd={queryId:5,operationName:"NumericId",operationType:"query"};'
    )
    assert list(extract_operations(src)) == ["Good"]


def test_duplicate_names_last_wins():
    src = (
        'a={queryId:"old",operationName:"Dup",operationType:"query"};'
        'b={queryId:"new",operationName:"Dup",operationType:"query"};'
    )
    assert extract_operations(src)["Dup"].query_id == "new"


def test_catalog_discover_merges_sources_in_order():
    first = 'a={queryId:"1",operationName:"A",operationType:"query"};'
    second = 'a={queryId:"2",operationName:"A",operationType:"query"};b={queryId:"3",operationName:"B",operationType:"query"}'
    catalog = OperationCatalog.discover([first, second])
    assert len(catalog) == 2
    assert catalog["A"].query_id == "2"
    assert set(catalog) == {"A", "B"}


def test_catalog_discover_empty_raises():
    with pytest.raises(OperationsNotFound):
        OperationCatalog.discover(["var x = {a: 1};", ""])


def test_catalog_require_and_immutability():
    catalog = OperationCatalog({"A": Operation("1", "A", "query")})
    assert catalog.require("A").query_id == "1"
    with pytest.raises(OperationNotFound):
        catalog.require("Missing")
    with pytest.raises(TypeError):
        catalog["B"] = Operation("2", "B", "query")  # type: ignore[index]


def test_extract_operations_with_braces_in_strings():
    src = 'a={queryId:"ab{c",operationName:"X",operationType:"query"};b={queryId:"q}",operationName:"Y",operationType:"query"}'
    ops = extract_operations(src)
    assert ops["X"].query_id == "ab{c"
    assert ops["Y"].query_id == "q}"
