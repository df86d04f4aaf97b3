"""Unit tests for OData query rendering and structured errors."""
from appreg.core.msgraph.odata import (
    ERROR_CANNOT_DELETE_OR_UPDATE_ENABLED_ENTITLEMENT,
    ERROR_RESOURCE_DOES_NOT_EXIST,
    METADATA_FULL,
    OData,
    ODataError,
    Query,
)


def test_empty_query_renders_nothing():
    assert Query().values() == {}
    assert Query().headers() == {}


def test_query_values():
    query = Query(select=["id", "url"], filter="displayName eq 'x'", top=5, count=True, order_by="displayName")
    assert query.values() == {
        "$select": "id,url",
        "$filter": "displayName eq 'x'",
        "$top": "5",
        "$count": "true",
        "$orderby": "displayName",
    }


def test_query_headers():
    query = Query(consistency_level="eventual", metadata=METADATA_FULL)
    assert query.headers() == {
        "ConsistencyLevel": "eventual",
        "Accept": "application/json;odata.metadata=full",
    }


def test_error_rendering_includes_inner_error():
    err = ODataError.from_dict({
        "code": "Request_BadRequest",
        "message": "outer",
        "innerError": {"code": "InnerCode", "message": "inner detail"},
    })
    assert str(err) == "Request_BadRequest: outer: InnerCode: inner detail"
    assert err.match("inner detail")


def test_inner_error_without_code_or_message_is_ignored():
    err = ODataError.from_dict({"code": "X", "message": "m", "innerError": {"request-id": "abc"}})
    assert err.inner_error is None
    assert str(err) == "X: m"


def test_legacy_message_shape():
    data = OData.from_body({"odata.error": {"code": "C", "message": {"lang": "en", "value": "legacy text"}}})
    assert data.error.message == "legacy text"


def test_resource_pattern_matches_any_resource_name():
    err = ODataError(
        code="Request_ResourceNotFound",
        message="Resource '0f9c' does not exist or one of its queried reference-property objects are not present.",
    )
    assert err.match(ERROR_RESOURCE_DOES_NOT_EXIST)


def test_entitlement_pattern_matches_literal_parentheses():
    err = ODataError(message="Permission (scope) or role cannot be deleted or updated unless disabled first.")
    assert err.match(ERROR_CANNOT_DELETE_OR_UPDATE_ENABLED_ENTITLEMENT)


def test_details_are_matched():
    err = ODataError.from_dict({"code": "Outer", "details": [{"code": "Detail", "message": "needle"}]})
    assert err.match("needle")


def test_response_annotations():
    data = OData.from_body({
        "@odata.context": "ctx",
        "@odata.count": 3,
        "@odata.nextLink": "https://graph.test/beta/applications?$skiptoken=abc",
        "value": [],
    })
    assert data.context == "ctx"
    assert data.count == 3
    assert data.next_link.endswith("$skiptoken=abc")
    assert data.error is None


def test_non_dict_body():
    assert OData.from_body([1, 2]).error is None
    assert ODataError.from_dict("nope") is None
