"""Response builders and a scripted session for directory client tests."""
import json
from urllib.parse import urlsplit

import requests

GRAPH_ENDPOINT = "https://graph.test"
BASE_PATH = "/beta"


def make_response(status_code: int, body=None, headers=None) -> requests.Response:
    """Build a real requests.Response carrying a JSON body."""
    resp = requests.Response()
    resp.status_code = status_code
    resp.encoding = "utf-8"
    if body is not None:
        resp._content = json.dumps(body).encode("utf-8")
        resp.headers["Content-Type"] = "application/json"
    else:
        resp._content = b""
    for key, value in (headers or {}).items():
        resp.headers[key] = value
    return resp


def odata_error(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message, "innerError": {"request-id": "req-1"}}}


ALREADY_EXISTS = odata_error(
    "Request_BadRequest",
    "One or more added object references already exist for the following modified properties: 'owners'.",
)
REFS_DO_NOT_EXIST = odata_error(
    "Request_BadRequest",
    "One or more removed object references do not exist for the following modified properties: 'owners'.",
)
RESOURCE_MISSING = odata_error(
    "Request_ResourceNotFound",
    "Resource 'policy-x' does not exist or one of its queried reference-property objects are not present.",
)
ENTITLEMENT_ENABLED = odata_error(
    "CannotDeleteOrUpdateEnabledEntitlement",
    "Permission (scope) or role cannot be deleted or updated unless disabled first.",
)


def no_content() -> requests.Response:
    return make_response(204)


class FakeSession:
    """Scripted stand-in for requests.Session.

    Responses are queued per (method, path). Each request consumes the next
    queued response for its route; the last one repeats once the queue is
    down to a single entry. Callables are invoked to produce the response.
    Every request is recorded in ``calls``.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def queue(self, method: str, path: str, *responses):
        self.routes.setdefault((method, path), []).extend(responses)
        return self

    def request(self, method, url, params=None, data=None, headers=None, timeout=None):
        path = urlsplit(url).path
        if path.startswith(BASE_PATH):
            path = path[len(BASE_PATH):]
        self.calls.append({
            "method": method,
            "path": path,
            "url": url,
            "params": params,
            "data": data,
            "headers": headers or {},
        })
        queued = self.routes.get((method, path))
        if not queued:
            raise AssertionError(f"Unexpected request in unit test: {method} {path}")
        item = queued.pop(0) if len(queued) > 1 else queued[0]
        if callable(item):
            return item()
        return item

    def count(self, method: str = None, path: str = None) -> int:
        return sum(
            1 for c in self.calls
            if (method is None or c["method"] == method) and (path is None or c["path"] == path)
        )

    def mutations(self) -> int:
        return sum(1 for c in self.calls if c["method"] != "GET")

    def json_body(self, index: int):
        return json.loads(self.calls[index]["data"])
