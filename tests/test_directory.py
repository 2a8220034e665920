import httpx
import pytest

from exam_engine.core.config import settings
from exam_engine.core.errors import UpstreamError
from exam_engine.services.directory import HttpEmployeeDirectory, employee_ids


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_forwards_bearer_token_and_reads_list():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["path"] = request.url.path
        return httpx.Response(200, json=[{"id": 7, "name": "Ada"}, {"id": "e2"}])

    d = HttpEmployeeDirectory("tok", base_url="http://users.test/", client=_client(handler))
    assert employee_ids(d) == {"7", "e2"}
    assert seen == {"auth": "Bearer tok", "path": settings.USER_SERVICE_EMPLOYEES_PATH}


def test_unwraps_data_envelope():
    d = HttpEmployeeDirectory(
        "tok", base_url="http://users.test",
        client=_client(lambda r: httpx.Response(200, json={"success": True, "data": [{"id": 1}]})),
    )
    assert d.lookup_employees_for_company() == [{"id": 1}]


@pytest.mark.parametrize("response", [
    httpx.Response(500, json={"error": "boom"}),
    httpx.Response(401),
    httpx.Response(200, content=b"not json"),
    httpx.Response(200, json={"data": None}),
])
def test_bad_responses_raise_upstream_error(response):
    d = HttpEmployeeDirectory("tok", base_url="http://users.test", client=_client(lambda r: response))
    with pytest.raises(UpstreamError):
        d.lookup_employees_for_company()


def test_transport_failure_raises_upstream_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    d = HttpEmployeeDirectory("tok", base_url="http://users.test", client=_client(handler))
    with pytest.raises(UpstreamError):
        d.lookup_employees_for_company()


def test_malformed_rows_are_rejected():
    class Rows:
        def lookup_employees_for_company(self):
            return [{"name": "no id"}]

    with pytest.raises(UpstreamError):
        employee_ids(Rows())
