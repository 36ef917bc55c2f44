"""HTTP starter and status handlers."""

import json

import azure.functions as func
import pytest

from conftest import FakeClock, GatedActivity, ScriptedActivity
from durafetch import build_client, ingress
from durafetch.config import DurafetchConfig
from durafetch.persistence import InMemoryWorkflowStore

BASE = "http://localhost:7071/api"


@pytest.fixture
def install_client():
    def _install(activity):
        client = build_client(
            config=DurafetchConfig(),
            store=InMemoryWorkflowStore(),
            activity=activity,
            clock=FakeClock(),
        )
        ingress.set_client(client)
        return client

    yield _install
    ingress.set_client(None)


def _start_request(workflow_type="fetch_fixed_http", method="POST", **params):
    return func.HttpRequest(
        method=method,
        url=f"{BASE}/workflows/{workflow_type}/start",
        params=params,
        route_params={"workflowType": workflow_type},
        body=b"",
    )


@pytest.mark.asyncio
async def test_start_returns_202_with_status_url(install_client):
    activity = GatedActivity()
    client = install_client(activity)

    response = await ingress.http_start(_start_request())

    assert response.status_code == 202
    payload = json.loads(response.get_body())
    instance_id = payload["instanceId"]
    assert payload["statusUrl"] == f"{BASE}/workflows/instances/{instance_id}"
    assert response.headers["Location"] == payload["statusUrl"]

    activity.release.set()
    await client.host.join()


@pytest.mark.asyncio
async def test_start_with_wait_returns_200_result(install_client):
    install_client(ScriptedActivity([(500, "a"), (200, "<html>ok</html>")]))

    response = await ingress.http_start(_start_request(method="GET", wait="30"))

    assert response.status_code == 200
    assert json.loads(response.get_body()) == {
        "statusCode": 200,
        "content": "<html>ok</html>",
    }


@pytest.mark.asyncio
async def test_start_with_short_wait_falls_back_to_202(install_client):
    activity = GatedActivity()
    client = install_client(activity)

    response = await ingress.http_start(_start_request(wait="0.05"))

    assert response.status_code == 202
    payload = json.loads(response.get_body())
    assert payload["status"] == "running"

    activity.release.set()
    await client.host.join()


@pytest.mark.asyncio
async def test_exhausted_retries_are_reported_as_result(install_client):
    install_client(ScriptedActivity([(502, "x"), (502, "y"), (502, "z")]))

    response = await ingress.http_start(_start_request(wait="30"))

    assert response.status_code == 200
    assert json.loads(response.get_body()) == {"statusCode": 502, "content": "z"}


@pytest.mark.asyncio
@pytest.mark.parametrize("wait", ["soon", "-1"])
async def test_invalid_wait_is_rejected(install_client, wait):
    install_client(ScriptedActivity([]))
    response = await ingress.http_start(_start_request(wait=wait))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unknown_workflow_type_is_404(install_client):
    install_client(ScriptedActivity([]))
    response = await ingress.http_start(_start_request(workflow_type="nope"))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_status_endpoint(install_client):
    client = install_client(ScriptedActivity([(500, "a"), (200, "b")]))
    instance_id = await client.start()
    await client.host.join()

    response = await ingress.http_status(
        func.HttpRequest(
            method="GET",
            url=f"{BASE}/workflows/instances/{instance_id}",
            route_params={"instanceId": instance_id},
            body=b"",
        )
    )

    assert response.status_code == 200
    payload = json.loads(response.get_body())
    assert payload["instanceId"] == instance_id
    assert payload["status"] == "completed"
    assert payload["result"] == {"statusCode": 200, "content": "b"}
    assert [a["statusCode"] for a in payload["attempts"]] == [500, 200]


@pytest.mark.asyncio
async def test_status_endpoint_unknown_instance(install_client):
    install_client(ScriptedActivity([]))
    response = await ingress.http_status(
        func.HttpRequest(
            method="GET",
            url=f"{BASE}/workflows/instances/missing",
            route_params={"instanceId": "missing"},
            body=b"",
        )
    )
    assert response.status_code == 404


def test_function_app_registers_both_routes():
    from durafetch.function_app import app

    names = {fn.get_function_name() for fn in app.get_functions()}
    assert names == {"http_start", "http_status"}
