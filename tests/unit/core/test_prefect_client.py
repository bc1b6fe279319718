import httpx
import pytest
from unittest.mock import AsyncMock, patch

from app.core.exceptions import PrefectError
from app.core.prefect_client import PrefectClient


@pytest.fixture
def client() -> PrefectClient:
    return PrefectClient(base_url="http://prefect.test/", timeout=10.0, max_retries=3, retry_delay=0)


def _response(status_code: int, json=None, text: str = "") -> httpx.Response:
    request = httpx.Request("POST", "http://prefect.test")
    if json is not None:
        return httpx.Response(status_code, json=json, request=request)
    return httpx.Response(status_code, text=text, request=request)


def test_enabled_follows_base_url():
    assert PrefectClient(base_url="http://prefect.test").enabled is True
    assert PrefectClient(base_url="").enabled is False


@pytest.mark.asyncio
async def test_create_flow_run_retries_transient_failures(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.side_effect = [
            _response(503, text="busy"),
            httpx.ConnectError("refused"),
            _response(201, {"id": "flow-1", "name": "quiet-fox"}),
        ]

        flow_run = await client.create_flow_run("dep-1", {"run_id": 7})

    assert flow_run.id == "flow-1"
    assert mock_request.await_count == 3
    method, url = mock_request.call_args.args
    assert (method, url) == ("POST", "http://prefect.test/api/deployments/dep-1/create_flow_run")
    assert mock_request.call_args.kwargs["json"] == {"parameters": {"run_id": 7}}


@pytest.mark.asyncio
async def test_create_flow_run_gives_up(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(502, text="bad gateway")

        with pytest.raises(PrefectError, match="after 3 retries") as exc_info:
            await client.create_flow_run("dep-1")

    assert mock_request.await_count == 4
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_create_flow_run_does_not_retry_client_errors(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(422, text="bad parameters")

        with pytest.raises(PrefectError) as exc_info:
            await client.create_flow_run("dep-1", {})

    assert mock_request.await_count == 1
    assert exc_info.value.status_code == 422


@pytest.mark.asyncio
async def test_get_deployment_by_name(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(200, [{"id": "dep-1", "name": "cards-deployment"}])
        deployment = await client.get_deployment_by_name("cards", "cards-deployment")
        assert deployment.id == "dep-1"
        assert mock_request.call_args.kwargs["json"]["deployments"] == {"name": {"any_": ["cards-deployment"]}}

        mock_request.return_value = _response(200, [])
        with pytest.raises(PrefectError, match="deployment not found") as exc_info:
            await client.get_deployment_by_name("cards", "cards-deployment")
        assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_list_deployments_reads_parameter_schema(client):
    payload = [
        {
            "id": "dep-1",
            "name": "summarize-deployment",
            "tags": ["pdms:type=node", "pdms:key=summarize"],
            "parameter_openapi_schema": {"type": "object", "properties": {"tone": {"type": "string"}}},
            "work_queue_name": "default",
        }
    ]
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(200, payload)

        deployments = await client.list_deployments(tag_filters=["pdms:type=node"])

    assert deployments[0].parameter_schema["properties"]["tone"] == {"type": "string"}
    assert mock_request.call_args.kwargs["json"]["deployments"] == {"tags": {"any_": ["pdms:type=node"]}}


@pytest.mark.asyncio
async def test_cancel_treats_missing_and_conflict_as_done(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        for status_code in (200, 404, 409):
            mock_request.return_value = _response(status_code, {})
            await client.cancel_flow_run("flow-1")

        assert mock_request.call_args.kwargs["json"] == {"state": {"type": "CANCELLING"}}

        mock_request.return_value = _response(500, text="boom")
        with pytest.raises(PrefectError):
            await client.cancel_flow_run("flow-1")


@pytest.mark.asyncio
async def test_health_check(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(200, True)
        await client.health_check()

        mock_request.side_effect = httpx.ConnectError("refused")
        with pytest.raises(PrefectError, match="unreachable"):
            await client.health_check()


@pytest.mark.asyncio
async def test_unreadable_success_bodies_raise_prefect_error(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(201, text="<html>proxy page</html>")
        with pytest.raises(PrefectError, match="invalid response body") as exc_info:
            await client.create_flow_run("dep-1", {})
        assert mock_request.await_count == 1
        assert exc_info.value.status_code == 201

        mock_request.return_value = _response(201, {"name": "no-id"})
        with pytest.raises(PrefectError, match="unexpected response shape"):
            await client.create_flow_run("dep-1", {})

        mock_request.return_value = _response(200, {"detail": "not a list"})
        with pytest.raises(PrefectError, match="deployment query"):
            await client.get_deployment_by_name("cards", "cards-deployment")
