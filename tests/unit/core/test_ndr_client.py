import httpx
import pytest
from unittest.mock import AsyncMock, patch

from app.core.exceptions import APITimeoutError, ConfigurationError, NDRError
from app.core.ndr_client import NDRClient, RequestMeta
from app.schemas.ndr import DocumentReorder, DocumentUpdate, NodeReorder, NodeUpdate


@pytest.fixture
def client() -> NDRClient:
    return NDRClient(base_url="http://ndr.test/", api_key="default-key", timeout=5.0, debug=True)


def _response(status_code: int, json=None, text: str = "") -> httpx.Response:
    request = httpx.Request("GET", "http://ndr.test")
    if json is not None:
        return httpx.Response(status_code, json=json, request=request)
    return httpx.Response(status_code, text=text, request=request)


@pytest.mark.asyncio
async def test_forwards_identity_headers(client):
    meta = RequestMeta(user_id="user-1", request_id="req-9", admin_key="admin")
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(200, {"id": 1, "name": "Math", "path": "math"})

        node = await client.get_node(meta, 1, include_deleted=True)

    assert node.name == "Math"
    method, url = mock_request.call_args.args
    kwargs = mock_request.call_args.kwargs
    assert (method, url) == ("GET", "http://ndr.test/api/v1/nodes/1")
    assert kwargs["params"] == {"include_deleted": "true"}
    assert kwargs["headers"]["x-api-key"] == "default-key"
    assert kwargs["headers"]["x-user-id"] == "user-1"
    assert kwargs["headers"]["x-request-id"] == "req-9"
    assert kwargs["headers"]["x-admin-key"] == "admin"
    assert kwargs["timeout"] == 5.0


@pytest.mark.asyncio
async def test_error_status_raises_ndr_error(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(404, text="node not found")

        with pytest.raises(NDRError) as exc_info:
            await client.get_node(RequestMeta(), 42)

    assert exc_info.value.status_code == 404
    assert "node not found" in exc_info.value.message


@pytest.mark.asyncio
async def test_timeout_and_transport_errors(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.side_effect = httpx.ReadTimeout("slow")
        with pytest.raises(APITimeoutError):
            await client.get_document(RequestMeta(), 1)

        mock_request.side_effect = httpx.ConnectError("refused")
        with pytest.raises(NDRError) as exc_info:
            await client.get_document(RequestMeta(), 1)
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_missing_base_url():
    with pytest.raises(ConfigurationError):
        await NDRClient(base_url="").get_node(RequestMeta(), 1)


@pytest.mark.asyncio
async def test_empty_body_and_children_check(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(204, text="")
        assert await client.delete_node(RequestMeta(), 3) is None

        mock_request.return_value = _response(200, [])
        assert await client.has_children(RequestMeta(), 3) is False

        mock_request.return_value = _response(200, [{"id": 4, "name": "Child"}])
        assert await client.has_children(RequestMeta(), 3) is True


@pytest.mark.asyncio
async def test_update_payloads(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(200, {"id": 2, "name": "Algebra"})
        await client.update_node(RequestMeta(), 2, NodeUpdate(parent_path=None))
        assert mock_request.call_args.kwargs["json"] == {"parent_path": None}

        mock_request.return_value = _response(200, {"id": 5, "version_number": 4})
        document = await client.update_document(
            RequestMeta(), 5, DocumentUpdate(metadata={"references": None})
        )
        assert mock_request.call_args.args == ("PUT", "http://ndr.test/api/v1/documents/5")
        assert mock_request.call_args.kwargs["json"] == {"metadata": {"references": None}}
        assert document.version == 4


@pytest.mark.asyncio
async def test_list_helpers_build_query_params(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(200, {"page": 2, "size": 50, "total": 0, "items": []})
        await client.list_node_documents(RequestMeta(), 1, include_descendants=False, page=2, size=50)
        assert mock_request.call_args.args[1] == "http://ndr.test/api/v1/nodes/1/subtree-documents"
        assert mock_request.call_args.kwargs["params"] == {
            "include_descendants": "false",
            "page": 2,
            "size": 50,
        }

        mock_request.return_value = _response(200, {"items": []})
        await client.list_documents(RequestMeta(), extra_params={"type": "markdown"})
        assert mock_request.call_args.kwargs["params"] == {"type": "markdown"}

        await client.list_nodes(RequestMeta())
        assert mock_request.call_args.kwargs["params"] is None


@pytest.mark.asyncio
async def test_unreadable_body_raises_ndr_error(client):
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(200, text="<html>gateway</html>")

        with pytest.raises(NDRError, match="invalid body") as exc_info:
            await client.get_document(RequestMeta(), 1)

    assert exc_info.value.status_code == 200


@pytest.mark.asyncio
async def test_reorder_and_version_endpoints(client):
    meta = RequestMeta()
    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = _response(200, [{"id": 3, "name": "B"}, {"id": 2, "name": "A"}])
        nodes = await client.reorder_nodes(meta, NodeReorder(parent_id=None, ordered_ids=[3, 2]))
        assert [node.id for node in nodes] == [3, 2]
        assert mock_request.call_args.args == ("POST", "http://ndr.test/api/v1/nodes/reorder")
        assert mock_request.call_args.kwargs["json"] == {"parent_id": None, "ordered_ids": [3, 2]}

        mock_request.return_value = _response(200, [{"id": 7}])
        await client.reorder_documents(meta, DocumentReorder(ordered_ids=[7]))
        assert mock_request.call_args.kwargs["json"] == {"ordered_ids": [7]}

        mock_request.return_value = _response(
            200, {"from_version": 1, "to_version": 3, "title_diff": {"old": "a", "new": "b"}}
        )
        diff = await client.get_document_version_diff(meta, 5, 1, 3)
        assert diff.title_diff.old == "a"
        assert mock_request.call_args.args[1] == "http://ndr.test/api/v1/documents/5/versions/1/diff"
        assert mock_request.call_args.kwargs["params"] == {"to": 3}

        mock_request.return_value = _response(200, {"id": 5, "version_number": 4})
        document = await client.restore_document_version(meta, 5, 1)
        assert document.version == 4
        assert mock_request.call_args.args == ("POST", "http://ndr.test/api/v1/documents/5/versions/1/restore")

        mock_request.return_value = _response(200, {"total_bindings": 1, "node_ids": [9]})
        bindings = await client.get_document_binding_status(meta, 5)
        assert bindings.node_ids == [9]

        mock_request.return_value = _response(204, text="")
        await client.purge_document(meta, 5)
        assert mock_request.call_args.args == ("DELETE", "http://ndr.test/api/v1/documents/5/purge")
