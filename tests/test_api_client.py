import httpx
import pytest

from errors import EnvironmentNotFoundError, N8NApiError


class TestClientCache:
    def test_base_url_and_headers(self, n8n_client):
        client = n8n_client.get_client()

        assert str(client.base_url) == "https://n8n.example.com/api/v1/"
        assert client.headers["X-N8N-API-KEY"] == "prod-key"
        assert client.headers["Content-Type"] == "application/json"
        assert client.headers["Accept"] == "application/json"

    def test_host_with_api_suffix_not_doubled(self, n8n_client):
        client = n8n_client.get_client("staging")

        assert str(client.base_url) == "https://staging.example.com/api/v1/"
        assert client.headers["X-N8N-API-KEY"] == "staging-key"

    def test_one_client_per_environment(self, n8n_client):
        production = n8n_client.get_client()

        assert n8n_client.get_client("production") is production
        assert n8n_client.get_client("staging") is not production

    @pytest.mark.asyncio
    async def test_clear_cache_closes_evicted_clients(self, n8n_client):
        production = n8n_client.get_client()
        staging = n8n_client.get_client("staging")

        await n8n_client.clear_cache()

        assert production.is_closed
        assert staging.is_closed
        assert n8n_client.get_client() is not production

    def test_unknown_environment(self, n8n_client):
        with pytest.raises(EnvironmentNotFoundError, match="Available environments: production, staging"):
            n8n_client.get_client("qa")


class TestRequest:
    @pytest.mark.asyncio
    async def test_routes_to_environment(self, n8n_client, fake_n8n):
        fake_n8n.add("GET", "/workflows", {"data": []})

        await n8n_client.request("GET", "/workflows", "listing workflows", "staging")

        request = fake_n8n.requests[0]
        assert request.url.host == "staging.example.com"
        assert request.url.path == "/api/v1/workflows"
        assert request.headers["X-N8N-API-KEY"] == "staging-key"

    @pytest.mark.asyncio
    async def test_none_params_dropped(self, n8n_client, fake_n8n):
        fake_n8n.add("GET", "/workflows", {"data": []})

        await n8n_client.request(
            "GET", "/workflows", "listing workflows",
            params={"active": True, "limit": None, "cursor": None}
        )

        assert dict(fake_n8n.requests[0].url.params) == {"active": "true"}

    @pytest.mark.asyncio
    async def test_json_body_sent(self, n8n_client, fake_n8n):
        fake_n8n.add("POST", "/tags", {"id": "1", "name": "ops"})

        result = await n8n_client.request("POST", "/tags", "creating tag ops", json_data={"name": "ops"})

        assert result == {"id": "1", "name": "ops"}
        assert fake_n8n.json_body(fake_n8n.requests[0]) == {"name": "ops"}

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_dict(self, n8n_client, fake_n8n):
        fake_n8n.add("DELETE", "/tags/1", status_code=204)

        assert await n8n_client.request("DELETE", "/tags/1", "deleting tag with ID 1") == {}

    @pytest.mark.asyncio
    async def test_set_node_error_classified(self, n8n_client, fake_n8n):
        fake_n8n.add("POST", "/workflows", {"message": "propertyValues[itemName] is not iterable"}, status_code=400)

        with pytest.raises(N8NApiError) as exc_info:
            await n8n_client.request("POST", "/workflows", "creating workflow Demo", json_data={})

        error = exc_info.value
        assert error.status_code == 400
        assert "Set node" in error.guidance
        assert "creating workflow Demo" in str(error)
        assert "propertyValues" in error.response_body

    @pytest.mark.asyncio
    async def test_unknown_route_maps_to_not_found(self, n8n_client):
        with pytest.raises(N8NApiError) as exc_info:
            await n8n_client.request("GET", "/workflows/missing", "getting workflow with ID missing")

        assert exc_info.value.status_code == 404
        assert "not found" in exc_info.value.guidance

    @pytest.mark.asyncio
    async def test_plain_text_error_body(self, n8n_client, fake_n8n):
        fake_n8n.add_handler("GET", "/tags", lambda request: httpx.Response(422, text="bad cursor"))

        with pytest.raises(N8NApiError, match="API error listing tags: bad cursor"):
            await n8n_client.request("GET", "/tags", "listing tags")

    @pytest.mark.asyncio
    async def test_transport_error(self, n8n_client, fake_n8n):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        fake_n8n.add_handler("GET", "/workflows", refuse)

        with pytest.raises(N8NApiError) as exc_info:
            await n8n_client.request("GET", "/workflows", "listing workflows")

        assert exc_info.value.status_code is None
        assert "connection refused" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_close_clears_clients(self, n8n_client):
        first = n8n_client.get_client()

        await n8n_client.close()

        assert first.is_closed
        assert n8n_client.get_client() is not first
