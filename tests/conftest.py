import json

import httpx
import pytest

from api_client import N8NClient
from config import ConfigLoader
from n8n_api import N8NApi

TEST_CONFIG = {
    "environments": {
        "production": {
            "n8n_host": "https://n8n.example.com",
            "n8n_api_key": "prod-key"
        },
        "staging": {
            "n8n_host": "https://staging.example.com/api/v1/",
            "n8n_api_key": "staging-key"
        }
    },
    "defaultEnv": "production"
}


class FakeN8N:
    """Routes httpx requests to canned n8n responses and records them."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, body=None, status_code=200):
        self.routes[(method, "/api/v1" + path)] = (status_code, body)

    def add_handler(self, method, path, handler):
        self.routes[(method, "/api/v1" + path)] = handler

    def sent(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == "/api/v1" + path]

    def json_body(self, request):
        return json.loads(request.content)

    def __call__(self, request):
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if callable(route):
            return route(request)
        status_code, body = route
        if body is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=body)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / ".config.json"
    path.write_text(json.dumps(TEST_CONFIG))
    return path


@pytest.fixture
def config_loader(config_file):
    return ConfigLoader(config_paths=[config_file], env_paths=[], environ={})


@pytest.fixture
def fake_n8n():
    return FakeN8N()


@pytest.fixture
def n8n_client(config_loader, fake_n8n):
    return N8NClient(config_loader, transport=httpx.MockTransport(fake_n8n))


@pytest.fixture
def api(n8n_client):
    return N8NApi(n8n_client)
