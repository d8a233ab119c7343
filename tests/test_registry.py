import json
import logging
import random
import threading
import time
from typing import Any, Generator

import pytest
import uvicorn

from nacos_mcp_registry.model import Tool, ToolInputSchema, ToolInputProperty
from nacos_mcp_registry.registry import NacosRegistryClient, RegistryError
from tests.fake_registry import FakeNacosRegistry, load_fake_registry

SERVICE_REF = {"namespaceId": "public", "groupName": "mcp-server", "serviceName": "weather::1.0.0"}


def remote_server(name: str, port: int = 443, export_path: str = "tools", **extra: Any) -> dict[str, Any]:
    return {
        "name": name,
        "protocol": "mcp-sse",
        "description": f"{name} server",
        "version": "1.0.0",
        "remoteServerConfig": {"serviceRef": dict(SERVICE_REF), "exportPath": export_path},
        "localServerConfig": {},
        "enabled": True,
        "capabilities": ["TOOL"],
        "backendEndpoints": [{"address": "10.0.0.1", "port": port}],
        "toolSpec": {
            "tools": [{"name": "forecast", "description": "Weather forecast",
                       "inputSchema": {"type": "object",
                                       "properties": {"city": {"type": "string", "description": "City"}}}}],
            "toolsMeta": {"forecast": {"enabled": True}},
        },
        **extra,
    }


def stdio_server(name: str) -> dict[str, Any]:
    return {
        "name": name,
        "protocol": "stdio",
        "description": f"{name} server",
        "version": "1.0.0",
        "localServerConfig": {"command": "npx", "args": ["-y", name]},
        "enabled": True,
        "backendEndpoints": [{"address": "10.0.0.1", "port": 8080}],
    }


@pytest.fixture(scope="module")
def fake_registry_server() -> Generator[FakeNacosRegistry, None, None]:
    port = random.randint(10000, 60000)
    registry = FakeNacosRegistry()
    app = load_fake_registry(registry)

    config = uvicorn.Config(app, host="127.0.0.1", port=port, log_level="warning")
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()
    time.sleep(1)

    registry.addr = f"127.0.0.1:{port}"
    yield registry
    server.should_exit = True
    thread.join(timeout=5)


@pytest.fixture
def registry(fake_registry_server: FakeNacosRegistry) -> FakeNacosRegistry:
    fake_registry_server.reset()
    return fake_registry_server


@pytest.fixture
def client(registry: FakeNacosRegistry) -> Generator[NacosRegistryClient, None, None]:
    with NacosRegistryClient(registry.addr, "nacos", "secret") as registry_client:
        yield registry_client


@pytest.fixture
def unreachable_client() -> Generator[NacosRegistryClient, None, None]:
    with NacosRegistryClient("127.0.0.1:1", "nacos", "secret", timeout=2) as registry_client:
        yield registry_client


@pytest.mark.parametrize("addr,user_name,password", [
    ("", "nacos", "secret"),
    ("127.0.0.1:8848", "", "secret"),
    ("127.0.0.1:8848", "nacos", ""),
])
def test_client_rejects_missing_connection_parameters(addr, user_name, password):
    with pytest.raises(ValueError):
        NacosRegistryClient(addr, user_name, password)


def test_client_accepts_address_with_scheme():
    with NacosRegistryClient("https://nacos.example.com/", "nacos", "secret") as registry_client:
        assert registry_client.mcp_url == "https://nacos.example.com/nacos/v3/admin/ai/mcp"


def test_get_remote_mcp_server_derives_url(registry, client):
    # Given
    registry.put_server(remote_server("weather"))

    # When
    server = client.get_mcp_server_by_name("weather")

    # Then
    assert server.name == "weather"
    assert server.description == "weather server"
    assert server.agent_config["mcpServers"]["weather"] == {
        "name": "weather",
        "description": "weather server",
        "url": "https://10.0.0.1:443/tools",
    }
    assert server.mcp_config_detail is not None
    assert server.mcp_config_detail.tool_spec.tools[0].name == "forecast"


def test_get_mcp_server_sends_credentials(registry, client):
    registry.put_server(remote_server("weather"))

    client.get_mcp_server_by_name("weather")

    assert registry.last_headers["username"] == "nacos"
    assert registry.last_headers["password"] == "secret"
    assert registry.last_headers["charset"] == "utf-8"
    assert registry.last_headers["content-type"] == "application/json"


def test_get_stdio_mcp_server_keeps_local_config(registry, client):
    registry.put_server(stdio_server("filesystem"))

    server = client.get_mcp_server_by_name("filesystem")

    assert server.description == "filesystem server"
    assert server.agent_config == {"command": "npx", "args": ["-y", "filesystem"]}


def test_get_unknown_mcp_server_returns_default(registry, client, caplog):
    with caplog.at_level(logging.WARNING):
        server = client.get_mcp_server_by_name("missing")

    assert server.name == "missing"
    assert server.description == ""
    assert server.agent_config == {}
    assert "missing" in caplog.text


def test_get_mcp_server_on_server_error_returns_default(registry, client):
    registry.put_server(remote_server("weather"))
    registry.failing_servers.add("weather")

    server = client.get_mcp_server_by_name("weather")

    assert server.name == "weather"
    assert server.description == ""


def test_get_mcp_server_raw_raises_for_unknown_server(registry, client):
    with pytest.raises(RegistryError) as exc_info:
        client.get_mcp_server_raw("missing")

    assert exc_info.value.name == "missing"
    assert exc_info.value.status_code == 404


def test_get_mcp_servers_by_page_skips_disabled_and_unavailable(registry, client):
    # Given
    registry.put_server(remote_server("first"))
    registry.put_server(remote_server("disabled", enabled=False))
    registry.put_server(remote_server("broken"))
    registry.put_server(remote_server("no-description", description=""))
    registry.put_server(stdio_server("last"))
    registry.failing_servers.add("broken")

    # When
    servers = client.get_mcp_servers_by_page(1, 10)

    # Then
    assert [server.name for server in servers] == ["first", "last"]


def test_get_mcp_servers_by_page_on_failure_returns_empty(registry, client, caplog):
    registry.put_server(remote_server("weather"))
    registry.fail_list = True

    with caplog.at_level(logging.WARNING):
        assert client.get_mcp_servers_by_page(1, 10) == []
    assert "page 1" in caplog.text


def test_get_mcp_servers_by_page_rejects_invalid_arguments(client):
    with pytest.raises(ValueError):
        client.get_mcp_servers_by_page(0, 10)
    with pytest.raises(ValueError):
        client.get_mcp_servers_by_page(1, 0)


def test_get_mcp_servers_fetches_all_pages(registry, client):
    # Given
    for i in range(250):
        registry.put_server(remote_server(f"server-{i:03d}", port=8000 + i))

    # When
    servers = client.get_mcp_servers(page_size=100)

    # Then
    assert registry.requested_pages == [1, 1, 2, 3]
    assert len(servers) == 250
    assert [server.name for server in servers] == [f"server-{i:03d}" for i in range(250)]


def test_get_mcp_servers_tolerates_trailing_empty_page(registry, client):
    for i in range(20):
        registry.put_server(stdio_server(f"server-{i:02d}"))

    servers = client.get_mcp_servers(page_size=10)

    assert registry.requested_pages == [1, 1, 2, 3]
    assert len(servers) == 20


def test_get_mcp_servers_on_failure_returns_empty(registry, client):
    registry.put_server(remote_server("weather"))
    registry.fail_list = True

    assert client.get_mcp_servers() == []
    assert registry.requested_pages == [1]


def test_update_remote_mcp_tools(registry, client):
    # Given
    registry.put_server(remote_server("weather", customField={"kept": True}))
    tools = [
        Tool(name="alerts", description="Weather alerts",
             input_schema=ToolInputSchema(type="object",
                                          properties={"region": ToolInputProperty(type="string",
                                                                                  description="Region")})),
        Tool(name="forecast", description="Weather forecast"),
    ]

    # When
    assert client.update_mcp_tools("weather", tools)

    # Then
    params = registry.updates[-1]
    assert params["mcpName"] == "weather"
    assert json.loads(params["endpointSpecification"]) == {"data": SERVICE_REF, "type": "REF"}

    server_specification = json.loads(params["serverSpecification"])
    assert "toolSpec" not in server_specification
    assert "backendEndpoints" not in server_specification
    assert server_specification["customField"] == {"kept": True}
    assert server_specification["remoteServerConfig"]["exportPath"] == "tools"

    tool_specification = json.loads(params["toolSpecification"])
    assert tool_specification["toolsMeta"] == {"forecast": {"enabled": True}}
    assert tool_specification["tools"] == [
        {"name": "alerts", "description": "Weather alerts",
         "inputSchema": {"type": "object", "properties": {"region": {"type": "string", "description": "Region"}}}},
        {"name": "forecast", "description": "Weather forecast", "inputSchema": {"type": "", "properties": {}}},
    ]
    assert registry.last_headers["content-type"] == "application/x-www-form-urlencoded"

    updated = client.get_mcp_server_by_name("weather")
    assert [tool.name for tool in updated.mcp_config_detail.tool_spec.tools] == ["alerts", "forecast"]


def test_update_stdio_mcp_tools_has_empty_endpoint_specification(registry, client):
    registry.put_server(stdio_server("filesystem"))

    assert client.update_mcp_tools("filesystem", [Tool(name="read_file", description="Reads a file")])

    params = registry.updates[-1]
    assert json.loads(params["endpointSpecification"]) == {}
    assert json.loads(params["toolSpecification"])["tools"][0]["name"] == "read_file"


def test_update_unknown_mcp_server_fails(registry, client, caplog):
    with caplog.at_level(logging.WARNING):
        assert not client.update_mcp_tools("missing", [Tool(name="noop")])

    assert registry.updates == []
    assert "missing" in caplog.text


def test_update_rejected_by_registry_fails(registry, client, caplog):
    registry.put_server(remote_server("weather"))
    registry.fail_update = True

    with caplog.at_level(logging.WARNING):
        assert not client.update_mcp_tools("weather", [Tool(name="noop")])

    assert len(registry.updates) == 1
    assert "update rejected" in caplog.text


def test_unreachable_registry_degrades(unreachable_client):
    assert unreachable_client.get_mcp_server_by_name("weather").description == ""
    assert unreachable_client.get_mcp_servers_by_page(1, 10) == []
    assert unreachable_client.get_mcp_servers() == []
    assert not unreachable_client.update_mcp_tools("weather", [Tool(name="noop")])


def test_as_tool_lists_mcp_servers(registry, client):
    registry.put_server(remote_server("weather", port=8080, export_path="/sse"))

    tool = client.as_tool()
    result = tool.invoke({})

    assert tool.name == "mcp_server_lookup"
    assert result == [{
        "name": "weather",
        "description": "weather server",
        "agentConfig": {"mcpServers": {"weather": {"name": "weather", "description": "weather server",
                                                   "url": "http://10.0.0.1:8080/sse"}}},
    }]


def test_update_logs_tool_names_without_credentials(registry, client, caplog):
    raw = remote_server("weather")
    raw["remoteServerConfig"]["credentials"] = {"apiKey": "s3cret-key"}
    registry.put_server(raw)

    with caplog.at_level(logging.INFO, logger="nacos_mcp_registry.registry"):
        assert client.update_mcp_tools("weather", [Tool(name="alerts"), Tool(name="forecast")])

    assert "['alerts', 'forecast']" in caplog.text
    assert "s3cret-key" not in caplog.text
    assert json.loads(registry.updates[-1]["serverSpecification"])["remoteServerConfig"]["credentials"] == {
        "apiKey": "s3cret-key"}
