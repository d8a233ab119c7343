"""Data models for MCP server entries stored in the Nacos registry.

Every ``from_dict`` constructor is total: missing, null or wrongly typed input
yields the empty instance of the type instead of an error, so a single
malformed field never aborts parsing of the rest of a registry record.
"""
import copy
import json
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field

STDIO_PROTOCOL = "stdio"
ENDPOINT_REF_TYPE = "REF"
HTTPS_PORT = 443
UNKNOWN_PORT = -1

MCP_SERVERS_KEY = "mcpServers"
TOOL_SPEC_KEY = "toolSpec"
BACKEND_ENDPOINTS_KEY = "backendEndpoints"
REMOTE_SERVER_CONFIG_KEY = "remoteServerConfig"
SERVICE_REF_KEY = "serviceRef"


def _as_dict(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _as_list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _as_int(value: Any, default: int = UNKNOWN_PORT) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


class _RegistryModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class ToolInputProperty(_RegistryModel):
    """A single property of a tool input schema."""
    type: str = Field(default="", description="JSON schema type of the property")
    description: str = Field(default="", description="Description of the property")

    @classmethod
    def from_dict(cls, data: Any) -> "ToolInputProperty":
        if not isinstance(data, Mapping):
            return cls()
        return cls(type=_as_str(data.get("type")), description=_as_str(data.get("description")))


class ToolInputSchema(_RegistryModel):
    """Input schema of a tool, keyed by property name."""
    type: str = Field(default="", description="JSON schema type, usually 'object'")
    properties: dict[str, ToolInputProperty] = Field(default_factory=dict, description="Properties by name")

    @classmethod
    def from_dict(cls, data: Any) -> "ToolInputSchema":
        if not isinstance(data, Mapping):
            return cls()
        properties = {str(name): ToolInputProperty.from_dict(prop)
                      for name, prop in _as_dict(data.get("properties")).items()}
        return cls(type=_as_str(data.get("type")), properties=properties)


class Tool(_RegistryModel):
    """A callable operation offered by a registered MCP server."""
    name: str = Field(default="", description="Name of the tool")
    description: str = Field(default="", description="Description of the tool")
    input_schema: ToolInputSchema = Field(default_factory=ToolInputSchema, alias="inputSchema",
                                          description="Input schema of the tool")

    @classmethod
    def from_dict(cls, data: Any) -> "Tool":
        if not isinstance(data, Mapping):
            return cls()
        return cls(name=_as_str(data.get("name")),
                   description=_as_str(data.get("description")),
                   input_schema=ToolInputSchema.from_dict(data.get("inputSchema")))

    def to_dict(self) -> dict[str, Any]:
        """Projects the tool into the registry's wire shape."""
        return self.model_dump(by_alias=True, include={"name", "description", "input_schema"})


class ToolSpec(_RegistryModel):
    """Tool catalog of a registry entry. Tool order follows the registry response."""
    tools: list[Tool] = Field(default_factory=list, description="Tools in registry order")
    tools_meta: dict[str, Any] = Field(default_factory=dict, alias="toolsMeta",
                                       description="Per tool metadata kept by the registry")

    @classmethod
    def from_dict(cls, data: Any) -> "ToolSpec":
        if not isinstance(data, Mapping):
            return cls()
        return cls(tools=[Tool.from_dict(tool) for tool in _as_list(data.get("tools"))],
                   tools_meta=_as_dict(data.get("toolsMeta")))


class ServiceRef(_RegistryModel):
    """Reference to the discoverable Nacos service backing a remote MCP server."""
    namespace_id: str = Field(default="", alias="namespaceId")
    group_name: str = Field(default="", alias="groupName")
    service_name: str = Field(default="", alias="serviceName")

    @classmethod
    def from_dict(cls, data: Any) -> "ServiceRef":
        if not isinstance(data, Mapping):
            return cls()
        return cls(namespace_id=_as_str(data.get("namespaceId")),
                   group_name=_as_str(data.get("groupName")),
                   service_name=_as_str(data.get("serviceName")))


class RemoteServerConfig(_RegistryModel):
    service_ref: ServiceRef = Field(default_factory=ServiceRef, alias="serviceRef")
    export_path: str = Field(default="", alias="exportPath",
                             description="URL path of the MCP endpoint, leading '/' not guaranteed")
    credentials: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "RemoteServerConfig":
        if not isinstance(data, Mapping):
            return cls()
        return cls(service_ref=ServiceRef.from_dict(data.get("serviceRef")),
                   export_path=_as_str(data.get("exportPath")),
                   credentials=_as_dict(data.get("credentials")))


class BackendEndpoint(_RegistryModel):
    address: str = Field(default="")
    port: int = Field(default=UNKNOWN_PORT, description="Port, -1 if unknown")

    @classmethod
    def from_dict(cls, data: Any) -> "BackendEndpoint":
        if not isinstance(data, Mapping):
            return cls()
        return cls(address=_as_str(data.get("address")), port=_as_int(data.get("port")))

    def base_url(self) -> str:
        scheme = "https" if self.port == HTTPS_PORT else "http"
        return f"{scheme}://{self.address}:{self.port}"


class McpServerConfig(_RegistryModel):
    """Normalized MCP server entry as stored in the Nacos registry."""
    name: str = Field(default="")
    protocol: str = Field(default="", description="Transport protocol e.g. stdio, mcp-sse, mcp-streamable")
    description: str | None = Field(default=None)
    version: str = Field(default="")
    remote_server_config: RemoteServerConfig = Field(default_factory=RemoteServerConfig, alias="remoteServerConfig")
    local_server_config: dict[str, Any] = Field(default_factory=dict, alias="localServerConfig")
    enabled: bool = Field(default=True)
    capabilities: list[str] = Field(default_factory=list)
    backend_endpoints: list[BackendEndpoint] = Field(default_factory=list, alias="backendEndpoints")
    tool_spec: ToolSpec = Field(default_factory=ToolSpec, alias="toolSpec")

    @classmethod
    def from_dict(cls, data: Any) -> "McpServerConfig":
        if not isinstance(data, Mapping):
            return cls()
        description = data.get("description")
        return cls(
            name=_as_str(data.get("name")),
            protocol=_as_str(data.get("protocol")),
            description=None if description is None else _as_str(description),
            version=_as_str(data.get("version")),
            remote_server_config=RemoteServerConfig.from_dict(data.get(REMOTE_SERVER_CONFIG_KEY)),
            local_server_config=_as_dict(data.get("localServerConfig")),
            enabled=_as_bool(data.get("enabled"), default=True),
            capabilities=[c for c in _as_list(data.get("capabilities")) if isinstance(c, str)],
            backend_endpoints=[BackendEndpoint.from_dict(e) for e in _as_list(data.get(BACKEND_ENDPOINTS_KEY))],
            tool_spec=ToolSpec.from_dict(data.get(TOOL_SPEC_KEY)),
        )

    def is_remote(self) -> bool:
        return self.protocol != STDIO_PROTOCOL

    def endpoint_url(self) -> str | None:
        """Derives the URL of the MCP endpoint for remote servers.

        Only the first backend endpoint is used. The scheme is https for port 443
        and http otherwise, and the export path is always joined with a single '/'.

        Returns:
            The endpoint URL, or None for stdio servers and servers without backend endpoints.
        """
        if not self.is_remote() or not self.backend_endpoints:
            return None
        export_path = self.remote_server_config.export_path
        if not export_path.startswith("/"):
            export_path = f"/{export_path}"
        return f"{self.backend_endpoints[0].base_url()}{export_path}"


class McpServer(BaseModel):
    """MCP server as handed to agents, with its agent config and the registry entry it came from.

    Frozen only against reassignment; ``agent_config`` is a plain dict, so hand out
    ``to_dict()`` copies rather than changing it in place.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(description="Name of the MCP server")
    description: str = Field(default="", description="Description, empty if the entry could not be loaded")
    agent_config: dict[str, Any] = Field(default_factory=dict, alias="agentConfig")
    mcp_config_detail: McpServerConfig | None = Field(default=None, description="Registry entry of the server")

    @classmethod
    def default(cls, name: str) -> "McpServer":
        return cls(name=name)

    @classmethod
    def from_config(cls, config: McpServerConfig, name: str | None = None) -> "McpServer":
        """Builds the server from a registry entry.

        The agent config is seeded from the local server config. Remote servers with a
        backend endpoint additionally get an ``mcpServers`` entry carrying their URL.

        Args:
            config: The normalized registry entry.
            name: Name the entry was requested by, used if the entry carries none.

        Returns:
            The McpServer instance.
        """
        server_name = config.name or name or ""
        description = config.description or ""
        agent_config = copy.deepcopy(config.local_server_config)
        url = config.endpoint_url()
        if url is not None:
            mcp_servers = agent_config.get(MCP_SERVERS_KEY)
            if not isinstance(mcp_servers, dict):
                mcp_servers = {}
                agent_config[MCP_SERVERS_KEY] = mcp_servers
            mcp_servers[server_name] = {"name": server_name, "description": description, "url": url}
        return cls(name=server_name, description=description, agent_config=agent_config,
                   mcp_config_detail=config)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "agentConfig": copy.deepcopy(self.agent_config)}


class McpServerDocument(BaseModel):
    """Registry entry held both as typed view and as the raw record it was parsed from.

    The raw record is what gets written back on update, so registry fields the typed
    view does not know about survive a read-modify-write cycle.
    Like the other models it is frozen only against reassignment; the specification
    methods return copies and never expose ``raw`` itself.
    """
    model_config = ConfigDict(frozen=True)

    config: McpServerConfig
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "McpServerDocument":
        raw = copy.deepcopy(_as_dict(data))
        return cls(config=McpServerConfig.from_dict(raw), raw=raw)

    def with_tools(self, tools: Iterable[Tool]) -> "McpServerDocument":
        """Returns a copy whose tool catalog lists the given tools.

        Only ``toolSpec.tools`` is replaced; the rest of the tool spec, e.g. ``toolsMeta``, is kept.
        """
        raw = copy.deepcopy(self.raw)
        tool_spec = raw.get(TOOL_SPEC_KEY)
        if not isinstance(tool_spec, dict):
            tool_spec = {}
            raw[TOOL_SPEC_KEY] = tool_spec
        tool_spec["tools"] = [tool.to_dict() for tool in tools]
        return McpServerDocument.from_dict(raw)

    def server_specification(self) -> dict[str, Any]:
        return {key: copy.deepcopy(value) for key, value in self.raw.items()
                if key not in (TOOL_SPEC_KEY, BACKEND_ENDPOINTS_KEY)}

    def endpoint_specification(self) -> dict[str, Any]:
        """Routes remote servers through their discoverable service; empty for stdio servers."""
        if not self.config.is_remote():
            return {}
        service_ref = _as_dict(self.raw.get(REMOTE_SERVER_CONFIG_KEY)).get(SERVICE_REF_KEY)
        if isinstance(service_ref, Mapping):
            data = copy.deepcopy(dict(service_ref))
        else:
            data = self.config.remote_server_config.service_ref.model_dump(by_alias=True)
        return {"data": data, "type": ENDPOINT_REF_TYPE}

    def tool_specification(self) -> dict[str, Any]:
        return copy.deepcopy(_as_dict(self.raw.get(TOOL_SPEC_KEY)))

    def update_params(self, mcp_name: str) -> dict[str, str]:
        """Form fields of the update request, each specification serialized as JSON."""
        return {
            "mcpName": mcp_name,
            "serverSpecification": json.dumps(self.server_specification(), ensure_ascii=False),
            "endpointSpecification": json.dumps(self.endpoint_specification(), ensure_ascii=False),
            "toolSpecification": json.dumps(self.tool_specification(), ensure_ascii=False),
        }
