from .config import Settings, settings
from .model import ToolInputProperty, ToolInputSchema, Tool, ToolSpec, ServiceRef, RemoteServerConfig, \
    BackendEndpoint, McpServerConfig, McpServer, McpServerDocument
from .registry import NacosRegistryClient, RegistryError, load_registry_client

__all__ = [
    "NacosRegistryClient",
    "RegistryError",
    "load_registry_client",
    "Settings",
    "settings",
    "ToolInputProperty",
    "ToolInputSchema",
    "Tool",
    "ToolSpec",
    "ServiceRef",
    "RemoteServerConfig",
    "BackendEndpoint",
    "McpServerConfig",
    "McpServer",
    "McpServerDocument"
]
