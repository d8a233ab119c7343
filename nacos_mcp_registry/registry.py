"""Client for the MCP server endpoints of the Nacos admin API."""
import logging
from typing import Any, Iterable, cast

import httpx
from langchain_core.tools import StructuredTool

from .config import settings, Settings
from .model import McpServer, McpServerConfig, McpServerDocument, Tool

logger = logging.getLogger(__name__)


def configure_httpx_logging(config: Settings = settings) -> None:
    if config.httpx_logging:
        logging.getLogger("httpx").setLevel(logging.DEBUG)


configure_httpx_logging()

MCP_ADMIN_PATH = "/nacos/v3/admin/ai/mcp"
JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class RegistryError(Exception):
    """Raised when the registry does not return a usable MCP server record."""

    def __init__(self, name: str, message: str, status_code: int | None = None):
        super().__init__(f"{message} (mcp server: {name}, status: {status_code})")
        self.name = name
        self.status_code = status_code


def _response_data(response: httpx.Response) -> dict[str, Any]:
    body = response.json()
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict):
        raise ValueError(f"response carries no data object: {response.text}")
    return cast(dict[str, Any], data)


class NacosRegistryClient:
    """Client for reading MCP servers from and writing tool lists to a Nacos registry."""

    def __init__(self, nacos_addr: str, user_name: str, password: str, timeout: float = 30,
                 extra_headers: dict[str, str] | None = None):
        """Initializes the NacosRegistryClient.

        Args:
            nacos_addr: Address of the Nacos server as host:port, optionally prefixed with a scheme.
            user_name: Nacos user name sent with every request.
            password: Nacos password sent with every request.
            timeout: Request timeout in seconds.
            extra_headers: Optional additional HTTP headers for requests.

        Raises:
            ValueError: If the address, user name or password is empty.
        """
        if not nacos_addr:
            raise ValueError("nacos_addr cannot be an empty string")
        if not user_name:
            raise ValueError("user_name cannot be an empty string")
        if not password:
            raise ValueError("password cannot be an empty string")
        self.nacos_addr = nacos_addr
        self.user_name = user_name
        self.password = password

        base_url = nacos_addr if nacos_addr.startswith(("http://", "https://")) else f"http://{nacos_addr}"
        self.mcp_url = f"{base_url.rstrip('/')}{MCP_ADMIN_PATH}"
        headers = {
            **(extra_headers or {}),
            "charset": "utf-8",
            "userName": user_name,
            "password": password,
        }
        self.client = httpx.Client(headers=headers, timeout=timeout)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "NacosRegistryClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def get_mcp_server_raw(self, name: str) -> dict[str, Any]:
        """Retrieves the raw registry record of an MCP server.

        Args:
            name: The name of the MCP server.

        Returns:
            The record exactly as returned by the registry.

        Raises:
            RegistryError: If the registry answers with a non-200 status or without a record.
            httpx.HTTPError: If the request fails.
        """
        response = self.client.get(url=self.mcp_url, params={"mcpName": name},
                                   headers={"Content-Type": JSON_CONTENT_TYPE})
        if response.status_code != 200:
            raise RegistryError(name, f"failed to get mcp server, response: {response.text}",
                                status_code=response.status_code)
        try:
            return _response_data(response)
        except ValueError as e:
            raise RegistryError(name, str(e), status_code=response.status_code) from e

    def get_mcp_server_by_name(self, name: str) -> McpServer:
        """Retrieves an MCP server by name.

        Failures never propagate: if the server cannot be loaded, a server with the given
        name and an empty description is returned.

        Args:
            name: The name of the MCP server.

        Returns:
            The McpServer instance.
        """
        try:
            config = McpServerConfig.from_dict(self.get_mcp_server_raw(name))
        except Exception as e:
            logger.warning(f"failed to get mcp server {name}, error: {e}")
            return McpServer.default(name)
        return McpServer.from_config(config, name=name)

    def get_mcp_servers_by_page(self, page_no: int, page_size: int) -> list[McpServer]:
        """Retrieves the enabled MCP servers listed on one page of the registry.

        Every enabled entry is reloaded by name; entries that cannot be loaded are skipped.
        A failing page yields an empty list.

        Args:
            page_no: The page number, starting at 1.
            page_size: The number of entries per page.

        Returns:
            A list of McpServer instances in registry order.
        """
        if page_no < 1:
            raise ValueError(f"page_no must be at least 1, got {page_no}")
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")

        try:
            page = self._get_page(page_no, page_size)
        except Exception as e:
            logger.warning(f"failed to get mcp server list page {page_no}, error: {e}")
            return []

        page_items = page.get("pageItems")
        if not isinstance(page_items, list):
            page_items = []

        mcp_servers: list[McpServer] = []
        for item in page_items:
            summary = McpServerConfig.from_dict(item)
            if not summary.enabled or not summary.name:
                continue
            mcp_server = self.get_mcp_server_by_name(summary.name)
            if not mcp_server.description:
                logger.info(f"skipping mcp server {summary.name} without description")
                continue
            mcp_servers.append(mcp_server)
        return mcp_servers

    def get_mcp_servers(self, page_size: int | None = None) -> list[McpServer]:
        """Retrieves all enabled MCP servers of the registry, page by page.

        Args:
            page_size: The number of entries per page, defaults to the configured page size.

        Returns:
            A list of McpServer instances in registry order, empty if the listing fails.
        """
        if page_size is None:
            page_size = settings.page_size
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        try:
            total_count = int(self._get_page(1, page_size).get("totalCount") or 0)
        except Exception as e:
            logger.warning(f"failed to get mcp server list from {self.mcp_url}, error: {e}")
            return []

        # requests a trailing empty page when total_count is a multiple of page_size
        total_pages = total_count // page_size + 1
        mcp_servers: list[McpServer] = []
        for page_no in range(1, total_pages + 1):
            mcp_servers.extend(self.get_mcp_servers_by_page(page_no, page_size))
        return mcp_servers

    def update_mcp_tools(self, mcp_name: str, tools: Iterable[Tool]) -> bool:
        """Replaces the tool list of an MCP server in the registry.

        The current record is read first and written back with only its tools replaced.

        Args:
            mcp_name: The name of the MCP server.
            tools: The new tools, in the order they should be listed.

        Returns:
            True if the registry accepted the update, False otherwise.
        """
        try:
            document = McpServerDocument.from_dict(self.get_mcp_server_raw(mcp_name)).with_tools(tools)
            params = document.update_params(mcp_name)
            tool_names = [tool.name for tool in document.config.tool_spec.tools]
            logger.info(f"update mcp tools of {mcp_name}, tools {tool_names}")
            response = self.client.put(url=self.mcp_url, data=params,
                                       headers={"Content-Type": FORM_CONTENT_TYPE})
        except Exception as e:
            logger.warning(f"failed to update mcp tools list of {mcp_name}, caused: {e}")
            return False

        if response.status_code != 200:
            logger.warning(f"failed to update mcp tools list of {mcp_name}, caused: {response.text}")
            return False
        return True

    def as_tool(self) -> StructuredTool:
        """Wraps the MCP server listing as a LangChain StructuredTool.

        Returns:
            A StructuredTool for looking up MCP servers.
        """
        return StructuredTool.from_function(func=lambda: [server.to_dict() for server in self.get_mcp_servers()],
                                            name="mcp_server_lookup",
                                            description="Gets all available MCP servers and how to connect to them")

    def _get_page(self, page_no: int, page_size: int) -> dict[str, Any]:
        response = self.client.get(url=f"{self.mcp_url}/list",
                                   params={"pageNo": page_no, "pageSize": page_size},
                                   headers={"Content-Type": JSON_CONTENT_TYPE})
        if response.status_code != 200:
            raise ValueError(f"unexpected status {response.status_code}, response: {response.text}")
        return _response_data(response)


def load_registry_client(config: Settings = settings) -> NacosRegistryClient:
    """Creates a registry client from the environment configuration.

    Raises:
        ValueError: If NACOS_PASSWORD is not set.
    """
    return NacosRegistryClient(
        nacos_addr=config.nacos_addr,
        user_name=config.nacos_user_name,
        password=config.nacos_password or "",
        timeout=config.request_timeout,
        extra_headers=config.extra_headers,
    )
