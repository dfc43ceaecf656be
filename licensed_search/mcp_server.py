#!/usr/bin/env python3
"""
Licensed Search MCP Server
Exa web search with Copyright.sh licensing: license checks per result URL,
optional x402 licensed fetch, and usage logging to the ledger.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from mcp import types
from mcp.server import Server
from mcp.server.stdio import stdio_server
from pydantic import ValidationError

from . import __version__
from .config.settings import MCPConfig, settings
from .errors import ConfigurationError
from .licensing.fetcher import LicensedFetcher
from .licensing.ledger import LedgerService
from .orchestrator import SearchOrchestrator
from .schemas import SearchToolArgs, tool_input_schema
from .search.exa_client import ExaSearchClient
from .search.fetcher import ContentFetcher
from .utils.tokens import TokenEstimator

logger = logging.getLogger(__name__)

SERVER_NAME = "copyrightsh-exa-licensed-mcp"
TOOL_NAME = "exa_licensed_search"
TOOL_DESCRIPTION = (
    "Exa web search with Copyright.sh licensing: checks the license of every result URL, "
    "optionally fetches results using x402 (HTTP 402) and records usage in the ledger."
)


class LicensedSearchMCPServer:
    """Serveur MCP pour recherche web avec récupération licenciée"""

    def __init__(self, config: Optional[MCPConfig] = None, orchestrator: Optional[SearchOrchestrator] = None):
        self.config = config or settings.config

        if orchestrator is None:
            self.search_client = ExaSearchClient(
                api_key=self.config.search_api.api_key,
                base_url=self.config.search_api.base_url,
                timeout_ms=self.config.search_api.timeout_ms,
            )
            self.ledger = LedgerService(self.config.ledger)
            self.fetcher = ContentFetcher(
                timeout_ms=self.config.fetch.direct_fetch_timeout_ms,
                user_agent=self.config.fetch.user_agent,
            )
            self.tokens = TokenEstimator()
            orchestrator = SearchOrchestrator(
                search_client=self.search_client,
                ledger=self.ledger,
                licensed_fetcher=LicensedFetcher(self.ledger, self.fetcher),
                token_estimator=self.tokens,
                fetch_concurrency=self.config.fetch.concurrency,
                default_max_chars=self.config.fetch.default_max_chars,
            )
        else:
            self.search_client = orchestrator.search_client
            self.ledger = orchestrator.ledger
            self.fetcher = orchestrator.licensed_fetcher.content_fetcher
            self.tokens = orchestrator.tokens
        self.orchestrator = orchestrator

        self.server = Server(SERVER_NAME)
        self._setup_handlers()

        logger.info("Serveur MCP de recherche licenciée initialisé")
        if self.config.debug:
            logger.debug(f"Configuration: {json.dumps(settings.to_dict())}")

    def _setup_handlers(self):
        """Setup MCP protocol handlers"""

        @self.server.list_tools()
        async def handle_list_tools() -> List[types.Tool]:
            return self.list_tools()

        @self.server.call_tool()
        async def handle_call_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
            return await self.call_tool(name, arguments)

    def list_tools(self) -> List[types.Tool]:
        """List available tools"""
        return [
            types.Tool(
                name=TOOL_NAME,
                description=TOOL_DESCRIPTION,
                inputSchema=tool_input_schema(),
            )
        ]

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]]) -> List[types.TextContent]:
        """Handle tool calls.

        Invalid arguments and search API failures are raised, which the MCP
        server reports as a failed tool call. Licensing degradations are part
        of the returned JSON.
        """
        if name != TOOL_NAME:
            raise ValueError(f"Unknown tool: {name}")

        try:
            args = SearchToolArgs.model_validate(arguments or {})
        except ValidationError as e:
            raise ValueError(f"Invalid arguments for {TOOL_NAME}: {e}") from e

        try:
            result = await self.orchestrator.search(args)
        except Exception as e:
            logger.error(f"Search error: {e}", exc_info=True)
            raise

        return [types.TextContent(
            type="text",
            text=json.dumps(result, indent=2, ensure_ascii=False)
        )]

    async def cleanup(self):
        """Nettoyage des ressources"""
        logger.info("Nettoyage des ressources...")

        await self.search_client.close()
        await self.fetcher.close()
        await self.ledger.close()
        self.tokens.cleanup()

        logger.info("Nettoyage terminé")

    async def _serve_stdio(self):
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(read_stream, write_stream, self.server.create_initialization_options())

    async def run_server(self):
        """Run the MCP server until stdin closes or SIGINT/SIGTERM arrives"""
        logger.info("Starting MCP stdio server...")

        loop = asyncio.get_running_loop()
        stop = asyncio.Event()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
                installed.append(sig)
            except NotImplementedError:
                logger.debug(f"Signal handler for {sig.name} unsupported on this platform")

        serve_task = asyncio.create_task(self._serve_stdio())
        stop_task = asyncio.create_task(stop.wait())
        try:
            done, _ = await asyncio.wait({serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            if stop_task in done:
                logger.info("Arrêt demandé, fermeture du transport MCP")
        finally:
            for task in (serve_task, stop_task):
                task.cancel()
            await asyncio.gather(serve_task, stop_task, return_exceptions=True)
            for sig in installed:
                loop.remove_signal_handler(sig)

        if serve_task.done() and not serve_task.cancelled() and serve_task.exception() is not None:
            raise serve_task.exception()


def list_tool_names() -> List[str]:
    return [TOOL_NAME]


def doctor(config: Optional[MCPConfig] = None) -> int:
    """Print the configuration status; returns the process exit code."""
    config = config or settings.config
    issues = []
    if not config.search_api.api_key:
        issues.append("EXA_API_KEY missing")
    if not config.ledger.api_key:
        issues.append("COPYRIGHTSH_LEDGER_API_KEY missing (required for acquire + usage logging)")

    exa_key = config.search_api.api_key
    ledger_key = config.ledger.api_key
    print("Copyright.sh Exa MCP Doctor")
    print(f"- EXA_API_KEY: {f'set ({exa_key[:6]}…)' if exa_key else 'MISSING'}")
    print(f"- COPYRIGHTSH_LEDGER_API: {config.ledger.api_url}")
    print(f"- COPYRIGHTSH_LEDGER_API_KEY: {f'set ({ledger_key[:4]}…)' if ledger_key else 'MISSING'}")
    print(f"- License tracking: {'on' if config.ledger.enable_tracking else 'off'}, "
          f"cache: {'on' if config.ledger.enable_cache else 'off'}")

    if issues:
        print(f"Status: FAILED - {'; '.join(issues)}")
        return 1
    print("Status: Ready")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="licensed-search-mcp", description=TOOL_DESCRIPTION)
    parser.add_argument("--list-tools", action="store_true", help="print the tool names and exit")
    parser.add_argument("--doctor", action="store_true", help="check the configuration and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


async def serve() -> int:
    """Run the stdio MCP server; returns the process exit code."""
    try:
        search_service = LicensedSearchMCPServer()
    except ConfigurationError as e:
        logger.error(f"{e}; cannot start the MCP server")
        return 1

    try:
        await search_service.run_server()
    except Exception as e:
        logger.error(f"Erreur fatale: {e}", exc_info=True)
        return 1
    finally:
        await search_service.cleanup()
    return 0


def main(argv: Optional[List[str]] = None):
    """Point d'entrée principal du serveur"""
    args = parse_args(argv)

    if args.list_tools:
        print(json.dumps(list_tool_names(), indent=2))
        return
    if args.doctor:
        sys.exit(doctor())

    settings.setup_logging()

    # Validation de la configuration
    if settings.validate_config():
        logger.error("Configuration invalide, arrêt du serveur")
        sys.exit(1)

    if settings.config.server_mode == "http":
        from .server import run_http_server
        logger.info("Starting HTTP server mode...")
        run_http_server()
        return

    sys.exit(asyncio.run(serve()))


if __name__ == "__main__":
    main()
