"""
Run Client: configured tool providers → merged catalog → chat loop.

This is the script that wires everything together. It:
1. Loads provider configs (JSON) and settings (.env / environment)
2. Connects to every enabled provider, skipping ones that fail
3. Merges their tools into one provider__tool catalog
4. Answers queries with the model, running the tools it asks for
5. Closes every provider on the way out

Usage:
    # Interactive chat (type 'quit' to exit)
    python3 run_client.py

    # One-shot query
    python3 run_client.py --query "Any weather alerts in NY?"

    # Show the merged tool catalog and exit
    python3 run_client.py --list

    # Use a different provider file
    python3 run_client.py --config my_servers.json
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from mcp_relay.bridge import describe_capability
from mcp_relay.config import RelaySettings, load_provider_configs
from mcp_relay.errors import ConfigError, RelayError
from mcp_relay.lifecycle import RelayClient
from mcp_relay.llm import OpenAIChatService
from mcp_relay.namespacer import CapabilityNamespacer

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Chat with a language model that can call tools on several MCP servers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 run_client.py --list
  python3 run_client.py --query "What's the forecast for 40.71, -74.01?"
        """,
    )
    parser.add_argument("--config", "-c", type=str, default=None, help="Provider config file (default: $MCP_RELAY_CONFIG or relay_servers.json)")
    parser.add_argument("--query", "-q", type=str, default=None, help="Answer one query and exit")
    parser.add_argument("--list", action="store_true", help="List the merged tool catalog and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    args = parser.parse_args(argv)

    load_dotenv()
    try:
        settings = RelaySettings.from_env()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(levelname)s: %(message)s",
    )

    try:
        configs = load_provider_configs(args.config or settings.config_path)
        service = None if args.list else OpenAIChatService.from_settings(settings)
    except RelayError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        with RelayClient(configs, service) as client:
            if args.list:
                catalog = CapabilityNamespacer(client.registry).build_catalog()
                print(f"\nAvailable tools ({len(catalog)}):\n")
                for entry in catalog:
                    print(describe_capability(entry))
                    print()
                return 0

            if args.query:
                try:
                    print(client.run_once(args.query))
                except RelayError as e:
                    print(f"Error: {e}", file=sys.stderr)
                    return 1
                return 0

            client.run_interactive(input, print)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except RelayError as e:
        # No providers, or a configuration defect surfaced while connecting.
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130

    print("\nMCP servers stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
