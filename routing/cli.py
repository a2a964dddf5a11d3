import argparse
import asyncio
import sys
from typing import List, Optional

from core.errors import ConfigError, TemplateCompileError
from core.logging import logger
from routing.engine import RoutingEngine


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Meeting copilot routing engine CLI")
    parser.add_argument("--model", type=str, default=None, help="Model short code, ollama-<name> or custom endpoint id.")
    parser.add_argument(
        "--endpoint",
        nargs=2,
        metavar=("ID", "CURL"),
        default=None,
        help="Register a custom endpoint from a curl command before running.",
    )
    parser.add_argument("--response-path", type=str, default=None, help="Dot-path to the answer in the endpoint reply.")

    commands = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (("chat", "Ask one question and print the answer."),
                            ("stream", "Ask one question and print the answer as it arrives.")):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("message", type=str, help="The question to answer.")
        command.add_argument("--image", type=str, default=None, help="Path to a still image to attach.")
        command.add_argument("--context", type=str, default=None, help="Conversation context as plain text.")
        command.add_argument("--system", type=str, default=None, help="System prompt override.")
    commands.add_parser("models", help="List models installed on the local Ollama server.")
    commands.add_parser("check", help="Test the connection to the first configured provider.")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the routing engine."""
    args = parse_args(argv)

    try:
        engine = RoutingEngine()
        if args.endpoint:
            endpoint_id, invocation = args.endpoint
            engine.save_custom_endpoint(endpoint_id, endpoint_id, invocation, args.response_path)
        if args.model:
            engine.select_model(args.model)

        if args.command == "chat":
            print(await engine.chat(args.message, args.image, args.context, args.system))
        elif args.command == "stream":
            async for fragment in engine.stream_chat(args.message, args.image, args.context, args.system):
                sys.stdout.write(fragment)
                sys.stdout.flush()
            sys.stdout.write("\n")
        elif args.command == "models":
            models = await engine.list_local_models()
            print("\n".join(models) if models else "No local models found.")
        elif args.command == "check":
            status = await engine.test_connection()
            print("OK" if status.success else f"FAILED: {status.error}")
            return 0 if status.success else 1
    except (ConfigError, TemplateCompileError, ValueError) as e:
        logger.error(f"Configuration Error: {e}")
        return 2
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    # To run: python -m routing.cli chat "What is the capital of France?"
    run()
