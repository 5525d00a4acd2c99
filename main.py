"""
Command-line entry point for the plan step executor.

Runs a plan file against the configured tool registry, lists the registry
catalog, or checks the configuration.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from config import Settings
from executor_agent.execution.models import Plan, RequestContext
from executor_agent.observability.telemetry_service import TelemetryService
from executor_agent.runtime.runtime_builder import ExecutorRuntimeBuilder


def setup_logging(log_level: str = "INFO") -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler('plan_executor.log')
        ]
    )


def load_plan(path: Path) -> Plan:
    """Read a plan from a JSON file (camelCase or snake_case keys)."""
    data = json.loads(path.read_text(encoding="utf-8"))
    return Plan.model_validate(data.get("plan", data))


async def run_plan(settings: Settings, plan_path: Path, query: str) -> int:
    """Execute a plan file and print the execution report as JSON."""
    plan = load_plan(plan_path)
    request_context = RequestContext(user_query=query or plan.goal, agent_chain=["executor"])

    telemetry_service = TelemetryService(settings)
    telemetry_service.initialize()

    try:
        async with ExecutorRuntimeBuilder(settings=settings, telemetry_service=telemetry_service) as runtime:
            report = await runtime.engine.execute_plan(plan, request_context)
    finally:
        telemetry_service.shutdown()

    print(report.model_dump_json(indent=2, by_alias=True))
    if report.requires_user_feedback:
        for question in report.questions:
            print(f"\nQuestion for the user ({question.category.value}): {question.question}", file=sys.stderr)
    return 0 if report.overall_success else 1


async def list_catalog(settings: Settings) -> int:
    """Print the tools and workflow templates exposed by the registry."""
    async with ExecutorRuntimeBuilder(settings=settings) as runtime:
        catalog = await runtime.registry.load_catalog()

    for tool in catalog.tools:
        required = ", ".join(tool.required_params) or "none"
        print(f"tool    {tool.name}  (required: {required})")
    for prompt in catalog.prompts:
        required = ", ".join(prompt.required_arguments) or "none"
        print(f"prompt  {prompt.name}  (required: {required})")
    return 0


def validate_configuration(settings: Settings) -> int:
    """Report which services are configured."""
    problems = []
    if not settings.azure_openai and not settings.openai:
        problems.append("No chat completion service configured (AZURE_OPENAI_* or OPENAI_API_KEY)")
    if not settings.tool_registry.server_url:
        problems.append("No tool registry configured (MCP_SERVER_URL)")

    print(f"Max attempts per step: {settings.executor.max_attempts}")
    print(f"Retry backoff: {settings.executor.retry_backoff_seconds}s x attempt")
    for problem in problems:
        print(f"Warning: {problem}")
    return 1 if problems else 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Plan step executor")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Execute a plan file")
    run_parser.add_argument("plan", type=Path, help="Path to a plan JSON file")
    run_parser.add_argument("--query", default="", help="Original user query (defaults to the plan goal)")
    run_parser.add_argument("--registry-url", default=None, help="Override MCP_SERVER_URL")

    tools_parser = subparsers.add_parser("tools", help="List registry tools and workflow templates")
    tools_parser.add_argument("--registry-url", default=None, help="Override MCP_SERVER_URL")

    subparsers.add_parser("validate", help="Validate configuration")

    args = parser.parse_args()

    setup_logging(args.log_level)
    load_dotenv()

    settings = Settings()
    if getattr(args, "registry_url", None):
        settings.tool_registry = settings.tool_registry.model_copy(update={"server_url": args.registry_url})

    if args.command == "run":
        sys.exit(asyncio.run(run_plan(settings, args.plan, args.query)))
    elif args.command == "tools":
        sys.exit(asyncio.run(list_catalog(settings)))
    elif args.command == "validate":
        sys.exit(validate_configuration(settings))


if __name__ == "__main__":
    main()
