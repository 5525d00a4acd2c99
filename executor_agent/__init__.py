"""
Plan Step Execution Engine

Executes multi-step plans against a registry of external tools. Parameters are
resolved from the results of earlier steps, failures are recovered with the
help of a language-model-backed reasoning oracle, and steps that cannot
proceed on their own are turned into structured questions for the user.

Usage:
    from config import Settings
    from executor_agent.runtime import ExecutorRuntimeBuilder

    async with ExecutorRuntimeBuilder(settings=Settings()) as runtime:
        report = await runtime.engine.execute_plan(plan, request_context)
"""

__version__ = "1.0.0"
