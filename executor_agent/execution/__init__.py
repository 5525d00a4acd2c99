"""Plan execution: data model, step executor, state management and the outer loop.

Import from the submodules directly; the reasoning components depend on
:mod:`executor_agent.execution.models`, so this package does not import the
executor or engine eagerly.
"""
