"""Oracle-backed reasoning components used during step execution."""

from executor_agent.reasoning.coordinator import Coordinator
from executor_agent.reasoning.error_handler import ErrorHandler
from executor_agent.reasoning.plan_validator import PlanValidator
from executor_agent.reasoning.question_generator import QuestionGenerator

__all__ = ["Coordinator", "ErrorHandler", "PlanValidator", "QuestionGenerator"]
