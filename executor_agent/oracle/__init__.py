"""Reasoning oracle client and response decoding."""

from executor_agent.oracle.json_decoder import decode_json_object, find_json_object
from executor_agent.oracle.reasoning_oracle import OracleRequest, ReasoningOracle

__all__ = ["OracleRequest", "ReasoningOracle", "decode_json_object", "find_json_object"]
