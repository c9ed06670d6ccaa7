"""Tool layer for ActionPilot.

Provides tool definitions, argument schema validation, and dispatch.
"""

from actionpilot.kernel.tools.tool_registry import (
    ToolRegistry,
    ToolSpec,
    load_tool_specs,
)
from actionpilot.kernel.tools.schema_validator import SchemaValidator
from actionpilot.kernel.tools.dispatcher import (
    CallableToolDispatcher,
    DispatchOutcome,
    DispatchRequest,
    GatewayToolDispatcher,
    ToolDispatcher,
    interpret_gateway_response,
)

__all__ = [
    # Registry
    "ToolRegistry",
    "ToolSpec",
    "load_tool_specs",
    # Validation
    "SchemaValidator",
    # Dispatch
    "CallableToolDispatcher",
    "DispatchOutcome",
    "DispatchRequest",
    "GatewayToolDispatcher",
    "ToolDispatcher",
    "interpret_gateway_response",
]
