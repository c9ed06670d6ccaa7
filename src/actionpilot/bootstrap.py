"""Bootstrap - initialize the ActionPilot environment.

Creates the data directories and checks that the tool configuration loads.
Safe to call multiple times.
"""

import structlog

from actionpilot.config import settings
from actionpilot.kernel.tools.tool_registry import ToolRegistry

logger = structlog.get_logger()


def build_tool_registry() -> ToolRegistry:
    """Registry from ``tool_config_path`` when set, built-in tools otherwise."""
    if settings.tool_config_path:
        return ToolRegistry.from_file(settings.tool_config_path)
    return ToolRegistry()


def bootstrap() -> ToolRegistry:
    """Initialize the ActionPilot environment and return the tool registry."""
    settings.setup_logging()
    logger.info("bootstrapping_actionpilot", root=str(settings.data_root))

    settings.ensure_directories()
    registry = build_tool_registry()

    logger.info("bootstrap_complete", tools=registry.supported_tool_names())
    return registry
