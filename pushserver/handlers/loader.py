"""
Startup registration of configured handler providers.
"""

import importlib
from typing import Any

from ..config import HandlerEntry
from ..exceptions import ConfigurationError
from ..structured_logging.enhanced_logging_config import get_logger
from .registry import HandlerRegistry

logger = get_logger(__name__)


def import_target(target: str) -> Any:
    """
    Import a "module.path:Attribute" target.

    Raises:
        ConfigurationError: If the module or attribute cannot be imported
    """
    module_name, _, attr = target.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            f"Cannot import handler module '{module_name}': {e}", config_key="push.handlers"
        ) from e

    try:
        return getattr(module, attr)
    except AttributeError as e:
        raise ConfigurationError(
            f"Module '{module_name}' has no attribute '{attr}'", config_key="push.handlers"
        ) from e


def load_handlers(
    registry: HandlerRegistry,
    handlers_config: dict[str, HandlerEntry],
    defaults: dict[str, Any] | None = None,
) -> list[str]:
    """
    Register every configured handler.

    Args:
        registry: Registry to populate
        handlers_config: Mapping of handler name to import target and options
        defaults: Options merged under each handler's own options (e.g. content_root)

    Returns:
        Names registered, in configuration order

    Raises:
        ConfigurationError: If a target cannot be imported
        InvalidHandlerNameError: If a name is empty or contains ':' or '/'
        DuplicateHandlerNameError: If a name is already registered
        HandlerCapabilityError: If a target is not a HandlerProvider
    """
    registered = []
    for name, entry in handlers_config.items():
        provider = import_target(entry.target)
        options = {**(defaults or {}), **entry.options}
        registry.register(name, provider, options)
        registered.append(name)

    logger.info("Handlers loaded", handlers=registered)
    return registered
