"""Tool catalog translation into provider tool-schema dialects."""

from __future__ import annotations

from collections.abc import Collection, Mapping
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from relay.models import ModelType

if TYPE_CHECKING:
    from relay.interfaces import PluginCatalog

logger = logging.getLogger(__name__)

CODE_INTERPRETER_TOOL = "code_interpreter"
DEEPWIKI_TOOL = "deepwiki"
DEEP_SEARCH_TOOL = "deep_search"
CSV_READER_TOOL = "csv_reader"

_DEEPWIKI_SERVER_URL = "https://mcp.deepwiki.com/mcp"

# Built-ins only the OpenAI Responses API executes server-side.
PROVIDER_NATIVE_TOOLS: dict[str, frozenset[ModelType]] = {
    CODE_INTERPRETER_TOOL: frozenset({ModelType.OPENAI}),
    DEEPWIKI_TOOL: frozenset({ModelType.OPENAI}),
}

# Off unless a user or session turns them on explicitly.
EXPLICIT_ACTIVATION_TOOLS: frozenset[str] = frozenset({DEEP_SEARCH_TOOL})

_CHAT_COMPLETIONS_FAMILY = frozenset({ModelType.DEEPSEEK, ModelType.GROK, ModelType.QWEN})


@dataclass(frozen=True)
class ToolDefinition:
    """A plugin as advertised to models."""

    name: str
    description: str = ""
    #: JSON Schema of the arguments; None for provider-native built-ins.
    parameters: dict[str, Any] | None = None
    plugin_id: str | None = None

    @property
    def key(self) -> str:
        return self.plugin_id or self.name

    @classmethod
    def from_model(
        cls,
        name: str,
        description: str,
        arguments: type[BaseModel],
        *,
        plugin_id: str | None = None,
    ) -> ToolDefinition:
        """Build a definition whose parameters come from a pydantic model."""
        return cls(
            name=name,
            description=description,
            parameters=arguments.model_json_schema(),
            plugin_id=plugin_id,
        )


def _native_tool(name: str) -> dict[str, Any] | None:
    if name == CODE_INTERPRETER_TOOL:
        return {"type": "code_interpreter", "container": {"type": "auto"}}
    if name == DEEPWIKI_TOOL:
        return {
            "type": "mcp",
            "server_label": "deepwiki",
            "server_url": _DEEPWIKI_SERVER_URL,
            "require_approval": "never",
        }
    return None


def format_tool(model_type: ModelType, definition: ToolDefinition) -> dict[str, Any] | None:
    """Reshape one definition for *model_type*.

    Returns None (with a log line) when the definition cannot be sent, for
    instance when it has no parameter schema.

    OpenAI Responses uses the flat function shape; the OpenAI-compatible
    chat endpoints (DeepSeek, Grok, Qwen) use the nested ``function`` object.
    Gemini declarations are returned bare and wrapped by ``format_tools``.
    """
    native = PROVIDER_NATIVE_TOOLS.get(definition.name)
    if native is not None:
        if model_type not in native:
            logger.debug("Tool %s is not available for %s", definition.name, model_type.value)
            return None
        return _native_tool(definition.name)

    if not definition.name:
        logger.warning("Skipping tool without a name")
        return None
    if not isinstance(definition.parameters, dict):
        logger.warning("Skipping tool %s: no parameter schema", definition.name)
        return None

    if model_type is ModelType.OPENAI:
        return {
            "type": "function",
            "name": definition.name,
            "description": definition.description,
            "parameters": definition.parameters,
        }
    if model_type is ModelType.ANTHROPIC:
        return {
            "name": definition.name,
            "description": definition.description,
            "input_schema": definition.parameters,
        }
    if model_type is ModelType.GEMINI:
        return {
            "name": definition.name,
            "description": definition.description,
            "parameters": definition.parameters,
        }
    if model_type in _CHAT_COMPLETIONS_FAMILY:
        return {
            "type": "function",
            "function": {
                "name": definition.name,
                "description": definition.description,
                "parameters": definition.parameters,
            },
        }
    logger.debug("Model type %s does not take tools", model_type.value)
    return None


def format_tools(
    model_type: ModelType, definitions: Collection[ToolDefinition]
) -> list[dict[str, Any]] | None:
    """Format every definition, skipping the ones that fail."""
    formatted: list[dict[str, Any]] = []
    for definition in definitions:
        try:
            tool = format_tool(model_type, definition)
        except Exception:
            logger.warning("Failed to format tool %s", definition.name, exc_info=True)
            continue
        if tool is not None:
            formatted.append(tool)

    if not formatted:
        return None
    if model_type is ModelType.GEMINI:
        return [{"functionDeclarations": formatted}]
    return formatted


class ToolDefinitionTranslator:
    """Pick the caller's active plugins and shape them for a provider."""

    def __init__(
        self,
        catalog: PluginCatalog,
        *,
        explicit_activation: frozenset[str] = EXPLICIT_ACTIVATION_TOOLS,
    ) -> None:
        self._catalog = catalog
        self._explicit_activation = explicit_activation

    def _is_active(
        self,
        definition: ToolDefinition,
        preferences: Mapping[str, bool],
        session_plugin_ids: Collection[str] | None,
        enable_deep_search: bool,
    ) -> bool:
        if enable_deep_search and definition.name == DEEP_SEARCH_TOOL:
            return True
        if session_plugin_ids is not None:
            return definition.key in session_plugin_ids
        explicit = preferences.get(definition.key)
        if definition.name in self._explicit_activation:
            return explicit is True
        return explicit is not False

    async def get_tool_definitions(
        self,
        model_type: ModelType,
        *,
        preferences: Mapping[str, bool] | None = None,
        session_plugin_ids: Collection[str] | None = None,
        enable_deep_search: bool = False,
    ) -> list[dict[str, Any]] | None:
        """Return the provider-shaped tool list, or None when nothing is active.

        Never raises: catalog failures and unformattable tools are logged and
        skipped.
        """
        if model_type.is_image_generator:
            return None
        try:
            plugins = list(await self._catalog.list_plugins())
        except Exception:
            logger.exception("Failed to load plugin catalog")
            return None

        prefs = preferences or {}
        active = [
            p
            for p in plugins
            if self._is_active(p, prefs, session_plugin_ids, enable_deep_search)
        ]
        if not active:
            return None
        logger.debug(
            "Active tools for %s: %s", model_type.value, [p.name for p in active]
        )
        return format_tools(model_type, active)
