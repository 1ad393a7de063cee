"""Registry of the tools available to one opsy process."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from opsy.config import ToolsConfig
from opsy.errors import ToolDefinitionError, ToolLoadError, ToolNotFoundError
from opsy.tools.definition import ToolDefinition, validate_definition
from opsy.tools.models import Runner
from opsy.tools.tool import EXEC_TOOL_NAME, Tool, new_declarative_tool, new_exec_tool

LOGGER = logging.getLogger(__name__)

BUILTIN_TOOLS_DIR = Path(__file__).resolve().parent.parent / "assets" / "tools"
DEFINITION_SUFFIXES = {".yaml", ".yml"}


class ToolRegistry:
    """Loads declarative tool definitions and resolves tools by name.

    The exec tool is always present. Readers get a snapshot of the tool
    mapping, so :meth:`load` can run while other threads read.
    """

    def __init__(
        self,
        *,
        config: ToolsConfig,
        runner: Runner,
        directory: str | Path | None = None,
    ) -> None:
        self.config = config
        self.runner = runner
        self.directory = Path(directory) if directory is not None else BUILTIN_TOOLS_DIR
        self._tools: dict[str, Tool] = {}
        self._lock = threading.Lock()

    def load(self) -> None:
        """Rebuild the tool set from the definitions directory.

        Invalid definitions are logged and skipped.
        """
        try:
            entries = sorted(self.directory.iterdir())
        except OSError as exc:
            msg = f"failed to load tools: {exc}"
            raise ToolLoadError(msg) from exc

        tools: dict[str, Tool] = {}
        for path in entries:
            if not path.is_file() or path.suffix.lower() not in DEFINITION_SUFFIXES:
                continue
            name = path.stem
            try:
                tools[name] = self._load_tool(name, path)
            except (OSError, ToolDefinitionError) as exc:
                LOGGER.error(
                    "tool_load_failed",
                    extra={"tool_name": name, "definition_file": path.name, "error": str(exc)},
                )

        # exec is injected last so a definition file cannot shadow it.
        tools[EXEC_TOOL_NAME] = new_exec_tool(self.config)

        with self._lock:
            self._tools = tools
        LOGGER.debug(
            "tools_loaded",
            extra={"directory": str(self.directory), "tools_count": len(tools)},
        )

    def get_all(self) -> dict[str, Tool]:
        with self._lock:
            return dict(self._tools)

    def get_by_name(self, name: str) -> Tool:
        with self._lock:
            tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def _load_tool(self, name: str, path: Path) -> Tool:
        definition = ToolDefinition.from_yaml(path.read_text(encoding="utf-8"))
        try:
            validate_definition(definition)
        except ToolDefinitionError as exc:
            msg = f"invalid tool definition: {name}: {exc}"
            raise ToolDefinitionError(msg) from exc
        return new_declarative_tool(name, definition, self.config, self.runner)
