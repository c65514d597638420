"""MCP server for the Quest State engine.

Exposes the engine's command surface through Model Context Protocol tools, so
an editing surface (or any MCP client) can drive it over stdio.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from quest_state.engine import QuestStateEngine
from quest_state.errors import FormatError, NotFoundError, ValidationError
from quest_state.models import EngineConfig
from quest_state.state import flatten_state

logger = logging.getLogger(__name__)

# Global engine instance (initialized on first call)
_engine: QuestStateEngine | None = None


def get_engine() -> QuestStateEngine:
    """Get or initialize the engine instance."""
    global _engine
    if _engine is None:
        # Load config from environment or use defaults
        config = EngineConfig(
            project_path=os.getenv("QUEST_PROJECT_PATH") or None,
            file_suffix=os.getenv("QUEST_FILE_SUFFIX", ".qsd"),
        )
        _engine = QuestStateEngine(config)
    return _engine


# Initialize server
server = Server("quest_state")


# -------------------------------------------------------------------------
# Tool Definitions
# -------------------------------------------------------------------------

_CHANGE_SCHEMA = {
    "type": "object",
    "properties": {
        "field": {
            "type": "string",
            "description": "Dotted field path, e.g. 'stats.HP'",
        },
        "change_type": {
            "type": "string",
            "enum": ["absolute", "relative", "remove"],
        },
        "value": {
            "type": ["number", "string", "boolean"],
            "description": "New value (absolute) or delta (relative); omit for remove",
        },
    },
    "required": ["field", "change_type"],
}

_VISUAL_SCHEMA = {
    "type": "object",
    "properties": {
        "icon": {"type": "string"},
        "color": {"type": "string", "description": "Hex color"},
    },
}

TOOLS = [
    Tool(
        name="create_entity",
        description="Create a tracked character/entity",
        inputSchema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Display name"},
                "color": {"type": "string", "description": "Hex color"},
            },
            "required": ["name"],
        },
    ),
    Tool(
        name="update_entity",
        description="Rename or recolor an entity",
        inputSchema={
            "type": "object",
            "properties": {
                "entity_id": {"type": "string"},
                "name": {"type": "string"},
                "color": {"type": "string"},
            },
            "required": ["entity_id", "name"],
        },
    ),
    Tool(
        name="delete_entity",
        description="Delete an entity and all of its markers",
        inputSchema={
            "type": "object",
            "properties": {"entity_id": {"type": "string"}},
            "required": ["entity_id"],
        },
    ),
    Tool(
        name="duplicate_entity",
        description="Copy an entity's field schema (not its markers) to a new entity",
        inputSchema={
            "type": "object",
            "properties": {
                "entity_id": {"type": "string"},
                "new_name": {"type": "string"},
            },
            "required": ["entity_id", "new_name"],
        },
    ),
    Tool(
        name="get_all_entities",
        description="List all entities",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="insert_marker",
        description="Record state changes for an entity at a document position",
        inputSchema={
            "type": "object",
            "properties": {
                "entity_id": {"type": "string"},
                "position": {"type": "integer", "minimum": 0},
                "changes": {"type": "array", "items": _CHANGE_SCHEMA},
                "visual": _VISUAL_SCHEMA,
                "description": {"type": "string"},
            },
            "required": ["entity_id", "position", "changes"],
        },
    ),
    Tool(
        name="update_marker",
        description="Edit a marker's changes, visual or description, or reassign its entity",
        inputSchema={
            "type": "object",
            "properties": {
                "marker_id": {"type": "string"},
                "entity_id": {"type": "string"},
                "changes": {"type": "array", "items": _CHANGE_SCHEMA},
                "visual": _VISUAL_SCHEMA,
                "description": {"type": "string"},
            },
            "required": ["marker_id"],
        },
    ),
    Tool(
        name="delete_marker",
        description="Delete a marker",
        inputSchema={
            "type": "object",
            "properties": {"marker_id": {"type": "string"}},
            "required": ["marker_id"],
        },
    ),
    Tool(
        name="update_marker_positions",
        description="Sync marker offsets after a document edit (unknown ids are ignored)",
        inputSchema={
            "type": "object",
            "properties": {
                "updates": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "marker_id": {"type": "string"},
                            "position": {"type": "integer", "minimum": 0},
                        },
                        "required": ["marker_id", "position"],
                    },
                },
            },
            "required": ["updates"],
        },
    ),
    Tool(
        name="get_all_markers",
        description="List all markers in document order",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="delete_field_completely",
        description="Erase a field from an entity and from every one of its markers",
        inputSchema={
            "type": "object",
            "properties": {
                "entity_id": {"type": "string"},
                "path": {"type": "string", "description": "Dotted field path"},
            },
            "required": ["entity_id", "path"],
        },
    ),
    Tool(
        name="get_entity_state",
        description="Get an entity's state as of a document position",
        inputSchema={
            "type": "object",
            "properties": {
                "entity_id": {"type": "string"},
                "position": {"type": "integer", "minimum": 0},
            },
            "required": ["entity_id", "position"],
        },
    ),
    Tool(
        name="new_document",
        description="Discard all entities and markers",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="save_document",
        description="Save entities, markers and the editor document to a project file",
        inputSchema={
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "document_payload": {
                    "description": "Editor document, stored verbatim",
                },
            },
            "required": ["path"],
        },
    ),
    Tool(
        name="load_document",
        description="Load a project file, replacing the current entities and markers",
        inputSchema={
            "type": "object",
            "properties": {"path": {"type": "string"}},
            "required": ["path"],
        },
    ),
]


# -------------------------------------------------------------------------
# MCP Handlers
# -------------------------------------------------------------------------


def _json_result(result: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(result, indent=2, ensure_ascii=False))]


def _error_result(kind: str, error: Exception) -> list[TextContent]:
    return _json_result({"error": kind, "message": str(error)})


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    engine = get_engine()
    arguments = arguments or {}

    try:
        # Route to appropriate engine method
        if name == "create_entity":
            entity = engine.create_entity(
                name=arguments["name"],
                color=arguments.get("color"),
            )
            return _json_result(entity.to_dict())

        elif name == "update_entity":
            entity = engine.update_entity(
                entity_id=arguments["entity_id"],
                name=arguments["name"],
                color=arguments.get("color"),
            )
            return _json_result(entity.to_dict())

        elif name == "delete_entity":
            engine.delete_entity(arguments["entity_id"])
            return _json_result({"deleted": arguments["entity_id"]})

        elif name == "duplicate_entity":
            entity = engine.duplicate_entity(
                entity_id=arguments["entity_id"],
                new_name=arguments["new_name"],
            )
            return _json_result(entity.to_dict())

        elif name == "get_all_entities":
            return _json_result([e.to_dict() for e in engine.get_all_entities()])

        elif name == "insert_marker":
            marker = engine.insert_marker(
                entity_id=arguments["entity_id"],
                position=arguments["position"],
                changes=arguments["changes"],
                visual=arguments.get("visual"),
                description=arguments.get("description"),
            )
            return _json_result(marker.to_dict())

        elif name == "update_marker":
            marker = engine.update_marker(
                marker_id=arguments["marker_id"],
                entity_id=arguments.get("entity_id"),
                changes=arguments.get("changes"),
                visual=arguments.get("visual"),
                description=arguments.get("description"),
            )
            return _json_result(marker.to_dict())

        elif name == "delete_marker":
            engine.delete_marker(arguments["marker_id"])
            return _json_result({"deleted": arguments["marker_id"]})

        elif name == "update_marker_positions":
            moved = engine.update_marker_positions(
                (u["marker_id"], u["position"]) for u in arguments["updates"]
            )
            return _json_result({"moved": moved})

        elif name == "get_all_markers":
            return _json_result([m.to_dict() for m in engine.get_all_markers()])

        elif name == "delete_field_completely":
            removed = engine.delete_field_completely(
                entity_id=arguments["entity_id"],
                path=arguments["path"],
            )
            return _json_result({"removed_changes": removed})

        elif name == "get_entity_state":
            state = engine.get_entity_state(
                entity_id=arguments["entity_id"],
                position=arguments["position"],
            )
            return _json_result(
                {
                    "entity_id": arguments["entity_id"],
                    "position": arguments["position"],
                    "state": state,
                    "fields": flatten_state(state),
                }
            )

        elif name == "new_document":
            engine.new_document()
            return _json_result({"ok": True})

        elif name == "save_document":
            path = engine.save_document(
                path=arguments["path"],
                document_payload=arguments.get("document_payload"),
            )
            return _json_result({"path": str(path)})

        elif name == "load_document":
            snapshot = engine.load_document(arguments["path"])
            return _json_result(snapshot.to_dict())

        else:
            return _error_result("unknown_tool", ValueError(f"Unknown tool: {name}"))

    except NotFoundError as e:
        return _error_result("not_found", e)
    except ValidationError as e:
        return _error_result("validation", e)
    except FormatError as e:
        return _error_result("format", e)
    except OSError as e:
        return _error_result("io", e)
    except KeyError as e:
        return _error_result("validation", ValueError(f"Missing argument: {e.args[0]}"))


# -------------------------------------------------------------------------
# Main Entry Point
# -------------------------------------------------------------------------


async def main():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


def run():
    """Console entry point; logs go to stderr, stdout carries the protocol."""
    logging.basicConfig(
        level=os.getenv("QUEST_LOG_LEVEL", "INFO").upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(main())


if __name__ == "__main__":
    run()
