"""Example of using Quest State through MCP.

This demonstrates how an editor front end would drive the engine: create a
character, drop markers into the text, keep offsets in sync after an edit,
and ask for the character's state at the cursor.
"""

import asyncio
import json
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client


def _data(result):
    return json.loads(result.content[0].text)


async def run_example():
    """Run example MCP interactions."""
    # Connect to the MCP server
    server_params = StdioServerParameters(
        command="quest-state-mcp",
        env={
            "QUEST_PROJECT_PATH": "example_story.qsd",
            "QUEST_LOG_LEVEL": "WARNING",
        },
    )

    async with stdio_client(server_params) as (read, write):
        async with ClientSession(read, write) as session:
            # Initialize connection
            await session.initialize()

            # List available tools
            tools = await session.list_tools()
            print(f"Available tools: {[t.name for t in tools.tools]}")

            # Start from a clean project
            await session.call_tool("new_document", {})

            print("\n=== Creating entities ===")
            hero = _data(
                await session.call_tool("create_entity", {"name": "Hero", "color": "#FF6B6B"})
            )
            print(f"Hero: {hero['id']}")

            print("\n=== Placing markers ===")
            sheet = _data(
                await session.call_tool(
                    "insert_marker",
                    {
                        "entity_id": hero["id"],
                        "position": 12,
                        "changes": [
                            {"field": "stats.HP", "change_type": "absolute", "value": 50},
                            {"field": "stats.Level", "change_type": "absolute", "value": 1},
                        ],
                        "visual": {"icon": "📜"},
                        "description": "Character sheet",
                    },
                )
            )
            await session.call_tool(
                "insert_marker",
                {
                    "entity_id": hero["id"],
                    "position": 140,
                    "changes": [
                        {"field": "stats.HP", "change_type": "relative", "value": -15},
                        {"field": "inventory.sword", "change_type": "absolute", "value": "Rusty Blade"},
                    ],
                    "visual": {"icon": "⚔️", "color": "#FF6B6B"},
                },
            )

            # The author typed a paragraph above the first marker
            print("\n=== Syncing positions ===")
            moved = _data(
                await session.call_tool(
                    "update_marker_positions",
                    {"updates": [{"marker_id": sheet["id"], "position": 80}]},
                )
            )
            print(f"Moved: {moved['moved']}")

            print("\n=== Hero's state at offset 100 ===")
            state = _data(
                await session.call_tool(
                    "get_entity_state", {"entity_id": hero["id"], "position": 100}
                )
            )
            for field, value in state["fields"].items():
                print(f"  - {field}: {value}")

            print("\n=== Hero's state at offset 200 ===")
            state = _data(
                await session.call_tool(
                    "get_entity_state", {"entity_id": hero["id"], "position": 200}
                )
            )
            for field, value in state["fields"].items():
                print(f"  - {field}: {value}")

            saved = _data(
                await session.call_tool(
                    "save_document",
                    {
                        "path": "example_story",
                        "document_payload": {"type": "doc", "content": []},
                    },
                )
            )
            print(f"\nSaved to {saved['path']}")


if __name__ == "__main__":
    asyncio.run(run_example())
