"""Conversation memory tools.

Tools the calling agent uses to log an exchange and later recall it
("find that conversation where we talked about X, and what came before
and after").
"""

from typing import Any

from pydantic import Field

from src.memory.controller import MemoryController
from src.tools.base import ToolParams, ToolResult
from src.tools.registry import registry


def _strip_embeddings(value: Any) -> Any:
    """Drop raw vectors from a dumped payload; callers only need the text."""
    if isinstance(value, dict):
        return {k: _strip_embeddings(v) for k, v in value.items() if k != "embedding"}
    if isinstance(value, list):
        return [_strip_embeddings(v) for v in value]
    return value


# -- start_conversation ------------------------------------------------------


class StartConversationParams(ToolParams):
    user_id: str = Field(description="ID of the user the conversation belongs to")
    title: str | None = Field(default=None, description="Conversation title")
    metadata: dict | None = Field(default=None, description="Extra key-value pairs")


@registry.tool(
    name="start_conversation",
    description=(
        "Start a new conversation for a user. Later messages from this user "
        "are appended to it until another conversation is started."
    ),
    category="memory",
    params_model=StartConversationParams,
)
async def start_conversation(
    user_id: str, title: str | None = None, metadata: dict | None = None
) -> ToolResult:
    controller = MemoryController.get()
    conversation_id = await controller.start_conversation(user_id, title, metadata)
    return ToolResult(data={"conversation_id": conversation_id})


# -- add_user_message / add_assistant_message --------------------------------


class AddMessageParams(ToolParams):
    user_id: str = Field(description="ID of the user whose conversation to append to")
    content: str = Field(description="Message text")
    metadata: dict | None = Field(default=None, description="Extra key-value pairs")


@registry.tool(
    name="add_user_message",
    description="Record something the user said in their active conversation.",
    category="memory",
    params_model=AddMessageParams,
)
async def add_user_message(
    user_id: str, content: str, metadata: dict | None = None
) -> ToolResult:
    controller = MemoryController.get()
    message_id = await controller.add_user_message(user_id, content, metadata)
    return ToolResult(data={"message_id": message_id})


@registry.tool(
    name="add_assistant_message",
    description="Record an assistant reply in the user's active conversation.",
    category="memory",
    params_model=AddMessageParams,
)
async def add_assistant_message(
    user_id: str, content: str, metadata: dict | None = None
) -> ToolResult:
    controller = MemoryController.get()
    message_id = await controller.add_assistant_message(user_id, content, metadata)
    return ToolResult(data={"message_id": message_id})


# -- get_current_conversation ------------------------------------------------


class CurrentConversationParams(ToolParams):
    user_id: str = Field(description="ID of the user")


@registry.tool(
    name="get_current_conversation",
    description="Return every message of the user's active conversation, oldest first.",
    category="memory",
    params_model=CurrentConversationParams,
)
async def get_current_conversation(user_id: str) -> ToolResult:
    controller = MemoryController.get()
    messages = await controller.get_current_conversation(user_id)
    payload = [m.model_dump(mode="json") for m in messages]
    return ToolResult(data={"messages": _strip_embeddings(payload)})


# -- search_reference --------------------------------------------------------


class SearchReferenceParams(ToolParams):
    reference_text: str = Field(description="Text resembling the exchange to find")


@registry.tool(
    name="search_reference",
    description=(
        "Find 'that conversation where we talked about X'. Returns the "
        "conversation containing the most similar message and its position."
    ),
    category="memory",
    params_model=SearchReferenceParams,
)
async def search_reference(reference_text: str) -> ToolResult:
    controller = MemoryController.get()
    match = await controller.find_by_reference(reference_text)
    if match is None:
        return ToolResult(data={"found": False})
    return ToolResult(data={"found": True, **_strip_embeddings(match.model_dump(mode="json"))})


# -- remember_with_context ---------------------------------------------------


class RememberWithContextParams(ToolParams):
    query: str = Field(description="Text resembling the exchange to recall")
    window_size: int | None = Field(
        default=None,
        ge=0,
        le=50,
        description="Messages to include before and after the match (default 5)",
    )


@registry.tool(
    name="remember_with_context",
    description=(
        "Recall a past exchange similar to the query together with the "
        "messages that came right before and after it."
    ),
    category="memory",
    params_model=RememberWithContextParams,
)
async def remember_with_context(query: str, window_size: int | None = None) -> ToolResult:
    controller = MemoryController.get()
    window = await controller.remember_with_context(query, window_size)
    if window is None:
        return ToolResult(data={"found": False})
    return ToolResult(data={"found": True, **_strip_embeddings(window.model_dump(mode="json"))})


# -- get_all_history ---------------------------------------------------------


@registry.tool(
    name="get_all_history",
    description="Return every stored conversation with its messages.",
    category="memory",
)
async def get_all_history() -> ToolResult:
    controller = MemoryController.get()
    history = await controller.get_all_history()
    return ToolResult(data=_strip_embeddings(history.model_dump(mode="json")))


# -- keyword search ----------------------------------------------------------


class KeywordSearchParams(ToolParams):
    keyword: str = Field(description="Case-insensitive text to look for")
    limit: int = Field(default=10, ge=1, le=100, description="Maximum number of results")


@registry.tool(
    name="search_conversations",
    description="Find conversations whose title, metadata or messages contain a keyword.",
    category="memory",
    params_model=KeywordSearchParams,
)
async def search_conversations(keyword: str, limit: int = 10) -> ToolResult:
    controller = MemoryController.get()
    conversations = await controller.search_conversations(keyword, limit)
    return ToolResult(data={
        "conversations": [c.model_dump(mode="json") for c in conversations],
        "count": len(conversations),
    })


@registry.tool(
    name="search_messages",
    description="Find messages containing a keyword, newest first.",
    category="memory",
    params_model=KeywordSearchParams,
)
async def search_messages(keyword: str, limit: int = 10) -> ToolResult:
    controller = MemoryController.get()
    messages = await controller.search_messages(keyword, limit)
    return ToolResult(data={
        "messages": _strip_embeddings([m.model_dump(mode="json") for m in messages]),
        "count": len(messages),
    })
