# ragchat/prompts/prompt_builder.py

from typing import List, Optional, Sequence

from ragchat.models import ContextSnippet, Message
from ragchat.prompts.system_prompts import RETRIEVAL_INSTRUCTION


def build_context_block(snippets: Sequence[ContextSnippet]) -> str:
    """
    Render snippets as a labeled list:

        Context 1 from "title" (chunk 3):
        <text>

    Title and chunk parts are omitted when unknown. Chunk numbers are
    1-based for display.
    """

    entries = []

    for i, snippet in enumerate(snippets, start=1):

        header = [f"Context {i}"]

        if snippet.title:
            header.append(f'from "{snippet.title}"')

        if snippet.index is not None:
            header.append(f"(chunk {snippet.index + 1})")

        entries.append(f"{' '.join(header)}:\n{snippet.text}")

    return "\n\n".join(entries)


def build_context_message(snippets: Sequence[ContextSnippet]) -> Optional[Message]:

    if not snippets:
        return None

    return Message(
        role="system",
        content=f"{RETRIEVAL_INSTRUCTION}\n\n{build_context_block(snippets)}",
    )


def build_chat_messages(
    system_prompt: str,
    context_messages: Sequence[Message],
    history: Sequence[Message],
    user_message: Message,
    max_history: int,
) -> List[Message]:
    """
    Ordered prompt: system prompt, optional retrieval context, the most
    recent max_history messages of prior history, then the new user message.
    """

    recent = list(history)[-max_history:] if max_history > 0 else []

    return [
        Message(role="system", content=system_prompt),
        *context_messages,
        *recent,
        user_message,
    ]
