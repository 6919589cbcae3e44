"""
Centralized prompts.

NEVER hardcode prompts inside workflow or model client.
Always import from here. The chat system prompt itself is configurable
(Settings.system_prompt); these are the fixed instruction texts.
"""


RETRIEVAL_INSTRUCTION = (
    "Use the reference material below to answer the user. "
    "If none of it is relevant, answer based on your general knowledge."
)


IMAGE_EXTRACTION_PROMPT = (
    "Extract the textual content from this image. "
    "If there is no readable text, reply with a short description."
)
