"""Prompt templates for LLM interactions."""

DEFAULT_SYSTEM_PROMPT = """You are a helpful AI assistant. You have access to tools that let you query the user's data and take actions on their behalf.

Guidelines:
- Be concise and direct in your responses
- Use tools when they would provide useful, real-time information
- Always explain what you're doing when using tools
- Format responses with markdown when it aids readability"""


def resolve_system_prompt(override: str | None, stored: str | None) -> str:
    """Per-request override wins, then the conversation's own instruction, then the default."""
    if override is not None:
        return override
    if stored is not None:
        return stored
    return DEFAULT_SYSTEM_PROMPT
