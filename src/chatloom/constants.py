"""Shared constants — default topic, prompt texts, templates, knowledge cutoffs."""

from __future__ import annotations

DEFAULT_TOPIC = "New Conversation"
BOT_HELLO_TEXT = "Hello! How can I assist you today?"

# Model used for summaries/titles when the session runs a ``gpt*`` model.
SUMMARIZE_MODEL = "gpt-4o-mini"

# Title generation starts once the transcript reaches this many estimated tokens.
SUMMARIZE_MIN_LEN = 50

DEFAULT_UNDO_WINDOW_SEC = 5.0

INPUT_PLACEHOLDER = "{{input}}"
DEFAULT_INPUT_TEMPLATE = INPUT_PLACEHOLDER

DEFAULT_SYSTEM_TEMPLATE = """\
You are ChatGPT, a large language model trained by {{ServiceProvider}}.
Knowledge cutoff: {{cutoff}}
Current model: {{model}}
Current time: {{time}}
Reply in the user's language (interface language: {{lang}}).
Latex inline: \\(x^2\\)
Latex block: $$e=mc^2$$"""

DEFAULT_SERVICE_PROVIDER = "OpenAI"

KNOWLEDGE_CUTOFF: dict[str, str] = {
    "default": "2021-09",
    "gpt-4-turbo": "2023-12",
    "gpt-4o": "2023-10",
    "gpt-4o-mini": "2023-10",
    "gpt-4.1": "2024-06",
    "gpt-4.1-mini": "2024-06",
    "claude-3-5-sonnet": "2024-04",
    "gemini-1.5-pro": "2023-11",
}

MEMORY_PROMPT_PREFIX = "This is a summary of the chat history as a recap: "

TOPIC_PROMPT = (
    "Please generate a four to five word title summarizing our conversation "
    "without any lead-in, punctuation, quotation marks, periods, symbols, bold "
    "text, or additional text. Remove enclosing quotation marks."
)

SUMMARIZE_PROMPT = (
    "Summarize the discussion briefly in 200 words or less to use as a prompt "
    "for future context."
)

ABORTED_MARKER = "[stopped]"
