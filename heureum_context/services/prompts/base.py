# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Fixed prompt texts used by context management.

Summary prompts follow the same guidelines as the agent prompts:
  1. Be explicit about the output format.
  2. Use XML tags to separate the material from the instructions.
  3. Tell the model not to continue the conversation it is reading.
"""

SUMMARY_MESSAGE_NAME = "conversation_summary"
SUMMARY_SEPARATOR = "\n\n---\n\n"
SUMMARY_HEADER = "[Conversation summary {stamp}]"
SUMMARY_FAILED_NOTE = "(automatic summary failed{detail})"

TRIM_NOTICE_NAME = "conversation_trim_notice"
TRIM_NOTICE = (
    "[Conversation trimmed] Earlier history was discarded because the context "
    "grew too long. If anything important was lost, restate it in your next message."
)

HISTORY_PLACEHOLDER = "{{history}}"
EMPTY_HISTORY_TEXT = "(no content)"
DIGEST_ELLIPSIS = "…"

SUMMARY_SYSTEM_PROMPT = (
    "You are a context summarization assistant. The conversation is about to "
    "exceed the model's context window, so you compress it while keeping key "
    "facts and open work items.\n\n"
    "Do NOT continue the conversation. Do NOT answer any questions in it. "
    "ONLY output the summary, using this format:\n"
    "1. Key points of the conversation\n"
    "2. Pending items"
)

SUMMARY_USER_TEMPLATE = """<conversation>
{{history}}
</conversation>

Summarize the conversation above using the required format, in no more than 800 words.
Preserve exact file paths, function names, and error messages."""

SUMMARY_PROMPT_NAME = "summary_prompt"
SUMMARY_USER_PROMPT_NAME = "summary_prompt_user"
ENGLISH_PROMPT_SUFFIX = "__en"
