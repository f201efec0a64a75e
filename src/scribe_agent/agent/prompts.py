from __future__ import annotations

from typing import Any, Sequence

from jinja2 import Environment, StrictUndefined

from ..tools.registry import ToolDefinition

SYSTEM_PROMPT_TEMPLATE = """\
You are Scribe, an assistant working inside the user's notes vault.
Answer in markdown. Use the available tools when you need to look at or change
the vault, then explain what you did.
{% if memory %}

## Vault memory
{{ memory }}
{% endif %}
{% if context_files %}

## Context files
The user attached these notes to the conversation.
{% for file in context_files %}

### {{ file.path }}
{{ file.content }}
{% if file.truncated %}
[truncated]
{% endif %}
{% endfor %}
{% endif %}
{% if tools %}

## Tools
{% for tool in tools %}
- {{ tool.name }}: {{ tool.description }}
{% endfor %}
Read before you write, and only delete when the user asked for it.
{% else %}

No tools are available in this session.
{% endif %}
"""

FOLLOW_UP_INSTRUCTION = "Respond to the user based on the tool execution results."
SUMMARY_PROMPT = "Please summarize what you just did with the tools."


class PromptBuilder:
    def __init__(self, template: str = SYSTEM_PROMPT_TEMPLATE) -> None:
        self.env = Environment(undefined=StrictUndefined, trim_blocks=True, lstrip_blocks=True)
        self.template = template

    def system_prompt(
        self,
        tools: Sequence[ToolDefinition],
        memory: str | None = None,
        template: str | None = None,
        context_files: Sequence[Any] = (),
    ) -> str:
        """Render the system prompt.

        ``context_files`` items need ``path``, ``content`` and ``truncated``
        attributes (see :class:`scribe_agent.session_manager.ContextFile`).
        """
        source = template or self.template
        return self.env.from_string(source).render(
            tools=list(tools), memory=memory or "", context_files=list(context_files)
        ).strip()
