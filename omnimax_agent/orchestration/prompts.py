"""System directive rendering.

The directive combines the persona prompt with the session identifiers and
the current date and time. It is rendered with Jinja2 and StrictUndefined so
a missing variable fails loudly instead of producing an incomplete prompt.
"""

from __future__ import annotations

from datetime import datetime

from jinja2 import Environment, StrictUndefined, UndefinedError

from omnimax_agent.orchestration.errors import ConfigurationError

DIRECTIVE_TEMPLATE = """\
{% if system_prompt %}{{ system_prompt }}

{% endif %}\
## Session
- Protocol number: {{ protocol_number }}
- Attendance (active session) id: {{ attendance_id }}
- Contact id: {{ contact_id }}
- Platform base URL: {{ base_url }}
- Current date and time: {{ now.strftime("%Y-%m-%d %H:%M:%S %Z").strip() }}

## Rules
- Messages marked as context contain the customer conversation fetched from the platform.
{% if tool_names %}\
- Available tools: {{ tool_names | join(", ") }}.
{% endif %}\
- When the task is complete, reply directly or call the `{{ finish_tool }}` tool.
"""

_environment = Environment(undefined=StrictUndefined, keep_trailing_newline=True, autoescape=False)
_template = _environment.from_string(DIRECTIVE_TEMPLATE)


def render_directive(
    *,
    system_prompt: str,
    protocol_number: str,
    attendance_id: str,
    contact_id: str,
    base_url: str,
    now: datetime,
    tool_names: list[str],
    finish_tool: str,
) -> str:
    """Render the system directive for one model call.

    Raises:
        ConfigurationError: If a session identifier is missing.
    """
    try:
        return _template.render(
            system_prompt=system_prompt,
            protocol_number=protocol_number,
            attendance_id=attendance_id,
            contact_id=contact_id,
            base_url=base_url,
            now=now,
            tool_names=tool_names,
            finish_tool=finish_tool,
        )
    except UndefinedError as exc:
        raise ConfigurationError(f"Cannot render system directive: {exc}") from exc
