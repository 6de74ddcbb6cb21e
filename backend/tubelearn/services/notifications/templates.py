"""
Notification Templates

Minimal mustache-style rendering plus the registry of known templates.

Syntax:
    {{name}}                 replaced by the variable's value ("" if missing or None)
    {{#if flag}}...{{/if}}   inner text kept when `flag` is truthy, dropped otherwise

Conditional blocks are resolved first, so variables inside a kept block
are substituted normally. Blocks do not nest.

Usage:
    from tubelearn.services.notifications.templates import render_template, get_default_registry

    render_template("Hi {{name}}", {"name": "X"})  # -> "Hi X"

    registry = get_default_registry()
    template = registry.get("task_completed")
    subject, body = template.render({"video_title": "Intro to Rust", ...})
"""

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from tubelearn.enums import NotificationTemplateKey
from tubelearn.middleware.error_handling import TemplateNotFoundError

_CONDITIONAL_BLOCK = re.compile(r"\{\{#if\s+(\w+)\s*\}\}(.*?)\{\{/if\}\}", re.DOTALL)
_VARIABLE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_template(text: str, variables: Mapping[str, Any]) -> str:
    """
    Render a template string.

    Args:
        text: Template text
        variables: Values for substitution and conditions

    Returns:
        Rendered text
    """

    def _conditional(match: re.Match) -> str:
        return match.group(2) if variables.get(match.group(1)) else ""

    def _variable(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    rendered = _CONDITIONAL_BLOCK.sub(_conditional, text)
    return _VARIABLE.sub(_variable, rendered)


@dataclass
class NotificationTemplate:
    """
    A registered notification template.

    Attributes:
        key: Lookup key used by enqueue()
        subject: Subject template
        body: Body template
        priority: Default queue priority (1 = most urgent)
        dedup_keys: Variables that identify "the same" notification; when
            set, repeats within the suppression window are skipped
    """

    key: str
    subject: str
    body: str
    priority: int = 5
    dedup_keys: tuple[str, ...] = field(default_factory=tuple)

    def render(self, variables: Mapping[str, Any]) -> tuple[str, str]:
        """Render (subject, body)."""
        return render_template(self.subject, variables), render_template(self.body, variables)


class TemplateRegistry:
    """Lookup table of notification templates by key."""

    def __init__(self) -> None:
        self._templates: dict[str, NotificationTemplate] = {}

    def register(self, template: NotificationTemplate) -> None:
        """Add or replace a template."""
        self._templates[template.key] = template

    def get(self, key: str) -> NotificationTemplate:
        """
        Get a template by key.

        Raises:
            TemplateNotFoundError: If no template is registered under `key`
        """
        template = self._templates.get(key)
        if template is None:
            raise TemplateNotFoundError(
                f"Notification template not found: {key}",
                details={"template_key": key, "available": self.keys()},
            )
        return template

    def keys(self) -> list[str]:
        return sorted(self._templates)

    def __contains__(self, key: str) -> bool:
        return key in self._templates


TASK_COMPLETED_TEMPLATE = NotificationTemplate(
    key=NotificationTemplateKey.TASK_COMPLETED.value,
    subject="Your learning material is ready: {{video_title}}",
    body=(
        "Hello,\n\n"
        'Processing of "{{video_title}}" has finished.\n'
        "{{#if from_cache}}This video had already been processed, so the result was ready right away.\n{{/if}}"
        "{{#if processing_time}}Processing time: {{processing_time}}\n{{/if}}"
        "\nView the result: {{result_url}}\n"
    ),
    priority=2,
)

TASK_FAILED_TEMPLATE = NotificationTemplate(
    key=NotificationTemplateKey.TASK_FAILED.value,
    subject="Processing failed: {{video_title}}",
    body=(
        "Hello,\n\n"
        "We could not finish processing {{video_url}}.\n"
        "{{#if error_message}}Reason: {{error_message}}\n{{/if}}"
        "\nYou can submit the video again at {{retry_url}}\n"
    ),
    priority=1,
)

QUOTA_WARNING_TEMPLATE = NotificationTemplate(
    key=NotificationTemplateKey.QUOTA_WARNING.value,
    subject="[{{level}}] {{provider}} usage at {{percentage}}%",
    body=(
        "{{provider}} has used {{current_usage}} of {{limit}} units "
        "in the last {{window_minutes}} minutes ({{percentage}}%).\n"
        "{{#if is_critical}}New transcriptions will be routed to the fallback provider "
        "or rejected once the limit is reached.\n{{/if}}"
    ),
    priority=3,
    dedup_keys=("provider", "level"),
)


def get_default_registry() -> TemplateRegistry:
    """Build a registry with the built-in templates."""
    registry = TemplateRegistry()
    for template in (TASK_COMPLETED_TEMPLATE, TASK_FAILED_TEMPLATE, QUOTA_WARNING_TEMPLATE):
        registry.register(template)
    return registry
