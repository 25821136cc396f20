"""Structured logging helpers (PII-safe).

Attribute values are profile data and never go into log context; only
identifiers and operation names do.
"""

from typing import Any


def build_log_context(
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
    attribute: str | None = None,
    operation: str | None = None,
    manifest: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if entity_type:
        context["entity_type"] = entity_type
    if entity_id:
        context["entity_id"] = entity_id
    if attribute:
        context["attribute"] = attribute
    if operation:
        context["operation"] = operation
    if manifest:
        context["manifest"] = manifest
    return context
