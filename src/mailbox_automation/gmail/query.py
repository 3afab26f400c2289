"""Gmail search query construction from rule criteria."""

from __future__ import annotations

from mailbox_automation.models import RuleCriteria


def _term(operator: str, value: str | None) -> str | None:
    value = (value or "").strip()
    if not value:
        return None
    if any(c.isspace() for c in value) and not (value.startswith("(") and value.endswith(")")):
        value = f"({value})"
    return f"{operator}:{value}"


def build_search_query(criteria: RuleCriteria) -> str:
    """Build a Gmail search string matching the rule's criteria.

    Terms are space-joined, which Gmail treats as AND. The free-text `query` is
    appended verbatim so rules can use any Gmail operator.
    """

    parts = [
        _term("from", criteria.from_),
        _term("to", criteria.to),
        _term("subject", criteria.subject),
    ]
    free_text = (criteria.query or "").strip()
    if free_text:
        parts.append(free_text)
    return " ".join(p for p in parts if p)
