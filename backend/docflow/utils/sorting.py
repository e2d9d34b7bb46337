from __future__ import annotations
from docflow.errors import ValidationError


def apply_multi_sort(query, sort_expr: str | None, allowed: dict, tie_breaker, default=None):
    """Apply a comma-separated sort expression (``-field`` for descending).

    ``default`` orders the query when no expression is given; ``tie_breaker``
    is always appended for deterministic paging.
    """
    clauses = []
    for raw in (sort_expr or '').split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token[1:] if desc else token
        col = allowed.get(key)
        if col is None:
            raise ValidationError(f'Invalid sort field {key}', reason='invalid_sort', field=key)
        clauses.append(col.desc() if desc else col.asc())
    if not clauses and default is not None:
        clauses.append(default)
    clauses.append(tie_breaker)
    return query.order_by(*clauses)
