from __future__ import annotations
from typing import Any, Dict, Mapping
from docflow.errors import ValidationError


def apply_filters(query, specs: Dict[str, Dict[str, Any]], params: Mapping[str, Any]):
    """Generic query-string filter builder.

    specs: { param_name: { 'op': callable(query, value)->query, 'coerce': callable (optional), 'validate': callable (optional) } }
    Unknown parameters are ignored; a value that fails coercion or validation is a 400.
    """
    for name, meta in specs.items():
        val = params.get(name)
        if val is None or val == '':
            continue
        if 'coerce' in meta:
            try:
                val = meta['coerce'](val)
            except (TypeError, ValueError):
                raise ValidationError(f'{name} invalid', reason='invalid_filter', field=name)
        if 'validate' in meta and not meta['validate'](val):
            raise ValidationError(f'{name} invalid', reason='invalid_filter', field=name)
        query = meta['op'](query, val)
    return query


def coerce_bool(raw) -> bool:
    value = str(raw).strip().lower()
    if value in ('1', 'true', 'yes'):
        return True
    if value in ('0', 'false', 'no'):
        return False
    raise ValueError(raw)
