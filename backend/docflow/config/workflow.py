import os

DEFAULT_FINANCE_THRESHOLD_CENTS = 5_000_000
DEFAULT_PERMISSION_CACHE_TTL = 120


def _int_setting(raw, default: int, name: str) -> int:
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValueError(f'{name} must be int')
    if value < 0:
        raise ValueError(f'{name} must be >= 0')
    return value


def load_workflow_settings(overrides=None):
    """Resolve workflow settings from environment, then explicit overrides (app.config)."""
    overrides = overrides or {}
    threshold = overrides.get('DOCFLOW_FINANCE_THRESHOLD_CENTS', os.getenv('DOCFLOW_FINANCE_THRESHOLD_CENTS'))
    ttl = overrides.get('DOCFLOW_PERMISSION_CACHE_TTL', os.getenv('DOCFLOW_PERMISSION_CACHE_TTL'))
    return {
        'DOCFLOW_FINANCE_THRESHOLD_CENTS': _int_setting(threshold, DEFAULT_FINANCE_THRESHOLD_CENTS, 'DOCFLOW_FINANCE_THRESHOLD_CENTS'),
        'DOCFLOW_PERMISSION_CACHE_TTL': _int_setting(ttl, DEFAULT_PERMISSION_CACHE_TTL, 'DOCFLOW_PERMISSION_CACHE_TTL'),
    }
