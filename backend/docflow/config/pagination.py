DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def normalize_pagination(limit_raw, offset_raw, page_raw=None):
    """Return (limit, offset). ``page`` (1-based) wins over ``offset`` when given."""
    try:
        limit = int(limit_raw) if limit_raw not in (None, '') else DEFAULT_LIMIT
        offset = int(offset_raw) if offset_raw not in (None, '') else 0
        page = int(page_raw) if page_raw not in (None, '') else None
    except (TypeError, ValueError):
        raise ValueError('limit/offset/page must be int')
    limit = max(1, min(limit, MAX_LIMIT))
    if page is not None:
        offset = (max(page, 1) - 1) * limit
    offset = max(0, offset)
    return limit, offset
