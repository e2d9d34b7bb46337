from __future__ import annotations
from typing import Iterable, Optional, Tuple
from flask import request, make_response
from sqlalchemy.orm import Query
from docflow.config.pagination import normalize_pagination
from docflow.errors import ValidationError
import hashlib
from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime, format_datetime

TIMESTAMP_TOLERANCE = timedelta(seconds=1)


def canonicalize_timestamp(dt: datetime) -> datetime:
    """Return UTC tz-aware timestamp truncated to whole seconds (microseconds removed)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0)


def request_pagination() -> Tuple[int, int]:
    try:
        return normalize_pagination(request.args.get('limit'), request.args.get('offset'), request.args.get('page'))
    except ValueError as e:
        raise ValidationError(str(e), reason='invalid_pagination')


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    limit, offset = request_pagination()
    total = q.order_by(None).count()
    return q.offset(offset).limit(limit), total, limit, offset


def compute_etag(ids: Iterable[int], total: int, limit: int, offset: int, marker: Optional[str] = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{marker or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }


def _http_date(dt: datetime) -> str:
    return format_datetime(dt, usegmt=True)


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace('+00:00', 'Z')


def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    """List envelope with an ETag over ids, versions and paging window."""
    marker = ','.join(str(r.get('version', '')) for r in rows)
    latest_c = canonicalize_timestamp(latest_ts) if isinstance(latest_ts, datetime) else None
    if latest_c:
        marker = f'{marker}|{_iso(latest_c)}'
    etag = compute_etag([r.get('id') for r in rows], total, limit, offset, marker)
    resp = make_response(build_list_payload(rows, total, limit, offset))
    resp.headers['ETag'] = etag
    if latest_c:
        resp.headers['Last-Modified'] = _http_date(latest_c)
    return resp, etag


def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    if not header_val:
        return None
    try:
        dt = datetime.fromisoformat(header_val.replace('Z', '+00:00'))
    except ValueError:
        try:
            dt = parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Return a 304 response when If-None-Match / If-Modified-Since say the client is current.

    If-None-Match takes precedence over If-Modified-Since.
    """
    inm = request.headers.get('If-None-Match')
    if inm and inm.strip('"') == etag_value:
        resp = make_response('', 304)
        resp.headers['ETag'] = etag_value
        return resp
    if inm:
        return None
    ims_raw = request.headers.get('If-Modified-Since')
    if ims_raw and latest_ts:
        ims_dt = _parse_if_modified_since(ims_raw)
        if ims_dt and canonicalize_timestamp(latest_ts) <= canonicalize_timestamp(ims_dt) + TIMESTAMP_TOLERANCE:
            resp = make_response('', 304)
            resp.headers['ETag'] = etag_value
            resp.headers['Last-Modified'] = _http_date(canonicalize_timestamp(latest_ts))
            return resp
    return None


__all__ = ['apply_pagination', 'request_pagination', 'make_cached_list_response', 'handle_conditional', 'compute_etag']
