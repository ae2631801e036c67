from __future__ import annotations
from typing import Dict, Any, Tuple, Iterable, Optional
from flask import request, make_response
from sqlalchemy.orm import Query
from prflow.errors import ValidationError
import hashlib
from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime, format_datetime

DEFAULT_LIMIT = 50
MAX_LIMIT = 200
TIMESTAMP_TOLERANCE = timedelta(seconds=1)


def normalize_pagination(limit_raw, offset_raw):
    try:
        limit = int(limit_raw) if limit_raw is not None else DEFAULT_LIMIT
        offset = int(offset_raw) if offset_raw is not None else 0
    except ValueError:
        raise ValidationError('limit/offset must be int')
    limit = max(1, min(limit, MAX_LIMIT))
    offset = max(0, offset)
    return limit, offset


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def iso(dt: Optional[datetime]) -> Optional[str]:
    dt = as_utc(dt)
    return dt.isoformat().replace('+00:00', 'Z') if dt else None


def canonicalize_timestamp(dt: datetime) -> datetime:
    """Return UTC tz-aware timestamp truncated to whole seconds (microseconds removed)."""
    return as_utc(dt).replace(microsecond=0)


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset


def compute_etag(ids: Iterable[Any], total: int, limit: int, offset: int, latest_ts: Optional[str] = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{latest_ts or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def compute_item_etag(item_id: Any, updated_at: Optional[datetime], status: str = '') -> str:
    # Full precision: two writes within the same second must still change the tag
    return compute_etag([item_id], 1, 1, 0, f"{iso(updated_at) or ''}|{status}")


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


def http_date(dt: datetime) -> str:
    """Return RFC1123 HTTP-date string in GMT."""
    return format_datetime(canonicalize_timestamp(dt), usegmt=True)


def _set_validators(resp, etag: str, latest_ts: Optional[datetime]):
    resp.headers['ETag'] = etag
    if latest_ts:
        resp.headers['Last-Modified'] = http_date(latest_ts)
        # Full precision ISO for pollers tracking updated_at monotonically
        resp.headers['X-Last-Modified-ISO'] = iso(latest_ts)
    return resp


def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    ids = [r.get('id') for r in rows]
    etag = compute_etag(ids, total, limit, offset, iso(latest_ts) or '')
    resp = make_response(build_list_payload(rows, total, limit, offset))
    return _set_validators(resp, etag, latest_ts), etag


def make_cached_item_response(body: Dict[str, Any], etag: str, latest_ts: Optional[datetime]):
    resp = make_response(body)
    return _set_validators(resp, etag, latest_ts)


def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    if not header_val:
        return None
    # Try ISO 8601 first
    try:
        return as_utc(datetime.fromisoformat(header_val.replace('Z', '+00:00')))
    except ValueError:
        pass
    # Try HTTP-date (RFC 1123)
    try:
        return as_utc(parsedate_to_datetime(header_val))
    except (TypeError, ValueError):
        return None


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Evaluate conditional request headers.

    Precedence: If-None-Match over If-Modified-Since (per RFC 9110 semantics).
    Returns a 304 response object if conditions satisfied, else None.
    """
    inm = request.headers.get('If-None-Match')
    if inm:
        if inm.strip('"') == etag_value:
            return _set_validators(make_response('', 304), etag_value, latest_ts)
        return None
    ims_raw = request.headers.get('If-Modified-Since')
    if ims_raw and latest_ts:
        ims_dt = _parse_if_modified_since(ims_raw)
        if ims_dt:
            latest_c = canonicalize_timestamp(latest_ts)
            ims_c = canonicalize_timestamp(ims_dt)
            if latest_c <= ims_c + TIMESTAMP_TOLERANCE:
                return _set_validators(make_response('', 304), etag_value, latest_ts)
    return None


def strip_body_for_head(resp):
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp
