from __future__ import annotations

from urllib.parse import parse_qsl, urlencode

_POSTGRES_SCHEMES = {"postgres", "postgresql", "postgresql+psycopg", "postgresql+psycopg2"}


def normalize_database_url(url: str) -> str:
    """Return an async driver URL (``asyncpg``/``aiosqlite``) for ``url``.

    Hosted Postgres providers hand out ``postgres://`` URLs with ``sslmode``;
    asyncpg wants the ``postgresql+asyncpg`` scheme and an ``ssl`` query flag.
    """
    url = (url or "").strip()
    scheme, sep, rest = url.partition("://")
    if not sep:
        return url

    if scheme in _POSTGRES_SCHEMES:
        scheme = "postgresql+asyncpg"
    elif scheme == "sqlite":
        scheme = "sqlite+aiosqlite"

    if scheme != "postgresql+asyncpg":
        return f"{scheme}://{rest}"

    location, _, raw_query = rest.partition("?")
    query = dict(parse_qsl(raw_query, keep_blank_values=True))
    sslmode = query.pop("sslmode", None)
    if sslmode is not None and "ssl" not in query:
        normalized = sslmode.lower().strip()
        query["ssl"] = "disable" if normalized in {"disable", "allow"} else normalized

    new_query = urlencode(query, doseq=True)
    return f"{scheme}://{location}?{new_query}" if new_query else f"{scheme}://{location}"
