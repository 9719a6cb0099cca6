"""
Guestbook Backend: CouchDB HTTP Transport
==========================================

What:  Thin request layer shared by the client, databases and feeds.
How:   Wraps one `httpx.Client`. Builds URLs from a fixed server prefix plus
       escaped path segments, encodes query options the way CouchDB expects,
       and turns HTTP status >= 400 into `ResponseError`.
Who:   `CouchDBClient` creates one Transport; every `Database` shares it.

Option encoding:
    - str / int / float  → text
    - bool               → "true" / "false"
    - keys listed as JSON keys (view keys, open_revs, ...) → JSON-encoded
    - None or any other type → ConfigurationError
"""

import json
import logging
from typing import Any, Dict, Iterable, Optional
from urllib.parse import quote

import httpx

from guestbook.couchdb.errors import ConfigurationError, ResponseError, TransportIOError

logger = logging.getLogger(__name__)

Options = Dict[str, Any]


# ── Path helpers ──────────────────────────────────────────────────────────

def path(*segments: str) -> str:
    """Join escaped segments; a `_design/...` second segment stays unescaped."""
    out = ""
    for i, seg in enumerate(segments):
        out += "/"
        if i == 1 and seg.startswith("_design/"):
            out += seg
        else:
            out += quote(seg, safe="")
    return out


def encode_value(key: str, value: Any) -> str:
    if value is None:
        raise ConfigurationError(f"invalid option {key!r}: value is None", option=key, value=value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ConfigurationError(
        f"invalid option {key!r}: unsupported type {type(value).__name__}",
        option=key,
        value=value,
    )


def encode_options(
    options: Optional[Options],
    json_keys: Iterable[str] = (),
) -> Dict[str, str]:
    """Turn an options dict into query parameters."""
    json_keys = set(json_keys)
    params: Dict[str, str] = {}
    for key, value in (options or {}).items():
        if key in json_keys:
            try:
                params[key] = json.dumps(value)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(
                    f"invalid option {key!r}: {exc}", option=key, value=value
                ) from exc
        else:
            params[key] = encode_value(key, value)
    return params


def rev_params(rev: Optional[str]) -> Dict[str, str]:
    return {"rev": rev} if rev else {}


# ══════════════════════════════════════════════════════════════════════════
# Transport
# ══════════════════════════════════════════════════════════════════════════

class Transport:
    """
    Sends requests to one CouchDB server.

    Safe to share between threads: httpx.Client is thread-safe and the
    transport keeps no per-request state.
    """

    def __init__(
        self,
        prefix: str,
        http: Optional[httpx.Client] = None,
        auth: Optional[httpx.Auth] = None,
        timeout: float = 10.0,
        feed_timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.prefix = prefix.rstrip("/")
        self.http = http or httpx.Client(auth=auth, timeout=timeout, transport=transport)
        # Feeds may sit idle for a long time between events.
        self.feed_timeout = httpx.Timeout(timeout, read=feed_timeout)

    def url(self, request_path: str) -> str:
        return self.prefix + request_path

    def _send(
        self,
        method: str,
        request_path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        content: Any = None,
        headers: Optional[Dict[str, str]] = None,
        stream: bool = False,
        timeout: Any = None,
    ) -> httpx.Response:
        hdrs = {"Content-Type": "application/json"}
        if headers:
            hdrs.update(headers)
        request = self.http.build_request(
            method,
            self.url(request_path),
            params=params,
            json=json_body,
            content=content,
            headers=hdrs,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        try:
            response = self.http.send(request, stream=stream)
        except httpx.TransportError as exc:
            raise TransportIOError(
                f"{method} {request.url}: {exc}",
                context={"error_type": type(exc).__name__},
            ) from exc

        if response.status_code >= 400:
            raise self._parse_error(response)
        return response

    def request(self, method: str, request_path: str, **kwargs: Any) -> httpx.Response:
        """Send a request and read the whole body."""
        return self._send(method, request_path, **kwargs)

    def stream(self, method: str, request_path: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request without reading the body. The caller owns the returned
        response and must close it.
        """
        kwargs.setdefault("timeout", self.feed_timeout)
        return self._send(method, request_path, stream=True, **kwargs)

    def json(self, method: str, request_path: str, **kwargs: Any) -> Any:
        response = self.request(method, request_path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise ResponseError(
                method, str(response.request.url), response.status_code,
                "bad_response", f"invalid JSON body: {exc}",
            ) from exc

    def close(self) -> None:
        self.http.close()

    @staticmethod
    def _parse_error(response: httpx.Response) -> ResponseError:
        method = response.request.method
        error_code = reason = ""
        try:
            if method != "HEAD":
                response.read()
                body = response.json()
                if isinstance(body, dict):
                    error_code = str(body.get("error") or "")
                    reason = str(body.get("reason") or "")
        except (ValueError, httpx.HTTPError) as exc:
            logger.debug("Couldn't decode CouchDB error body: %s", exc)
        finally:
            response.close()
        return ResponseError(method, str(response.request.url), response.status_code, error_code, reason)


def response_rev(response: httpx.Response) -> str:
    """The unquoted ETag of a response, which CouchDB sets to the document revision."""
    etag = response.headers.get("etag", "")
    if not etag:
        raise ResponseError(
            response.request.method,
            str(response.request.url),
            response.status_code,
            "missing_etag",
            "missing Etag header in response",
        )
    return etag.strip('"')
