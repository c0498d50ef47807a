"""
Authenticated channel to a peer's ledger API.

The replication engine only talks to IRemoteChannel. HttpChannel is the
concrete implementation: API discovery through a Link header on the peer's
base URI, bearer token authentication, and JSON requests over requests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

API_LINK_REL = "https://api.w.org/"


class SyncError(Exception):
    """Base class for failures that abort a sync cycle."""
    pass


class DiscoveryError(SyncError):
    """The peer does not advertise a compatible API."""
    pass


class AuthenticationError(SyncError):
    """The peer rejected our credentials."""
    pass


class TransportError(SyncError):
    """A request failed, timed out or returned an unusable response."""
    pass


@dataclass
class ChannelSession:
    endpoint: str
    headers: Dict[str, str] = field(default_factory=dict)
    index: Dict[str, Any] = field(default_factory=dict)


class IRemoteChannel(ABC):
    """Abstract interface for the authenticated remote channel."""

    @abstractmethod
    def discover(self, uri: str, timeout: Optional[float] = None) -> str:
        """Resolve a peer's base URI to its API endpoint."""
        pass

    @abstractmethod
    def authenticate(self, endpoint: str, auth_material: Dict[str, Any],
                     timeout: Optional[float] = None) -> ChannelSession:
        """Open an authenticated session against an API endpoint."""
        pass

    @abstractmethod
    def request(self, session: ChannelSession, verb: str, path: str, body: Any = None,
                params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        """Send one request and return the decoded JSON body."""
        pass


def parse_link_header(header: str) -> List[Dict[str, str]]:
    """
    Parse an RFC 8288 Link header into dicts with a 'url' key plus any params.

    '<https://a/api/>; rel="https://api.w.org/", <https://a/x>; rel=next'
    becomes [{'url': 'https://a/api/', 'rel': 'https://api.w.org/'},
    {'url': 'https://a/x', 'rel': 'next'}].
    """
    links = []
    if not header:
        return links

    for link in header.split(","):
        parts = link.split(";")
        link_vars = {}
        for part in parts:
            part = part.strip()
            if not part:
                continue
            if "=" not in part or part.startswith("<"):
                link_vars["url"] = part.strip("<>")
                continue
            key, val = part.split("=", 1)
            link_vars[key.strip().lower()] = val.strip("'\" ")
        if link_vars:
            links.append(link_vars)

    return links


class HttpChannel(IRemoteChannel):
    """
    IRemoteChannel over HTTP using requests.

    Every request gets the smaller of default_timeout and the time left in the
    caller's sync cycle. requests applies that value to the connect and to
    each gap between received bytes, not to the whole response, so a peer that
    keeps trickling bytes can hold one request past the cycle deadline. The
    deadline is checked again before the next request.
    """

    def __init__(self, verify_tls: bool = True, http_factory: Callable[[], Any] = None,
                 default_timeout: float = 10.0):
        self.verify_tls = verify_tls
        self.default_timeout = default_timeout
        self._http_factory = http_factory or self._requests_session
        self._http = None

    def _requests_session(self) -> requests.Session:
        http = requests.Session()
        http.verify = self.verify_tls
        http.headers["Accept"] = "application/json"
        return http

    @property
    def http(self):
        if self._http is None:
            self._http = self._http_factory()
        return self._http

    def _send(self, verb: str, url: str, timeout: Optional[float], **kwargs):
        # Never wait longer than one request timeout, even early in a sync cycle
        timeout = self.default_timeout if timeout is None else min(timeout, self.default_timeout)
        try:
            return self.http.request(verb, url, timeout=timeout, **kwargs)
        except requests.Timeout as e:
            raise TransportError(f"{verb} {url} timed out: {e}")
        except requests.RequestException as e:
            raise TransportError(f"{verb} {url} failed: {e}")

    def discover(self, uri: str, timeout: Optional[float] = None) -> str:
        response = self._send("HEAD", uri, timeout)
        links = parse_link_header(response.headers.get("Link", ""))
        if not links:
            # Some servers only send Link headers on GET
            response = self._send("GET", uri, timeout)
            links = parse_link_header(response.headers.get("Link", ""))

        url = ""
        for link in links:
            if link.get("rel") == API_LINK_REL and link.get("url"):
                url = link["url"]
        if not url:
            raise DiscoveryError(f"Could not locate API at {uri}; are you sure it's enabled?")
        return url

    def authenticate(self, endpoint: str, auth_material: Dict[str, Any],
                     timeout: Optional[float] = None) -> ChannelSession:
        session = ChannelSession(endpoint=endpoint.rstrip("/"))
        index = self.request(session, "GET", "", timeout=timeout)
        if not isinstance(index, dict) or not index.get("authentication"):
            raise AuthenticationError("Could not locate authentication information; are you sure it's enabled?")
        session.index = index

        token = (auth_material or {}).get("token")
        if not token:
            raise AuthenticationError(f"No token configured for {endpoint}")
        session.headers["Authorization"] = f"Bearer {token}"

        token_info = index["authentication"].get("token") or {}
        verify_path = token_info.get("verify", "auth")
        self.request(session, "GET", verify_path, timeout=timeout)
        return session

    def request(self, session: ChannelSession, verb: str, path: str, body: Any = None,
                params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        url = f"{session.endpoint}/{path.lstrip('/')}"
        kwargs = {"headers": session.headers}
        if body is not None:
            kwargs["json"] = body
        if params:
            kwargs["params"] = params

        response = self._send(verb, url, timeout, **kwargs)
        if response.status_code in (401, 403):
            raise AuthenticationError(f"{verb} {url} rejected with {response.status_code}")
        if response.status_code >= 400:
            raise TransportError(f"{verb} {url} returned {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{verb} {url} returned invalid JSON: {e}")
