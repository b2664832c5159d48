import json
import logging
import threading
from typing import IO, Any
from urllib.parse import quote, urlparse

import requests

from ..config import Config
from ..exceptions import (
    DocumentNotFound,
    StoreConnectionError,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

DESIGN_PREFIX = "_design/"

# (connect, read) seconds; bulk uploads of a full batch need a longer read
DEFAULT_TIMEOUT = (10, 60)
BULK_TIMEOUT = (10, 600)


def quote_doc_id(doc_id: str) -> str:
    """Quote a document id for use in a URL path.

    Design document ids keep their ``_design/`` separator unescaped.
    """
    if doc_id.startswith(DESIGN_PREFIX):
        return DESIGN_PREFIX + quote(doc_id[len(DESIGN_PREFIX) :], safe="")
    return quote(doc_id, safe="")


def redact_url(url: str) -> str:
    """Drop any ``user:password@`` part of *url* for logs and reports."""
    parsed = urlparse(url)
    if not (parsed.username or parsed.password):
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc += f":{parsed.port}"
    return parsed._replace(netloc=netloc).geturl()


class CouchDBClient:
    """Handle for one CouchDB database.

    Obtain a ready handle with :func:`connect`, which performs the cookie
    session exchange when a username is configured.  Each worker thread
    gets its own ``requests.Session``; all of them share the session
    cookie returned by ``/_session``.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self._cookies: requests.cookies.RequestsCookieJar | None = None
        self.server_url, self.db_name = self._split_url(config.url)
        self.db_url = f"{self.server_url}/{quote(self.db_name, safe='')}"

    @staticmethod
    def _split_url(url: str) -> tuple[str, str]:
        parsed = urlparse(url.rstrip("/"))
        prefix, _, db_name = parsed.path.rpartition("/")
        return f"{parsed.scheme}://{parsed.netloc}{prefix}", db_name

    @property
    def session(self) -> requests.Session:
        """The calling thread's session."""
        return self._get_session()

    @property
    def authenticated(self) -> bool:
        return self._cookies is not None

    def _get_session(self) -> requests.Session:
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = not self.config.insecure
        session.headers["Accept"] = "application/json"
        if self._cookies is not None:
            session.cookies.update(self._cookies)
        return session

    def _request(
        self, method: str, url: str, **kwargs: Any
    ) -> requests.Response:
        """Issue one HTTP request and map failures onto our exceptions."""
        kwargs.setdefault("timeout", DEFAULT_TIMEOUT)
        try:
            response = self._get_session().request(method, url, **kwargs)
        except requests.ConnectionError as exc:
            raise StoreConnectionError(
                f"Could not reach CouchDB at {self.server_url}: {exc}"
            ) from exc
        except requests.RequestException as exc:
            raise StoreUnavailable(f"{method} {url} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise StoreConnectionError(
                f"CouchDB rejected credentials for {url} "
                f"({response.status_code}: {self._reason(response)})"
            )
        if response.status_code == 404:
            raise DocumentNotFound(f"{url}: {self._reason(response)}")
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise StoreUnavailable(
                f"{method} {url} returned {response.status_code}: {self._reason(response)}"
            ) from exc
        return response

    @staticmethod
    def _reason(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or "no body"
        if isinstance(body, dict):
            return str(body.get("reason") or body.get("error") or body)
        return str(body)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def authenticate(self) -> None:
        """Exchange username/password for a session cookie.

        Without a configured username the handle stays anonymous.

        Raises:
            StoreConnectionError: If the server is unreachable or rejects
                the credentials.
        """
        if not self.config.username:
            return
        response = self._request(
            "POST",
            f"{self.server_url}/_session",
            json={
                "name": self.config.username,
                "password": self.config.password,
            },
        )
        self._cookies = response.cookies
        self._get_session().cookies.update(response.cookies)
        logger.debug(
            "Authenticated to %s as %s",
            self.server_url,
            self.config.username,
        )

    def database_info(self) -> dict[str, Any]:
        """Return ``GET /{db}``; used to validate the connection."""
        return self._request("GET", self.db_url).json()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def get(self, doc_id: str) -> dict[str, Any]:
        """Fetch one document.

        Raises:
            DocumentNotFound: If the document does not exist.
        """
        return self._request(
            "GET", f"{self.db_url}/{quote_doc_id(doc_id)}"
        ).json()

    def all_docs(
        self,
        startkey: str | None = None,
        endkey: str | None = None,
        include_docs: bool = True,
    ) -> list[dict[str, Any]]:
        """Range query over ``_all_docs``; returns the ``rows`` list."""
        params: dict[str, str] = {
            "include_docs": json.dumps(include_docs)
        }
        if startkey is not None:
            params["startkey"] = json.dumps(startkey)
        if endkey is not None:
            params["endkey"] = json.dumps(endkey)
        body = self._request(
            "GET", f"{self.db_url}/_all_docs", params=params
        ).json()
        return body.get("rows", [])

    def fetch(self, keys: list[str]) -> list[dict[str, Any]]:
        """Fetch many documents by id in one request.

        Rows come back in the order of *keys*.  Missing documents are
        rows of the form ``{"key": k, "error": "not_found"}`` rather than
        a failure of the whole request.
        """
        body = self._request(
            "POST",
            f"{self.db_url}/_all_docs",
            params={"include_docs": "true"},
            json={"keys": keys},
        ).json()
        return body.get("rows", [])

    def insert(
        self, doc: dict[str, Any], doc_id: str | None = None
    ) -> dict[str, Any]:
        """Create or overwrite a document with ``PUT``.

        Overwriting requires ``doc["_rev"]`` to be the current revision.

        Returns:
            CouchDB response, ``{"ok": true, "id": ..., "rev": ...}``.
        """
        doc_id = doc_id or doc["_id"]
        return self._request(
            "PUT", f"{self.db_url}/{quote_doc_id(doc_id)}", json=doc
        ).json()

    def bulk_docs(self, stream: IO[bytes]) -> list[dict[str, Any]]:
        """Stream a ``{"docs": [...]}`` payload to ``_bulk_docs``.

        Returns:
            One result row per submitted document; rows for rejected
            documents carry ``error`` and ``reason``.
        """
        return self._request(
            "POST",
            f"{self.db_url}/_bulk_docs",
            data=stream,
            headers={"Content-Type": "application/json"},
            timeout=BULK_TIMEOUT,
        ).json()

    def view(
        self, design_name: str, view_name: str, **params: Any
    ) -> dict[str, Any]:
        """Query ``_design/{design_name}/_view/{view_name}``."""
        query = {k: json.dumps(v) for k, v in params.items()}
        url = (
            f"{self.db_url}/{quote_doc_id(DESIGN_PREFIX + design_name)}"
            f"/_view/{quote(view_name, safe='')}"
        )
        return self._request("GET", url, params=query).json()


def connect(config: Config) -> CouchDBClient:
    """Authenticate and return a validated client handle.

    Raises:
        StoreConnectionError: If the server is unreachable, rejects the
            credentials, or the database does not exist.
    """
    client = CouchDBClient(config)
    client.authenticate()
    try:
        client.database_info()
    except DocumentNotFound as exc:
        raise StoreConnectionError(
            f"Database '{client.db_name}' does not exist at {client.server_url}"
        ) from exc
    return client
