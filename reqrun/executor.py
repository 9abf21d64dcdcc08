"""reqrun executor - HTTP transport."""

import logging
import time

import requests

from reqrun.errors import TransportError
from reqrun.models import ResolvedRequest, Response, RunConfig

log = logging.getLogger(__name__)


class HttpTransport:
    """Send ResolvedRequests with a shared requests.Session.

    - One request at a time; no retries
    - Timeouts, connection failures and unsendable requests raise TransportError
    - Captures timing
    """

    def __init__(self, config: RunConfig | None = None, session: requests.Session | None = None):
        self.config = config or RunConfig()
        self.session = session or requests.Session()
        if self.config.user_agent:
            self.session.headers["User-Agent"] = self.config.user_agent

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self) -> None:
        self.session.close()

    def send(self, request: ResolvedRequest) -> Response:
        timeout = self.config.timeout
        log.info("%s %s", request.method, request.url)
        try:
            start = time.monotonic()
            resp = self.session.request(
                method=request.method,
                url=request.url,
                headers=dict(request.headers),
                data=request.body,
                timeout=timeout,
                allow_redirects=True,
                verify=self.config.verify,
            )
            elapsed_ms = (time.monotonic() - start) * 1000
        except requests.exceptions.Timeout as e:
            raise TransportError(f"Request timed out after {timeout}s") from e
        except requests.exceptions.ConnectionError as e:
            raise TransportError(f"Connection error: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed: {e}") from e
        except ValueError as e:
            # e.g. header values http.client cannot encode as latin-1
            raise TransportError(f"Request failed: {e}") from e

        log.info("%s %s -> %d (%dms)", request.method, request.url, resp.status_code, elapsed_ms)
        return Response(
            status_code=resp.status_code,
            headers=tuple(resp.headers.items()),
            body=resp.content,
            elapsed_ms=elapsed_ms,
        )
