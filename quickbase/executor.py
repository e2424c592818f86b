# quickbase/executor.py
import itertools
import logging
import threading
from typing import Any, Callable, Dict, Optional

import requests

from quickbase.config import ClientConfig
from quickbase.errors import QuickBaseError
from quickbase.schemas import ApiAction, ApiResponse, TempTokenState
from quickbase.throttle import Throttle
from quickbase.utils import action_request, base_request, build_request, debug_headers, request_url

logger = logging.getLogger("quickbase")
request_log = logging.getLogger("quickbase.request")
response_log = logging.getLogger("quickbase.response")


class RequestExecutor:
    """
    Runs every API call for a client.

    - builds the authenticated request (config defaults -> action -> caller overrides)
    - sends it through the throttle
    - turns HTTP error responses into QuickBaseError
    - on "Your ticket has expired", renews the temp token for the remembered
      dbid and retries the call once
    """

    def __init__(
        self,
        cfg: ClientConfig,
        session: requests.Session,
        throttle: Throttle,
        temp_token: TempTokenState,
        renew_temp_token: Callable[[str], Dict[str, Any]],
    ) -> None:
        self.cfg = cfg
        self.session = session
        self.throttle = throttle
        self.temp_token = temp_token
        self.renew_temp_token = renew_temp_token

        self._ids = itertools.count(1)
        self._renew_lock = threading.Lock()
        self._local = threading.local()

    def execute(self, action: ApiAction, pass_through: bool = False) -> Any:
        """Run `action`; return the decoded body, or an ApiResponse when `pass_through`."""
        token, _ = self.temp_token.snapshot()
        try:
            return self._execute(action, pass_through, token)
        except QuickBaseError as err:
            # scope as of the failure, not as of the send
            _, dbid = self.temp_token.snapshot()
            if not self._should_renew(err, dbid):
                raise
            logger.debug("Expired token detected for %s, renewing and trying again...", dbid)

        # One renewal per call; a second expiry is raised to the caller.
        self._renew(token, dbid)
        token, _ = self.temp_token.snapshot()
        return self._execute(action, pass_through, token)

    def _should_renew(self, err: QuickBaseError, dbid: Optional[str]) -> bool:
        if getattr(self._local, "renewing", False):
            return False
        return bool(self.cfg.auto_renew_temp_tokens and dbid and err.is_expired_ticket)

    def _renew(self, expired_token: str, dbid: str) -> None:
        with self._renew_lock:
            current, _ = self.temp_token.snapshot()
            if current != expired_token:
                logger.debug("Temp token for %s already renewed by another call", dbid)
                return

            self._local.renewing = True
            try:
                results = self.renew_temp_token(dbid)
            finally:
                self._local.renewing = False

            if not self.cfg.auto_consume_temp_tokens:
                self.temp_token.set(results["temporaryAuthorization"], dbid)

    def _execute(self, action: ApiAction, pass_through: bool, token: str) -> Any:
        req_id = next(self._ids)
        options = build_request(base_request(self.cfg, token), action_request(action), action.request_options)

        request_log.debug("%d %s %s %s", req_id, options.get("method"), options.get("url") or request_url(options), _loggable(options))

        try:
            resp = self.throttle.acquire(lambda: self._send(options))
            resp.raise_for_status()
        except requests.HTTPError as e:
            resp = e.response
            if resp is None:
                response_log.debug("%d %r", req_id, e)
                raise

            debug = debug_headers(resp.headers)
            body = _decode(resp)
            err = QuickBaseError.from_body(resp.status_code, body, debug.ray_id)
            response_log.debug("%d %r %s %s", req_id, err, debug, body)
            raise err from e
        except requests.RequestException as e:
            response_log.debug("%d %r", req_id, e)
            raise

        debug = debug_headers(resp.headers)
        body = _decode(resp)
        response_log.debug("%d %s %s", req_id, debug, body)

        if pass_through:
            return ApiResponse(status=resp.status_code, headers=resp.headers, body=body)
        return body

    def _send(self, options: Dict[str, Any]) -> requests.Response:
        kwargs = dict(options)
        method = kwargs.pop("method", "GET")
        url = kwargs.pop("url", None) or request_url(kwargs)
        kwargs.pop("base_url", None)
        kwargs.pop("path", None)
        return self.session.request(method, url, **kwargs)


def _decode(resp: requests.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text


def _loggable(options: Dict[str, Any]) -> Dict[str, Any]:
    headers = dict(options.get("headers") or {})
    if "Authorization" in headers:
        headers["Authorization"] = headers["Authorization"].split(" ", 1)[0] + " ***"
    if "QB-App-Token" in headers:
        headers["QB-App-Token"] = "***"
    return {
        "headers": headers,
        "params": options.get("params"),
        "json": options.get("json"),
    }
