import platform
from typing import Any, Dict, Mapping, Optional

from quickbase.config import VERSION, ClientConfig
from quickbase.schemas import ApiAction, DebugHeaders

# Keys of a request dict that merge key-by-key; all other keys are replaced outright.
_MERGED_KEYS = ("headers", "params")


def user_agent(custom: str = "") -> str:
    return f"{custom} python-quickbase/v{VERSION} python/{platform.python_version()}".strip()


def base_request(cfg: ClientConfig, temp_token: str = "") -> Dict[str, Any]:
    """Default GET request carrying realm, user agent and authorization for `cfg`."""
    headers = {
        "User-Agent": user_agent(cfg.user_agent),
        "QB-Realm-Hostname": cfg.realm,
    }

    if cfg.user_token:
        headers["Authorization"] = f"QB-USER-TOKEN {cfg.user_token}"
    else:
        if cfg.app_token:
            headers["QB-App-Token"] = cfg.app_token
        if temp_token:
            headers["Authorization"] = f"QB-TEMP-TOKEN {temp_token}"

    request = {
        "method": "GET",
        "base_url": f"https://{cfg.server}/{cfg.version}",
        "headers": headers,
    }
    if cfg.proxy:
        request["proxies"] = dict(cfg.proxy)
    return request


def action_request(action: ApiAction) -> Dict[str, Any]:
    request = {"method": action.method.upper(), "path": action.path}
    if action.params:
        request["params"] = dict(action.params)
    if action.body is not None:
        request["json"] = action.body
    return request


def build_request(*layers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Stack request layers, later layers winning.

    Usual order: base_request -> action_request -> caller request_options.
    `headers` and `params` merge per key; any other key (json, timeout, verify,
    proxies, method, ...) is replaced by the last layer that sets it. A `url`
    key replaces the URL built from base_url and path.
    """
    out: Dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            if key in _MERGED_KEYS and isinstance(value, Mapping):
                merged = dict(out.get(key) or {})
                merged.update(value)
                out[key] = merged
            else:
                out[key] = value
    return out


def request_url(request: Mapping[str, Any]) -> str:
    path = str(request.get("path") or "").lstrip("/")
    return f"{request['base_url'].rstrip('/')}/{path}" if path else request["base_url"]


def _as_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def debug_headers(headers: Optional[Mapping[str, str]]) -> DebugHeaders:
    """Pull date/ray id/rate-limit counters out of response headers (log only)."""
    if not headers:
        return DebugHeaders()
    return DebugHeaders(
        date=headers.get("date"),
        ray_id=headers.get("qb-api-ray"),
        ratelimit_remaining=_as_int(headers.get("x-ratelimit-remaining")),
        ratelimit_limit=_as_int(headers.get("x-ratelimit-limit")),
        ratelimit_reset=_as_int(headers.get("x-ratelimit-reset")),
    )


def compact(**values: Any) -> Dict[str, Any]:
    """Drop None values so optional arguments never reach the payload."""
    return {k: v for k, v in values.items() if v is not None}
