# streamprobe/services/api/client.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from streamprobe.common.concurrency.context import RunContext
from streamprobe.common.logging import get_logger

logger = get_logger(__name__)


@dataclass(eq=False)
class ApiError(RuntimeError):
    """Control-plane request failed (transport, HTTP status or envelope code)."""
    message: str
    path: str = ""
    status: Optional[int] = None
    body: Optional[str] = None

    def __str__(self) -> str:
        s = f"{self.message} path={self.path}"
        if self.status is not None:
            s += f" status={self.status}"
        if self.body:
            s += f" body={self.body[:512]}"
        return s


class ControlPlaneClient:
    """
    Thin JSON client for the server's HTTP API.

    - POST when `data` is given, GET otherwise.
    - A `str` body goes out raw (WHIP SDP offers); anything else as JSON.
    - Replies shaped {"code": N, "data": ...} are unwrapped; N != 0 is an error.
    - `response_model` (a pydantic model or any type TypeAdapter accepts)
      validates the payload.
    """

    def __init__(
        self,
        endpoint: str,
        api_secret: str = "",
        *,
        timeout: float = 30.0,
        verify: bool = True,
        http: Optional[httpx.Client] = None,
        on_request: Optional[Callable[[httpx.Request], None]] = None,
        on_response: Optional[Callable[[httpx.Response], None]] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.api_secret = api_secret
        self.timeout = timeout
        self.on_request = on_request
        self.on_response = on_response
        self._owns_http = http is None
        self._http = http or httpx.Client(verify=verify, timeout=timeout)

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "ControlPlaneClient":
        ep = settings.endpoints
        return cls(
            ep.http,
            ep.api_secret,
            timeout=settings.timeouts.case,
            verify=not ep.https_insecure_verify,
            **kwargs,
        )

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "ControlPlaneClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---- public API ----------------------------------------------------------
    def with_auth(self, path: str, data: Any = None, response_model: Any = None, *, ctx: Optional[RunContext] = None) -> Any:
        return self._request(path, data, response_model, auth=True, ctx=ctx)

    def no_auth(self, path: str, data: Any = None, response_model: Any = None, *, ctx: Optional[RunContext] = None) -> Any:
        return self._request(path, data, response_model, auth=False, ctx=ctx)

    # ---- internals -----------------------------------------------------------
    def _request(self, path: str, data: Any, response_model: Any, *, auth: bool, ctx: Optional[RunContext]) -> Any:
        timeout = self.timeout
        if ctx is not None:
            if ctx.done():
                raise ApiError(f"not sent: {ctx.err()}", path=path)
            left = ctx.remaining()
            if left is not None:
                timeout = min(timeout, left)

        headers = {}
        if auth:
            headers["Authorization"] = f"Bearer {self.api_secret}"

        kwargs: dict = {}
        method = "GET"
        if data is not None:
            method = "POST"
            if isinstance(data, str):
                kwargs["content"] = data.encode("utf-8")
                headers["Content-Type"] = "text/plain; charset=utf-8"
            elif isinstance(data, BaseModel):
                kwargs["json"] = data.model_dump(by_alias=True)
            else:
                kwargs["json"] = data

        req = self._http.build_request(method, f"{self.endpoint}{path}", headers=headers, timeout=timeout, **kwargs)
        if self.on_request is not None:
            self.on_request(req)

        logger.debug("api %s %s", method, path)
        try:
            resp = self._http.send(req)
        except httpx.HTTPError as e:
            raise ApiError(f"request failed: {e}", path=path) from e

        if self.on_response is not None:
            self.on_response(resp)

        if not resp.is_success:
            raise ApiError("invalid status", path=path, status=resp.status_code, body=resp.text)

        payload = self._unwrap(path, resp)
        if response_model is None or payload is None:
            return payload
        try:
            return TypeAdapter(response_model).validate_python(payload)
        except ValidationError as e:
            raise ApiError(f"invalid response: {e}", path=path, status=resp.status_code, body=resp.text) from e

    @staticmethod
    def _unwrap(path: str, resp: httpx.Response) -> Any:
        if not resp.content:
            return None
        try:
            obj = resp.json()
        except ValueError:
            # Non-JSON success bodies (e.g. SDP answers) are returned as text.
            return resp.text

        if isinstance(obj, dict) and isinstance(obj.get("code"), int):
            if obj["code"] != 0:
                raise ApiError(f"error code {obj['code']}", path=path, status=resp.status_code, body=resp.text)
            return obj.get("data", obj)
        return obj
