# tests/services/conftest.py
from __future__ import annotations
from typing import Optional

import pytest
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

API_SECRET = "s3cr3t"


def build_control_plane_app() -> FastAPI:
    """Small stand-in for the server's HTTP API."""
    app = FastAPI()
    app.state.hooks = {"all": False, "home": "/data/record"}
    app.state.applied = []

    def _auth(authorization: Optional[str]) -> None:
        if authorization != f"Bearer {API_SECRET}":
            raise HTTPException(status_code=401, detail="unauthorized")

    @app.get("/api/v1/versions")
    def versions():
        return {"code": 0, "data": {"major": 5, "minor": 0, "revision": 1, "version": "v5.0.1", "extra": 1}}

    @app.post("/terraform/v1/hooks/srs/secret/query")
    @app.get("/terraform/v1/hooks/srs/secret/query")
    def secret_query(authorization: Optional[str] = Header(None)):
        _auth(authorization)
        return {"code": 0, "data": {"publish": "pub-secret"}}

    @app.post("/terraform/v1/hooks/srs/secret/update")
    async def secret_update(request: Request, authorization: Optional[str] = Header(None)):
        _auth(authorization)
        app.state.applied.append(await request.json())
        return {"code": 0}

    @app.post("/terraform/v1/hooks/record/query")
    @app.get("/terraform/v1/hooks/record/query")
    def record_query(authorization: Optional[str] = Header(None)):
        _auth(authorization)
        return {"code": 0, "data": dict(app.state.hooks)}

    @app.post("/terraform/v1/hooks/record/apply")
    async def record_apply(request: Request, authorization: Optional[str] = Header(None)):
        _auth(authorization)
        body = await request.json()
        app.state.applied.append(body)
        app.state.hooks.update(body)
        return {"code": 0, "data": None}

    @app.post("/terraform/v1/mgmt/broken")
    def broken(authorization: Optional[str] = Header(None)):
        _auth(authorization)
        return {"code": 100, "data": "system error"}

    @app.get("/terraform/v1/mgmt/bad-shape")
    def bad_shape():
        return {"code": 0, "data": {"major": "not-a-number"}}

    @app.get("/terraform/v1/mgmt/plain")
    def plain():
        return [1, 2, 3]

    @app.post("/terraform/v1/mgmt/empty")
    def empty():
        return PlainTextResponse("", status_code=200)

    @app.post("/rtc/v1/whip/")
    async def whip(request: Request):
        offer = (await request.body()).decode()
        ctype = request.headers.get("content-type", "")
        return PlainTextResponse(f"answer({ctype}):{offer}", status_code=201, media_type="application/sdp")

    @app.get("/terraform/v1/host/echo-origin")
    def echo_origin(origin: Optional[str] = Header(None)):
        return PlainTextResponse("ok", headers={"Access-Control-Allow-Origin": origin or ""})

    return app


@pytest.fixture()
def control_plane_app() -> FastAPI:
    return build_control_plane_app()


@pytest.fixture()
def control_plane_http(control_plane_app):
    with TestClient(control_plane_app) as c:
        yield c
