from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

BODY_CUTOFF = 512


class DynamicJson(BaseModel):
    model_config = ConfigDict(extra="ignore")

    clients: int = Field(ge=0, strict=True)
    hostname: Optional[str] = None
    gametype: Optional[str] = None
    mapname: Optional[str] = None
    iv: Optional[str] = None
    sv_maxclients: Optional[int] = Field(default=None, ge=0)

    @field_validator("sv_maxclients", mode="before")
    @classmethod
    def coerce_maxclients(cls, v):
        # the server reports convars as strings
        if isinstance(v, str):
            try:
                f = float(v.strip())
            except ValueError:
                return v
            return int(f) if f.is_integer() else v
        return v


@dataclass
class ProbeResult:
    success: bool
    data: Optional[DynamicJson] = None
    error: Optional[str] = None
    debug_data: Dict[str, str] = field(default_factory=dict)


def human_bytes(n: int) -> str:
    """1536 -> "1.5KB"."""
    size = float(n)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{int(size)}{unit}" if unit == "B" else f"{round(size, 2):g}{unit}"
        size /= 1024
    return f"{size:g}GB"


def _debug_data(r: requests.Response) -> Dict[str, str]:
    body = r.text or ""
    return {
        "URL": str(r.url),
        "Status": f"{r.status_code} {r.reason or ''}".strip(),
        "Server": str(r.headers.get("server")),
        "Location": str(r.headers.get("location")),
        "ContentType": str(r.headers.get("content-type")),
        "ContentLength": str(r.headers.get("content-length")),
        "BodyLength": human_bytes(len(body)),
        "Body": body[:BODY_CUTOFF] + "[...]" if len(body) > BODY_CUTOFF else body,
    }


def fetch_dynamic_json(endpoint: str, timeout: float) -> ProbeResult:
    """
    Health check against the server's /dynamic.json.
    Never raises: failures come back with an error message and the response details.
    """
    url = f"http://{endpoint}/dynamic.json"
    try:
        r = requests.get(url, timeout=timeout, allow_redirects=False)
    except requests.RequestException as e:
        return ProbeResult(success=False, error=f"HealthCheck Request error: {e}")

    debug_data = _debug_data(r)
    if r.status_code != 200:
        return ProbeResult(success=False, error=f"HealthCheck HTTP status: {debug_data['Status']}", debug_data=debug_data)

    body = r.text
    if not isinstance(body, str):
        return ProbeResult(success=False, error="HealthCheck response body is not a string.", debug_data=debug_data)
    if not body:
        return ProbeResult(success=False, error="HealthCheck response body is empty.", debug_data=debug_data)
    if "<html" in body.lower():
        return ProbeResult(success=False, error="HealthCheck response body is HTML instead of JSON.", debug_data=debug_data)
    try:
        raw = json.loads(body)
    except ValueError:
        return ProbeResult(success=False, error="HealthCheck response body is not valid JSON.", debug_data=debug_data)
    try:
        data = DynamicJson.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors())
        return ProbeResult(success=False, error=f"HealthCheck JSON invalid data: {problems}", debug_data=debug_data)

    return ProbeResult(success=True, data=data)
