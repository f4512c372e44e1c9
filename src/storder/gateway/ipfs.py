# src/storder/gateway/ipfs.py
from __future__ import annotations

import http.client
import json
import logging
import re
import urllib.parse
import uuid
from io import BytesIO
from typing import BinaryIO, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from storder.crypto.auth import gateway_auth_header
from storder.errors import UploadError
from storder.models import Identity, UploadResult
from storder.order_logging import log_event

logger = logging.getLogger("storder.gateway")

# CIDv0: base58btc "Qm..." (46 chars). CIDv1: lowercase base32 "b...".
_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{10,}$")
_CID_MAX_LEN = 128

_CHUNK = 1024 * 256


class AddResponse(BaseModel):
    cid: str = Field(..., alias="Hash")
    size: Union[int, str] = Field(..., alias="Size")
    name: Optional[str] = Field(default=None, alias="Name")

    model_config = {"extra": "allow", "populate_by_name": True}


def is_valid_cid(cid: str) -> bool:
    c = (cid or "").strip()
    if not c or len(c) > _CID_MAX_LEN:
        return False
    return bool(_CIDV0_RE.match(c) or _CIDV1_BASE32_RE.match(c))


def _send_chunk(conn: http.client.HTTPConnection, data: bytes) -> None:
    if not data:
        return
    conn.send(f"{len(data):X}\r\n".encode("ascii"))
    conn.send(data)
    conn.send(b"\r\n")


def _finish_chunks(conn: http.client.HTTPConnection) -> None:
    conn.send(b"0\r\n\r\n")


def parse_add_response(raw: bytes) -> UploadResult:
    """
    /api/v0/add may answer with NDJSON (one JSON per line, progress first).
    We take the last JSON object and require Hash + a positive Size.
    """
    txt = raw.decode("utf-8", errors="replace").strip()
    if not txt:
        raise UploadError("bad_response", "empty response body")

    last_obj: Optional[dict] = None
    for line in txt.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except ValueError:
            continue
        if isinstance(obj, dict):
            last_obj = obj

    if last_obj is None:
        raise UploadError("bad_response", f"no JSON object in body: {txt[:200]}")

    try:
        resp = AddResponse.model_validate(last_obj)
    except ValidationError as e:
        raise UploadError("bad_response", f"missing Hash/Size: {last_obj!r}"[:300]) from e

    cid = resp.cid.strip()
    if not is_valid_cid(cid):
        raise UploadError("bad_cid", f"gateway returned an invalid CID: {cid[:80]!r}")

    try:
        size = int(str(resp.size).strip())
    except ValueError as e:
        raise UploadError("bad_size", f"Size is not an integer: {resp.size!r}") from e
    if size <= 0:
        raise UploadError("bad_size", f"Size must be positive; got {size}")

    return UploadResult(cid=cid, size=size)


class IpfsGatewayPublisher:
    """Publish files through an authenticated IPFS-compatible gateway.

    - Streams the multipart body with chunked transfer encoding.
    - Authorization is rebuilt from the identity on every call.
    - Not idempotent: always act on the CID returned by *this* call.
    """

    def __init__(self, *, api_base: str, public_base: str = "", timeout_s: float = 120.0) -> None:
        self.api_base = str(api_base).rstrip("/")
        self.public_base = str(public_base or api_base).rstrip("/")
        self.timeout_s = float(timeout_s)

    def public_url(self, cid: str) -> str:
        c = (cid or "").strip()
        if not c:
            return ""
        return f"{self.public_base}/ipfs/{c}"

    def _connect(self) -> http.client.HTTPConnection:
        u = urllib.parse.urlparse(self.api_base)
        scheme = (u.scheme or "http").lower()
        host = u.hostname or "127.0.0.1"
        port = int(u.port or (443 if scheme == "https" else 80))
        if scheme == "https":
            return http.client.HTTPSConnection(host, port, timeout=self.timeout_s)
        return http.client.HTTPConnection(host, port, timeout=self.timeout_s)

    def publish_fileobj(self, fileobj: BinaryIO, filename: str, *, identity: Identity) -> UploadResult:
        u = urllib.parse.urlparse(self.api_base)
        base_path = (u.path or "").rstrip("/")
        path = f"{base_path}/api/v0/add?{urllib.parse.urlencode({'pin': 'true'})}"

        boundary = uuid.uuid4().hex
        name = (filename or "upload").strip() or "upload"
        safe_name = name.replace('"', "_").replace("\r", "_").replace("\n", "_")

        preamble = (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="upload_file"; filename="{safe_name}"\r\n'
            f"Content-Type: application/octet-stream\r\n"
            f"\r\n"
        ).encode("utf-8")
        epilogue = f"\r\n--{boundary}--\r\n".encode("utf-8")

        conn = self._connect()
        try:
            conn.putrequest("POST", path)
            conn.putheader("Authorization", gateway_auth_header(identity))
            conn.putheader("Content-Type", f"multipart/form-data; boundary={boundary}")
            conn.putheader("Transfer-Encoding", "chunked")
            conn.endheaders()

            _send_chunk(conn, preamble)
            while True:
                chunk = fileobj.read(_CHUNK)
                if not chunk:
                    break
                _send_chunk(conn, chunk)
            _send_chunk(conn, epilogue)
            _finish_chunks(conn)

            resp = conn.getresponse()
            body = resp.read()
            status = int(resp.status)
        except OSError as e:
            raise UploadError("unreachable", str(e), {"gateway": self.api_base}) from e
        except http.client.HTTPException as e:
            raise UploadError("http_error", str(e), {"gateway": self.api_base}) from e
        finally:
            conn.close()

        if status < 200 or status >= 300:
            msg = body.decode("utf-8", errors="replace").strip()
            raise UploadError(f"http_{status}", msg[:300] or "gateway rejected upload", {"gateway": self.api_base})

        result = parse_add_response(body)
        log_event(
            logger,
            "content_published",
            cid=result.cid,
            size=result.size,
            filename=name,
            url=self.public_url(result.cid),
        )
        return result

    def publish(self, data: bytes, filename: str, *, identity: Identity) -> UploadResult:
        if not data:
            raise UploadError("empty_file", "refusing to publish an empty file")
        return self.publish_fileobj(BytesIO(data), filename, identity=identity)
