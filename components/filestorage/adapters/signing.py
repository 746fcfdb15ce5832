"""AWS Signature V4 for httpx requests.

The storage client never holds credentials itself; it is handed an
``httpx.AsyncClient`` whose ``auth`` signs every outgoing request.
"""

from __future__ import annotations

from typing import Generator, Optional

import httpx
from botocore.auth import S3SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.config import Config as BotoConfig
from botocore.credentials import Credentials
from botocore.session import get_session

# Only these are signed; hop-by-hop headers may be rewritten in transit.
_SIGNED_HEADERS = ("host", "content-type", "content-md5", "range")
_AUTH_HEADERS = ("Authorization", "X-Amz-Date", "X-Amz-Security-Token", "X-Amz-Content-SHA256")


def resolve_credentials(access_key_id: Optional[str] = None, secret_access_key: Optional[str] = None,
                        session_token: Optional[str] = None) -> Credentials:
    if access_key_id and secret_access_key:
        return Credentials(access_key_id, secret_access_key, session_token)
    creds = get_session().get_credentials()
    if creds is None:
        raise RuntimeError("no AWS credentials configured (set AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY)")
    return creds


class SigV4Auth(httpx.Auth):
    """Signs requests for S3 with botocore's ``S3SigV4Auth``.

    Byte bodies are hashed into the signature. Streaming bodies cannot be
    hashed without buffering them, so they are sent as ``UNSIGNED-PAYLOAD``.
    """

    def __init__(self, credentials: Credentials, region: str, service: str = "s3"):
        self.credentials = credentials
        self.region = region
        self.service = service

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        try:
            body: Optional[bytes] = request.content
        except httpx.RequestNotRead:
            body = None

        headers = {
            name: value for name, value in request.headers.items()
            if name.lower() in _SIGNED_HEADERS or name.lower().startswith("x-amz-")
        }
        aws_request = AWSRequest(method=request.method, url=str(request.url), headers=headers, data=body)
        aws_request.context["client_config"] = BotoConfig(s3={"payload_signing_enabled": body is not None})
        S3SigV4Auth(self.credentials, self.service, self.region).add_auth(aws_request)

        for name in _AUTH_HEADERS:
            if name in aws_request.headers:
                request.headers[name] = aws_request.headers[name]
        yield request
