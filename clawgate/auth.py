"""HTTP Basic auth for the setup namespace. Only the password part is checked."""

import base64
import binascii
import secrets
from typing import Optional

from fastapi import Header, HTTPException, Request

REALM = 'Basic realm="OpenClaw Setup"'


def password_from_header(auth_header: Optional[str]) -> Optional[str]:
    """Extract the password from an ``Authorization: Basic ...`` header."""
    if not auth_header:
        return None
    scheme, _, encoded = auth_header.partition(" ")
    if scheme != "Basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip()).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return ""
    _, sep, password = decoded.partition(":")
    return password if sep else ""


def verify_password(candidate: str, expected: str) -> bool:
    return secrets.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


async def require_setup_auth(request: Request, authorization: Optional[str] = Header(None)):
    """FastAPI dependency guarding every /setup route except the health check."""
    expected = request.app.state.config.setup_password
    if not expected:
        raise HTTPException(
            status_code=500,
            detail="SETUP_PASSWORD is not set. Set it in your deployment variables before using /setup.",
        )

    password = password_from_header(authorization)
    if password is None:
        raise HTTPException(status_code=401, detail="Auth required", headers={"WWW-Authenticate": REALM})
    if not verify_password(password, expected):
        raise HTTPException(status_code=401, detail="Invalid password", headers={"WWW-Authenticate": REALM})
