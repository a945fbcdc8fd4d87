"""Signed viewer tokens.

The auth provider mints a token per session; the API only verifies it and
reads the viewer id.
"""

from __future__ import annotations

import os

from itsdangerous import BadSignature, URLSafeTimedSerializer

VIEWER_PURPOSE = "viewer"
VIEWER_TOKEN_MAX_AGE = int(os.environ.get("VIEWER_TOKEN_MAX_AGE", 60 * 60 * 24 * 7))


def _serializer() -> URLSafeTimedSerializer:
    secret = os.environ.get("SIGNING_SECRET", "change-me")
    return URLSafeTimedSerializer(secret_key=secret)


def generate_token(payload: dict[str, object], purpose: str) -> str:
    serializer = _serializer()
    return serializer.dumps(payload, salt=purpose)


def load_token(token: str, purpose: str, max_age: int = VIEWER_TOKEN_MAX_AGE) -> dict[str, object]:
    serializer = _serializer()
    data = serializer.loads(token, max_age=max_age, salt=purpose)
    if not isinstance(data, dict):
        raise BadSignature("Invalid token payload")
    return data


def viewer_token(user_id: int) -> str:
    return generate_token({"user_id": int(user_id)}, VIEWER_PURPOSE)


def load_viewer_id(token: str) -> int:
    data = load_token(token, VIEWER_PURPOSE)
    try:
        return int(data["user_id"])  # type: ignore[arg-type]
    except (KeyError, TypeError, ValueError) as exc:
        raise BadSignature("Token carries no viewer") from exc
