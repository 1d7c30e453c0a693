"""Credential token codec and the on-disk credential document."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)

TOKEN_PREFIX = "VORTE_"
CREDENTIAL_FILENAME = "creds.json"


class DecodeError(ValueError):
    """Raised when a credential token cannot be decoded in full."""

    def __init__(self, reason: str = "malformed") -> None:
        super().__init__(f"credential token is {reason}")
        self.reason = reason


def _canonical(credential: Dict[str, Any]) -> bytes:
    return json.dumps(
        credential, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def encode(credential: Dict[str, Any]) -> str:
    if not isinstance(credential, dict):
        raise TypeError("credential must be a JSON object")
    if not credential:
        raise ValueError("credential must not be empty")
    payload = base64.b64encode(_canonical(credential)).decode("ascii")
    return f"{TOKEN_PREFIX}{payload}"


def decode(token: str) -> Dict[str, Any]:
    if not isinstance(token, str):
        raise DecodeError()
    body = token.strip()
    if body.startswith(TOKEN_PREFIX):
        body = body[len(TOKEN_PREFIX):]
    if not body:
        raise DecodeError("empty")
    try:
        raw = base64.b64decode(body, validate=True)
        document = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise DecodeError() from exc
    if not isinstance(document, dict) or not document:
        raise DecodeError()
    return document


class CredentialFile:
    """JSON credential document inside a session directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.path = self.directory / CREDENTIAL_FILENAME

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"invalid credential document {self.path}: root is not object")
        return payload

    def save(self, credential: Dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(credential, ensure_ascii=False, indent=2), encoding="utf-8")

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def to_token(self) -> str:
        credential = self.load()
        if credential is None:
            raise FileNotFoundError(f"{self.path} not found; session not saved yet")
        return encode(credential)


def restore_from_token(token: str, directory: Path) -> Dict[str, Any]:
    """Decode ``token`` and write it into ``directory``. Nothing is written on failure."""
    credential = decode(token)
    CredentialFile(directory).save(credential)
    log.info("session restored from credential token into %s", directory)
    return credential
