"""
Publisher API keys.

Keys are kept as salted SHA256 hashes. Cleartext entries found in
registry.json are hashed when the configuration is loaded and written back
in hashed form.
"""
from __future__ import annotations

import hashlib
import secrets
from typing import Iterable, List, Optional
import logging

from pkgregistry.domain.models import ApiKeyCredential, Publisher, RegistryConfig

logger = logging.getLogger(__name__)


def _hash_api_key_sha256(api_key: str, salt: str) -> str:
    data = (salt + api_key).encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def _hashed_credential(publisher_id: str, api_key: str) -> ApiKeyCredential:
    salt = secrets.token_hex(16)
    return ApiKeyCredential(
        publisher_id=publisher_id,
        type="sha256",
        key=_hash_api_key_sha256(api_key, salt),
        salt=salt,
    )


def normalize_api_keys(credentials: Iterable[ApiKeyCredential]) -> List[ApiKeyCredential]:
    """Convert cleartext entries to sha256; hashed entries are kept as they are."""
    normalized: List[ApiKeyCredential] = []
    for cred in credentials:
        if cred.type == "cleartext":
            normalized.append(_hashed_credential(cred.publisher_id, cred.key))
        else:
            normalized.append(cred)
    return normalized


def issue_api_key(config: RegistryConfig, publisher_id: str) -> str:
    """
    Create a new key for a publisher and add its hash to ``config``.

    The cleartext key is returned once and stored nowhere.
    """
    api_key = secrets.token_urlsafe(32)
    config.api_keys.append(_hashed_credential(publisher_id, api_key))
    logger.info(f"Issued a new API key for {publisher_id}")
    return api_key


class ApiKeyAuthenticator:
    """Resolves the API key sent by a client to the publisher it belongs to."""

    def __init__(self, credentials: Iterable[ApiKeyCredential]):
        self._credentials = [c for c in normalize_api_keys(credentials) if c.type == "sha256" and c.salt]

    def authenticate(self, api_key: Optional[str]) -> Optional[Publisher]:
        if not api_key or not api_key.strip():
            return None
        candidate = api_key.strip()
        for cred in self._credentials:
            actual = _hash_api_key_sha256(candidate, cred.salt)
            if secrets.compare_digest(cred.key, actual):
                return Publisher(id=cred.publisher_id)
        return None
