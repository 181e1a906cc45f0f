"""
Encrypted content store client (IPFS HTTP API).

Uploads and downloads JSON documents whose top-level values are individually
encrypted with a shared symmetric key. Keys stay readable; values do not.

Downloads are raced against an explicit deadline so an unresponsive node
cannot hang the caller.
"""

import base64
import hashlib
import json
import logging
import threading
from typing import Any, Dict, Optional

import requests
from cryptography.fernet import Fernet, InvalidToken

from rxledger.config import config
from rxledger.errors import ContentStoreError


def derive_fernet_key(secret: str) -> bytes:
    """Derive a Fernet key from a passphrase."""
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class ContentStoreClient:
    """
    Client for the content-addressed store.

    Usage:
        store = ContentStoreClient()
        ref = store.put_json({"name": "Jane", "nhiNumber": "ABC1234"})
        store.get_json(ref)  # -> {"name": "Jane", "nhiNumber": "ABC1234"}
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        secret_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_url = (api_url or config.IPFS_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.CONTENT_TIMEOUT
        self._fernet = Fernet(derive_fernet_key(secret_key or config.CONTENT_SECRET_KEY))
        self.logger = logging.getLogger("service.ContentStoreClient")

    # -------------------------------------------------------------------------
    # Value encryption
    # -------------------------------------------------------------------------

    def encrypt_value(self, value: Any) -> str:
        payload = json.dumps(value, default=str).encode("utf-8")
        return self._fernet.encrypt(payload).decode("ascii")

    def decrypt_value(self, token: str) -> Any:
        try:
            payload = self._fernet.decrypt(token.encode("ascii"))
        except (InvalidToken, AttributeError, UnicodeEncodeError):
            raise ContentStoreError("Stored value could not be decrypted")
        return json.loads(payload.decode("utf-8"))

    def encrypt_values(self, data: Dict[str, Any]) -> Dict[str, str]:
        return {key: self.encrypt_value(value) for key, value in data.items()}

    def decrypt_values(self, data: Dict[str, str]) -> Dict[str, Any]:
        return {key: self.decrypt_value(value) for key, value in data.items()}

    # -------------------------------------------------------------------------
    # Store operations
    # -------------------------------------------------------------------------

    def put_json(self, data: Dict[str, Any]) -> str:
        """Encrypt and upload a document. Returns its content reference."""
        if not isinstance(data, dict):
            raise ValueError("Content documents must be JSON objects")

        body = json.dumps(self.encrypt_values(data)).encode("utf-8")
        try:
            response = requests.post(
                f"{self.api_url}/add",
                files={"file": ("data.json", body)},
                timeout=self.timeout,
            )
            response.raise_for_status()
            content_ref = response.json().get("Hash")
        except (requests.RequestException, ValueError) as e:
            self.logger.error(f"Content upload failed: {e}")
            raise ContentStoreError("Failed to upload data to the content store") from e

        if not content_ref:
            raise ContentStoreError("Content store did not return a content reference")

        self.logger.debug(f"Uploaded {len(body)} bytes as {content_ref}")
        return content_ref

    def get_json(self, content_ref: str) -> Dict[str, Any]:
        """Download and decrypt a document, failing after self.timeout seconds."""
        if not content_ref:
            raise ContentStoreError("Content reference is required")

        result: Dict[str, Any] = {}

        def _fetch():
            try:
                result["raw"] = self._read_stream(content_ref)
            except Exception as e:
                result["error"] = e

        thread = threading.Thread(target=_fetch, daemon=True)
        thread.start()
        thread.join(timeout=self.timeout)

        if thread.is_alive():
            self.logger.warning(f"Content fetch timed out ({self.timeout}s): {content_ref}")
            raise ContentStoreError("Request to the content store timed out")

        if "error" in result:
            self.logger.error(f"Content fetch failed for {content_ref}: {result['error']}")
            raise ContentStoreError("Failed to retrieve data from the content store") from result["error"]

        try:
            encrypted = json.loads(result["raw"].decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ContentStoreError("Content store returned a malformed document") from e

        if not isinstance(encrypted, dict):
            raise ContentStoreError("Content store returned a malformed document")

        return self.decrypt_values(encrypted)

    def _read_stream(self, content_ref: str) -> bytes:
        response = requests.post(
            f"{self.api_url}/cat",
            params={"arg": content_ref},
            stream=True,
            timeout=self.timeout,
        )
        try:
            response.raise_for_status()
            chunks = []
            for chunk in response.iter_content(chunk_size=8192):
                if chunk:
                    chunks.append(chunk)
            return b"".join(chunks)
        finally:
            response.close()


# Singleton
_content_store: Optional[ContentStoreClient] = None


def get_content_store() -> ContentStoreClient:
    """Get the content store client singleton."""
    global _content_store
    if _content_store is None:
        from rxledger.services.settings import get_settings_service

        api_url = get_settings_service().get("ipfsClientURL") or config.IPFS_API_URL
        _content_store = ContentStoreClient(api_url=api_url)
    return _content_store
