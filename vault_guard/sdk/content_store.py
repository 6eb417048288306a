"""
Content-addressed object store.

Files are stored by content address (CID). The engine needs three
operations from the store: add bytes, compute the address of bytes without
storing them, and a best-effort removal.
"""

import logging
from abc import ABC, abstractmethod

import requests

from ..config.loader import ContentStoreConfig

logger = logging.getLogger(__name__)


class ContentStoreError(Exception):
    """Raised when the store cannot add or hash content."""


class ContentStore(ABC):
    """Key to content service used by the upload and delete flows."""

    @abstractmethod
    def put(self, data: bytes) -> str:
        """Store bytes and return their content address."""

    @abstractmethod
    def hash(self, data: bytes) -> str:
        """Content address of bytes, without storing them."""

    @abstractmethod
    def remove(self, cid: str) -> bool:
        """Unpin content. Best-effort: never raises.

        Returns:
            True if the store confirmed the removal
        """


class KuboContentStore(ContentStore):
    """IPFS store backed by a Kubo node's HTTP RPC API.

    put() and hash() both request CIDv1 so a precomputed address matches
    the address of the stored bytes.
    """

    def __init__(self, config: ContentStoreConfig, session: requests.Session = None):
        self.api_url = config.api_url.rstrip("/")
        self.timeout = config.timeout_seconds
        self.session = session or requests.Session()

    def put(self, data: bytes) -> str:
        return self._add(data, only_hash=False)

    def hash(self, data: bytes) -> str:
        return self._add(data, only_hash=True)

    def remove(self, cid: str) -> bool:
        try:
            response = self.session.post(
                f"{self.api_url}/api/v0/pin/rm",
                params={"arg": cid},
                timeout=self.timeout
            )
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.warning("IPFS unpin failed: cid=%s error=%s", cid, e)
            return False

    def _add(self, data: bytes, only_hash: bool) -> str:
        params = {
            "cid-version": "1",
            "pin": "true",
            "only-hash": "true" if only_hash else "false",
        }
        try:
            response = self.session.post(
                f"{self.api_url}/api/v0/add",
                params=params,
                files={"file": data},
                timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ContentStoreError(f"IPFS add failed: {e}") from e

        cid = payload.get("Hash")
        if not cid:
            raise ContentStoreError("IPFS add response missing Hash")
        return cid
