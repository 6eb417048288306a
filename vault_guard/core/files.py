"""
Upload and delete orchestration.

Ties admission, the content store, consumption accounting and the catalog
together for the request handlers. Deletion trades storage-layer leakage for
billing correctness: consumption is reduced and the record tombstoned even
when the content store could not confirm the removal.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .address import normalize_address
from .capacity import has_capacity
from .consumption import ConsumptionTracker
from .notifier import FileBroadcast, Notifier
from .pricing import hourly_cost
from ..config.loader import DEFAULT_MAX_UPLOAD_BYTES, DEFAULT_RECONCILE_INTERVAL
from ..sdk.content_store import ContentStore
from ..sdk.vault_client import LedgerReadError
from ..storage.models import StoredObject
from ..storage.repository import AccountRepository, ObjectRepository

logger = logging.getLogger(__name__)


class InsufficientCapacityError(Exception):
    """Raised when an upload is not admitted.

    ``retryable`` is True when admission was denied because the ledger
    could not be read, rather than because the balance is too low.
    """
    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class UploadTooLargeError(ValueError):
    """Raised when an upload exceeds the configured size limit."""


class StoredObjectNotFound(LookupError):
    """Raised when a file id does not exist for the requesting owner."""


@dataclass(frozen=True)
class UploadResult:
    object: StoredObject
    duplicate: bool = False


@dataclass(frozen=True)
class DeleteAllResult:
    deleted: int
    total_deleted_bytes: int
    failed_cids: List[str]


class FileService:
    """Upload and delete flows for vault-paid storage."""

    def __init__(
        self,
        ledger,
        content_store: ContentStore,
        accounts: AccountRepository,
        objects: ObjectRepository,
        tracker: Optional[ConsumptionTracker] = None,
        notifier: Optional[Notifier] = None,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        settlement_interval_seconds: float = DEFAULT_RECONCILE_INTERVAL
    ):
        self.ledger = ledger
        self.content_store = content_store
        self.accounts = accounts
        self.objects = objects
        self.tracker = tracker or ConsumptionTracker(ledger, accounts)
        self.notifier = notifier
        self.max_upload_bytes = max_upload_bytes
        self.settlement_interval_seconds = settlement_interval_seconds

    def upload(self, address: str, data: bytes, name: str) -> UploadResult:
        """Admit, store and charge for an upload.

        Identical content already stored live for the same owner is returned
        as a duplicate without storing or charging again.

        Args:
            address: Uploader wallet address
            data: File content
            name: Original file name

        Returns:
            UploadResult with the catalog entry

        Raises:
            InvalidAddressError: If the address is malformed
            UploadTooLargeError: If data exceeds max_upload_bytes
            InsufficientCapacityError: If the vault balance does not cover the upload
            LedgerWriteError: If the consumption increase did not land
        """
        holder = normalize_address(address)
        size = len(data)
        if size > self.max_upload_bytes:
            raise UploadTooLargeError(
                f"Upload of {size} bytes exceeds limit of {self.max_upload_bytes}"
            )

        self.accounts.get_or_create(holder)
        logger.info("Upload request: address=%s name=%s size=%d", holder, name, size)

        try:
            admitted = has_capacity(self.ledger, holder, size)
        except LedgerReadError as e:
            logger.warning("Upload denied, ledger unavailable: address=%s error=%s", holder, e)
            raise InsufficientCapacityError("Could not verify vault balance", retryable=True) from e
        if not admitted:
            raise InsufficientCapacityError("Insufficient vault balance")

        pre_cid = self.content_store.hash(data)
        existing = self.objects.find_active(holder, pre_cid)
        if existing is not None:
            logger.info(
                "Duplicate upload: address=%s cid=%s file_id=%s", holder, pre_cid, existing.file_id
            )
            return UploadResult(existing, duplicate=True)

        cid = self.content_store.put(data)
        if cid != pre_cid:
            logger.warning("Stored CID differs from precomputed: pre=%s stored=%s", pre_cid, cid)

        self.tracker.increase(holder, size)

        obj = StoredObject(
            file_id=secrets.token_hex(12),
            owner=holder,
            cid=cid,
            name=name,
            size=size,
            extension=_extension(name),
            created_at=datetime.now()
        )
        if not self.objects.insert(obj):
            # A concurrent upload of the same content won; undo our charge
            logger.info("Lost duplicate race, refunding: address=%s cid=%s", holder, cid)
            self.tracker.decrease(holder, size)
            return UploadResult(self.objects.find_active(holder, cid), duplicate=True)

        logger.info("File stored: address=%s file_id=%s cid=%s", holder, obj.file_id, cid)
        self._broadcast(obj)
        return UploadResult(obj)

    def delete(self, address: str, file_id: str) -> bool:
        """Tombstone one file, release its consumption and unpin it (best-effort).

        Returns:
            True if the file was live, False if it was already deleted

        Raises:
            StoredObjectNotFound: If the owner has no such file
        """
        holder = normalize_address(address)
        obj = self.objects.get(file_id)
        if obj is None or obj.owner != holder:
            raise StoredObjectNotFound(f"File not found: {file_id}")
        # Only the caller that flips the tombstone releases the bytes
        if not self.objects.mark_deleted(file_id):
            return False

        try:
            self.tracker.decrease(holder, obj.size)
        except Exception:
            logger.error("Releasing consumption failed, restoring: file_id=%s", file_id)
            self.objects.restore(file_id)
            raise

        if not self.content_store.remove(obj.cid):
            logger.warning("Unpin not confirmed, continuing: cid=%s", obj.cid)

        logger.info("File deleted: address=%s file_id=%s size=%d", holder, file_id, obj.size)
        return True

    def delete_all(self, address: str) -> DeleteAllResult:
        """Tombstone every live file of an owner and zero its consumption.

        Safe to retry: when nothing is live but the ledger still charges the
        owner, consumption is zeroed anyway.
        """
        holder = normalize_address(address)
        removed = self.objects.tombstone_owner(holder)
        if not removed:
            if self.ledger.consumption_of(holder) > 0:
                logger.warning("No live files but consumption charged, zeroing: address=%s", holder)
                self.tracker.set_consumption(holder, 0)
            return DeleteAllResult(deleted=0, total_deleted_bytes=0, failed_cids=[])

        self.tracker.set_consumption(holder, 0)
        failed = [obj.cid for obj in removed if not self.content_store.remove(obj.cid)]

        total = sum(obj.size for obj in removed)
        logger.info(
            "All files deleted: address=%s count=%d bytes=%d unpin_failed=%d",
            holder, len(removed), total, len(failed)
        )
        return DeleteAllResult(deleted=len(removed), total_deleted_bytes=total, failed_cids=failed)

    def get_file(self, file_id: str) -> Optional[StoredObject]:
        return self.objects.get(file_id)

    def list_files(self, address: str) -> List[StoredObject]:
        return self.objects.list_active(normalize_address(address))

    def _broadcast(self, obj: StoredObject) -> None:
        if self.notifier is None:
            return
        self.notifier.broadcast(FileBroadcast(
            owner=obj.owner,
            cid=obj.cid,
            timestamp=obj.created_at,
            size_bytes=obj.size,
            hourly_cost=hourly_cost(obj.size, self.settlement_interval_seconds)
        ))


def _extension(name: str) -> str:
    idx = name.rfind(".")
    return name[idx + 1:].lower() if idx != -1 else ""
