"""BundleStore: durable, content-addressed storage of evidence bundles.

Each bundle is stored under its hash prefix together with a separable,
non-hashed metadata envelope (``_meta``: full hash, anchoring tx id, storage
time). A singleton "latest" pointer names the most recent stored bundle.

Write ordering: a bundle file is fully written (temp file + rename) before
the pointer may reference it, so a crash or cancellation never leaves a
pointer to a missing bundle.

File layout::

    <root>/bundles/<hash_prefix>.json
    <root>/latest.json
"""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .BundleBuilder import (
    ENVELOPE_KEY,
    hash_bundle,
    hash_prefix,
    is_full_hash,
    is_hash_prefix,
    strip_envelope,
)
from .Evidence import EvidenceBundle, utc_timestamp

logger = logging.getLogger(__name__)


class BundleStoreError(Exception):
    """Raised when the store cannot read or persist data."""

    pass


class CorruptBundleError(BundleStoreError):
    """Raised when a stored record exists but its content is unusable."""

    pass


def _reject_constant(name: str) -> float:
    raise ValueError(f"non-finite number literal {name}")


def _parse_finite_float(text: str) -> float:
    value = float(text)
    # Literals like 1e999 overflow to infinity
    if math.isinf(value):
        raise ValueError(f"number literal {text} is out of float range")
    return value


@dataclass(frozen=True)
class BundleMeta:
    """Non-hashed envelope attached to a stored bundle.

    :ivar hash: Full SHA-256 hex digest of the bundle.
    :ivar tx_id: Anchoring transaction id, if the bundle was anchored.
    :ivar stored_at: Storage timestamp (ISO-8601 UTC).
    """

    hash: str
    tx_id: str | None
    stored_at: str

    def to_dict(self) -> dict[str, Any]:
        return {"hash": self.hash, "tx_id": self.tx_id, "stored_at": self.stored_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BundleMeta:
        return cls(
            hash=data["hash"], tx_id=data.get("tx_id"), stored_at=data["stored_at"]
        )


@dataclass(frozen=True)
class StoredBundle:
    """A bundle as read back from the store.

    :ivar content: The hashed bundle content, exactly as persisted.
    :ivar meta: The envelope, kept apart from the hashed content.
    """

    content: dict[str, Any]
    meta: BundleMeta

    @property
    def hash_prefix(self) -> str:
        return hash_prefix(self.meta.hash)

    def bundle(self) -> EvidenceBundle:
        """Parse the content into an EvidenceBundle."""
        return EvidenceBundle.from_dict(self.content)

    def to_record(self) -> dict[str, Any]:
        """Return the content with the envelope attached, as persisted."""
        return {**self.content, ENVELOPE_KEY: self.meta.to_dict()}


@dataclass(frozen=True)
class LatestPointer:
    """Pointer to the most recently stored bundle.

    :ivar hash_prefix: Prefix of the latest bundle.
    :ivar hash: Full hash of the latest bundle.
    :ivar tx_id: Anchoring transaction id, if any.
    :ivar updated_at: Time the pointer was advanced.
    """

    hash_prefix: str
    hash: str
    tx_id: str | None
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash_prefix": self.hash_prefix,
            "hash": self.hash,
            "tx_id": self.tx_id,
            "updated_at": self.updated_at,
        }


class BundleStore(ABC):
    """Abstract key-value store for evidence bundles."""

    @abstractmethod
    def put(
        self, bundle: EvidenceBundle, full_hash: str, tx_id: str | None = None
    ) -> StoredBundle:
        """Persist a bundle under its hash prefix (idempotent per hash)."""
        pass

    @abstractmethod
    def get(self, prefix: str) -> StoredBundle | None:
        """Return the bundle stored at ``prefix``, or None."""
        pass

    @abstractmethod
    def publish_latest(self, prefix: str, tx_id: str | None = None) -> LatestPointer:
        """Advance the latest pointer to an already stored bundle."""
        pass

    @abstractmethod
    def get_latest_pointer(self) -> LatestPointer | None:
        """Return the latest pointer, or None if nothing was published."""
        pass

    @abstractmethod
    def list_prefixes(self) -> list[str]:
        """Return the prefixes of all stored bundles."""
        pass


class FileBundleStore(BundleStore):
    """Bundle store persisting one JSON file per bundle.

    :ivar root: Root directory of the store.
    """

    LATEST_FILE = "latest.json"
    BUNDLE_DIR = "bundles"

    def __init__(self, root: str | os.PathLike[str]) -> None:
        """Initialize the store.

        :param root: Root directory; created lazily on first write.
        """
        self.root = Path(root)

    @property
    def bundle_dir(self) -> Path:
        return self.root / self.BUNDLE_DIR

    def _bundle_path(self, prefix: str) -> Path:
        return self.bundle_dir / f"{prefix}.json"

    def _write_json(self, path: Path, data: dict[str, Any]) -> None:
        """Atomically write JSON: temp file in the same directory, then rename."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                    json.dump(data, tmp, indent=2, ensure_ascii=False, allow_nan=False)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                # Never leave a half-written temp file behind, even on cancellation
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise BundleStoreError(f"Failed to write {path}: {e}") from e

    def _read_json(self, path: Path) -> dict[str, Any] | None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(
                    f,
                    parse_constant=_reject_constant,
                    parse_float=_parse_finite_float,
                )
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BundleStoreError(f"Failed to read {path}: {e}") from e
        except ValueError as e:
            raise CorruptBundleError(f"Corrupt record {path}: {e}") from e
        if not isinstance(data, dict):
            raise CorruptBundleError(f"Corrupt record {path}: not a JSON object")
        return data

    def put(
        self, bundle: EvidenceBundle, full_hash: str, tx_id: str | None = None
    ) -> StoredBundle:
        """Persist a bundle under its hash prefix.

        Storing the same content twice keeps the first record untouched.

        :param bundle: Bundle to persist.
        :param full_hash: Full hash of the bundle, as computed by hash_bundle().
        :param tx_id: Anchoring transaction id, if the bundle was anchored.
        :returns: The stored record.
        :raises ValueError: If ``full_hash`` is malformed or does not match the bundle.
        :raises BundleStoreError: On I/O failure or a prefix collision.
        """
        if not is_full_hash(full_hash):
            raise ValueError(f"Invalid bundle hash: {full_hash!r}")
        if hash_bundle(bundle) != full_hash:
            raise ValueError("Bundle hash does not match bundle content")

        prefix = hash_prefix(full_hash)
        existing = self.get(prefix)
        if existing is not None:
            if existing.meta.hash != full_hash:
                raise BundleStoreError(
                    f"Hash prefix collision at {prefix}: "
                    f"stored={existing.meta.hash}, new={full_hash}"
                )
            logger.debug(f"Bundle {prefix} already stored")
            return existing

        stored = StoredBundle(
            content=bundle.to_dict(),
            meta=BundleMeta(hash=full_hash, tx_id=tx_id, stored_at=utc_timestamp()),
        )
        self._write_json(self._bundle_path(prefix), stored.to_record())
        logger.debug(f"Stored bundle {prefix} at {self._bundle_path(prefix)}")
        return stored

    def get(self, prefix: str) -> StoredBundle | None:
        """Read the bundle stored at a hash prefix.

        :param prefix: 16-char lowercase hex prefix.
        :returns: StoredBundle, or None if no bundle is stored there.
        :raises ValueError: If ``prefix`` is malformed.
        :raises BundleStoreError: If the record cannot be read or is corrupt.
        """
        if not is_hash_prefix(prefix):
            raise ValueError(f"Invalid hash prefix: {prefix!r}")

        record = self._read_json(self._bundle_path(prefix))
        if record is None:
            return None

        envelope = record.get(ENVELOPE_KEY)
        if not isinstance(envelope, dict):
            raise CorruptBundleError(f"Bundle {prefix} has no metadata envelope")
        try:
            meta = BundleMeta.from_dict(envelope)
        except KeyError as e:
            raise CorruptBundleError(f"Bundle {prefix} envelope missing {e}") from e

        return StoredBundle(content=strip_envelope(record), meta=meta)

    def attach_tx_id(self, prefix: str, tx_id: str) -> StoredBundle:
        """Record the anchoring transaction of an already stored bundle.

        Only the envelope changes; the hashed content is rewritten verbatim.

        :raises BundleStoreError: If no bundle is stored at ``prefix``.
        """
        existing = self.get(prefix)
        if existing is None:
            raise BundleStoreError(f"Bundle {prefix} is not stored")
        updated = StoredBundle(
            content=existing.content,
            meta=BundleMeta(
                hash=existing.meta.hash, tx_id=tx_id, stored_at=existing.meta.stored_at
            ),
        )
        self._write_json(self._bundle_path(prefix), updated.to_record())
        return updated

    def publish_latest(self, prefix: str, tx_id: str | None = None) -> LatestPointer:
        """Advance the latest pointer.

        :param prefix: Prefix of a stored bundle.
        :param tx_id: Anchoring transaction id, if any.
        :returns: The new pointer.
        :raises BundleStoreError: If the bundle is not stored or the write fails.
        """
        stored = self.get(prefix)
        if stored is None:
            raise BundleStoreError(
                f"Refusing to publish pointer to unstored bundle {prefix}"
            )
        pointer = LatestPointer(
            hash_prefix=prefix,
            hash=stored.meta.hash,
            tx_id=tx_id,
            updated_at=utc_timestamp(),
        )
        self._write_json(self.root / self.LATEST_FILE, pointer.to_dict())
        return pointer

    def get_latest_pointer(self) -> LatestPointer | None:
        """Read the latest pointer.

        :returns: LatestPointer, or None if nothing has been published yet.
        :raises BundleStoreError: If the pointer file is unreadable or corrupt.
        """
        data = self._read_json(self.root / self.LATEST_FILE)
        if data is None:
            return None
        try:
            return LatestPointer(
                hash_prefix=data["hash_prefix"],
                hash=data["hash"],
                tx_id=data.get("tx_id"),
                updated_at=data["updated_at"],
            )
        except KeyError as e:
            raise CorruptBundleError(f"Corrupt latest pointer: missing {e}") from e

    def list_prefixes(self) -> list[str]:
        """List the prefixes of all stored bundles, sorted."""
        if not self.bundle_dir.is_dir():
            return []
        try:
            return sorted(
                p.stem for p in self.bundle_dir.glob("*.json") if is_hash_prefix(p.stem)
            )
        except OSError as e:
            raise BundleStoreError(f"Failed to list {self.bundle_dir}: {e}") from e
