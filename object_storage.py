"""Bucket-style object storage.

Objects are addressed by a '/'-separated path inside a named bucket. The local
backend keeps one directory per bucket under a storage root and uses the sha256
of an object's bytes as its etag.
"""
import hashlib
import logging
import os
import threading

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """The backend failed to complete an operation."""


class ObjectNotFound(StorageError):
    def __init__(self, path):
        super().__init__(f'object not found: {path}')
        self.path = path


class PreconditionFailed(StorageError):
    def __init__(self, path, expected, actual):
        super().__init__(f'etag mismatch for {path}: expected {expected}, found {actual}')
        self.path = path
        self.expected = expected
        self.actual = actual


def compute_etag(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class LocalBucket:
    """A bucket kept as a directory on the local filesystem.

    Conditional writes are checked and applied under a ``threading.Lock``, so
    the ``if_match`` guarantee only holds between threads of one process. Run
    a single worker process against a given ``STORAGE_DIR``.
    """
    def __init__(self, root: str, name: str):
        self.name = name
        self.base_dir = os.path.abspath(os.path.join(root, name))
        self._lock = threading.Lock()

    def ensure(self):
        """Create the bucket directory if it does not exist yet."""
        try:
            os.makedirs(self.base_dir, exist_ok=True)
        except OSError as e:
            raise StorageError(f'cannot create bucket {self.name}: {e}') from e

    def _full_path(self, path: str) -> str:
        parts = [p for p in path.split('/') if p]
        if not parts or any(p in ('.', '..') for p in parts):
            raise StorageError(f'invalid object path: {path!r}')
        return os.path.join(self.base_dir, *parts)

    def download(self, path: str) -> bytes:
        full = self._full_path(path)
        try:
            with open(full, 'rb') as f:
                return f.read()
        except FileNotFoundError:
            raise ObjectNotFound(path)
        except OSError as e:
            raise StorageError(f'cannot read {path}: {e}') from e

    def etag(self, path: str) -> str:
        return compute_etag(self.download(path))

    def download_with_etag(self, path: str):
        data = self.download(path)
        return data, compute_etag(data)

    def upload(self, path: str, data: bytes, upsert: bool = True, if_match=None) -> str:
        """Write an object and return its new etag.

        ``if_match`` makes the write conditional on the current etag; pass an
        empty string to require that the object does not exist yet.
        """
        full = self._full_path(path)
        with self._lock:
            exists = os.path.exists(full)
            if exists and not upsert:
                raise PreconditionFailed(path, '', self._current_etag(full))
            if if_match is not None:
                actual = self._current_etag(full) if exists else ''
                if actual != if_match:
                    raise PreconditionFailed(path, if_match, actual)
            try:
                os.makedirs(os.path.dirname(full), exist_ok=True)
                tmp = f'{full}.tmp'
                with open(tmp, 'wb') as f:
                    f.write(data)
                os.replace(tmp, full)
            except OSError as e:
                raise StorageError(f'cannot write {path}: {e}') from e
        return compute_etag(data)

    def _current_etag(self, full):
        with open(full, 'rb') as f:
            return compute_etag(f.read())

    def list(self, prefix: str = ''):
        """Names of the entries directly under ``prefix`` (files and folders)."""
        directory = self._full_path(prefix) if prefix.strip('/') else self.base_dir
        try:
            names = os.listdir(directory)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(f'cannot list {prefix!r}: {e}') from e
        return sorted(n for n in names if not n.endswith('.tmp'))

    def remove(self, paths):
        """Delete objects, returning the paths that actually existed."""
        removed = []
        with self._lock:
            for path in paths:
                full = self._full_path(path)
                try:
                    os.remove(full)
                except FileNotFoundError:
                    continue
                except OSError as e:
                    raise StorageError(f'cannot remove {path}: {e}') from e
                removed.append(path)
                parent = os.path.dirname(full)
                if parent != self.base_dir and not os.listdir(parent):
                    os.rmdir(parent)
        if removed:
            logger.debug('removed %d object(s) from %s', len(removed), self.name)
        return removed
