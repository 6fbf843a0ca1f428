"""
Storage Utility
===============

Whole-file JSON persistence for record collections, with a copy of the
previous version kept beside the primary file.
"""

import json
import os
import shutil
import tempfile


class StorageError(Exception):
    """Base class for collection storage failures."""


class CorruptStoreError(StorageError):
    """The collection file exists but does not hold a JSON array."""

    def __init__(self, path, reason):
        super().__init__(f"Unreadable collection file {path}: {reason}")
        self.path = path
        self.reason = reason


def ensure_directory(path):
    """Create the directory that will contain `path` (recursively) if missing."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    return directory


def read_collection(path):
    """Load the JSON array stored at `path`.

    Returns an empty list when the file does not exist. Raises
    CorruptStoreError when the file is present but unparsable or does not
    contain a list.
    """
    try:
        with open(path, 'rb') as f:
            raw = f.read()
    except FileNotFoundError:
        return []

    # UnicodeDecodeError is a ValueError
    try:
        data = json.loads(raw.decode('utf-8'))
    except ValueError as e:
        raise CorruptStoreError(path, str(e)) from e

    if not isinstance(data, list):
        raise CorruptStoreError(path, f"expected a JSON array, got {type(data).__name__}")
    return data


def backup_file(path, backup_path):
    """Copy the current primary file to `backup_path`.

    Returns False (and does nothing) when there is no primary file yet.
    """
    if not os.path.isfile(path):
        return False
    ensure_directory(backup_path)
    shutil.copyfile(path, backup_path)
    return True


def write_collection(path, records, backup_path=None):
    """Persist `records` as a pretty-printed JSON array at `path`.

    The previous primary file (if any) is copied to `backup_path` first. The
    new content goes to a temp file in the same directory and is moved over
    the primary, so readers never observe a half-written file. OSError is
    left to propagate.
    """
    directory = ensure_directory(path)

    if backup_path:
        backup_file(path, backup_path)

    payload = json.dumps(records, indent=2, ensure_ascii=False)

    fd, tmp_path = tempfile.mkstemp(
        dir=directory, prefix='.' + os.path.basename(path) + '.', suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
