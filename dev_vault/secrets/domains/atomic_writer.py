"""Crash-safe file writes.

The payload is written to a sibling temp file and renamed over the
destination, so readers see either the old file or the complete new one.
"""
import logging
import os
import tempfile

from .errors import DestinationExistsError, FilesystemError

logger = logging.getLogger(__name__)

DIR_MODE = 0o755


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


def _remove_existing(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        os.rmdir(path)
    else:
        os.remove(path)


def atomic_write_file(path: str, data: bytes, mode: int = 0o600, overwrite: bool = False) -> None:
    """
    Atomically write data to path.

    Args:
        path: Destination file path
        data: Bytes to write
        mode: Permission bits applied to the file before it becomes visible
        overwrite: Replace an existing destination if True

    Raises:
        DestinationExistsError: If path exists and overwrite is False
        FilesystemError: On any other failure. The temp file is removed and
            the destination is never left partially written. Only the
            overwrite retry path removes the old destination before giving up.
    """
    directory = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(directory, mode=DIR_MODE, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"mkdir {directory}: {e}", path=path) from e

    if not overwrite and os.path.lexists(path):
        raise DestinationExistsError(path)

    base = os.path.basename(path)
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f"{base}.tmp.", dir=directory)
    except OSError as e:
        raise FilesystemError(f"create temp in {directory}: {e}", path=path) from e

    try:
        try:
            _write_all(fd, data)
            os.fsync(fd)
        except OSError as e:
            raise FilesystemError(f"write temp: {e}", path=path) from e
        finally:
            os.close(fd)

        try:
            os.chmod(tmp_name, mode)
        except OSError as e:
            raise FilesystemError(f"chmod temp: {e}", path=path) from e

        _rename_into_place(tmp_name, path, overwrite)
    except BaseException:
        try:
            os.remove(tmp_name)
        except FileNotFoundError:
            pass
        raise

    logger.debug(f"Wrote {len(data)} bytes to {path}")


def _rename_into_place(tmp_name: str, path: str, overwrite: bool) -> None:
    try:
        os.replace(tmp_name, path)
        return
    except OSError as e:
        rename_err = e

    if not overwrite:
        raise FilesystemError(f"rename temp to dest: {rename_err}", path=path) from rename_err

    logger.debug(f"Rename onto {path} failed ({rename_err}); removing destination and retrying")
    try:
        _remove_existing(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        raise FilesystemError(f"remove existing: {e}", path=path) from e

    try:
        os.replace(tmp_name, path)
    except OSError as retry_err:
        raise FilesystemError(
            f"rename temp to dest after overwrite (first attempt: {rename_err}): {retry_err}",
            path=path,
        ) from retry_err
