"""
Request-scoped file holding the serialized wire body.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

import structlog

from llmrelay.config import RESTRICTIVE_LOG_LEVELS
from llmrelay.status import RequestStatus
from llmrelay.utils.files import write_lines_file

log = structlog.get_logger(__name__)


def should_retain(*, log_level: str, status: RequestStatus | str | None) -> bool:
    """
    Decide whether a request body file survives cleanup.

    Parameters
    ----------
    log_level : str
        Configured llmrelay log level.
    status : RequestStatus | str | None
        Terminal status of the request.

    Returns
    -------
    bool
        ``True`` when the request errored or the log level is broader than
        the errors-only / info-only tier.
    """
    if status == RequestStatus.ERROR:
        return True
    return log_level.upper() not in RESTRICTIVE_LOG_LEVELS


class BodyArtifact:
    """
    Temporary ``.json`` file owned by a single request.

    Parameters
    ----------
    path : Path
        Location of the file.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._removed = False

    @classmethod
    def create(cls, *, content: str, directory: Path | None = None) -> "BodyArtifact":
        """
        Write a body to a fresh temporary file.

        Parameters
        ----------
        content : str
            Serialized body.
        directory : Path | None, optional
            Parent directory, defaults to the system temp dir.

        Returns
        -------
        BodyArtifact
            Artifact pointing at the written file.
        """
        if directory is not None:
            directory.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="llmrelay-", suffix=".json", dir=directory)
        os.close(fd)
        path = Path(name)
        write_lines_file(file_path=path, lines=content.split("\n"))
        log.info(event="Request body file", path=path.as_posix(), bytes=len(content))
        return cls(path=path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def removed(self) -> bool:
        return self._removed

    def read_bytes(self) -> bytes:
        return self._path.read_bytes()

    def remove(self) -> None:
        if self._removed:
            return
        self._path.unlink(missing_ok=True)
        self._removed = True
        log.debug(event="Removed request body file", path=self._path.as_posix())

    def cleanup(self, *, log_level: str, status: RequestStatus | str | None) -> bool:
        """
        Apply the retention policy.

        Parameters
        ----------
        log_level : str
            Configured llmrelay log level.
        status : RequestStatus | str | None
            Terminal status of the request.

        Returns
        -------
        bool
            ``True`` if the file was removed.
        """
        if should_retain(log_level=log_level, status=status):
            log.info(
                event="Retained request body file",
                path=self._path.as_posix(),
                status=str(object=status),
                log_level=log_level,
            )
            return False
        self.remove()
        return True
