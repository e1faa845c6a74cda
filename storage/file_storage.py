"""Local file persistence used by the durable cache tier and by callers saving results."""

import os
from pathlib import Path

from utils.logger import get_logger, log_fields

logger = get_logger(__name__)


class FileStorageService:
    """
    Thin wrapper over the filesystem that logs every operation.

    All failures except "file does not exist" on delete are re-raised as OSError
    with the original error chained.
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def save_to_file(self, file_path: str | Path, content: str, create_directory: bool = True) -> str:
        """
        Write ``content`` to ``file_path``, replacing any previous content.

        Returns:
            The normalized path that was written
        """
        path = Path(os.path.normpath(file_path))
        try:
            if create_directory:
                path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding=self.encoding)
        except OSError as e:
            logger.error("Failed to save file", extra=log_fields(path=str(file_path), error=str(e)))
            raise OSError(f"Failed to save file: {e}") from e

        logger.debug("File saved successfully", extra=log_fields(path=str(path)))
        return str(path)

    def append_to_file(self, file_path: str | Path, content: str, create_directory: bool = True) -> str:
        path = Path(os.path.normpath(file_path))
        try:
            if create_directory:
                path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding=self.encoding) as fh:
                fh.write(content)
        except OSError as e:
            logger.error("Failed to append to file", extra=log_fields(path=str(file_path), error=str(e)))
            raise OSError(f"Failed to append to file: {e}") from e
        return str(path)

    def read_from_file(self, file_path: str | Path) -> str:
        path = Path(os.path.normpath(file_path))
        try:
            content = path.read_text(encoding=self.encoding)
        except OSError as e:
            logger.error("Failed to read file", extra=log_fields(path=str(file_path), error=str(e)))
            raise OSError(f"Failed to read file: {e}") from e

        logger.debug("File read successfully", extra=log_fields(path=str(path)))
        return content

    def file_exists(self, file_path: str | Path) -> bool:
        return Path(os.path.normpath(file_path)).is_file()

    def delete_file(self, file_path: str | Path) -> bool:
        """
        Delete a file.

        Returns:
            True if the file was deleted, False if it did not exist
        """
        path = Path(os.path.normpath(file_path))
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug("File does not exist, no deletion needed", extra=log_fields(path=str(path)))
            return False
        except OSError as e:
            logger.error("Failed to delete file", extra=log_fields(path=str(file_path), error=str(e)))
            raise OSError(f"Failed to delete file: {e}") from e

        logger.debug("File deleted successfully", extra=log_fields(path=str(path)))
        return True

    def list_files(self, directory: str | Path, pattern: str = "*") -> list[Path]:
        """Regular files directly under ``directory``; empty when it does not exist."""
        root = Path(directory)
        if not root.is_dir():
            return []
        return sorted(p for p in root.glob(pattern) if p.is_file())

    def modified_time(self, file_path: str | Path) -> float:
        """Modification time in epoch seconds. Raises FileNotFoundError when missing."""
        return Path(file_path).stat().st_mtime
