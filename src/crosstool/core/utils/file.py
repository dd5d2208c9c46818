import os
from pathlib import Path
from typing import Optional

from crosstool.core.errors import CrossToolError, NotFoundError, PermissionDeniedError, ValidationError


def validate_file_path(file_path: Optional[str], command_name: str) -> str:
    if not file_path:
        raise ValidationError(f"{command_name}: File path is required")
    if not Path(file_path).is_file():
        raise NotFoundError(f"{command_name}: File '{file_path}' does not exist")
    return str(file_path)


def read_text_file(file_path: str) -> str:
    path = Path(file_path)
    if not path.is_file():
        raise NotFoundError(f"File '{file_path}' not found")
    try:
        return path.read_text(encoding="utf-8")
    except PermissionError as e:
        raise PermissionDeniedError(f"Failed to read file '{file_path}': {e}")
    except (OSError, UnicodeDecodeError) as e:
        raise CrossToolError(f"Failed to read file '{file_path}': {e}")


def write_text_file(file_path: str, content: str) -> None:
    try:
        Path(file_path).write_text(content, encoding="utf-8")
    except PermissionError as e:
        raise PermissionDeniedError(f"Failed to write file '{file_path}': {e}")
    except OSError as e:
        raise CrossToolError(f"Failed to write file '{file_path}': {e}")


def ensure_executable(file_path: str) -> str:
    """
    Make sure ``file_path`` exists and can be executed.

    A missing execute bit is fixed once with ``chmod 755``; if that fails the
    caller gets a PermissionDeniedError with the manual fix in the hint.
    """
    path = Path(file_path)
    if not path.is_file():
        raise NotFoundError(f"Binary not found at path: {file_path}")
    if os.name == "nt" or os.access(path, os.X_OK):
        return str(path)
    try:
        path.chmod(0o755)
    except OSError as e:
        raise PermissionDeniedError(
            f"Binary exists but lacks execute permissions: {file_path} ({e})",
            hint=f'chmod +x "{file_path}"',
        )
    if not os.access(path, os.X_OK):
        raise PermissionDeniedError(
            f"Binary exists but lacks execute permissions: {file_path}",
            hint=f'chmod +x "{file_path}"',
        )
    return str(path)
