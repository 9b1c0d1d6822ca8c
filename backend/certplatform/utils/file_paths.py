"""
Certificate file path helpers.

Paths stored in the database are relative to the storage directory so the
directory can move between deployments.
"""
import os
from datetime import datetime
from typing import Optional

from ..core.config import settings
from .timezone import utcnow


class FileTypes:
    CERTIFICATES = "certificates"


def get_storage_dir() -> str:
    return settings.certificate_storage_dir


def get_full_storage_path(relative_path: str) -> str:
    """
    Resolve a stored relative path to an absolute one.

    Args:
        relative_path: e.g. "certificates/<user>/2026-10-19/<id>.pdf"

    Returns:
        str: absolute path under the storage directory
    """
    return os.path.join(get_storage_dir(), relative_path)


def get_certificate_relative_path(
    user_id: str,
    certificate_id: str,
    issued_on: Optional[datetime] = None,
    extension: str = "pdf",
) -> str:
    date_part = (issued_on or utcnow()).strftime("%Y-%m-%d")
    return "/".join([FileTypes.CERTIFICATES, user_id, date_part, f"{certificate_id}.{extension}"])


def ensure_parent_directory(full_path: str) -> str:
    directory = os.path.dirname(full_path)
    os.makedirs(directory, exist_ok=True)
    return directory
