"""Linking song assets next to converted charts."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from chart_converter.errors import WriteError

logger = logging.getLogger(__name__)


def link_asset(source: Path, destination: Path, *, copy_fallback: bool = True) -> Path | None:
    """Make ``destination`` refer to ``source`` without duplicating it.

    A symbolic link is preferred; if the platform refuses it the file is
    hard-linked, then copied. Existing destinations are left alone.

    Args:
        source: Existing asset file.
        destination: Path to create.
        copy_fallback: Whether copying is allowed as a last resort.

    Returns:
        The destination, or None if the source does not exist.

    Raises:
        WriteError: If the asset cannot be linked or copied.
    """
    if not source.is_file():
        logger.warning(f"Asset not found, skipping: {source}")
        return None
    if destination.exists() or destination.is_symlink():
        return destination
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WriteError(f"cannot create folder: {e}", destination.parent) from e
    try:
        os.symlink(source.resolve(), destination)
        return destination
    except OSError as e:
        logger.debug(f"Symlink failed for {destination}: {e}")
    try:
        os.link(source, destination)
        return destination
    except OSError as e:
        logger.debug(f"Hard link failed for {destination}: {e}")
    if not copy_fallback:
        raise WriteError("cannot link asset", destination)
    try:
        shutil.copy2(source, destination)
    except OSError as e:
        raise WriteError(f"cannot copy asset: {e}", destination) from e
    return destination


def link_song_assets(source_dir: Path, target_dir: Path, names: list[str | None]) -> list[Path]:
    """Link the named assets of a song folder into another folder.

    Args:
        source_dir: Song folder the charts were loaded from.
        target_dir: Folder the converted charts are written to.
        names: Asset file names relative to ``source_dir`` (None entries are ignored).

    Returns:
        Destinations that now exist.
    """
    if source_dir.resolve() == target_dir.resolve():
        return []
    linked = []
    for name in sorted({n for n in names if n}):
        result = link_asset(source_dir / name, target_dir / name)
        if result is not None:
            linked.append(result)
    return linked
