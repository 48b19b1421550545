"""Bundle selection and manifest file collection."""

import logging
import os
from pathlib import Path
from typing import Iterable, List, Union

from apptemplate_controller.exceptions import ConfigurationCollectionError

logger = logging.getLogger(__name__)

MANIFEST_EXTENSIONS = (".yaml", ".yml")
VCS_DIRECTORIES = frozenset({".git", ".hg", ".svn"})


def is_in_scope(relative_path: str, configs_to_use: Iterable[str], service_name: str) -> bool:
    """Decide whether a bundle directory is selected.

    Args:
        relative_path: Directory path relative to the bundle root, with a leading separator
        configs_to_use: Bundle names requested by the AppTemplate
        service_name: Service name, selecting the implicit ``extras-<serviceName>`` bundle

    Returns:
        True if the directory and everything below it should be collected
    """
    parts = relative_path.strip("/").split("/")
    if any(part in VCS_DIRECTORIES for part in parts):
        return False

    return f"extras-{service_name}" in relative_path or relative_path.lstrip("/") in set(configs_to_use)


def _list_dir(directory: Path) -> List[os.DirEntry]:
    try:
        with os.scandir(directory) as entries:
            return sorted(entries, key=lambda entry: entry.name)
    except OSError as e:
        raise ConfigurationCollectionError(str(directory), e.strerror or str(e)) from e


def _is_manifest(name: str) -> bool:
    return Path(name).suffix.lower() in MANIFEST_EXTENSIONS


def _collect_bundle(directory: Path, files: List[Path]) -> None:
    try:
        entries = _list_dir(directory)
    except ConfigurationCollectionError as e:
        logger.warning("%s; skipping subtree", e.message)
        return

    for entry in entries:
        if entry.is_dir():
            if entry.name in VCS_DIRECTORIES:
                continue
            _collect_bundle(Path(entry.path), files)
        elif _is_manifest(entry.name):
            files.append(Path(entry.path))


def collect(root_dir: Union[str, Path], configs_to_use: Iterable[str], service_name: str) -> List[Path]:
    """Collect manifest files from every selected bundle under ``root_dir``.

    Traversal is depth-first. Directories directly under the root are tested
    with :func:`is_in_scope`; a selected directory is collected recursively,
    an unselected one is skipped without descending into it. Only ``.yaml``
    and ``.yml`` files are returned. Unreadable directories are logged and
    contribute nothing.

    Args:
        root_dir: Bundle root directory
        configs_to_use: Bundle names requested by the AppTemplate
        service_name: Service name of the AppTemplate

    Returns:
        Manifest file paths in traversal order
    """
    root = Path(root_dir)
    configs = frozenset(configs_to_use)
    files: List[Path] = []

    try:
        entries = _list_dir(root)
    except ConfigurationCollectionError as e:
        logger.warning("%s; no bundles collected", e.message)
        return files

    for entry in entries:
        if not entry.is_dir():
            continue

        relative_path = "/" + entry.name
        if not is_in_scope(relative_path, configs, service_name):
            logger.debug("Skipping bundle %s", relative_path)
            continue

        logger.debug("Collecting bundle %s", relative_path)
        _collect_bundle(Path(entry.path), files)

    return files
