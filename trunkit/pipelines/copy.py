"""Copy-file and copy-dir asset pipelines."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from bs4 import BeautifulSoup

from trunkit.pipelines.base import (
    ATTR_HREF,
    AssetFile,
    BuildConfig,
    LinkAttrs,
    PipelineError,
    href_to_path,
    remove_nodes,
    trunk_id_selector,
)

log = logging.getLogger(__name__)


@dataclass
class CopyFileOutput:
    """The output of a copy-file pipeline."""

    id: int

    def finalize(self, dom: BeautifulSoup) -> None:
        """Remove the source link element."""
        remove_nodes(dom, trunk_id_selector(self.id))


@dataclass
class CopyDirOutput:
    """The output of a copy-dir pipeline."""

    id: int

    def finalize(self, dom: BeautifulSoup) -> None:
        """Remove the source link element."""
        remove_nodes(dom, trunk_id_selector(self.id))


class CopyFile:
    """Copy a single file into the staging dist dir."""

    TYPE_COPY_FILE = "copy-file"

    def __init__(self, cfg: BuildConfig, html_dir: Path | str, attrs: LinkAttrs, id: int) -> None:
        href = attrs.get(ATTR_HREF)
        if href is None:
            raise PipelineError(
                'required attr `href` missing for <link data-trunk rel="copyfile" .../> element'
            )
        self.id = id
        self.cfg = cfg
        self.asset = AssetFile(html_dir, href_to_path(href))

    def run(self) -> CopyFileOutput:
        """Copy the file unchanged."""
        log.info("copying file %s", self.asset.path)
        self.asset.copy(self.cfg.staging_dist, False)
        log.info("finished copying file %s", self.asset.path)
        return CopyFileOutput(self.id)


class CopyDir:
    """Copy a directory tree into the staging dist dir."""

    TYPE_COPY_DIR = "copy-dir"

    def __init__(self, cfg: BuildConfig, html_dir: Path | str, attrs: LinkAttrs, id: int) -> None:
        href = attrs.get(ATTR_HREF)
        if href is None:
            raise PipelineError(
                'required attr `href` missing for <link data-trunk rel="copydir" .../> element'
            )
        path = href_to_path(href)
        if not path.is_absolute():
            path = Path(html_dir) / path
        target = attrs.get("data-target-path")
        self.id = id
        self.cfg = cfg
        self.path = path
        self.target_path = Path(target) if target is not None else None

    def run(self) -> CopyDirOutput:
        """Copy the directory's content to its place in the staging dir."""
        log.info("copying directory %s", self.path)
        try:
            canonical = self.path.resolve(strict=True)
        except OSError as exc:
            raise PipelineError(
                f"error taking canonical path of directory {str(self.path)!r}"
            ) from exc
        if not canonical.name:
            raise PipelineError(f"could not get directory name of dir {str(canonical)!r}")

        if self.target_path is not None:
            target = self.target_path
            if target.is_absolute() or target.anchor or ".." in target.parts:
                raise PipelineError(
                    f"Invalid data-target-path '{target}'. Must be a relative path without '..'."
                )
            dir_out = self.cfg.staging_dist / target
            dir_out.mkdir(parents=True, exist_ok=True)
        else:
            dir_out = self.cfg.staging_dist / canonical.name

        try:
            shutil.copytree(canonical, dir_out, dirs_exist_ok=True)
        except (OSError, shutil.Error) as exc:
            raise PipelineError(
                f"error copying directory {str(canonical)!r} to {str(dir_out)!r}"
            ) from exc
        log.info("finished copying directory %s", self.path)
        return CopyDirOutput(self.id)