"""CSS, icon and JS asset pipelines: copy, optionally hash and link a file."""

from __future__ import annotations

import logging
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
    replace_with_html,
    trunk_id_selector,
    trunk_script_id_selector,
)

log = logging.getLogger(__name__)


def _asset_from_href(html_dir: Path | str, attrs: LinkAttrs, rel: str) -> AssetFile:
    href = attrs.get(ATTR_HREF)
    if href is None:
        raise PipelineError(
            f'required attr `href` missing for <link data-trunk rel="{rel}" .../> element'
        )
    return AssetFile(html_dir, href_to_path(href))


@dataclass
class CssOutput:
    """The output of a CSS pipeline."""

    cfg: BuildConfig
    id: int
    file: str

    def finalize(self, dom: BeautifulSoup) -> None:
        """Replace the source link with a stylesheet link."""
        replace_with_html(
            dom,
            trunk_id_selector(self.id),
            f'<link rel="stylesheet" href="{self.cfg.public_url}{self.file}"/>',
        )


class Css:
    """A CSS asset pipeline."""

    TYPE_CSS = "css"

    def __init__(self, cfg: BuildConfig, html_dir: Path | str, attrs: LinkAttrs, id: int) -> None:
        self.id = id
        self.cfg = cfg
        self.asset = _asset_from_href(html_dir, attrs, "css")

    def run(self) -> CssOutput:
        """Copy and hash the stylesheet into the staging dir."""
        log.info("copying & hashing css %s", self.asset.path)
        file = self.asset.copy(self.cfg.staging_dist, self.cfg.filehash)
        log.info("finished copying & hashing css %s", self.asset.path)
        return CssOutput(cfg=self.cfg, id=self.id, file=file)


@dataclass
class IconOutput:
    """The output of an icon pipeline."""

    cfg: BuildConfig
    id: int
    file: str

    def finalize(self, dom: BeautifulSoup) -> None:
        """Replace the source link with an icon link."""
        replace_with_html(
            dom,
            trunk_id_selector(self.id),
            f'<link rel="icon" href="{self.cfg.public_url}{self.file}"/>',
        )


class Icon:
    """An icon asset pipeline."""

    TYPE_ICON = "icon"

    def __init__(self, cfg: BuildConfig, html_dir: Path | str, attrs: LinkAttrs, id: int) -> None:
        self.id = id
        self.cfg = cfg
        self.asset = _asset_from_href(html_dir, attrs, "icon")

    def run(self) -> IconOutput:
        """Copy and hash the icon into the staging dir."""
        log.info("copying & hashing icon %s", self.asset.path)
        file = self.asset.copy(self.cfg.staging_dist, self.cfg.filehash)
        log.info("finished copying & hashing icon %s", self.asset.path)
        return IconOutput(cfg=self.cfg, id=self.id, file=file)


@dataclass
class JsOutput:
    """The output of a JS pipeline."""

    cfg: BuildConfig
    id: int
    file: str

    def finalize(self, dom: BeautifulSoup) -> None:
        """Replace the source script with one loading the copied file."""
        replace_with_html(
            dom,
            trunk_script_id_selector(self.id),
            f'<script src="{self.cfg.public_url}{self.file}"/>',
        )


class Js:
    """A JS asset pipeline."""

    def __init__(
        self, cfg: BuildConfig, html_dir: Path | str, src: str | None, id: int
    ) -> None:
        if src is None:
            raise PipelineError(
                "required attr `src` missing for <script data-trunk .../> element"
            )
        self.id = id
        self.cfg = cfg
        self.asset = AssetFile(html_dir, href_to_path(src))

    def run(self) -> JsOutput:
        """Copy and hash the script into the staging dir."""
        log.info("copying & hashing js %s", self.asset.path)
        file = self.asset.copy(self.cfg.staging_dist, self.cfg.filehash)
        log.info("finished copying & hashing js %s", self.asset.path)
        return JsOutput(cfg=self.cfg, id=self.id, file=file)