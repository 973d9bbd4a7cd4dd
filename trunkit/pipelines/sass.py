"""Sass/Scss asset pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from bs4 import BeautifulSoup

from trunkit import tools
from trunkit.pipelines.base import (
    ATTR_HREF,
    ATTR_INLINE,
    AssetFile,
    BuildConfig,
    LinkAttrs,
    PipelineError,
    href_to_path,
    replace_with_html,
    seahash,
    trunk_id_selector,
)
from trunkit.tools import Application

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CssRef:
    """The compiled CSS: inline text, or the name of a file in the dist dir."""

    value: str
    inline: bool = False


@dataclass
class SassOutput:
    """The output of a sass/scss pipeline."""

    cfg: BuildConfig
    id: int
    css_ref: CssRef

    def finalize(self, dom: BeautifulSoup) -> None:
        """Replace the source link with a style element or a stylesheet link."""
        if self.css_ref.inline:
            html = f'<style type="text/css">{self.css_ref.value}</style>'
        else:
            html = f'<link rel="stylesheet" href="{self.cfg.public_url}{self.css_ref.value}"/>'
        replace_with_html(dom, trunk_id_selector(self.id), html)


class Sass:
    """A sass/scss asset pipeline."""

    TYPE_SASS = "sass"
    TYPE_SCSS = "scss"

    def __init__(self, cfg: BuildConfig, html_dir: Path | str, attrs: LinkAttrs, id: int) -> None:
        href = attrs.get(ATTR_HREF)
        if href is None:
            raise PipelineError(
                'required attr `href` missing for <link data-trunk rel="sass|scss" .../> element'
            )
        self.id = id
        self.cfg = cfg
        self.asset = AssetFile(html_dir, href_to_path(href))
        self.use_inline = ATTR_INLINE in attrs

    def run(self) -> SassOutput:
        """Compile the stylesheet and either keep it inline or write it to the dist dir."""
        sass = tools.get(Application.SASS, self.cfg.tools.sass)

        style = "compressed" if self.cfg.release else "expanded"
        file_name = f"{self.asset.file_stem}.css"
        file_path = self.cfg.staging_dist / file_name
        args = ["--no-source-map", "-s", style, str(self.asset.path), str(file_path)]

        log.info("compiling sass/scss %s", self.asset.path)
        tools.run_command(Application.SASS.tool_name(), sass, args)

        try:
            css = file_path.read_text(encoding="utf-8")
            file_path.unlink()
        except (OSError, UnicodeDecodeError) as exc:
            raise PipelineError(f"error reading compiled css {str(file_path)!r}") from exc

        if self.use_inline:
            css_ref = CssRef(css, inline=True)
        else:
            if self.cfg.filehash:
                file_name = f"{self.asset.file_stem}-{seahash(css.encode('utf-8')):x}.css"
            try:
                (self.cfg.staging_dist / file_name).write_text(css, encoding="utf-8")
            except OSError as exc:
                raise PipelineError("error writing SASS pipeline output") from exc
            css_ref = CssRef(file_name)

        log.info("finished compiling sass/scss %s", self.asset.path)
        return SassOutput(cfg=self.cfg, id=self.id, css_ref=css_ref)