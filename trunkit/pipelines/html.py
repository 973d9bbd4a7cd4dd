"""Source HTML pipeline: find trunk assets, build them and write the final index.html."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from bs4 import BeautifulSoup, Tag

from trunkit.pipelines.assets import Css, Icon, Js
from trunkit.pipelines.base import (
    ATTR_REL,
    ATTR_SRC,
    TRUNK_ID,
    BuildConfig,
    LinkAttrs,
    PipelineError,
)
from trunkit.pipelines.copy import CopyDir, CopyFile
from trunkit.pipelines.inline import Inline
from trunkit.pipelines.rust import IgnoreSink, RustApp, default_rust_app
from trunkit.pipelines.sass import Sass

log = logging.getLogger(__name__)

PUBLIC_URL_MARKER_ATTR = "data-trunk-public-url"
INDEX_HTML = "index.html"

RELOAD_SCRIPT = """(function () {
    var protocol = window.location.protocol === "https:" ? "wss:" : "ws:";
    var socket = new WebSocket(protocol + "//" + window.location.host + "/_trunk/ws");
    socket.onmessage = function (event) {
        var msg = JSON.parse(event.data);
        if (msg.reload) {
            window.location.reload();
        }
    };
})();"""


def asset_from_link(
    cfg: BuildConfig,
    html_dir: Path | str,
    ignore_sink: IgnoreSink | None,
    attrs: LinkAttrs,
    id: int,
) -> Any:
    """Build the asset pipeline named by the ``rel`` of a ``<link data-trunk>`` element."""
    rel = attrs.get(ATTR_REL)
    if rel is None:
        raise PipelineError(
            "all <link data-trunk .../> elements must have a `rel` attribute indicating "
            "the asset type"
        )
    if rel in (Sass.TYPE_SASS, Sass.TYPE_SCSS):
        return Sass(cfg, html_dir, attrs, id)
    if rel == Icon.TYPE_ICON:
        return Icon(cfg, html_dir, attrs, id)
    if rel == Inline.TYPE_INLINE:
        return Inline(html_dir, attrs, id)
    if rel == Css.TYPE_CSS:
        return Css(cfg, html_dir, attrs, id)
    if rel == CopyFile.TYPE_COPY_FILE:
        return CopyFile(cfg, html_dir, attrs, id)
    if rel == CopyDir.TYPE_COPY_DIR:
        return CopyDir(cfg, html_dir, attrs, id)
    if rel == RustApp.TYPE_RUST_APP:
        return RustApp(cfg, html_dir, ignore_sink, attrs, id)
    raise PipelineError(
        f'unknown <link data-trunk .../> attr value `rel="{rel}"`; please ensure the value '
        "is lowercase and is a supported asset type"
    )


def asset_from_script(cfg: BuildConfig, html_dir: Path | str, src: str | None, id: int) -> Js:
    """Build the JS pipeline of a ``<script data-trunk>`` element."""
    return Js(cfg, html_dir, src, id)


@dataclass
class _Reference:
    id: int
    attrs: LinkAttrs | None = None
    src: str | None = None


def _link_attrs(node: Tag) -> LinkAttrs:
    return {
        name: value if isinstance(value, str) else " ".join(value)
        for name, value in node.attrs.items()
    }


def _is_main_rust_link(attrs: LinkAttrs) -> bool:
    return attrs.get(ATTR_REL) == RustApp.TYPE_RUST_APP and attrs.get("data-type", "main") == "main"


class HtmlPipeline:
    """Processes the source HTML and runs a pipeline for each asset it references."""

    def __init__(self, cfg: BuildConfig, ignore_sink: IgnoreSink | None = None) -> None:
        try:
            target = Path(cfg.target).resolve(strict=True)
        except OSError as exc:
            raise PipelineError("failed to get canonical path of target HTML file") from exc
        self.cfg = cfg
        self.target_html_path = target
        self.target_html_dir = target.parent
        self.ignore_sink = ignore_sink

    def run(self) -> None:
        """Build all assets and write the finalized ``index.html`` to the staging dir."""
        log.info("spawning asset pipelines")
        try:
            raw_html = self.target_html_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PipelineError("error reading source HTML file") from exc
        dom = BeautifulSoup(raw_html, "html.parser")

        references: list[_Reference] = []
        for id, node in enumerate(dom.select("link[data-trunk], script[data-trunk]")):
            node[TRUNK_ID] = str(id)
            if node.name == "link":
                references.append(_Reference(id, attrs=_link_attrs(node)))
            elif node.name == "script":
                src = node.get(ATTR_SRC)
                references.append(_Reference(id, src=src if src is None else str(src)))

        rust_app_nodes = sum(
            1 for ref in references if ref.attrs is not None and _is_main_rust_link(ref.attrs)
        )
        if rust_app_nodes > 1:
            raise PipelineError(
                'only one <link data-trunk rel="rust" data-type="main" .../> may be specified'
            )

        assets: list[Any] = []
        for ref in references:
            if ref.attrs is not None:
                assets.append(
                    asset_from_link(
                        self.cfg, self.target_html_dir, self.ignore_sink, ref.attrs, ref.id
                    )
                )
            else:
                assets.append(asset_from_script(self.cfg, self.target_html_dir, ref.src, ref.id))
        if rust_app_nodes == 0:
            assets.append(default_rust_app(self.cfg, self.target_html_dir, self.ignore_sink))

        self._finalize_asset_pipelines(dom, assets)
        self._finalize_html(dom)

        try:
            (self.cfg.staging_dist / INDEX_HTML).write_text(str(dom), encoding="utf-8")
        except OSError as exc:
            raise PipelineError("error writing finalized HTML output") from exc

    def _finalize_asset_pipelines(self, dom: BeautifulSoup, assets: list[Any]) -> None:
        pool = ThreadPoolExecutor()
        try:
            futures: list[Future[Any]] = [pool.submit(asset.run) for asset in assets]
            for future in as_completed(futures):
                try:
                    output = future.result()
                except Exception as exc:
                    raise PipelineError(f"error from asset pipeline: {exc}") from exc
                output.finalize(dom)
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

    def _finalize_html(self, dom: BeautifulSoup) -> None:
        for base in dom.select(f"html head base[{PUBLIC_URL_MARKER_ATTR}]"):
            del base[PUBLIC_URL_MARKER_ATTR]
            base["href"] = self.cfg.public_url

        if self.cfg.inject_autoloader:
            for body in dom.select("body"):
                script = dom.new_tag("script")
                script.string = RELOAD_SCRIPT
                body.append(script)