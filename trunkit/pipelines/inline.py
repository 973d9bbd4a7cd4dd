"""Inline asset pipeline: paste a file's content into the output HTML."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path

from bs4 import BeautifulSoup

from trunkit.pipelines.base import (
    ATTR_HREF,
    ATTR_TYPE,
    AssetFile,
    LinkAttrs,
    PipelineError,
    href_to_path,
    replace_with_html,
    trunk_id_selector,
)

log = logging.getLogger(__name__)


class ContentType(enum.Enum):
    """How an inlined file is inserted into the HTML."""

    HTML = "html"
    CSS = "css"
    JS = "js"


def parse_content_type(value: str) -> ContentType:
    """Parse a lowercase content type name."""
    try:
        return ContentType(value)
    except ValueError:
        raise PipelineError(
            f'unknown `type="{value}"` value for <link data-trunk rel="inline" .../> attr; '
            "please ensure the value is lowercase and is a supported content type"
        ) from None


def content_type_from_attr_or_ext(attr: str | None, ext: str | None) -> ContentType:
    """Take the content type from the ``type`` attribute, else from the file extension."""
    if attr is not None:
        return parse_content_type(attr)
    if ext is not None:
        return parse_content_type(ext)
    raise PipelineError(
        'unknown type value for <link data-trunk rel="inline" .../> attr; '
        "please ensure the value is lowercase and is a supported content type"
    )


@dataclass
class InlineOutput:
    """The output of an inline pipeline."""

    id: int
    content: str
    content_type: ContentType

    def finalize(self, dom: BeautifulSoup) -> None:
        """Replace the source link with the file's content."""
        if self.content_type is ContentType.HTML:
            html = self.content
        elif self.content_type is ContentType.CSS:
            html = f'<style type="text/css">{self.content}</style>'
        else:
            html = f"<script>{self.content}</script>"
        replace_with_html(dom, trunk_id_selector(self.id), html)


class Inline:
    """An inline asset pipeline."""

    TYPE_INLINE = "inline"

    def __init__(self, html_dir: Path | str, attrs: LinkAttrs, id: int) -> None:
        href = attrs.get(ATTR_HREF)
        if href is None:
            raise PipelineError(
                'required attr `href` missing for <link data-trunk rel="inline" .../> element'
            )
        self.id = id
        self.asset = AssetFile(html_dir, href_to_path(href))
        self.content_type = content_type_from_attr_or_ext(attrs.get(ATTR_TYPE), self.asset.ext)

    def run(self) -> InlineOutput:
        """Read the file's content."""
        log.info("reading file content %s", self.asset.path)
        content = self.asset.read_to_string()
        log.info("finished reading file content %s", self.asset.path)
        return InlineOutput(id=self.id, content=content, content_type=self.content_type)