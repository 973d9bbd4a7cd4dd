"""Shared pieces of the asset pipelines: configuration, asset files and DOM helpers."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path

from bs4 import BeautifulSoup

log = logging.getLogger(__name__)

ATTR_INLINE = "data-inline"
ATTR_HREF = "href"
ATTR_SRC = "src"
ATTR_TYPE = "type"
ATTR_REL = "rel"
SNIPPETS_DIR = "snippets"
TRUNK_ID = "data-trunk-id"

LinkAttrs = dict[str, str]

_MASK64 = (1 << 64) - 1
_SEAHASH_PRIME = 0x6EED0E9DA4D94A4F
_SEAHASH_SEEDS = (
    0x16F11FE89B0D677C,
    0xB480A793D8E6C86C,
    0x6FE2E5AAF078EBC9,
    0x14F994A4C5259381,
)


class PipelineError(Exception):
    """Raised when an asset pipeline cannot be set up or run."""


class PipelineStage(enum.Enum):
    """A stage in the build process, used to decide when a hook runs."""

    PRE_BUILD = "pre_build"
    BUILD = "build"
    POST_BUILD = "post_build"


@dataclass
class ToolVersions:
    """Versions of the external tools, as configured by the user."""

    sass: str | None = None
    wasm_bindgen: str | None = None
    wasm_opt: str | None = None


@dataclass
class CargoFeatures:
    """The feature selection passed on to cargo."""

    all_features: bool = False
    features: str | None = None
    no_default_features: bool = False


@dataclass
class BuildConfig:
    """Runtime configuration of a build."""

    target: Path
    staging_dist: Path
    final_dist: Path | None = None
    public_url: str = "/"
    release: bool = False
    filehash: bool = True
    inject_autoloader: bool = True
    tools: ToolVersions = field(default_factory=ToolVersions)
    cargo_features: CargoFeatures = field(default_factory=CargoFeatures)
    pattern_script: str | None = None
    pattern_preload: str | None = None
    pattern_params: dict[str, str] | None = None

    def __post_init__(self) -> None:
        self.target = Path(self.target)
        self.staging_dist = Path(self.staging_dist)
        if self.final_dist is not None:
            self.final_dist = Path(self.final_dist)


def _diffuse(value: int) -> int:
    value = (value * _SEAHASH_PRIME) & _MASK64
    value ^= (value >> 32) >> (value >> 60)
    return (value * _SEAHASH_PRIME) & _MASK64


def seahash(data: bytes) -> int:
    """The 64-bit SeaHash digest of ``data``."""
    a, b, c, d = _SEAHASH_SEEDS
    view = memoryview(data)
    for offset in range(0, len(view), 8):
        word = int.from_bytes(view[offset : offset + 8], "little")
        a, b, c, d = b, c, d, _diffuse(a ^ word)
    return _diffuse(a ^ b ^ c ^ d ^ len(view))


def href_to_path(href: str) -> Path:
    """Turn a ``/``-separated link into a path, dropping empty segments."""
    return Path(*(segment for segment in href.split("/") if segment))


def trunk_id_selector(id: int) -> str:
    """CSS selector of a trunk link element by its ID."""
    return f'link[{TRUNK_ID}="{id}"]'


def trunk_script_id_selector(id: int) -> str:
    """CSS selector of a trunk script element by its ID."""
    return f'script[{TRUNK_ID}="{id}"]'


def replace_with_html(dom: BeautifulSoup, selector: str, html: str) -> None:
    """Replace every element matching ``selector`` with the given HTML."""
    for node in dom.select(selector):
        fragment = BeautifulSoup(html, "html.parser")
        contents = list(fragment.contents)
        if contents:
            node.replace_with(*contents)
        else:
            node.extract()


def remove_nodes(dom: BeautifulSoup, selector: str) -> None:
    """Remove every element matching ``selector``."""
    for node in dom.select(selector):
        node.decompose()


class AssetFile:
    """An existing file on disk to be processed by a build pipeline."""

    def __init__(self, rel_dir: Path | str, path: Path | str) -> None:
        path = Path(path)
        if not path.is_absolute():
            path = Path(rel_dir) / path
        try:
            resolved = path.resolve(strict=True)
        except OSError as exc:
            raise PipelineError(f"error getting canonical path for {str(path)!r}") from exc
        if not resolved.exists():
            raise PipelineError(
                f"target file does not appear to exist on disk {str(resolved)!r}"
            )
        if not resolved.name:
            raise PipelineError(f"asset has no file name {str(resolved)!r}")
        if not resolved.stem:
            raise PipelineError(f"asset has no file name stem {str(resolved)!r}")
        self.path: Path = resolved
        self.file_name: str = resolved.name
        self.file_stem: str = resolved.stem
        self.ext: str | None = resolved.suffix[1:] if resolved.suffix else None

    def __repr__(self) -> str:
        return f"AssetFile(path={str(self.path)!r})"

    def copy(self, to_dir: Path | str, with_hash: bool) -> str:
        """Copy the file into ``to_dir``, optionally hashing its name; return the new name."""
        try:
            data = self.path.read_bytes()
        except OSError as exc:
            raise PipelineError(f"error reading file for copying {str(self.path)!r}") from exc
        if with_hash:
            file_name = f"{self.file_stem}-{seahash(data):x}.{self.ext or ''}"
        else:
            file_name = self.file_name
        file_path = Path(to_dir) / file_name
        try:
            file_path.write_bytes(data)
        except OSError as exc:
            raise PipelineError(
                f"error copying file {str(self.path)!r} to {str(file_path)!r}"
            ) from exc
        return file_name

    def read_to_string(self) -> str:
        """Read the file's content as text."""
        try:
            return self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PipelineError(f"error reading file {str(self.path)!r} to string") from exc