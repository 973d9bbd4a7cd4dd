"""Rust application pipeline pieces: options, cargo metadata and HTML output."""

from __future__ import annotations

import enum
import json
import logging
import subprocess
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from bs4 import BeautifulSoup

from trunkit.pipelines.base import (
    BuildConfig,
    PipelineError,
    ToolVersions,
    remove_nodes,
    replace_with_html,
    trunk_id_selector,
)

log = logging.getLogger(__name__)


class RustAppType(enum.Enum):
    """Whether the application is the main app or a web worker."""

    MAIN = "main"
    WORKER = "worker"


def parse_rust_app_type(value: str) -> RustAppType:
    """Parse a ``data-type`` attribute value."""
    try:
        return RustAppType(value)
    except ValueError:
        raise PipelineError(
            f'unknown `data-type="{value}"` value for <link data-trunk rel="rust" .../> attr; '
            "please ensure the value is lowercase and is a supported type"
        ) from None


class WasmOptLevel(enum.Enum):
    """Optimization levels of wasm-opt; the value is the ``-O`` suffix."""

    DEFAULT = ""
    OFF = "0"
    ONE = "1"
    TWO = "2"
    THREE = "3"
    FOUR = "4"
    S = "s"
    Z = "z"


def parse_wasm_opt_level(value: str) -> WasmOptLevel:
    """Parse a ``data-wasm-opt`` attribute value."""
    normalized = value.lower() if value in ("S", "Z") else value
    try:
        return WasmOptLevel(normalized)
    except ValueError:
        raise PipelineError(f"unknown wasm-opt level `{value}`") from None


@dataclass
class CargoMetadata:
    """The parts of a cargo project's metadata used by the build."""

    name: str
    package_id: str
    manifest_path: str
    target_directory: Path
    packages: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self.target_directory = Path(self.target_directory)


def load_cargo_metadata(manifest_path: Path | str) -> CargoMetadata:
    """Query cargo for the metadata of the project at ``manifest_path``."""
    manifest_path = Path(manifest_path)
    try:
        result = subprocess.run(
            [
                "cargo",
                "metadata",
                "--format-version",
                "1",
                "--manifest-path",
                str(manifest_path),
            ],
            capture_output=True,
            check=False,
        )
    except OSError as exc:
        raise PipelineError("error getting cargo metadata") from exc
    if result.returncode != 0:
        raise PipelineError(
            "error getting cargo metadata: "
            + result.stderr.decode("utf-8", errors="replace").strip()
        )
    try:
        data = json.loads(result.stdout)
    except ValueError as exc:
        raise PipelineError("error parsing cargo metadata") from exc

    packages = data.get("packages", [])
    root_id = (data.get("resolve") or {}).get("root")
    package = next((p for p in packages if root_id and p.get("id") == root_id), None)
    if package is None:
        wanted = str(manifest_path.resolve())
        package = next(
            (p for p in packages if str(Path(p.get("manifest_path", "")).resolve()) == wanted),
            None,
        )
    if package is None:
        raise PipelineError("could not find the root package of the target crate")

    return CargoMetadata(
        name=package["name"],
        package_id=package["id"],
        manifest_path=package["manifest_path"],
        target_directory=Path(data["target_directory"]),
        packages=tuple((p["name"], p["version"]) for p in packages),
    )


def _version_from_lock(manifest: CargoMetadata) -> str | None:
    lock_path = Path(manifest.manifest_path).parent / "Cargo.lock"
    try:
        lock = tomllib.loads(lock_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError):
        return None
    for package in lock.get("package", []):
        if package.get("name") == "wasm-bindgen" and "version" in package:
            return str(package["version"])
    return None


def find_wasm_bindgen_version(tools: ToolVersions, manifest: CargoMetadata) -> str | None:
    """The wasm-bindgen version: configured, else from Cargo.lock, else from metadata."""
    if tools.wasm_bindgen is not None:
        return tools.wasm_bindgen
    locked = _version_from_lock(manifest)
    if locked is not None:
        return locked
    return next(
        (version for name, version in manifest.packages if name == "wasm-bindgen"), None
    )


def pattern_evaluate(template: str, params: dict[str, str]) -> str:
    """Fill ``{name}`` placeholders; a value starting with ``@`` names a file to insert."""
    result = template
    for key, value in params.items():
        pattern = f"{{{key}}}"
        if value.startswith("@"):
            try:
                contents = Path(value[1:]).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            result = result.replace(pattern, contents)
        else:
            result = result.replace(pattern, value)
    return result


def _append_html(dom: BeautifulSoup, selector: str, html: str) -> None:
    for node in dom.select(selector):
        fragment = BeautifulSoup(html, "html.parser")
        for child in list(fragment.contents):
            node.append(child.extract())


@dataclass
class RustAppOutput:
    """The output of a Rust application build."""

    cfg: BuildConfig
    id: int | None
    js_output: str
    wasm_output: str
    ts_output: str | None
    type: RustAppType

    def finalize(self, dom: BeautifulSoup) -> None:
        """Insert preload links and the loader script for the application."""
        if self.type is RustAppType.WORKER:
            if self.id is not None:
                remove_nodes(dom, trunk_id_selector(self.id))
            return

        base, js, wasm = self.cfg.public_url, self.js_output, self.wasm_output
        params = dict(self.cfg.pattern_params or {})
        params["base"] = base
        params["js"] = js
        params["wasm"] = wasm

        if self.cfg.pattern_preload is not None:
            preload = pattern_evaluate(self.cfg.pattern_preload, params)
        else:
            preload = (
                f'\n<link rel="preload" href="{base}{wasm}" as="fetch" '
                f'type="application/wasm" crossorigin>'
                f'\n<link rel="modulepreload" href="{base}{js}">'
            )
        _append_html(dom, "html head", preload)

        if self.cfg.pattern_script is not None:
            script = pattern_evaluate(self.cfg.pattern_script, params)
        else:
            script = (
                f"<script type=\"module\">import init from '{base}{js}';"
                f"init('{base}{wasm}');</script>"
            )
        if self.id is not None:
            replace_with_html(dom, trunk_id_selector(self.id), script)
        else:
            _append_html(dom, "html body", script)