"""Rust application pipeline: build with cargo, bind with wasm-bindgen, optimise with wasm-opt."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from trunkit import tools
from trunkit.pipelines.base import (
    ATTR_HREF,
    SNIPPETS_DIR,
    BuildConfig,
    CargoFeatures,
    LinkAttrs,
    PipelineError,
    href_to_path,
    seahash,
)
from trunkit.pipelines.rust_output import (
    CargoMetadata,
    RustAppOutput,
    RustAppType,
    WasmOptLevel,
    find_wasm_bindgen_version,
    load_cargo_metadata,
    parse_rust_app_type,
    parse_wasm_opt_level,
)
from trunkit.tools import Application, ToolError

log = logging.getLogger(__name__)

IgnoreSink = Callable[[Path], None]

_MANIFEST_NAME = "Cargo.toml"


def _copy_file(source: Path, dest: Path, message: str) -> None:
    try:
        shutil.copyfile(source, dest)
    except OSError as exc:
        raise PipelineError(message) from exc


class RustApp:
    """A Rust application pipeline.

    ``attrs`` holds the attributes of the source ``<link data-trunk rel="rust">``
    element; ``None`` builds the default application of the HTML directory.
    """

    TYPE_RUST_APP = "rust"

    def __init__(
        self,
        cfg: BuildConfig,
        html_dir: Path | str,
        ignore_sink: IgnoreSink | None,
        attrs: LinkAttrs | None,
        id: int | None,
    ) -> None:
        self.cfg = cfg
        self.ignore_sink = ignore_sink
        html_dir = Path(html_dir)
        if attrs is None:
            self._init_default(html_dir)
        else:
            self._init_from_attrs(html_dir, attrs, id)

    def _init_default(self, html_dir: Path) -> None:
        self.manifest: CargoMetadata = load_cargo_metadata(html_dir / _MANIFEST_NAME)
        self.id: int | None = None
        self.cargo_features: CargoFeatures = self.cfg.cargo_features
        self.bin: str | None = None
        self.keep_debug = False
        self.typescript = False
        self.no_demangle = False
        self.reference_types = False
        self.weak_refs = False
        self.wasm_opt = WasmOptLevel.OFF
        self.app_type = RustAppType.MAIN
        self.name: str = self.manifest.name

    def _init_from_attrs(self, html_dir: Path, attrs: LinkAttrs, id: int | None) -> None:
        href = attrs.get(ATTR_HREF)
        if href is None:
            manifest_path = html_dir / _MANIFEST_NAME
        else:
            manifest_path = href_to_path(href)
            if not manifest_path.is_absolute():
                manifest_path = html_dir / manifest_path
            if manifest_path.name != _MANIFEST_NAME:
                manifest_path = manifest_path / _MANIFEST_NAME

        self.bin = attrs.get("data-bin")
        self.keep_debug = "data-keep-debug" in attrs
        self.typescript = "data-typescript" in attrs
        self.no_demangle = "data-no-demangle" in attrs
        self.app_type = parse_rust_app_type(attrs.get("data-type", "main"))
        self.reference_types = "data-reference-types" in attrs
        self.weak_refs = "data-weak-refs" in attrs
        opt_level = attrs.get("data-wasm-opt")
        if opt_level is not None:
            self.wasm_opt = parse_wasm_opt_level(opt_level)
        else:
            self.wasm_opt = WasmOptLevel.DEFAULT if self.cfg.release else WasmOptLevel.OFF
        self.manifest = load_cargo_metadata(manifest_path)
        self.id = id
        self.name = self.bin if self.bin is not None else self.manifest.name

        features = attrs.get("data-cargo-features")
        all_features = "data-cargo-all-features" in attrs
        no_default_features = "data-cargo-no-default-features" in attrs
        if all_features and (no_default_features or features is not None):
            raise PipelineError(
                "Cannot combine --all-features with --no-default-features and/or --features"
            )
        if all_features:
            self.cargo_features = CargoFeatures(all_features=True)
        else:
            self.cargo_features = CargoFeatures(
                features=features, no_default_features=no_default_features
            )

    def __repr__(self) -> str:
        return f"RustApp(name={self.name!r}, id={self.id!r})"

    def run(self) -> RustAppOutput:
        """Build the application and place its artifacts in the staging dir."""
        wasm, hashed_name = self._cargo_build()
        output = self._wasm_bindgen_build(wasm, hashed_name)
        self._wasm_opt_build(output.wasm_output)
        return output

    def _cargo_args(self) -> list[str]:
        args = [
            "build",
            "--target=wasm32-unknown-unknown",
            "--manifest-path",
            self.manifest.manifest_path,
        ]
        if self.cfg.release:
            args.append("--release")
        if self.bin is not None:
            args.extend(["--bin", self.bin])
        features = self.cargo_features
        if features.all_features:
            args.append("--all-features")
        else:
            if features.no_default_features:
                args.append("--no-default-features")
            if features.features is not None:
                args.extend(["--features", features.features])
        return args

    def _notify_ignore(self, path: Path) -> None:
        if self.ignore_sink is None:
            return
        try:
            self.ignore_sink(path)
        except Exception as exc:  # the watcher may have gone away
            log.debug("could not send ignore path %s: %s", path, exc)

    def _cargo_build(self) -> tuple[Path, str]:
        log.info("building %s", self.manifest.name)
        args = self._cargo_args()

        build_error: ToolError | None = None
        try:
            tools.run_command("cargo", "cargo", args)
        except ToolError as exc:
            build_error = exc

        # The target dir only exists after the build ran, so report it before failing.
        self._notify_ignore(self.manifest.target_directory)
        if build_error is not None:
            raise PipelineError("error during cargo build execution") from build_error

        log.info("fetching cargo artifacts")
        args.append("--message-format=json")
        try:
            result = subprocess.run(["cargo", *args], capture_output=True, check=False)
        except OSError as exc:
            raise PipelineError("error spawning cargo build artifacts task") from exc
        if result.returncode != 0:
            print(result.stderr.decode("utf-8", errors="replace"), file=sys.stderr)
            raise PipelineError("bad status returned from cargo artifacts request")

        artifact = self._find_artifact(result.stdout)
        wasm = next(
            (
                Path(name)
                for name in artifact.get("filenames", [])
                if Path(name).suffix == ".wasm"
            ),
            None,
        )
        if wasm is None:
            raise PipelineError("could not find WASM output after cargo build")

        log.info("processing WASM for %s", self.name)
        try:
            wasm_bytes = wasm.read_bytes()
        except OSError as exc:
            raise PipelineError("error reading wasm file for hash generation") from exc
        hashed_name = f"{self.name}-{seahash(wasm_bytes):x}" if self.cfg.filehash else self.name
        return wasm, hashed_name

    def _find_artifact(self, stdout: bytes) -> dict[str, Any]:
        found: dict[str, Any] | None = None
        failed = False
        for line in stdout.decode("utf-8", errors="replace").splitlines():
            try:
                message = json.loads(line)
            except ValueError:
                continue
            if not isinstance(message, dict):
                continue
            reason = message.get("reason")
            if (
                reason == "compiler-artifact"
                and message.get("package_id") == self.manifest.package_id
            ):
                found, failed = message, False
            elif reason == "build-finished" and not message.get("success", False):
                failed = True
        if failed:
            raise PipelineError("error while fetching cargo artifact info")
        if found is None:
            raise PipelineError("cargo artifacts not found for target crate")
        return found

    def _mode_segment(self) -> str:
        return "release" if self.cfg.release else "debug"

    def _wasm_bindgen_build(self, wasm: Path, hashed_name: str) -> RustAppOutput:
        # Workers are loaded by name at runtime, so they never get a hashed name.
        if self.app_type is RustAppType.WORKER:
            hashed_name = self.name

        version = find_wasm_bindgen_version(self.cfg.tools, self.manifest)
        wasm_bindgen = tools.get(Application.WASM_BINDGEN, version)

        bindgen_name = Application.WASM_BINDGEN.tool_name()
        bindgen_out = self.manifest.target_directory / bindgen_name / self._mode_segment()
        try:
            bindgen_out.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PipelineError("error creating wasm-bindgen output dir") from exc

        target_type = (
            "--target=web" if self.app_type is RustAppType.MAIN else "--target=no-modules"
        )
        args = [
            target_type,
            f"--out-dir={bindgen_out}",
            f"--out-name={hashed_name}",
            str(wasm),
        ]
        if self.keep_debug:
            args.append("--keep-debug")
        if self.no_demangle:
            args.append("--no-demangle")
        if self.reference_types:
            args.append("--reference-types")
        if self.weak_refs:
            args.append("--weak-refs")
        if not self.typescript:
            args.append("--no-typescript")

        log.info("calling wasm-bindgen for %s", self.name)
        tools.run_command(bindgen_name, wasm_bindgen, args)

        log.info("copying generated wasm-bindgen artifacts")
        js_name = f"{hashed_name}.js"
        wasm_name = f"{hashed_name}_bg.wasm"
        ts_name = f"{hashed_name}.d.ts"
        staging = self.cfg.staging_dist
        _copy_file(
            bindgen_out / js_name, staging / js_name, "error copying JS loader file to stage dir"
        )
        _copy_file(
            bindgen_out / wasm_name, staging / wasm_name, "error copying wasm file to stage dir"
        )
        if self.typescript:
            _copy_file(
                bindgen_out / ts_name, staging / ts_name, "error copying TS files to stage dir"
            )

        snippets = bindgen_out / SNIPPETS_DIR
        if snippets.exists():
            try:
                shutil.copytree(snippets, staging / SNIPPETS_DIR, dirs_exist_ok=True)
            except (OSError, shutil.Error) as exc:
                raise PipelineError("error copying snippets dir to stage dir") from exc

        return RustAppOutput(
            cfg=self.cfg,
            id=self.id,
            js_output=js_name,
            wasm_output=wasm_name,
            ts_output=ts_name if self.typescript else None,
            type=self.app_type,
        )

    def _wasm_opt_build(self, wasm_name: str) -> None:
        if not self.cfg.release or self.wasm_opt is WasmOptLevel.OFF:
            return

        wasm_opt = tools.get(Application.WASM_OPT, self.cfg.tools.wasm_opt)
        opt_name = Application.WASM_OPT.tool_name()
        output_dir = self.manifest.target_directory / opt_name / self._mode_segment()
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PipelineError("error creating wasm-opt output dir") from exc

        output = output_dir / wasm_name
        target_wasm = self.cfg.staging_dist / wasm_name
        args = [f"--output={output}", f"-O{self.wasm_opt.value}", str(target_wasm)]
        if self.reference_types:
            args.append("--enable-reference-types")

        log.info("calling wasm-opt")
        tools.run_command(opt_name, wasm_opt, args)

        log.info("copying generated wasm-opt artifacts")
        _copy_file(output, target_wasm, "error copying wasm file to dist dir")


def default_rust_app(
    cfg: BuildConfig, html_dir: Path | str, ignore_sink: IgnoreSink | None
) -> RustApp:
    """The application built when the HTML names no main Rust app."""
    return RustApp(cfg, html_dir, ignore_sink, None, None)