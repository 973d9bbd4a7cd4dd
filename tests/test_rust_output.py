import json
import subprocess
from pathlib import Path
from unittest import mock

import pytest
from bs4 import BeautifulSoup

from trunkit.pipelines.base import BuildConfig, PipelineError, ToolVersions
from trunkit.pipelines.rust_output import (
    CargoMetadata,
    RustAppOutput,
    RustAppType,
    WasmOptLevel,
    find_wasm_bindgen_version,
    load_cargo_metadata,
    parse_rust_app_type,
    parse_wasm_opt_level,
    pattern_evaluate,
)

DOC = (
    "<html><head></head><body>"
    '<link data-trunk rel="rust" data-trunk-id="0"/>'
    "</body></html>"
)


def make_cfg(tmp_path: Path, **kwargs) -> BuildConfig:
    return BuildConfig(target=tmp_path / "index.html", staging_dist=tmp_path, **kwargs)


def make_output(cfg, id=0, type=RustAppType.MAIN):
    return RustAppOutput(
        cfg=cfg, id=id, js_output="app.js", wasm_output="app_bg.wasm", ts_output=None, type=type
    )


def test_parse_rust_app_type():
    assert parse_rust_app_type("main") is RustAppType.MAIN
    assert parse_rust_app_type("worker") is RustAppType.WORKER
    with pytest.raises(PipelineError, match="data-type"):
        parse_rust_app_type("Main")


@pytest.mark.parametrize("level", list(WasmOptLevel))
def test_wasm_opt_level_round_trip(level):
    assert parse_wasm_opt_level(level.value) is level


def test_wasm_opt_level_uppercase_and_errors():
    assert parse_wasm_opt_level("S") is WasmOptLevel.S
    assert parse_wasm_opt_level("Z") is WasmOptLevel.Z
    with pytest.raises(PipelineError, match="unknown wasm-opt level"):
        parse_wasm_opt_level("5")


def test_pattern_evaluate_plain_values():
    out = pattern_evaluate("{base}{js} and {wasm}", {"base": "/", "js": "a.js", "wasm": "b"})
    assert out == "/a.js and b"


def test_pattern_evaluate_file_values(tmp_path):
    snippet = tmp_path / "snippet.txt"
    snippet.write_text("INSERTED")
    assert pattern_evaluate("x{s}y", {"s": f"@{snippet}"}) == "xINSERTEDy"
    assert pattern_evaluate("x{s}y", {"s": f"@{tmp_path / 'missing'}"}) == "x{s}y"


def test_find_wasm_bindgen_version_configured(tmp_path):
    manifest = CargoMetadata("app", "id", str(tmp_path / "Cargo.toml"), tmp_path / "target")
    assert find_wasm_bindgen_version(ToolVersions(wasm_bindgen="0.2.80"), manifest) == "0.2.80"


def test_find_wasm_bindgen_version_from_lock(tmp_path):
    (tmp_path / "Cargo.lock").write_text(
        '[[package]]\nname = "serde"\nversion = "1.0.0"\n\n'
        '[[package]]\nname = "wasm-bindgen"\nversion = "0.2.79"\n'
    )
    manifest = CargoMetadata(
        "app", "id", str(tmp_path / "Cargo.toml"), tmp_path / "target",
        packages=(("wasm-bindgen", "0.2.70"),),
    )
    assert find_wasm_bindgen_version(ToolVersions(), manifest) == "0.2.79"


def test_find_wasm_bindgen_version_from_metadata_or_none(tmp_path):
    manifest = CargoMetadata(
        "app", "id", str(tmp_path / "Cargo.toml"), tmp_path / "target",
        packages=(("wasm-bindgen", "0.2.70"),),
    )
    assert find_wasm_bindgen_version(ToolVersions(), manifest) == "0.2.70"
    bare = CargoMetadata("app", "id", str(tmp_path / "Cargo.toml"), tmp_path / "target")
    assert find_wasm_bindgen_version(ToolVersions(), bare) is None


def test_load_cargo_metadata(tmp_path):
    manifest = tmp_path / "Cargo.toml"
    payload = {
        "packages": [
            {"name": "app", "id": "app-id", "version": "0.1.0", "manifest_path": str(manifest)},
            {"name": "wasm-bindgen", "id": "wb", "version": "0.2.80", "manifest_path": "/x"},
        ],
        "resolve": {"root": "app-id"},
        "target_directory": str(tmp_path / "target"),
    }
    done = subprocess.CompletedProcess([], 0, json.dumps(payload).encode(), b"")
    with mock.patch("trunkit.pipelines.rust_output.subprocess.run", return_value=done) as run:
        meta = load_cargo_metadata(manifest)
    assert run.call_args.args[0][:2] == ["cargo", "metadata"]
    assert meta.name == "app"
    assert meta.package_id == "app-id"
    assert meta.target_directory == tmp_path / "target"
    assert ("wasm-bindgen", "0.2.80") in meta.packages


def test_load_cargo_metadata_failure(tmp_path):
    failed = subprocess.CompletedProcess([], 101, b"", b"no manifest")
    with mock.patch("trunkit.pipelines.rust_output.subprocess.run", return_value=failed):
        with pytest.raises(PipelineError, match="no manifest"):
            load_cargo_metadata(tmp_path / "Cargo.toml")


def test_finalize_worker_removes_link(tmp_path):
    dom = BeautifulSoup(DOC, "html.parser")
    make_output(make_cfg(tmp_path), type=RustAppType.WORKER).finalize(dom)
    assert dom.select("link") == []
    assert dom.select("script") == []


def test_finalize_main_default_patterns(tmp_path):
    dom = BeautifulSoup(DOC, "html.parser")
    make_output(make_cfg(tmp_path, public_url="/p/")).finalize(dom)
    assert dom.select_one('head link[rel="preload"]')["href"] == "/p/app_bg.wasm"
    assert dom.select_one('head link[rel="modulepreload"]')["href"] == "/p/app.js"
    script = dom.select_one("body script")
    assert script["type"] == "module"
    assert script.string == "import init from '/p/app.js';init('/p/app_bg.wasm');"
    assert dom.select('link[data-trunk-id="0"]') == []


def test_finalize_without_id_appends_to_body(tmp_path):
    dom = BeautifulSoup("<html><head></head><body><p>x</p></body></html>", "html.parser")
    make_output(make_cfg(tmp_path), id=None).finalize(dom)
    body_children = [c for c in dom.body.children if getattr(c, "name", None)]
    assert [c.name for c in body_children] == ["p", "script"]


def test_finalize_custom_patterns(tmp_path):
    cfg = make_cfg(
        tmp_path,
        pattern_script='<script src="{base}{js}" data-extra="{extra}"></script>',
        pattern_preload='<meta name="w" content="{wasm}">',
        pattern_params={"extra": "yes"},
    )
    dom = BeautifulSoup(DOC, "html.parser")
    make_output(cfg).finalize(dom)
    assert dom.select_one("head meta")["content"] == "app_bg.wasm"
    script = dom.select_one("body script")
    assert script["src"] == "/app.js"
    assert script["data-extra"] == "yes"