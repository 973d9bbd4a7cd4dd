import json
import os
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

from trunkit.pipelines.base import BuildConfig, CargoFeatures, PipelineError, seahash
from trunkit.pipelines.rust import RustApp, default_rust_app
from trunkit.pipelines.rust_output import RustAppType, WasmOptLevel

CARGO_BODY = """
import json
import os
import sys

args = sys.argv[1:]
with open(LOG, "a") as fh:
    fh.write(json.dumps(args) + "\\n")
manifest = args[args.index("--manifest-path") + 1]
if args[0] == "metadata":
    print(json.dumps({
        "packages": [{"name": "app", "id": "app 0.1.0", "version": "0.1.0",
                      "manifest_path": manifest}],
        "resolve": {"root": "app 0.1.0"},
        "target_directory": TARGET,
    }))
    sys.exit(0)
if "--message-format=json" in args:
    print("plain text line")
    print(json.dumps({"reason": "compiler-artifact", "package_id": "other 0.1.0",
                      "filenames": ["/elsewhere/other.wasm"]}))
    print(json.dumps({"reason": "compiler-artifact", "package_id": "app 0.1.0",
                      "filenames": [WASM + ".d", WASM]}))
    print(json.dumps({"reason": "build-finished", "success": True}))
    sys.exit(0)
if os.environ.get("FAKE_CARGO_FAIL"):
    sys.exit(1)
"""

BINDGEN_BODY = """
import json
import sys
from pathlib import Path

args = sys.argv[1:]
if args == ["--version"]:
    print("wasm-bindgen 0.2.80")
    sys.exit(0)
with open(LOG, "a") as fh:
    fh.write(json.dumps(args) + "\\n")
opts = dict(a.split("=", 1) for a in args if a.startswith("--out-"))
out = Path(opts["--out-dir"])
name = opts["--out-name"]
(out / (name + ".js")).write_text("loader")
(out / (name + "_bg.wasm")).write_bytes(b"\\0asm")
if "--no-typescript" not in args:
    (out / (name + ".d.ts")).write_text("types")
(out / "snippets").mkdir(exist_ok=True)
(out / "snippets" / "inline0.js").write_text("snippet")
"""


def _write_tool(bin_dir: Path, name: str, constants: dict, body: str) -> None:
    header = f"#!{sys.executable}\n" + "".join(
        f"{key} = {value!r}\n" for key, value in constants.items()
    )
    path = bin_dir / name
    path.write_text(header + body)
    path.chmod(0o755)


@dataclass
class Project:
    root: Path
    dist: Path
    target: Path
    wasm: Path
    cargo_log: Path
    bindgen_log: Path

    def config(self, **kwargs) -> BuildConfig:
        return BuildConfig(target=self.root / "index.html", staging_dist=self.dist, **kwargs)

    def cargo_calls(self) -> list[list[str]]:
        if not self.cargo_log.exists():
            return []
        return [json.loads(line) for line in self.cargo_log.read_text().splitlines()]

    def bindgen_calls(self) -> list[list[str]]:
        return [json.loads(line) for line in self.bindgen_log.read_text().splitlines()]


@pytest.fixture
def project(tmp_path, monkeypatch):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    root = tmp_path / "project"
    root.mkdir()
    (root / "index.html").write_text("<html></html>")
    dist = tmp_path / "dist"
    dist.mkdir()
    target = tmp_path / "target"
    wasm = target / "wasm32-unknown-unknown" / "debug" / "app.wasm"
    wasm.parent.mkdir(parents=True)
    wasm.write_bytes(b"\0asm-app-bytes")
    cargo_log = tmp_path / "cargo.log"
    bindgen_log = tmp_path / "bindgen.log"
    _write_tool(
        bin_dir,
        "cargo",
        {"LOG": str(cargo_log), "TARGET": str(target), "WASM": str(wasm)},
        CARGO_BODY,
    )
    _write_tool(bin_dir, "wasm-bindgen", {"LOG": str(bindgen_log)}, BINDGEN_BODY)
    monkeypatch.setenv("PATH", str(bin_dir) + os.pathsep + os.environ.get("PATH", ""))
    monkeypatch.delenv("FAKE_CARGO_FAIL", raising=False)
    return Project(root, dist, target, wasm, cargo_log, bindgen_log)


@pytest.mark.parametrize("href", ["crates/app", "crates/app/Cargo.toml"])
def test_manifest_path_from_href(project, href):
    app = RustApp(project.config(), project.root, None, {"href": href}, 3)
    assert app.manifest.manifest_path == str(project.root / "crates" / "app" / "Cargo.toml")
    assert app.id == 3


def test_manifest_defaults_to_html_dir(project):
    app = RustApp(project.config(), project.root, None, {}, 0)
    assert app.manifest.manifest_path == str(project.root / "Cargo.toml")
    assert app.name == "app"
    assert app.app_type is RustAppType.MAIN


def test_bin_overrides_name(project):
    app = RustApp(project.config(), project.root, None, {"data-bin": "tool"}, 0)
    assert app.name == "tool"
    assert app.bin == "tool"


def test_unknown_data_type_fails_before_metadata(project):
    with pytest.raises(PipelineError, match="data-type"):
        RustApp(project.config(), project.root, None, {"data-type": "library"}, 0)
    assert project.cargo_calls() == []


def test_unknown_wasm_opt_level(project):
    with pytest.raises(PipelineError, match="wasm-opt level"):
        RustApp(project.config(), project.root, None, {"data-wasm-opt": "9"}, 0)


@pytest.mark.parametrize(
    "extra",
    [
        {"data-cargo-no-default-features": ""},
        {"data-cargo-features": "a,b"},
    ],
)
def test_all_features_conflicts(project, extra):
    attrs = {"data-cargo-all-features": "", **extra}
    with pytest.raises(PipelineError, match="Cannot combine --all-features"):
        RustApp(project.config(), project.root, None, attrs, 0)


def test_feature_selection(project):
    app = RustApp(
        project.config(),
        project.root,
        None,
        {"data-cargo-features": "a,b", "data-cargo-no-default-features": ""},
        0,
    )
    assert app.cargo_features == CargoFeatures(features="a,b", no_default_features=True)
    all_app = RustApp(project.config(), project.root, None, {"data-cargo-all-features": ""}, 0)
    assert all_app.cargo_features == CargoFeatures(all_features=True)


@pytest.mark.parametrize(
    ("release", "attrs", "expected"),
    [
        (True, {}, WasmOptLevel.DEFAULT),
        (False, {}, WasmOptLevel.OFF),
        (False, {"data-wasm-opt": "z"}, WasmOptLevel.Z),
    ],
)
def test_wasm_opt_level(project, release, attrs, expected):
    app = RustApp(project.config(release=release), project.root, None, attrs, 0)
    assert app.wasm_opt is expected


def test_default_rust_app(project):
    features = CargoFeatures(features="extra")
    cfg = project.config(release=True, cargo_features=features)
    app = default_rust_app(cfg, project.root, None)
    assert app.id is None
    assert app.cargo_features == features
    assert app.wasm_opt is WasmOptLevel.OFF
    assert app.app_type is RustAppType.MAIN
    assert app.name == "app"


def test_run_without_hash(project):
    sink: list[Path] = []
    app = RustApp(project.config(filehash=False), project.root, sink.append, {}, 7)
    output = app.run()
    assert output.js_output == "app.js"
    assert output.wasm_output == "app_bg.wasm"
    assert output.ts_output is None
    assert output.id == 7
    assert (project.dist / "app.js").read_text() == "loader"
    assert (project.dist / "snippets" / "inline0.js").read_text() == "snippet"
    assert sink == [project.target]
    build_calls = [call for call in project.cargo_calls() if call[0] == "build"]
    assert "--message-format=json" not in build_calls[0]
    assert build_calls[1][-1] == "--message-format=json"
    bindgen_args = project.bindgen_calls()[-1]
    assert bindgen_args[0] == "--target=web"
    assert "--no-typescript" in bindgen_args
    assert str(project.wasm) in bindgen_args


def test_run_with_hash(project):
    app = RustApp(project.config(filehash=True), project.root, None, {}, 0)
    output = app.run()
    digest = seahash(project.wasm.read_bytes())
    assert output.js_output == f"app-{digest:x}.js"
    assert output.wasm_output == f"app-{digest:x}_bg.wasm"
    assert (project.dist / output.wasm_output).exists()


def test_worker_is_not_hashed(project):
    app = RustApp(project.config(filehash=True), project.root, None, {"data-type": "worker"}, 0)
    output = app.run()
    assert output.js_output == "app.js"
    assert output.type is RustAppType.WORKER
    assert project.bindgen_calls()[-1][0] == "--target=no-modules"


def test_typescript_output(project):
    app = RustApp(project.config(filehash=False), project.root, None, {"data-typescript": ""}, 0)
    output = app.run()
    assert output.ts_output == "app.d.ts"
    assert (project.dist / "app.d.ts").read_text() == "types"
    assert "--no-typescript" not in project.bindgen_calls()[-1]


def test_cargo_arguments(project):
    attrs = {"data-bin": "app", "data-cargo-features": "web", "data-wasm-opt": "0"}
    app = RustApp(project.config(release=True, filehash=False), project.root, None, attrs, 0)
    app.run()
    first_build = next(call for call in project.cargo_calls() if call[0] == "build")
    assert first_build == [
        "build",
        "--target=wasm32-unknown-unknown",
        "--manifest-path",
        str(project.root / "Cargo.toml"),
        "--release",
        "--bin",
        "app",
        "--features",
        "web",
    ]


def test_failed_build_still_reports_target_dir(project, monkeypatch):
    sink: list[Path] = []
    app = RustApp(project.config(), project.root, sink.append, {}, 0)
    monkeypatch.setenv("FAKE_CARGO_FAIL", "1")
    with pytest.raises(PipelineError, match="error during cargo build execution"):
        app.run()
    assert sink == [project.target]