# trunkit

trunkit builds WebAssembly web applications. You describe the assets of your
application directly in an `index.html` by marking `<link>` and `<script>`
elements with a `data-trunk` attribute. trunkit runs one pipeline per asset,
writes the results to a staging dist directory and rewrites the HTML so that it
points at the generated files.

## Usage

```python
from pathlib import Path

from trunkit.pipelines.base import BuildConfig
from trunkit.pipelines.html import HtmlPipeline

staging = Path("dist/.stage")
staging.mkdir(parents=True, exist_ok=True)

cfg = BuildConfig(target=Path("index.html"), staging_dist=staging, public_url="/")
HtmlPipeline(cfg).run()  # writes dist/.stage/index.html and all assets
```

The staging directory must exist before the build runs. `BuildConfig` also
carries `release`, `filehash` (hash file contents into output names, on by
default), `inject_autoloader`, `tools` (a `ToolVersions` with configured
versions of `sass`, `wasm-bindgen` and `wasm-opt`), `cargo_features` (a
`CargoFeatures`), and the `pattern_script`, `pattern_preload` and
`pattern_params` templates described below. Every pipeline raises
`PipelineError` when it cannot be set up or run.

## Asset pipelines

Each `<link data-trunk rel="...">` element selects a pipeline by its `rel`
attribute:

| `rel`          | Class      | What happens |
|----------------|------------|--------------|
| `css`          | `Css`      | The stylesheet is copied (with a content hash in its name if `filehash`) and linked. |
| `sass`, `scss` | `Sass`     | The file is compiled with `sass` (compressed in release mode), then linked or, with `data-inline`, placed in a `<style>` element. |
| `icon`         | `Icon`     | The icon is copied (optionally hashed) and linked as `rel="icon"`. |
| `inline`       | `Inline`   | The file content is pasted into the page: HTML as is, CSS in `<style>`, JS in `<script>`. The kind comes from the `type` attribute or else the file extension. |
| `copy-file`    | `CopyFile` | The file is copied to the staging directory and the element removed. |
| `copy-dir`     | `CopyDir`  | The directory is copied recursively, to `data-target-path` if given (a relative path without `..`). |
| `rust`         | `RustApp`  | The crate is built with `cargo`, processed with `wasm-bindgen` and, in release mode, optimised with `wasm-opt`. |

A `<script data-trunk src="...">` element is handled by `Js`: the file is copied
(optionally hashed) and referenced by a new `<script src>` element. If the page
has no main `rel="rust"` link, the crate next to `index.html` is built as the
main application; more than one main application link is an error.

After all pipelines finish, `HtmlPipeline` sets the `href` of any
`<base data-trunk-public-url>` in the head to the public URL and, if
`inject_autoloader` is set, appends a script that opens a WebSocket to
`/_trunk/ws` and reloads the page on a `{"reload": true}` message.

### Rust application attributes

`data-bin`, `data-type` (`main` or `worker`), `data-keep-debug`,
`data-typescript`, `data-no-demangle`, `data-reference-types`,
`data-weak-refs`, `data-wasm-opt` (`0`, `1`, `2`, `3`, `4`, `s`, `z` or empty
for the default level), `data-cargo-features`, `data-cargo-all-features` and
`data-cargo-no-default-features`. `data-cargo-all-features` cannot be combined
with the other two feature attributes. Workers keep their unhashed name and get
no loader script; their link is simply removed.

The wasm-bindgen version comes from `ToolVersions.wasm_bindgen`, else from
`Cargo.lock`, else from the cargo metadata (`find_wasm_bindgen_version`).

The preload and script tags injected for the main application can be replaced
with templates; `pattern_evaluate` substitutes `{base}`, `{js}`, `{wasm}` and
any user parameters, and a parameter value starting with `@` is replaced by the
contents of that file.

## External tools

`sass`, `wasm-bindgen` and `wasm-opt` are described by the `Application`
enumeration in `trunkit.tools`. `get(app, version)` first looks for a system
installation of the requested version on `PATH`; otherwise it downloads the
release archive for the current platform into the user cache directory (see
`cache_dir`) and extracts the binary there. Within one process each tool and
version is installed at most once (`AppCache`). Failures raise `ToolError`.

## Watching for changes

```python
import threading
from pathlib import Path

from trunkit.watch import WatchSystem

pipeline = HtmlPipeline(cfg)
watcher = WatchSystem([Path("src"), Path("index.html")], pipeline.run,
                      ignored_paths=[Path("dist")])
shutdown = threading.Event()
watcher.run(shutdown)  # blocks until shutdown.set() is called from another thread
```

`WatchSystem` collects file events for one second (`debounce`), skips paths
that cannot be resolved, paths under an ignored directory and anything inside a
`.git` directory, runs the build, and then calls the optional `build_done`
callback. `update_ignore_list` adds further paths while it runs; `RustApp`
reports cargo's target directory through its `ignore_sink` callable for this.

## What trunkit does not do

trunkit builds and watches; it does not serve. There is no development server,
no handler for the `/_trunk/ws` reload endpoint that the injected script
connects to, no proxying of requests to a backend, and no command-line program.
Pre-build, build and post-build hooks are named by `PipelineStage` but none are
run.

## Running the tests

Install the `test` extra and run `pytest` from the project root.