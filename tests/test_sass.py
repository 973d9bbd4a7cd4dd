import json
import os
import sys
from pathlib import Path

import pytest
from bs4 import BeautifulSoup

from trunkit.pipelines.base import BuildConfig, PipelineError, seahash
from trunkit.pipelines.sass import CssRef, Sass, SassOutput
from trunkit.tools import ToolError

SASS_BODY = """
import json
import os
import sys

args = sys.argv[1:]
if args == ["--version"]:
    print("1.50.0")
    sys.exit(0)
with open(LOG, "a") as fh:
    fh.write(json.dumps(args) + "\\n")
if os.environ.get("FAKE_SASS_FAIL"):
    sys.exit(1)
src, out = args[-2], args[-1]
with open(src) as fh:
    text = fh.read()
with open(out, "w") as fh:
    fh.write("/* compiled */\\n" + text)
"""

SOURCE = "a { b: c }\n"


@pytest.fixture
def env(tmp_path, monkeypatch):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    log = tmp_path / "sass.log"
    script = bin_dir / "sass"
    script.write_text(f"#!{sys.executable}\nLOG = {str(log)!r}\n" + SASS_BODY)
    script.chmod(0o755)
    monkeypatch.setenv("PATH", str(bin_dir) + os.pathsep + os.environ.get("PATH", ""))
    monkeypatch.delenv("FAKE_SASS_FAIL", raising=False)
    project = tmp_path / "project"
    project.mkdir()
    (project / "style.scss").write_text(SOURCE)
    dist = tmp_path / "dist"
    dist.mkdir()
    return project, dist, log


def _config(project: Path, dist: Path, **kwargs) -> BuildConfig:
    return BuildConfig(target=project / "index.html", staging_dist=dist, **kwargs)


def test_missing_href(env):
    project, dist, _ = env
    with pytest.raises(PipelineError, match="href"):
        Sass(_config(project, dist), project, {}, 0)


def test_inline_flag(env):
    project, dist, _ = env
    inline = Sass(_config(project, dist), project, {"href": "style.scss", "data-inline": ""}, 0)
    plain = Sass(_config(project, dist), project, {"href": "style.scss"}, 0)
    assert inline.use_inline is True
    assert plain.use_inline is False


def test_run_inline(env):
    project, dist, _ = env
    sass = Sass(_config(project, dist), project, {"href": "style.scss", "data-inline": ""}, 2)
    output = sass.run()
    assert output.css_ref == CssRef("/* compiled */\n" + SOURCE, inline=True)
    assert output.id == 2
    assert list(dist.iterdir()) == []


def test_run_hashed_file(env):
    project, dist, _ = env
    sass = Sass(_config(project, dist, filehash=True), project, {"href": "style.scss"}, 0)
    output = sass.run()
    css = "/* compiled */\n" + SOURCE
    expected = f"style-{seahash(css.encode()):x}.css"
    assert output.css_ref == CssRef(expected)
    assert (dist / expected).read_text() == css
    assert [p.name for p in dist.iterdir()] == [expected]


def test_run_plain_file(env):
    project, dist, _ = env
    sass = Sass(_config(project, dist, filehash=False), project, {"href": "style.scss"}, 0)
    output = sass.run()
    assert output.css_ref.value == "style.css"
    assert output.css_ref.inline is False
    assert (dist / "style.css").exists()


@pytest.mark.parametrize(("release", "style"), [(True, "compressed"), (False, "expanded")])
def test_style_follows_release(env, release, style):
    project, dist, log = env
    Sass(_config(project, dist, release=release), project, {"href": "style.scss"}, 0).run()
    args = json.loads(log.read_text().splitlines()[-1])
    assert args[:3] == ["--no-source-map", "-s", style]
    assert args[3] == str((project / "style.scss").resolve())


def test_compiler_failure(env, monkeypatch):
    project, dist, _ = env
    sass = Sass(_config(project, dist), project, {"href": "style.scss"}, 0)
    monkeypatch.setenv("FAKE_SASS_FAIL", "1")
    with pytest.raises(ToolError, match="bad status"):
        sass.run()


def _dom() -> BeautifulSoup:
    return BeautifulSoup(
        '<html><head><link data-trunk-id="0" rel="scss"/></head><body></body></html>',
        "html.parser",
    )


def test_finalize_file(env):
    project, dist, _ = env
    dom = _dom()
    cfg = _config(project, dist, public_url="/static/")
    SassOutput(cfg, 0, CssRef("style.css")).finalize(dom)
    link = dom.select_one('link[rel="stylesheet"]')
    assert link["href"] == "/static/style.css"
    assert dom.select('link[data-trunk-id="0"]') == []


def test_finalize_inline(env):
    project, dist, _ = env
    dom = _dom()
    SassOutput(_config(project, dist), 0, CssRef(SOURCE, inline=True)).finalize(dom)
    style = dom.select_one("style")
    assert style.string == SOURCE
    assert style["type"] == "text/css"
    assert dom.select("link") == []