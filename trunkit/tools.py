"""Locate, download and install the external tools used by the build pipelines."""

from __future__ import annotations

import enum
import logging
import os
import platform
import shutil
import subprocess
import sys
import tarfile
import threading
import zipfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import requests

log = logging.getLogger(__name__)

_DOWNLOAD_TIMEOUT = 60


class ToolError(Exception):
    """Raised when a tool cannot be located, downloaded, installed or run."""


def current_os() -> str:
    """Name of the running operating system as used in release URLs."""
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    if sys.platform.startswith("linux"):
        return "linux"
    raise ToolError("unsupported OS")


def current_arch() -> str:
    """Name of the running CPU architecture as used in release URLs."""
    machine = platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        return "x86_64"
    if machine in ("aarch64", "arm64"):
        return "aarch64"
    raise ToolError("unsupported target architecture")


class Application(enum.Enum):
    """An external application that can be located or downloaded."""

    SASS = "sass"
    WASM_BINDGEN = "wasm-bindgen"
    WASM_OPT = "wasm-opt"

    def tool_name(self) -> str:
        """Base name of the executable without extension."""
        return self.value

    def archive_path(self, target_os: str | None = None) -> str:
        """Path of the executable within the downloaded archive."""
        target_os = target_os or current_os()
        if target_os == "windows":
            return {
                Application.SASS: "sass.bat",
                Application.WASM_BINDGEN: "wasm-bindgen.exe",
                Application.WASM_OPT: "bin/wasm-opt.exe",
            }[self]
        return {
            Application.SASS: "sass",
            Application.WASM_BINDGEN: "wasm-bindgen",
            Application.WASM_OPT: "bin/wasm-opt",
        }[self]

    def extra_paths(self, target_os: str | None = None) -> tuple[str, ...]:
        """Additional archive files required to run the main binary."""
        target_os = target_os or current_os()
        if self is Application.SASS:
            if target_os == "windows":
                return ("src/dart.exe", "src/sass.snapshot")
            if target_os == "macos":
                return ("src/dart", "src/sass.snapshot")
            return ()
        if self is Application.WASM_OPT and target_os == "macos":
            return ("lib/libbinaryen.dylib",)
        return ()

    def default_version(self) -> str:
        """Version used when none is configured."""
        return {
            Application.SASS: "1.50.0",
            Application.WASM_BINDGEN: "0.2.80",
            Application.WASM_OPT: "version_105",
        }[self]

    def url(
        self,
        version: str,
        target_os: str | None = None,
        target_arch: str | None = None,
    ) -> str:
        """Direct download URL of the release archive."""
        target_os = target_os or current_os()
        target_arch = target_arch or current_arch()
        if target_os not in ("windows", "macos", "linux"):
            raise ToolError("unsupported OS")
        if target_arch not in ("x86_64", "aarch64"):
            raise ToolError("unsupported target architecture")

        if self is Application.SASS:
            base = f"https://github.com/sass/dart-sass/releases/download/{version}/dart-sass-{version}"
            if target_os == "windows" and target_arch == "x86_64":
                return f"{base}-windows-x64.zip"
            if target_os in ("macos", "linux") and target_arch == "x86_64":
                return f"{base}-{target_os}-x64.tar.gz"
            if target_os in ("macos", "linux") and target_arch == "aarch64":
                return f"{base}-{target_os}-arm64.tar.gz"
            raise ToolError(f"Unable to download Sass for {target_os} {target_arch}")

        if self is Application.WASM_BINDGEN:
            os_triple = {
                "windows": "pc-windows-msvc",
                "macos": "apple-darwin",
                "linux": "unknown-linux-musl",
            }[target_os]
            return (
                f"https://github.com/rustwasm/wasm-bindgen/releases/download/{version}"
                f"/wasm-bindgen-{version}-x86_64-{os_triple}.tar.gz"
            )

        base = f"https://github.com/WebAssembly/binaryen/releases/download/{version}/binaryen-{version}"
        if target_os == "macos" and target_arch == "aarch64":
            return f"{base}-arm64-macos.tar.gz"
        return f"{base}-{target_arch}-{target_os}.tar.gz"

    def version_test(self) -> str:
        """The CLI flag used to query the application's version."""
        return "--version"

    def format_version_output(self, text: str) -> str:
        """Extract the version string from the output of the version check."""
        text = text.strip()
        error = ToolError(f"missing or malformed version output: {text}")
        if self is Application.SASS:
            lines = text.splitlines()
            if not lines:
                raise error
            return lines[0]
        words = text.split(" ")
        if self is Application.WASM_BINDGEN:
            if len(words) < 2:
                raise error
            return words[1]
        if len(words) < 3:
            raise error
        return f"version_{words[2]}"


def _strip_first_component(name: str) -> tuple[str, ...]:
    return PurePosixPath(name).parts[1:]


def _write_member(source, file: str, target: Path) -> Path:
    out = target / file
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ToolError("failed creating output directory") from exc
    try:
        with out.open("wb") as dest:
            shutil.copyfileobj(source, dest)
    except OSError as exc:
        raise ToolError("failed copying over final output file from archive") from exc
    return out


def _set_permissions(path: Path, mode: int) -> None:
    if os.name != "posix":
        return
    try:
        os.chmod(path, mode & 0o7777)
    except OSError as exc:
        raise ToolError("failed setting file permissions") from exc


@dataclass
class Archive:
    """A downloaded release archive, either a gzipped tarball or a zip file."""

    path: Path
    is_zip: bool = False

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        if self.is_zip and not zipfile.is_zipfile(self.path):
            raise ToolError(f"not a zip archive: {self.path}")

    def extract_file(self, file: str, target: Path) -> Path:
        """Extract one file, ignoring the archive's top folder, into ``target``."""
        target = Path(target)
        wanted = PurePosixPath(file).parts
        if self.is_zip:
            return self._extract_zip(file, wanted, target)
        return self._extract_tar(file, wanted, target)

    def _extract_tar(self, file: str, wanted: tuple[str, ...], target: Path) -> Path:
        try:
            archive = tarfile.open(self.path, "r:gz")
        except (OSError, tarfile.TarError) as exc:
            raise ToolError("failed getting archive entries") from exc
        with archive:
            for member in archive:
                if _strip_first_component(member.name) != wanted:
                    continue
                source = archive.extractfile(member)
                if source is None:
                    raise ToolError("file not found in archive")
                with source:
                    out = _write_member(source, file, target)
                _set_permissions(out, member.mode)
                return out
        raise ToolError("file not found in archive")

    def _extract_zip(self, file: str, wanted: tuple[str, ...], target: Path) -> Path:
        with zipfile.ZipFile(self.path) as archive:
            for info in archive.infolist():
                name = PurePosixPath(info.filename)
                if name.is_absolute() or ".." in name.parts:
                    raise ToolError("invalid entry path")
                if _strip_first_component(info.filename) != wanted:
                    continue
                with archive.open(info) as source:
                    out = _write_member(source, file, target)
                mode = info.external_attr >> 16
                if mode:
                    _set_permissions(out, mode)
                return out
        raise ToolError("file not found in archive")


@dataclass
class AppCache:
    """Tracks tools installed during this run so that each is downloaded only once."""

    _locks: dict[tuple[Application, str], threading.Lock] = field(default_factory=dict)
    _installed: set[tuple[Application, str]] = field(default_factory=set)
    _guard: threading.Lock = field(default_factory=threading.Lock)

    def install_once(self, app: Application, version: str, app_dir: Path) -> None:
        """Install ``app`` at ``version`` into ``app_dir`` unless already done."""
        key = (app, version)
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            if key in self._installed:
                return
            try:
                archive = download(app, version)
            except ToolError as exc:
                raise ToolError("failed downloading release archive") from exc
            install(app, archive, Path(app_dir))
            try:
                archive.unlink()
            except OSError as exc:
                raise ToolError("failed deleting temporary archive") from exc
            self._installed.add(key)


_GLOBAL_APP_CACHE = AppCache()


def cache_dir() -> Path:
    """Locate the tool cache directory and make sure it exists."""
    os_name = current_os()
    if os_name == "windows":
        base = os.environ.get("LOCALAPPDATA")
        if not base:
            raise ToolError("failed finding project directory")
        path = Path(base) / "trunkrs" / "trunk" / "cache"
    elif os_name == "macos":
        path = Path.home() / "Library" / "Caches" / "dev.trunkrs.trunk"
    else:
        xdg = os.environ.get("XDG_CACHE_HOME")
        base_dir = Path(xdg) if xdg and Path(xdg).is_absolute() else Path.home() / ".cache"
        path = base_dir / "trunk"
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ToolError("failed creating cache directory") from exc
    return path


def _is_executable(path: Path) -> bool:
    if not path.is_file():
        return False
    if os.name != "posix":
        return True
    return os.access(path, os.X_OK)


def find_system(app: Application, version: str | None = None) -> tuple[Path, str] | None:
    """Find a system-installed copy of ``app`` matching ``version`` if given."""
    found = shutil.which(app.tool_name())
    if found is None:
        log.debug("system version not found for %s: not on PATH", app.tool_name())
        return None
    path = Path(found)
    try:
        output = subprocess.run(
            [str(path), app.version_test()], capture_output=True, check=False
        )
    except OSError as exc:
        log.debug("system version not found for %s: %s", app.tool_name(), exc)
        return None
    if output.returncode != 0:
        log.debug(
            "system version not found for %s: running command `%s %s` failed",
            app.tool_name(),
            path,
            app.version_test(),
        )
        return None
    text = output.stdout.decode("utf-8", errors="replace")
    try:
        system_version = app.format_version_output(text)
    except ToolError as exc:
        log.debug("system version not found for %s: %s", app.tool_name(), exc)
        return None
    if version is not None and version != system_version:
        return None
    return path, system_version


def download(app: Application, version: str) -> Path:
    """Download the release archive of ``app`` to a temporary file in the cache."""
    log.info("downloading %s (version %s)", app.tool_name(), version)
    temp_out = cache_dir() / f"{app.tool_name()}-{version}.tmp"
    url = app.url(version)
    try:
        resp = requests.get(url, stream=True, timeout=_DOWNLOAD_TIMEOUT)
    except requests.RequestException as exc:
        raise ToolError("error sending HTTP request") from exc
    try:
        if not 200 <= resp.status_code < 300:
            raise ToolError(f"error downloading archive file: {resp.status_code}\n{url}")
        try:
            with temp_out.open("wb") as out:
                for chunk in resp.iter_content(chunk_size=64 * 1024):
                    if chunk:
                        out.write(chunk)
        except requests.RequestException as exc:
            raise ToolError("error reading chunk from download") from exc
        except OSError as exc:
            raise ToolError("failed creating temporary output file") from exc
    finally:
        resp.close()
    return temp_out


def install(app: Application, archive_path: Path, target: Path) -> None:
    """Extract the executable and its companion files from the archive into ``target``."""
    log.info("installing %s", app.tool_name())
    os_name = current_os()
    archive = Archive(Path(archive_path), is_zip=app is Application.SASS and os_name == "windows")
    archive.extract_file(app.archive_path(os_name), Path(target))
    for extra in app.extra_paths(os_name):
        archive.extract_file(extra, Path(target))


def get(app: Application, version: str | None = None) -> Path:
    """Locate ``app``, downloading and installing it if missing."""
    system = find_system(app, version)
    if system is not None:
        path, system_version = system
        log.info("using system installed binary %s %s", app.tool_name(), system_version)
        return path

    version = version or app.default_version()
    app_dir = cache_dir() / f"{app.tool_name()}-{version}"
    bin_path = app_dir / app.archive_path()
    if not _is_executable(bin_path):
        _GLOBAL_APP_CACHE.install_once(app, version, app_dir)
    return bin_path


def run_command(name: str, path: Path | str, args: Sequence[str]) -> None:
    """Run ``path`` with ``args``, raising ToolError if it cannot start or fails."""
    try:
        result = subprocess.run([str(path), *args], check=False)
    except FileNotFoundError as exc:
        raise ToolError(f"{name} not found") from exc
    except OSError as exc:
        raise ToolError(f"error spawning {name} call") from exc
    if result.returncode != 0:
        raise ToolError(f"{name} call returned a bad status")