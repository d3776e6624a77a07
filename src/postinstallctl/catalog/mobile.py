"""Mobile-assessment tooling (``--mobile``)."""
from __future__ import annotations

import os
import tempfile
from pathlib import Path

from ..errors import StepFailure
from ..tasks.models import ExecutionContext
from ..tasks.registry import TaskRegistry
from .common import (
    apt_step,
    chown_to,
    clone_tool,
    download_for_target,
    ensure_npm,
    ensure_target_dir,
    ensure_zshrc_line,
    extract_zip,
    npm_step,
    on_path,
    pipx_step,
    repair_packages,
    set_zshrc_alias,
    setup_venv,
    zshrc,
)

MOBSF_IMAGE = "opensecurity/mobile-security-framework-mobsf:latest"
MOBSF_UID = 9901
OBJECTION_REPOSITORY = "https://github.com/sensepost/objection"
OBJECTION_LINK = Path("/usr/local/bin/objection")
PLATFORM_TOOLS_URL = "https://dl.google.com/android/repository/platform-tools-latest-linux.zip"
APKTOOL_REPOSITORY = "iBotPeaches/Apktool"
JADX_REPOSITORY = "skylot/jadx"
PALERA1N_INSTALLER = "https://static.palera.in/scripts/install.sh"
FRIDA_IOS_DUMP_REPOSITORY = "https://github.com/IPMegladon/frida-ios-dump"
FRIDA_IOS_DUMP_REF = "4f26c0d"


def _path_line(ctx: ExecutionContext, *parts: str) -> str:
    relative = "/".join((ctx.config.tools_dir, *parts))
    return f'export PATH="$HOME/{relative}:$PATH"'


def _zshrc_has(ctx: ExecutionContext, prefix: str) -> bool:
    path = zshrc(ctx)
    if not path.is_file():
        return False
    return any(line.startswith(prefix) for line in path.read_text(encoding="utf-8").splitlines())


# mobsf --------------------------------------------------------------------

def mobsf_present(ctx: ExecutionContext) -> bool:
    """Return ``True`` when the MobSF image and its data directory exist."""
    return ctx.docker.has_image(MOBSF_IMAGE) and ctx.tools_path("mobile", "mobsf-docker").is_dir()


def install_mobsf(ctx: ExecutionContext) -> str:
    """Pull the MobSF image and prepare a data directory owned by the container user."""
    ctx.docker.pull(MOBSF_IMAGE)
    directory = ensure_target_dir(ctx, ctx.tools_path("mobile", "mobsf-docker"))
    chown_to(ctx, directory, MOBSF_UID, MOBSF_UID)
    return f"pulled {MOBSF_IMAGE}; data in {directory}"


# objection ----------------------------------------------------------------

def _objection_dir(ctx: ExecutionContext) -> Path:
    return ctx.tools_path("mobile", "objection")


def objection_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when objection is built and linked into ``/usr/local/bin``."""
    executable = _objection_dir(ctx) / "env" / "bin" / "objection"
    return (
        executable.exists()
        and OBJECTION_LINK.is_symlink()
        and Path(os.readlink(OBJECTION_LINK)) == executable
    )


def install_objection(ctx: ExecutionContext) -> str:
    """Install objection from source with its Frida agent."""
    ensure_npm(ctx)
    directory = clone_tool(ctx, OBJECTION_REPOSITORY, "mobile", "objection")
    setup_venv(ctx, directory, "--editable", ".")
    ctx.run_as_target(["npm", "install"], cwd=directory / "agent")
    executable = directory / "env" / "bin" / "objection"
    if OBJECTION_LINK.is_symlink() or OBJECTION_LINK.exists():
        OBJECTION_LINK.unlink()
    OBJECTION_LINK.parent.mkdir(parents=True, exist_ok=True)
    OBJECTION_LINK.symlink_to(executable)
    return f"objection linked at {OBJECTION_LINK}"


# adb-platform-tools -------------------------------------------------------

def platform_tools_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when adb is unpacked and on the target's PATH."""
    adb = ctx.tools_path("mobile", "platform-tools", "adb")
    return adb.is_file() and _zshrc_has(ctx, _path_line(ctx, "mobile", "platform-tools"))


def install_platform_tools(ctx: ExecutionContext) -> str:
    """Unpack the Android platform-tools and add them to PATH."""
    mobile = ensure_target_dir(ctx, ctx.tools_path("mobile"))
    extract_zip(ctx.http.fetch_bytes(PLATFORM_TOOLS_URL), mobile)
    ctx.chown_to_target(mobile / "platform-tools")
    ensure_zshrc_line(ctx, _path_line(ctx, "mobile", "platform-tools"))
    return f"platform-tools in {mobile / 'platform-tools'}"


# apktool ------------------------------------------------------------------

def apktool_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when an apktool jar exists and the alias is set."""
    directory = ctx.tools_path("mobile", "apktool")
    has_jar = directory.is_dir() and any(directory.glob("*.jar"))
    return has_jar and _zshrc_has(ctx, "alias apktool=")


def install_apktool(ctx: ExecutionContext) -> str:
    """Download the latest apktool release jar and alias it."""
    url = ctx.http.latest_release_asset(APKTOOL_REPOSITORY, lambda name: name.endswith(".jar"))
    destination = ctx.tools_path("mobile", "apktool", url.rsplit("/", 1)[-1])
    download_for_target(ctx, url, destination)
    set_zshrc_alias(ctx, "apktool", f"java -jar {destination}")
    return f"installed {destination.name}"


# jadx ---------------------------------------------------------------------

def _is_jadx_archive(name: str) -> bool:
    return name.startswith("jadx-") and name.endswith(".zip") and "win" not in name


def jadx_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when jadx is unpacked and on the target's PATH."""
    return ctx.tools_path("mobile", "jadx", "bin", "jadx").is_file() and _zshrc_has(
        ctx, _path_line(ctx, "mobile", "jadx", "bin")
    )


def install_jadx(ctx: ExecutionContext) -> str:
    """Unpack the latest jadx release and add its ``bin`` to PATH."""
    url = ctx.http.latest_release_asset(JADX_REPOSITORY, _is_jadx_archive)
    directory = ensure_target_dir(ctx, ctx.tools_path("mobile", "jadx"))
    extract_zip(ctx.http.fetch_bytes(url), directory)
    for script in (directory / "bin").glob("*"):
        script.chmod(0o755)
    ctx.chown_to_target(directory)
    ensure_zshrc_line(ctx, _path_line(ctx, "mobile", "jadx", "bin"))
    return f"jadx from {url.rsplit('/', 1)[-1]}"


# palera1n -----------------------------------------------------------------

def palera1n_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when palera1n is on PATH."""
    return on_path("palera1n", ctx)


def install_palera1n(ctx: ExecutionContext) -> str:
    """Run the upstream palera1n installer."""
    with tempfile.TemporaryDirectory(prefix="postinstallctl-palera1n-") as tmp:
        script = Path(tmp) / "install.sh"
        ctx.http.download(PALERA1N_INSTALLER, script, mode=0o755)
        ctx.runner.run(["/bin/sh", str(script)])
    if not on_path("palera1n", ctx):
        raise StepFailure("palera1n installer finished but palera1n is not on PATH.")
    return "palera1n installed"


# frida-ios-dump -----------------------------------------------------------

def _frida_ios_dump_dir(ctx: ExecutionContext) -> Path:
    return ctx.tools_path("mobile", "frida-ios-dump")


def frida_ios_dump_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when frida-ios-dump is checked out, installed and built."""
    directory = _frida_ios_dump_dir(ctx)
    dist = directory / "dist"
    return (
        ctx.git.is_checkout(directory)
        and (directory / "env" / "bin" / "python").exists()
        and dist.is_dir()
        and any(dist.iterdir())
    )


def install_frida_ios_dump(ctx: ExecutionContext) -> str:
    """Check out the pinned frida-ios-dump revision and build its agent."""
    ensure_npm(ctx)
    directory = _frida_ios_dump_dir(ctx)
    if not ctx.git.is_checkout(directory):
        clone_tool(ctx, FRIDA_IOS_DUMP_REPOSITORY, "mobile", "frida-ios-dump", depth=None)
    ctx.git.checkout(directory, FRIDA_IOS_DUMP_REF)
    setup_venv(ctx, directory, "-r", "requirements.txt")
    ensure_target_dir(ctx, directory / "dist")
    ctx.run_as_target(["npm", "install", "frida-objc-bridge", "--save"], cwd=directory)
    ctx.run_as_target(["npm", "run", "build"], cwd=directory)
    return f"frida-ios-dump at {FRIDA_IOS_DUMP_REF}"


def register(registry: TaskRegistry) -> None:
    """Append the mobile group to *registry*."""
    frida_tools, frida_tools_present = pipx_step("frida-tools")
    rms, rms_present = npm_step("rms-runtime-mobile-security")
    libimobiledevice, libimobiledevice_present = apt_step(
        "libimobiledevice-utils", "ideviceinstaller"
    )
    grapefruit, grapefruit_present = npm_step("igf")

    steps = (
        ("frida-tools", frida_tools, frida_tools_present, "Frida CLI tools via pipx"),
        ("mobsf", install_mobsf, mobsf_present, "MobSF docker image"),
        ("rms", rms, rms_present, "RMS runtime mobile security (npm)"),
        ("objection", install_objection, objection_installed, "objection from source"),
        (
            "adb-platform-tools",
            install_platform_tools,
            platform_tools_installed,
            "Android platform-tools",
        ),
        ("apktool", install_apktool, apktool_installed, "apktool release jar"),
        ("jadx", install_jadx, jadx_installed, "jadx release"),
        ("palera1n", install_palera1n, palera1n_installed, "palera1n installer"),
        (
            "frida-ios-dump",
            install_frida_ios_dump,
            frida_ios_dump_installed,
            "frida-ios-dump pinned checkout",
        ),
        (
            "libimobiledevice",
            libimobiledevice,
            libimobiledevice_present,
            "libimobiledevice utilities",
        ),
        ("grapefruit", grapefruit, grapefruit_present, "Grapefruit iOS toolkit (npm)"),
    )
    for name, action, check, description in steps:
        registry.register(
            name,
            action,
            check,
            recovery=repair_packages if name == "libimobiledevice" else None,
            group="mobile",
            description=description,
        )


__all__ = [
    "MOBSF_IMAGE",
    "apktool_installed",
    "frida_ios_dump_installed",
    "install_apktool",
    "install_frida_ios_dump",
    "install_jadx",
    "install_mobsf",
    "install_objection",
    "install_palera1n",
    "install_platform_tools",
    "jadx_installed",
    "mobsf_present",
    "objection_installed",
    "palera1n_installed",
    "platform_tools_installed",
    "register",
]
