"""Shell environment steps: ssh key, zsh prompt, fzf, tmux and bat."""
from __future__ import annotations

import re
import shutil
import socket
import tempfile
from pathlib import Path

from ..files import set_assignment, write_if_changed
from ..tasks.models import ExecutionContext
from .common import (
    ZSHRC_MARKER,
    ensure_target_dir,
    set_zshrc_alias,
    zshrc,
)

HISTSIZE = "10000000"
SAVEHIST = "200000000"
PROMPT_SYMBOL = "@"
LL_ALIAS = ("ll", "ls -lah")
CAT_ALIAS = ("cat", "bat -pp")

FZF_REPOSITORY = "https://github.com/junegunn/fzf.git"
TMUX_CONF = ".tmux.conf"
TMUX_PLUGINS: tuple[tuple[str, str], ...] = (
    ("tpm", "https://github.com/tmux-plugins/tpm.git"),
    ("tmux-yank", "https://github.com/tmux-plugins/tmux-yank.git"),
    ("tmux-logging", "https://github.com/tmux-plugins/tmux-logging.git"),
    ("tmux-resurrect", "https://github.com/tmux-plugins/tmux-resurrect.git"),
)
BAT_DEB_URL = "https://github.com/sharkdp/bat/releases/download/v0.25.0/bat_0.25.0_amd64.deb"

_PROMPT_SYMBOL_RE = re.compile(r"^\s*prompt_symbol\s*=")
_PROMPT_RE = re.compile(r"^\s*PROMPT\s*=")


# ssh-key ------------------------------------------------------------------

def _ssh_key(ctx: ExecutionContext) -> Path:
    return ctx.home / ".ssh" / "id_ed25519"


def ssh_key_exists(ctx: ExecutionContext) -> bool:
    """Return ``True`` when the target already has an ed25519 key."""
    return _ssh_key(ctx).is_file()


def generate_ssh_key(ctx: ExecutionContext) -> str:
    """Generate a passphrase-less ed25519 key for the target."""
    key = _ssh_key(ctx)
    ensure_target_dir(ctx, key.parent)
    key.parent.chmod(0o700)
    comment = f"{ctx.user}@{socket.gethostname().split('.')[0]}"
    ctx.run_as_target(
        ["ssh-keygen", "-t", "ed25519", "-a", "100", "-f", str(key), "-N", "", "-C", comment]
    )
    return f"generated {key}"


# zsh-prompt ---------------------------------------------------------------

def _prompt_block(ctx: ExecutionContext) -> str:
    return ctx.templates.render_to_string(
        "zsh/prompt.j2",
        {"marker": ZSHRC_MARKER, "prompt_symbol": PROMPT_SYMBOL},
    )


def _open_quote(text: str, quote: str | None = None) -> str | None:
    """Return the quote still open after *text*, continuing from *quote*.

    Understands zsh's plain single quotes, ``$'...'`` (backslash escapes) and
    double quotes, so a multi-line ``PROMPT=$'...'`` is followed to its end.
    """
    index = 0
    while index < len(text):
        char = text[index]
        if quote is None:
            if char == "\\":
                index += 1
            elif char == "$" and text[index + 1 : index + 2] == "'":
                quote = "$'"
                index += 1
            elif char in "'\"":
                quote = char
        elif quote == "'":
            if char == "'":
                quote = None
        elif char == "\\":
            index += 1
        elif char == quote[-1]:
            quote = None
        index += 1
    return quote


def _strip_prompt(lines: list[str]) -> list[str]:
    """Drop prompt_symbol/PROMPT assignments, including multi-line quoted values."""
    kept: list[str] = []
    quote: str | None = None
    header = f"{ZSHRC_MARKER} - prompt symbol"
    for line in lines:
        if quote is not None:
            quote = _open_quote(line, quote)
            continue
        if line.startswith(header) or _PROMPT_SYMBOL_RE.match(line):
            continue
        if _PROMPT_RE.match(line):
            quote = _open_quote(line.split("=", 1)[1])
            continue
        kept.append(line)
    return kept


def zsh_prompt_configured(ctx: ExecutionContext) -> bool:
    """Return ``True`` when history sizes, prompt block and ``ll`` alias are in place."""
    path = zshrc(ctx)
    if not path.is_file():
        return False
    text = path.read_text(encoding="utf-8")
    lines = set(text.splitlines())
    return (
        _prompt_block(ctx) in text
        and f"HISTSIZE={HISTSIZE}" in lines
        and f"SAVEHIST={SAVEHIST}" in lines
        and f"alias {LL_ALIAS[0]}='{LL_ALIAS[1]}'" in lines
    )


def configure_zsh_prompt(ctx: ExecutionContext) -> str:
    """Set history sizes, replace the prompt and add the ``ll`` alias."""
    path = zshrc(ctx)
    changed = set_assignment(path, "HISTSIZE", HISTSIZE, marker=ZSHRC_MARKER)
    changed = set_assignment(path, "SAVEHIST", SAVEHIST, marker=ZSHRC_MARKER) or changed

    block = _prompt_block(ctx)
    text = path.read_text(encoding="utf-8") if path.exists() else ""
    if block not in text:
        lines = _strip_prompt(text.splitlines())
        body = "\n".join(lines).rstrip("\n")
        changed = write_if_changed(path, f"{body}\n\n{block}" if body else block) or changed

    changed = set_zshrc_alias(ctx, *LL_ALIAS) or changed
    ctx.chown_to_target(path)
    return f"updated {path}" if changed else "unchanged"


# fzf ----------------------------------------------------------------------

def _fzf_dir(ctx: ExecutionContext) -> Path:
    return ctx.home / ".fzf"


def fzf_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when fzf is checked out and its binary was installed."""
    directory = _fzf_dir(ctx)
    return ctx.git.is_checkout(directory) and (directory / "bin" / "fzf").exists()


def install_fzf(ctx: ExecutionContext) -> str:
    """Clone or update fzf and run its installer for the target."""
    directory = _fzf_dir(ctx)
    state = ctx.git.clone_or_update(FZF_REPOSITORY, directory)
    ctx.run_as_target([str(directory / "install"), "--all"], cwd=directory)
    return f"fzf {state}"


# tmux ---------------------------------------------------------------------

def _plugin_dir(ctx: ExecutionContext) -> Path:
    return ctx.home / ".tmux" / "plugins"


def tmux_configured(ctx: ExecutionContext) -> bool:
    """Return ``True`` when ``.tmux.conf`` and every plugin checkout exist."""
    plugins = _plugin_dir(ctx)
    return (ctx.home / TMUX_CONF).is_file() and all(
        ctx.git.is_checkout(plugins / name) for name, _ in TMUX_PLUGINS
    )


def configure_tmux(ctx: ExecutionContext) -> str:
    """Install the shared ``.tmux.conf`` and the tmux plugins."""
    conf = ctx.home / TMUX_CONF
    data = ctx.http.fetch_bytes(ctx.config.dotfiles.url_for(TMUX_CONF))
    if write_if_changed(conf, data, mode=0o644):
        ctx.chown_to_target(conf)
    plugins = ensure_target_dir(ctx, _plugin_dir(ctx))
    states = [
        f"{name} {ctx.git.clone_or_update(url, plugins / name)}" for name, url in TMUX_PLUGINS
    ]
    return "; ".join(states)


# bat ----------------------------------------------------------------------

def bat_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when bat is on PATH and ``cat`` is aliased to it."""
    path = zshrc(ctx)
    alias = f"alias {CAT_ALIAS[0]}='{CAT_ALIAS[1]}'"
    return (
        shutil.which("bat") is not None
        and path.is_file()
        and alias in path.read_text(encoding="utf-8").splitlines()
    )


def install_bat(ctx: ExecutionContext) -> str:
    """Install bat from its release .deb and alias ``cat`` to it."""
    if shutil.which("bat") is None:
        with tempfile.TemporaryDirectory(prefix="postinstallctl-bat-") as tmp:
            deb = Path(tmp) / BAT_DEB_URL.rsplit("/", 1)[-1]
            ctx.http.download(BAT_DEB_URL, deb)
            ctx.apt.install_deb(deb)
    set_zshrc_alias(ctx, *CAT_ALIAS)
    return "bat installed; cat aliased to bat -pp"


__all__ = [
    "bat_installed",
    "configure_tmux",
    "configure_zsh_prompt",
    "fzf_installed",
    "generate_ssh_key",
    "install_bat",
    "install_fzf",
    "ssh_key_exists",
    "tmux_configured",
    "zsh_prompt_configured",
]
