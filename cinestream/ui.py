from __future__ import annotations

import shutil
import subprocess
from typing import Optional, Sequence


def ensure_binary(name: str) -> bool:
    return shutil.which(name) is not None


def _prompt_number(options: Sequence[str], header: str) -> Optional[int]:
    for i, opt in enumerate(options, 1):
        print(f"{i:3d}. {opt}")
    try:
        raw = input(f"{header} [1-{len(options)}]: ").strip()
    except (KeyboardInterrupt, EOFError):
        return None
    if not raw.isdigit():
        return None
    idx = int(raw) - 1
    return idx if 0 <= idx < len(options) else None


def pick_index(options: Sequence[str], header: str = "Select") -> Optional[int]:
    """Let the user pick one of `options`; returns its position or None."""
    if not options:
        return None
    if not ensure_binary("fzf"):
        return _prompt_number(options, header)
    # Hidden first field carries the position so duplicate labels stay distinct
    feed = "\n".join(f"{i}\t{opt.replace(chr(9), ' ')}" for i, opt in enumerate(options))
    proc = subprocess.run(
        ["fzf", "--with-nth=2", "--delimiter=\t", "--bind=change:first", f"--prompt={header}> "],
        input=feed,
        stdout=subprocess.PIPE,
        text=True,
    )
    chosen = proc.stdout.strip().splitlines()
    if proc.returncode != 0 or not chosen:
        return None
    head = chosen[-1].split("\t", 1)[0]
    return int(head) if head.isdigit() else None
