"""Hook commands and file copies run around lifecycle operations.

These run from the CLI, never from inside WorktreeManager: a failing hook
is reported but cannot undo or block an operation that already finished.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from git_workers.constants import HOOK_TIMEOUT_S

logger = logging.getLogger(__name__)


@dataclass
class HookResult:
    command: str
    returncode: int | None
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def expand_command(command: str, worktree_name: str, worktree_path: Path) -> str:
    return command.replace("{{worktree_name}}", worktree_name).replace("{{worktree_path}}", str(worktree_path))


def run_hooks(hook_type: str, commands: list[str], worktree_name: str, worktree_path: Path) -> list[HookResult]:
    """Run each command through the shell inside the worktree directory.

    All commands run even if an earlier one fails.
    """
    results: list[HookResult] = []
    for command in commands:
        expanded = expand_command(command, worktree_name, worktree_path)
        try:
            proc = subprocess.run(
                expanded,
                shell=True,
                cwd=worktree_path,
                capture_output=True,
                text=True,
                timeout=HOOK_TIMEOUT_S,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Hook timed out", extra={"hook": hook_type, "command": expanded})
            results.append(HookResult(expanded, None))
            continue
        result = HookResult(expanded, proc.returncode, proc.stdout, proc.stderr)
        if not result.ok:
            logger.warning(
                "Hook failed",
                extra={"hook": hook_type, "command": expanded, "returncode": proc.returncode, "stderr": proc.stderr},
            )
        results.append(result)
    return results


def copy_files(names: list[str], source: Path, dest: Path) -> list[str]:
    """Copy configured files or directories from ``source`` into a new worktree.

    Entries that are missing or would resolve outside either root are
    skipped. Returns the entries that were copied.
    """
    copied: list[str] = []
    source_root = source.resolve()
    dest_root = dest.resolve()
    for name in names:
        src = (source_root / name).resolve()
        dst = (dest_root / name).resolve()
        if not src.is_relative_to(source_root) or not dst.is_relative_to(dest_root):
            logger.warning("Copy entry escapes worktree directory", extra={"entry": name})
            continue
        if not src.exists():
            logger.debug("Copy entry not found", extra={"entry": name, "source": str(src)})
            continue
        dst.parent.mkdir(parents=True, exist_ok=True)
        if src.is_dir():
            shutil.copytree(src, dst, symlinks=True, dirs_exist_ok=True)
        else:
            shutil.copy2(src, dst)
        copied.append(name)
    return copied
