import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import click

from git_workers.config import ResolvedConfig, load_config
from git_workers.constants import CONFIG_FILE_NAME, HOOK_POST_CREATE, HOOK_PRE_REMOVE
from git_workers.errors import BranchExistsError, Busy, NotFound, Unrecoverable, WorktreeError
from git_workers.models import BranchSource, PlacementPattern, WorktreeRecord
from git_workers.services.hooks import HookResult, copy_files, run_hooks
from git_workers.services.lifecycle import WorktreeManager
from git_workers.services.lock import force_unlock, lock_age, lock_path_for, read_lock
from git_workers.services.registry import WorktreeRegistry
from git_workers.services.vcs import GitDriver

EXIT_ERROR = 1
EXIT_BUSY = 2
EXIT_UNRECOVERABLE = 3


@contextmanager
def _errors() -> Iterator[None]:
    """Turn service errors into a message on stderr and an exit code."""
    try:
        yield
    except Unrecoverable as e:
        click.echo(f"Error: {e}", err=True)
        click.echo("\nThe worktree needs manual repair. Run:\n", err=True)
        for step in e.recovery_steps():
            click.echo(f"  {step}", err=True)
        raise SystemExit(EXIT_UNRECOVERABLE)
    except Busy as e:
        click.echo(f"Error: {e}", err=True)
        click.echo("If no other git-workers process is running, clear it with `gw unlock --force`.", err=True)
        raise SystemExit(EXIT_BUSY)
    except WorktreeError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(EXIT_ERROR)


def _open() -> tuple[GitDriver, ResolvedConfig, WorktreeManager]:
    vcs = GitDriver()
    config = load_config(vcs)
    manager = WorktreeManager(vcs, WorktreeRegistry(vcs), stale_after=config.stale_seconds)
    return vcs, config, manager


def _resolve(records: list[WorktreeRecord], worktree: str) -> WorktreeRecord | None:
    """Look WORKTREE up as an internal id first, then as a display name."""
    for record in records:
        if record.internal_id == worktree:
            return record
    for record in records:
        if record.display_name == worktree:
            return record
    return None


def _orphaned_branches(records: list[WorktreeRecord], targets: list[WorktreeRecord]) -> list[str]:
    """Branches checked out only in ``targets``, which removal leaves unused."""
    target_ids = {t.internal_id for t in targets}
    kept = {r.branch for r in records if r.internal_id not in target_ids}
    return sorted({t.branch for t in targets if not t.is_detached and t.branch not in kept})


def _echo_hooks(results: list[HookResult]) -> None:
    for result in results:
        click.echo(f"> {result.command}")
        if result.stdout:
            click.echo(result.stdout.rstrip())
        if result.returncode is None:
            click.echo("  hook timed out", err=True)
        elif not result.ok:
            if result.stderr:
                click.echo(result.stderr.rstrip(), err=True)
            click.echo(f"  hook exited with status {result.returncode}", err=True)


def _flags(record: WorktreeRecord) -> list[str]:
    flags = []
    if record.is_current:
        flags.append("current")
    if record.is_main:
        flags.append("main")
    if record.is_locked:
        flags.append("locked")
    if record.has_uncommitted_changes:
        flags.append("dirty")
    if record.is_prunable:
        flags.append("prunable")
    return flags


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
def cli(verbose: bool) -> None:
    """git-workers: manage git worktrees safely."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@cli.command("list")
def list_cmd() -> None:
    """List all worktrees."""
    with _errors():
        _, _, manager = _open()
        records = manager.list()

    for record in records:
        label = record.display_name
        if record.is_renamed:
            label += f" [id: {record.internal_id}]"
        flags = _flags(record)
        flag_str = f" ({', '.join(flags)})" if flags else ""
        marker = "*" if record.is_current else " "
        click.echo(f"{marker} {label}  {record.branch}{flag_str}")
        click.echo(f"    path: {record.path}")


@cli.command()
@click.argument("name")
@click.option("--branch", "-b", default=None, help="Check out an existing branch (or remote/branch)")
@click.option("--new-branch", "-n", default=None, help="Create a new branch")
@click.option("--base", default=None, help="Start point for --new-branch")
@click.option("--tag", "-t", default=None, help="Check out a tag (detached HEAD)")
@click.option("--commit", "-c", default=None, help="Check out a commit (detached HEAD)")
@click.option("--path", "as_path", is_flag=True, help="Treat NAME as a path instead of a name")
@click.option("--layout", type=click.Choice(["sibling", "subdirectory"]), default=None, help="Override worktree layout")
def new(
    name: str,
    branch: str | None,
    new_branch: str | None,
    base: str | None,
    tag: str | None,
    commit: str | None,
    as_path: bool,
    layout: str | None,
) -> None:
    """Create a new worktree."""
    chosen = [opt for opt in (branch, new_branch, tag, commit) if opt]
    if len(chosen) > 1:
        click.echo("Use only one of --branch, --new-branch, --tag, --commit.", err=True)
        raise SystemExit(EXIT_ERROR)
    if base and not new_branch:
        click.echo("--base requires --new-branch.", err=True)
        raise SystemExit(EXIT_ERROR)

    if branch:
        source = BranchSource.branch(branch)
    elif new_branch:
        source = BranchSource.new_branch(new_branch, base)
    elif tag:
        source = BranchSource.tag(tag)
    elif commit:
        source = BranchSource.commit(commit)
    else:
        source = BranchSource.head()

    with _errors():
        _, config, manager = _open()
        pattern: PlacementPattern | None = config.placement_pattern()
        if layout == "sibling":
            pattern = PlacementPattern.sibling()
        elif layout == "subdirectory":
            pattern = PlacementPattern.nested(f"{config.repo_root.name}/{config.subdirectory}")

        try:
            record = manager.create(name, source, explicit=as_path, pattern=pattern)
        except BranchExistsError as e:
            if click.confirm(f"Branch '{e.branch}' already exists. Use it?"):
                record = manager.create(name, BranchSource.branch(e.branch), explicit=as_path, pattern=pattern)
            else:
                click.echo("Aborted.", err=True)
                raise SystemExit(EXIT_ERROR)

    click.echo(f"Created worktree: {record.path} (branch: {record.branch})")

    copied = copy_files(config.copy_files, config.files_source, record.path)
    for entry in copied:
        click.echo(f"Copied {entry}")
    _echo_hooks(run_hooks(HOOK_POST_CREATE, config.post_create_hooks, record.display_name, record.path))


@cli.command()
@click.argument("worktree")
@click.argument("new_name")
def rename(worktree: str, new_name: str) -> None:
    """Rename WORKTREE (internal id or name) to NEW_NAME."""
    with _errors():
        _, _, manager = _open()
        record = _resolve(manager.list(), worktree)
        if record is None:
            raise NotFound(worktree)
        renamed = manager.rename(record.internal_id, new_name)

    if renamed.path == record.path:
        click.echo(f"Worktree already named '{renamed.display_name}'.")
        return
    click.echo(f"Renamed worktree: {record.path} -> {renamed.path}")


@cli.command()
@click.argument("worktrees", nargs=-1, required=True)
@click.option("--delete-branch", "-d", is_flag=True, help="Also delete each worktree's branch")
@click.option("--force", "-f", is_flag=True, help="Force remove even with uncommitted changes")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
def remove(worktrees: tuple[str, ...], delete_branch: bool, force: bool, yes: bool) -> None:
    """Remove one or more WORKTREES (internal id or name).

    Each worktree is removed on its own: a failure is reported and the
    remaining ones are still removed.
    """
    with _errors():
        _, config, manager = _open()
        records = manager.list()

    failures: list[str] = []
    targets: list[WorktreeRecord] = []
    for worktree in dict.fromkeys(worktrees):
        record = _resolve(records, worktree)
        if record is None:
            failures.append(f"{worktree}: {NotFound(worktree)}")
        elif record.is_current:
            failures.append(f"{worktree}: skipped, it is the current worktree")
        elif all(t.internal_id != record.internal_id for t in targets):
            targets.append(record)

    if targets:
        click.echo("Worktrees to remove:")
        for record in targets:
            click.echo(f"  {record.display_name} ({record.branch})  {record.path}")
        orphaned = _orphaned_branches(records, targets) if delete_branch else []
        if orphaned:
            click.echo("Branches to delete:")
            for branch in orphaned:
                click.echo(f"  {branch}")
        if not yes and not click.confirm("Remove these worktrees?"):
            click.echo("Aborted.", err=True)
            raise SystemExit(EXIT_ERROR)

    for record in targets:
        try:
            if record.path.exists():
                _echo_hooks(run_hooks(HOOK_PRE_REMOVE, config.pre_remove_hooks, record.display_name, record.path))
            result = manager.remove(record.internal_id, delete_branch=delete_branch, force=force)
        except WorktreeError as e:
            failures.append(f"{record.display_name}: {e}")
            continue
        click.echo(f"Removed worktree: {result.record.path}")
        if result.branch_deleted:
            click.echo(f"Deleted branch: {result.record.branch}")
        for warning in result.warnings:
            click.echo(f"Warning: {warning}", err=True)

    if failures:
        click.echo(f"\n{len(failures)} worktree(s) not removed:", err=True)
        for failure in failures:
            click.echo(f"  {failure}", err=True)
        raise SystemExit(EXIT_ERROR)


@cli.command()
@click.option("--force", "-f", is_flag=True, help="Delete the lock file even if it looks active")
def unlock(force: bool) -> None:
    """Show the repository lock and optionally clear it."""
    with _errors():
        vcs = GitDriver()
        common_dir = vcs.common_dir

    payload = read_lock(common_dir)
    if payload is None:
        click.echo("No lock held.")
        return

    age = lock_age(common_dir)
    click.echo(f"Lock file: {lock_path_for(common_dir)}")
    click.echo(f"  pid  = {payload.get('pid', '?')}")
    click.echo(f"  host = {payload.get('host', '?')}")
    if age is not None:
        click.echo(f"  age  = {int(age)}s")

    if not force:
        click.echo("\nRun `gw unlock --force` to delete it.")
        return
    if force_unlock(common_dir):
        click.echo("Lock removed.")
    else:
        click.echo("Lock was already gone.")


@cli.command()
def config() -> None:
    """Show the resolved configuration."""
    with _errors():
        vcs = GitDriver()
        resolved = load_config(vcs)

    click.echo(f"Project: {resolved.repo_root}")
    click.echo(f"Config:  {resolved.repo_root / CONFIG_FILE_NAME}\n")
    click.echo("[worktree]")
    click.echo(f"  layout       = {resolved.layout}")
    click.echo(f"  subdirectory = {resolved.subdirectory}")
    click.echo("\n[lock]")
    click.echo(f"  stale_seconds = {resolved.stale_seconds}")
    click.echo("\n[hooks]")
    click.echo(f"  post-create = {resolved.post_create_hooks or '(none)'}")
    click.echo(f"  pre-remove  = {resolved.pre_remove_hooks or '(none)'}")
    click.echo("\n[files]")
    click.echo(f"  copy   = {resolved.copy_files or '(none)'}")
    click.echo(f"  source = {resolved.files_source}")
