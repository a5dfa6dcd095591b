"""Configuration loading.

Reads `.git-workers.toml` in the main worktree (project-level) and
`~/.config/git-workers/config.toml` (global), merges them, and fills missing
values with defaults.
"""

import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from git_workers.constants import (
    CONFIG_FILE_NAME,
    GLOBAL_CONFIG_PATH,
    STALE_LOCK_TIMEOUT_SECS,
    WORKTREES_SUBDIR,
)
from git_workers.errors import ConfigError
from git_workers.models import PlacementPattern
from git_workers.services.vcs import GitDriver


class WorktreeConfig(BaseModel):
    layout: Literal["", "auto", "sibling", "subdirectory"] = ""
    subdirectory: str = ""


class LockConfig(BaseModel):
    stale_seconds: int = Field(default=0, ge=0)


class HooksConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    post_create: list[str] = Field(default=[], alias="post-create")
    pre_remove: list[str] = Field(default=[], alias="pre-remove")


class FilesConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    copy_files: list[str] = Field(default=[], alias="copy")
    source: str = ""


class GWConfig(BaseModel):
    worktree: WorktreeConfig = WorktreeConfig()
    lock: LockConfig = LockConfig()
    hooks: HooksConfig = HooksConfig()
    files: FilesConfig = FilesConfig()


_SECTIONS = ("worktree", "lock", "hooks", "files")


class ResolvedConfig(BaseModel):
    """Flat config with all values guaranteed filled."""

    repo_root: Path
    common_dir: Path
    layout: str
    subdirectory: str
    stale_seconds: int
    post_create_hooks: list[str]
    pre_remove_hooks: list[str]
    copy_files: list[str]
    files_source: Path

    def placement_pattern(self) -> PlacementPattern | None:
        """Layout forced by configuration, or None to infer from existing worktrees."""
        if self.layout == "sibling":
            return PlacementPattern.sibling()
        if self.layout == "subdirectory":
            return PlacementPattern.nested(f"{self.repo_root.name}/{self.subdirectory}")
        return None


def load_toml(path: Path) -> GWConfig:
    if not path.exists():
        return GWConfig()
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
        return GWConfig.model_validate(data)
    except (tomllib.TOMLDecodeError, ValidationError) as e:
        raise ConfigError(path, str(e)) from e


def _merge_configs(project: GWConfig, global_: GWConfig) -> GWConfig:
    """Merge project over global. Non-default project values win."""
    merged = GWConfig()
    for section in _SECTIONS:
        proj_section = getattr(project, section)
        glob_section = getattr(global_, section)
        merged_section = getattr(merged, section)
        for field_name, field_info in type(proj_section).model_fields.items():
            proj_val = getattr(proj_section, field_name)
            glob_val = getattr(glob_section, field_name)
            if proj_val != field_info.default:
                setattr(merged_section, field_name, proj_val)
            elif glob_val != field_info.default:
                setattr(merged_section, field_name, glob_val)
    return merged


def load_config(vcs: GitDriver, global_config_path: Path | None = None) -> ResolvedConfig:
    repo_root = vcs.main_path
    global_cfg = load_toml(global_config_path or GLOBAL_CONFIG_PATH)
    project_cfg = load_toml(repo_root / CONFIG_FILE_NAME)
    merged = _merge_configs(project_cfg, global_cfg)

    source = Path(merged.files.source) if merged.files.source else repo_root
    if not source.is_absolute():
        source = repo_root / source

    return ResolvedConfig(
        repo_root=repo_root,
        common_dir=vcs.common_dir,
        layout=merged.worktree.layout or "auto",
        subdirectory=merged.worktree.subdirectory or WORKTREES_SUBDIR,
        stale_seconds=merged.lock.stale_seconds or STALE_LOCK_TIMEOUT_SECS,
        post_create_hooks=merged.hooks.post_create,
        pre_remove_hooks=merged.hooks.pre_remove,
        copy_files=merged.files.copy_files,
        files_source=source,
    )
