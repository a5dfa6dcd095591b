from pathlib import Path

CONFIG_FILE_NAME = ".git-workers.toml"
GLOBAL_CONFIG_PATH = Path.home() / ".config" / "git-workers" / "config.toml"

LOCK_FILE_NAME = "git-workers-worktree.lock"
STALE_LOCK_TIMEOUT_SECS = 300

# Sentinels; parentheses keep them outside the set of valid worktree names.
MAIN_WORKTREE_ID = "(main)"
DETACHED_BRANCH = "(detached)"
UNKNOWN_BRANCH = "(unknown)"

WORKTREES_SUBDIR = "worktrees"
GITDIR_FILE = "gitdir"
LOCKED_FILE = "locked"
GITDIR_PREFIX = "gitdir: "

MAX_WORKTREE_NAME_LENGTH = 255
GIT_RESERVED_NAMES = (
    ".git",
    "HEAD",
    "ORIG_HEAD",
    "FETCH_HEAD",
    "MERGE_HEAD",
    "refs",
    "objects",
    "hooks",
    "info",
    "logs",
)
INVALID_FILESYSTEM_CHARS = ("/", "\\", "\0")
WINDOWS_RESERVED_CHARS = ("<", ">", ":", '"', "|", "?", "*")

HOOK_POST_CREATE = "post-create"
HOOK_PRE_REMOVE = "pre-remove"
HOOK_TIMEOUT_S = 300
