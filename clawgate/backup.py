"""
Backup export and import of the state and workspace directories.

Archives are gzip tarballs. When both directories live under the data root
(the persistent volume), member names are relative to it so an archive holds
``.openclaw/...`` and ``workspace/...`` and restores back into the same root.
"""

import re
import tarfile
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from clawgate.config import WrapperConfig

MAX_IMPORT_BYTES = 250 * 1024 * 1024

_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")


def timestamp_slug() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")


def backup_filename() -> str:
    return f"openclaw-backup-{timestamp_slug()}.tar.gz"


def is_under_dir(path: Path, root: Path) -> bool:
    p = Path(path).resolve()
    r = Path(root).resolve()
    return p == r or r in p.parents


def looks_safe_tar_path(name: str) -> bool:
    """Reject absolute, drive-letter and parent-traversal member names."""
    if not name:
        return False
    if name.startswith("/") or name.startswith("\\"):
        return False
    if _DRIVE_RE.match(name):
        return False
    if ".." in name.replace("\\", "/").split("/"):
        return False
    return True


def export_layout(config: WrapperConfig) -> tuple[Path, list[str]]:
    """Return (base dir, member paths relative to it) for an export."""
    state = config.state_dir.resolve()
    workspace = config.workspace_dir.resolve()
    root = config.data_root.resolve()

    dirs = [state]
    # The workspace usually sits inside the state dir; don't archive it twice.
    if not is_under_dir(workspace, state):
        dirs.append(workspace)

    if is_under_dir(state, root) and is_under_dir(workspace, root):
        base = root
    else:
        base = Path("/")
    return base, [str(d.relative_to(base)) or "." for d in dirs]


def _portable(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.mtime = 0
    return info


def create_backup(config: WrapperConfig) -> Path:
    """Write a .tar.gz of state + workspace to a temp file and return its path."""
    config.state_dir.mkdir(parents=True, exist_ok=True)
    config.workspace_dir.mkdir(parents=True, exist_ok=True)

    base, members = export_layout(config)
    tmp = tempfile.NamedTemporaryFile(prefix="openclaw-export-", suffix=".tar.gz", delete=False)
    tmp.close()
    with tarfile.open(tmp.name, "w:gz") as tar:
        for member in members:
            tar.add(str(base / member), arcname=member, filter=_portable)
    return Path(tmp.name)


def _safe_member(member: tarfile.TarInfo) -> bool:
    if not looks_safe_tar_path(member.name):
        return False
    if member.isdev():
        return False
    if (member.issym() or member.islnk()) and not looks_safe_tar_path(member.linkname):
        return False
    return True


def restore_backup(archive: Path, root: Path) -> dict:
    """
    Extract an exported archive into root.

    Unsafe members are skipped, not fatal. Existing files are overwritten but
    nothing is deleted.
    """
    root.mkdir(parents=True, exist_ok=True)
    restored = 0
    skipped = []
    with tarfile.open(archive, "r:gz") as tar:
        safe = []
        for member in tar.getmembers():
            if _safe_member(member):
                safe.append(member)
            else:
                skipped.append(member.name)
        tar.extractall(str(root), members=safe, filter="data")
        restored = len(safe)
    return {"restored": restored, "skipped": skipped}
