"""Pretty formatting utilities for CLI output."""

import shutil
import sys
from typing import IO, List, Optional

from ..models import BranchInfo, StackWithInfo, SyncProgress, SyncStatus

SYNC_ICONS = {
    'up-to-date': "✅",
    'needs-push': "⬆️ ",
    'needs-rebase': "🔄",
    'conflicts': "⚠️ ",
    'pending-sync': "⏳",
    'unknown': "❓",
}

PROGRESS_ICONS = {
    'idle': "·",
    'fetching': "⬇️ ",
    'rebasing': "🔄",
    'success': "✅",
    'error': "❌",
}

def get_term_width() -> int:
    """Get terminal width, default to 80 if can't detect."""
    return shutil.get_terminal_size((80, 24)).columns


def header(text: str, use_emoji: bool = True) -> str:
    """Create a boxed header with optional emoji."""
    width = max(get_term_width(), len(text) + 8)

    h_line = "─" * (width - 2)
    v_line = "│"
    emoji = "📚 " if use_emoji else ""

    result = [
        f"┌{h_line}┐",
        f"{v_line} {emoji}{text}{' ' * (width - len(text) - len(emoji) - 3)}{v_line}",
        f"└{h_line}┘"
    ]

    return "\n".join(result)


def print_header(text: str, use_emoji: bool = True, file: Optional[IO[str]] = None) -> None:
    """Print a header to file (default stdout)."""
    if file is None:
        file = sys.stdout
    print(header(text, use_emoji), file=file)


def sync_label(status: SyncStatus) -> str:
    return f"{SYNC_ICONS.get(status, '?')} {status}"


def _branch_line(info: BranchInfo, last: bool, current_branch: Optional[str]) -> str:
    glyph = "└─" if last else "├─"
    pr = f" #{info.pr_number} {info.pr_status}" if info.pr_number is not None else " (no PR)"
    marker = " ◀" if info.name == current_branch else ""
    return f"{glyph} {info.name}{pr}  {sync_label(info.sync_status)}{marker}"


def format_stack(info: StackWithInfo, current_branch: Optional[str] = None) -> str:
    """Render one stack as a tree, base first."""
    lines: List[str] = [f"{info.stack.name}: {info.stack.base_branch} (base)"]
    for i, branch in enumerate(info.branches):
        lines.append(_branch_line(branch, i == len(info.branches) - 1, current_branch))
    return "\n".join(lines)


def format_progress(progress: SyncProgress) -> str:
    """One line per cascade transition."""
    icon = PROGRESS_ICONS.get(progress.state, "")
    line = f"{icon} [{progress.state}] {progress.message}"
    if progress.state == 'error' and progress.error and progress.error != progress.message:
        line = f"{line}\n   {progress.error}"
    return line


def format_progress_summary(progress: SyncProgress) -> str:
    """Per-child outcome of a finished cascade."""
    lines = [f"Merged: {progress.merged_branch}"]
    for branch in progress.child_branches:
        status = progress.branch_statuses.get(branch, 'unknown')
        lines.append(f"   {branch}  {sync_label(status)}")
    return "\n".join(lines)
