"""Command-line interface for treebackup.

Without a subcommand (or with ``interactive``) the tool runs the menu loop:

    1. full backup
    2. incremental backup
    3. show history
    4. exit

The subcommands run a single operation:
- full: full backup of SOURCE into BACKUP_ROOT
- incremental: incremental backup of SOURCE into BACKUP_ROOT
- diff: show what an incremental backup would copy
- list: list snapshots under BACKUP_ROOT
- init: create default config
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from treebackup import __version__
from treebackup.backup import BackupEngine, BackupResult, BackupStatus, SourceMissingError
from treebackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
    create_default_config,
    DEFAULT_CONFIG_PATH,
)
from treebackup.diff import ChangeStatus
from treebackup.ledger import SnapshotRecord
from treebackup.logger import ErrorCode, LoggingError, get_error_guidance, get_logger, setup_logging


EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_GENERAL_ERROR = 1
EXIT_SOURCE_MISSING = 3
EXIT_SNAPSHOT_ERROR = 4
EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog='treebackup',
        description='Full and incremental directory snapshots with hard-linked unchanged files'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '--config', '-c',
        type=Path,
        help='Path to config file (default: ~/.config/treebackup/config.toml)',
        metavar='PATH'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser(
        'interactive',
        help='Run the interactive menu (default)'
    )

    for name, help_text in (
        ('full', 'Create a full backup'),
        ('incremental', 'Create an incremental backup'),
        ('diff', 'Show what an incremental backup would copy'),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('source', nargs='?', type=Path, help='Source directory')
        sub.add_argument('backup_root', nargs='?', type=Path, help='Backup root directory')

    list_parser = subparsers.add_parser(
        'list',
        help='List snapshots'
    )
    list_parser.add_argument('backup_root', nargs='?', type=Path, help='Backup root directory')
    list_parser.add_argument(
        '--json',
        action='store_true',
        help='Output as JSON'
    )

    init_parser = subparsers.add_parser(
        'init',
        help='Create default config'
    )
    init_parser.add_argument(
        '--force', '-f',
        action='store_true',
        help='Overwrite existing config file'
    )

    return parser


def load_config(config_path: Optional[Path], verbose: bool = False) -> Optional[Configuration]:
    """
    Load configuration from file.

    Returns None and prints error on failure.
    """
    try:
        config = parse_config(config_path)
        if verbose:
            print(f"Loaded config from: {config_path or DEFAULT_CONFIG_PATH}")
        return config
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return None
    except ValidationError as e:
        print(f"Validation error: {e}", file=sys.stderr)
        return None


def _configure_logging(config: Configuration, verbose: bool) -> None:
    logging_config = config.logging
    if verbose:
        logging_config.console = True
    try:
        setup_logging(logging_config)
    except (LoggingError, OSError) as e:
        # Keep going without file logging
        get_logger().warning(f"Failed to set up logging: {e}")
        print(f"Warning: failed to set up logging: {e}", file=sys.stderr)


_STATUS_ERROR_CODES = {
    BackupStatus.SOURCE_MISSING: ErrorCode.SOURCE_MISSING,
    BackupStatus.FAILED: ErrorCode.SNAPSHOT_FAILED,
    BackupStatus.NO_CHANGES: ErrorCode.NO_CHANGES,
}


def _exit_code(result: BackupResult) -> int:
    """Print guidance for a run that did not complete and map it to an exit code."""
    code = _STATUS_ERROR_CODES.get(result.status)
    if code is not None:
        stream = sys.stdout if code is ErrorCode.NO_CHANGES else sys.stderr
        print(f"[{code.value}] {get_error_guidance(code)}", file=stream)

    if result.status is BackupStatus.SOURCE_MISSING:
        return EXIT_SOURCE_MISSING
    if result.status is BackupStatus.FAILED:
        return EXIT_SNAPSHOT_ERROR
    return EXIT_SUCCESS


def _resolve_paths(
    args: argparse.Namespace, config: Configuration
) -> Optional[Tuple[Path, Path]]:
    source = args.source or config.source_directory
    backup_root = args.backup_root or config.backup_root
    if source is None or backup_root is None:
        print(
            "Both SOURCE and BACKUP_ROOT are required "
            "(pass them or set them in the [main] section of the config)",
            file=sys.stderr,
        )
        return None
    return source, backup_root


def cmd_full(args: argparse.Namespace, config: Configuration) -> int:
    """Execute the 'full' command."""
    paths = _resolve_paths(args, config)
    if paths is None:
        return EXIT_CONFIG_ERROR
    engine = BackupEngine(config=config, reporter=print)
    return _exit_code(engine.full_backup(*paths))


def cmd_incremental(args: argparse.Namespace, config: Configuration) -> int:
    """Execute the 'incremental' command."""
    paths = _resolve_paths(args, config)
    if paths is None:
        return EXIT_CONFIG_ERROR
    engine = BackupEngine(config=config, reporter=print)
    return _exit_code(engine.incremental_backup(*paths))


def cmd_diff(args: argparse.Namespace, config: Configuration) -> int:
    """Execute the 'diff' command - preview an incremental backup."""
    paths = _resolve_paths(args, config)
    if paths is None:
        return EXIT_CONFIG_ERROR

    engine = BackupEngine(config=config)
    try:
        preview = engine.preview(*paths)
    except SourceMissingError as e:
        print(f"Error: {e}", file=sys.stderr)
        print(f"[{e.code.value}] {get_error_guidance(e.code)}", file=sys.stderr)
        return EXIT_SOURCE_MISSING

    for issue in preview.issues:
        print(issue.status_line(), file=sys.stderr)

    if preview.base_snapshot is None:
        print("No previous snapshot; a backup would copy every file.")
    else:
        print(f"Compared with: {preview.base_snapshot.name}")

    for entry in preview.classification:
        if entry.needs_copy:
            marker = "+" if entry.status is ChangeStatus.NEW else "M"
            print(f"  {marker} {entry.relative_path}")
        elif args.verbose:
            print(f"  = {entry.relative_path}")
    for path in preview.deleted:
        print(f"  - {path}")

    summary = preview.summary
    print(
        f"{summary.new} new, {summary.changed} changed, "
        f"{summary.unchanged} unchanged, {len(preview.deleted)} deleted"
    )
    return EXIT_SUCCESS


def cmd_list(args: argparse.Namespace, config: Configuration) -> int:
    """Execute the 'list' command - list snapshots."""
    backup_root = args.backup_root or config.backup_root
    if backup_root is None:
        print("BACKUP_ROOT is required", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    snapshots = BackupEngine(config=config).list_snapshots(backup_root)

    if args.json:
        output = []
        for snap in snapshots:
            output.append({
                "name": snap.name,
                "timestamp": snap.timestamp.isoformat(),
                "path": str(snap.path),
                "size_bytes": snap.size_bytes,
                "file_count": snap.file_count,
            })
        print(json.dumps(output, indent=2))
        return EXIT_SUCCESS

    if not snapshots:
        print("No snapshots found.")
        return EXIT_SUCCESS

    print(f"{'Snapshot':<24} {'Size':>12} {'Files':>10}")
    print("-" * 48)
    for snap in snapshots:
        print(f"{snap.name:<24} {_format_size(snap.size_bytes):>12} {snap.file_count:>10}")
    print("-" * 48)
    print(f"Total: {len(snapshots)} snapshot(s)")
    return EXIT_SUCCESS


def cmd_init(args: argparse.Namespace) -> int:
    """Execute the 'init' command - create default config."""
    config_path = args.config or DEFAULT_CONFIG_PATH

    if config_path.exists() and not args.force:
        print(f"Config file already exists: {config_path}", file=sys.stderr)
        print("Use --force to overwrite", file=sys.stderr)
        return EXIT_GENERAL_ERROR

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(create_default_config(), encoding="utf-8")
    except OSError as e:
        print(f"Could not write config file: {e}", file=sys.stderr)
        return EXIT_GENERAL_ERROR

    print(f"Created config file: {config_path}")
    return EXIT_SUCCESS


def format_history(records: List[SnapshotRecord]) -> List[str]:
    """Render the in-process history the way the menu shows it."""
    if not records:
        return ["没有备份历史记录"]

    lines = ["", "=== 备份历史 ==="]
    for record in records:
        lines.append(f"时间: {record.timestamp_id}")
        lines.append(f"类型: {'增量备份' if record.is_incremental else '完整备份'}")
        if record.is_incremental:
            lines.append(f"基于: {record.base_snapshot_id}")
        lines.append(f"源目录: {record.source_path}")
        lines.append(f"备份位置: {record.snapshot_path}")
        lines.append(f"文件数: {record.files_written}/{record.total_source_files}")
        lines.append("------------------------")
    return lines


MENU_LINES = [
    "",
    "=== 数据备份应用 ===",
    "1. 完整备份",
    "2. 增量备份",
    "3. 查看备份历史",
    "4. 退出",
]


def run_menu(
    engine: BackupEngine,
    config: Optional[Configuration] = None,
    input_func: Callable[[str], str] = input,
    print_func: Callable[[str], None] = print,
) -> int:
    """
    Run the interactive menu until the user exits or input ends.

    Empty path answers fall back to the config's ``[main]`` defaults.
    """
    config = config or Configuration()
    print_func("欢迎使用数据备份应用")

    def ask_path(prompt: str, default: Optional[Path]) -> Optional[Path]:
        answer = input_func(prompt).strip()
        if answer:
            return Path(answer).expanduser()
        return default

    while True:
        for line in MENU_LINES:
            print_func(line)
        try:
            choice = input_func("请选择操作 (1-4): ").strip()
        except EOFError:
            print_func("")
            return EXIT_SUCCESS

        if choice in ("1", "2"):
            try:
                source = ask_path("请输入要备份的源目录路径: ", config.source_directory)
                target = ask_path("请输入备份目标目录路径: ", config.backup_root)
            except EOFError:
                return EXIT_SUCCESS
            if source is None or target is None:
                print_func("路径不能为空!")
                continue
            if choice == "1":
                engine.full_backup(source, target)
            else:
                engine.incremental_backup(source, target)
        elif choice == "3":
            for line in format_history(engine.list_history()):
                print_func(line)
        elif choice == "4":
            print_func("感谢使用，再见!")
            return EXIT_SUCCESS
        else:
            print_func("无效选择，请重新输入!")


def cmd_interactive(args: argparse.Namespace, config: Configuration) -> int:
    """Execute the interactive menu."""
    engine = BackupEngine(config=config, reporter=print)
    return run_menu(engine, config)


def _format_size(size_bytes: int) -> str:
    """Format size in bytes to human-readable string."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command == 'init':
        return cmd_init(args)

    config = load_config(args.config, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR
    _configure_logging(config, args.verbose)

    try:
        if args.command is None or args.command == 'interactive':
            return cmd_interactive(args, config)
        elif args.command == 'full':
            return cmd_full(args, config)
        elif args.command == 'incremental':
            return cmd_incremental(args, config)
        elif args.command == 'diff':
            return cmd_diff(args, config)
        elif args.command == 'list':
            return cmd_list(args, config)
        else:
            print(f"Unknown command: {args.command}", file=sys.stderr)
            return EXIT_GENERAL_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as e:
        get_logger().exception("Unexpected error")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_GENERAL_ERROR


if __name__ == "__main__":
    sys.exit(main())
