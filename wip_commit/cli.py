"""
CLI module for WIP Commit.

`wip-commit hook` is registered as the coding assistant's Stop hook: it reads
the hook payload from stdin and prints the hook result as JSON on stdout.
Everything meant for humans goes to stderr so stdout stays machine-readable.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .ai import OpenAIOracle
from .config import ConfigurationLoader, WipCommitConfig
from .exceptions import ConfigurationError, FileOperationError, SecurityError, WipCommitError
from .review import HookResult, ReviewPipeline
from .security import APIKeyManager
from .utils import LoggingManager

BLOCK_EXIT_CODE = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Review and auto-commit work in progress at each stop')

    parser.add_argument('-c', '--config', type=str,
                        help='Path to specific config file')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Show verbose output')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    hook_parser = subparsers.add_parser('hook', help='Run as a Stop hook (payload on stdin)')
    hook_parser.add_argument('--debug', action='store_true',
                             help='Write debug details to the log file')

    review_parser = subparsers.add_parser('review', help='Review and commit the current directory')
    review_parser.add_argument('--dry-run', action='store_true',
                               help='Review and pick a message without committing')

    config_parser = subparsers.add_parser('config', help='Configuration management')
    config_subparsers = config_parser.add_subparsers(dest='config_action')

    config_subparsers.add_parser('show', help='Show current configuration')
    config_subparsers.add_parser('test', help='Test oracle service connection')

    set_key_parser = config_subparsers.add_parser('set-key', help='Store API key securely')
    set_key_parser.add_argument('provider', help='Oracle provider (e.g., openai)')
    set_key_parser.add_argument('api_key', help='API key to store')

    return parser.parse_args(argv)


def read_hook_payload(stream) -> Dict[str, Any]:
    """Read the hook payload; anything unreadable is treated as an empty payload."""
    try:
        raw = stream.read()
    except (OSError, ValueError):
        return {}
    if not raw or not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return payload if isinstance(payload, dict) else {}


def setup_logging(config: WipCommitConfig, verbose: bool = False, debug: bool = False) -> LoggingManager:
    level = "DEBUG" if debug else config.log_level
    console_level = logging.DEBUG if verbose else logging.WARNING
    try:
        return LoggingManager(config.log_path, level, console_level=console_level)
    except FileOperationError as e:
        # An unwritable log directory must not cost the user their commit
        print(f"wip-commit: logging to stderr only: {e}", file=sys.stderr)
        return LoggingManager(None, level, console_level=console_level)


def run_hook(args: argparse.Namespace, stdin=None, stdout=None) -> int:
    """
    Handle `wip-commit hook`.

    Returns:
        Process exit code: 2 when the result blocks the stop, else 0
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    payload = read_hook_payload(stdin)
    event = payload.get('hook_event_name')
    if event and event != 'Stop':
        print(json.dumps({"continue": True}), file=stdout)
        return 0

    project_root = Path(payload.get('cwd') or os.getcwd())

    try:
        config = ConfigurationLoader().load_config(args.config, start_dir=project_root)
        logging_manager = setup_logging(config, args.verbose, args.debug)
        logging_manager.get_secure_logger().log_safe(
            logging.INFO,
            f"Stop hook in {project_root}",
            f"Payload: {payload}"
        )

        pipeline = ReviewPipeline.from_config(config, project_root)
        result = pipeline.run(
            stop_hook_active=bool(payload.get('stop_hook_active')),
            transcript_path=payload.get('transcript_path'),
        )
    except Exception as e:
        # Never block the user's session on our own failure
        print(f"wip-commit: {type(e).__name__}: {e}", file=sys.stderr)
        result = HookResult(message=f"⚠️ wip-commit: {e}")

    print(json.dumps(result.to_hook_output(), ensure_ascii=False), file=stdout)

    if result.blocked:
        print(result.reason or result.message, file=sys.stderr)
        return BLOCK_EXIT_CODE
    return 0


def run_review(args: argparse.Namespace) -> int:
    """Handle `wip-commit review`."""
    config = ConfigurationLoader().load_config(args.config)
    setup_logging(config, args.verbose)

    result = ReviewPipeline.from_config(config).run(dry_run=args.dry_run)

    print(result.message)
    if result.committed:
        print(f"🎉 Committed {result.commit_hash}")
    elif args.dry_run:
        print("🎙️  Dry run - nothing committed")
    return 0


def handle_config_commands(args: argparse.Namespace) -> int:
    """Handle configuration-related commands."""
    if args.config_action == 'show':
        config_loader = ConfigurationLoader()
        config = config_loader.load_config(args.config)

        print("\n📋 Current Configuration:")
        print("=" * 40)
        for key, value in config.get_masked_config().items():
            print(f"{key}: {value}")
        print("=" * 40)
        print(f"Sources: {', '.join(config_loader.get_active_config_sources())}")
        return 0

    if args.config_action == 'test':
        config = ConfigurationLoader().load_config(args.config)
        if config.oracle is None:
            print("❌ No API key configured", file=sys.stderr)
            return 1

        print("🔌 Testing oracle service connection...")
        if asyncio.run(OpenAIOracle(config.oracle).test_connection()):
            print("✅ Oracle service connection successful")
            return 0
        print("❌ Oracle service connection failed", file=sys.stderr)
        return 1

    if args.config_action == 'set-key':
        try:
            APIKeyManager().store_api_key(args.provider, args.api_key)
        except SecurityError as e:
            print(f"❌ Failed to store API key: {e}", file=sys.stderr)
            return 1
        print(f"✅ API key for {args.provider} stored securely")
        return 0

    print("Usage: wip-commit config {show,test,set-key}", file=sys.stderr)
    return 1


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for WIP Commit CLI."""
    args = parse_args(argv)

    if args.command == 'hook':
        sys.exit(run_hook(args))

    try:
        if args.command == 'config':
            sys.exit(handle_config_commands(args))
        if args.command == 'review':
            sys.exit(run_review(args))
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n⚠️  Operation cancelled by user", file=sys.stderr)
        sys.exit(1)
    except WipCommitError as e:
        print(f"❌ {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(1)

    parse_args(['--help'])


if __name__ == "__main__":
    main()
