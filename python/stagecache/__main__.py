"""CLI entry point: python3 -m stagecache

Modes:
  --command/--args  Single-shot operation against the configured app root
  --sidecar         Persistent stdin/stdout JSON-lines loop sharing one registry
"""

import argparse
import json
import logging
import os
import sys
import traceback
from dataclasses import replace

from .config import VALID_LOG_LEVELS, StagingConfig
from .errors import StagingError


def main(argv=None):
    parser = argparse.ArgumentParser(description="stagecache read-only staging CLI")
    parser.add_argument("--sidecar", action="store_true",
                        help="Run as persistent sidecar (stdin/stdout JSON lines)")
    parser.add_argument("--command", help="Command to run")
    parser.add_argument("--args", default="{}", help="JSON-encoded arguments")
    parser.add_argument("--app-root", help="Override STAGECACHE_APP_ROOT")
    parser.add_argument("--log-level", type=str.upper, choices=sorted(VALID_LOG_LEVELS),
                        help="Override STAGECACHE_LOG_LEVEL")
    args = parser.parse_args(argv)

    config = StagingConfig.from_env()
    logging.basicConfig(
        level=args.log_level or config.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.app_root:
        config = replace(config, app_root=os.path.abspath(args.app_root))
    registry = config.build_registry()

    if args.sidecar:
        _run_sidecar(registry, config)
    else:
        if not args.command:
            parser.error("--command is required (or use --sidecar)")
        _run_single(registry, config, args)


def _run_single(registry, config, args):
    """Single-shot mode."""
    try:
        extra_args = json.loads(args.args)
    except json.JSONDecodeError as e:
        _error_exit("InvalidArgs", f"Failed to parse --args JSON: {e}")

    try:
        from .commands import dispatch
        result = dispatch(registry, args.command, extra_args, gc_max_age=config.gc_max_age)
        json.dump(result, sys.stdout)
        sys.stdout.write("\n")
    except StagingError as e:
        _error_exit(type(e).__name__, str(e), kind=e.kind.value)
    except Exception as e:
        _error_exit(type(e).__name__, str(e))


def _run_sidecar(registry, config):
    """Persistent sidecar: read JSON requests from stdin, write responses to stdout."""
    from .commands import dispatch

    # Signal readiness
    sys.stdout.write('{"status":"ready"}\n')
    sys.stdout.flush()

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue

        try:
            req = json.loads(line)
        except json.JSONDecodeError as e:
            resp = {"id": None, "error": {"type": "InvalidJSON", "message": str(e)}}
            sys.stdout.write(json.dumps(resp) + "\n")
            sys.stdout.flush()
            continue

        req_id = req.get("id")
        command = req.get("command", "")
        extra_args = req.get("args", {})

        try:
            result = dispatch(registry, command, extra_args, gc_max_age=config.gc_max_age)
            resp = {"id": req_id, "result": result}
        except StagingError as e:
            resp = {"id": req_id, "error": {"type": type(e).__name__, "kind": e.kind.value, "message": str(e)}}
        except Exception as e:
            resp = {"id": req_id, "error": {"type": type(e).__name__, "message": str(e)}}

        sys.stdout.write(json.dumps(resp) + "\n")
        sys.stdout.flush()


def _error_exit(error_type: str, message: str, kind: str | None = None):
    """Write structured error to stderr and exit."""
    error = {
        "error": error_type,
        "message": message,
        "traceback": traceback.format_exc(),
    }
    if kind:
        error["kind"] = kind
    json.dump(error, sys.stderr)
    sys.stderr.write("\n")
    sys.exit(1)


if __name__ == "__main__":
    main()
