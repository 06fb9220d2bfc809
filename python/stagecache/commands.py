"""Command dispatcher for the stagecache CLI.

Routes --command values (or sidecar request commands) to registry and
session operations. Called from __main__.py.
"""

from __future__ import annotations

from datetime import timedelta

from .protocols import ChangeReport
from .registry import DEFAULT_MAX_AGE, SessionRegistry


def dispatch(
    registry: SessionRegistry,
    command: str,
    args: dict,
    gc_max_age: timedelta = DEFAULT_MAX_AGE,
) -> dict:
    """Dispatch a command to the matching staging operation.

    Args:
        registry: Registry owning the sessions
        command: Command name
        args: Extra arguments dict
        gc_max_age: Default age threshold for the gc command

    Returns:
        JSON-serializable dict result
    """
    if command == "create":
        session = registry.create(args.get("mode"))
        return session.info().to_dict()

    elif command == "sessions":
        return {"sessions": registry.list_sessions()}

    elif command == "info":
        return _session(registry, args).info().to_dict()

    elif command == "stage":
        session = _session(registry, args)
        staged = session.stage(_required(args, "path"), args.get("category", "input"))
        # Each request is a boundary; the next one may come from a new process.
        session.checkpoint()
        return {"source_path": args["path"], "staged_path": staged}

    elif command == "stage_dir":
        session = _session(registry, args)
        batch = session.stage_directory(
            _required(args, "path"),
            args.get("category", "input"),
            extensions=args.get("extensions"),
            use_ignore=args.get("use_ignore", True),
            include_gitignore=args.get("include_gitignore", False),
        )
        return batch.to_dict()

    elif command == "detect":
        session = _session(registry, args)
        report = session.detect_changes(args.get("paths"), force_hash=args.get("force_hash", False))
        return report.to_dict()

    elif command == "apply":
        session = _session(registry, args)
        if args.get("report") is not None:
            report = ChangeReport.from_dict(args["report"])
        else:
            report = session.detect_changes(args.get("paths"), force_hash=args.get("force_hash", False))
        batch = session.apply_changes(
            report,
            args.get("category", "input"),
            prune_deleted=args.get("prune_deleted", False),
        )
        return {"report": report.to_dict(), **batch.to_dict()}

    elif command == "save_artifact":
        session = _session(registry, args)
        path = session.save_artifact(
            args.get("category", "results"),
            _required(args, "name"),
            _required(args, "content"),
        )
        return {"path": path}

    elif command == "list_artifacts":
        session = _session(registry, args)
        artifacts = session.list_artifacts(args.get("category", "results"))
        return {"artifacts": [a.to_dict() for a in artifacts], "count": len(artifacts)}

    elif command == "export":
        session = _session(registry, args)
        count = registry.sink.export(session, _required(args, "destination"))
        return {"session_id": session.id, "destination": args["destination"], "count": count}

    elif command == "teardown":
        session = _session(registry, args)
        archive_dir = registry.teardown(session, archive=bool(args.get("archive", False)))
        return {"session_id": session.id, "archive_dir": archive_dir, "destroyed": True}

    elif command == "gc":
        hours = args.get("max_age_hours")
        max_age = timedelta(hours=float(hours)) if hours is not None else gc_max_age
        removed = registry.collect_garbage(max_age)
        return {"removed": removed, "count": len(removed)}

    else:
        return {"error": "UnknownCommand", "message": f"Unknown command: {command}"}


def _session(registry: SessionRegistry, args: dict):
    return registry.open(_required(args, "session"))


def _required(args: dict, key: str):
    value = args.get(key)
    if value is None:
        raise ValueError(f"Missing required argument: {key}")
    return value
