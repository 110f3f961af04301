"""
TaskTrack CLI — bootstrap and management commands.

Commands:
- tasktrack init         — Create DB schema, seed the admin user, print its API key
- tasktrack create-user  — Add a user and print its API key
- tasktrack run          — Start the HTTP API (uvicorn)
- tasktrack worker       — Start the Celery notification worker (with Beat)
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from typing import Optional

logger = logging.getLogger("tasktrack.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="tasktrack",
        description="TaskTrack — task management API",
    )
    parser.add_argument(
        "--config", default=None, help="Path to tasktrack.yaml (default: discovered from CWD)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # tasktrack init
    init_parser = subparsers.add_parser("init", help="Create tables and seed the admin user")
    init_parser.add_argument(
        "--admin-password", help="Admin password (prompted if not provided)"
    )

    # tasktrack create-user
    user_parser = subparsers.add_parser("create-user", help="Create a user and issue an API key")
    user_parser.add_argument("username", help="Login name")
    user_parser.add_argument("--email", required=True, help="Email address")
    user_parser.add_argument(
        "--role", choices=["admin", "manager", "member"], default="member", help="Role (default: member)"
    )
    user_parser.add_argument("--full-name", default="", help="Display name")
    user_parser.add_argument("--password", help="Password (optional; API-key-only if omitted)")

    # tasktrack run
    run_parser = subparsers.add_parser("run", help="Start the HTTP API server")
    run_parser.add_argument("--host", default=None, help="Host to bind (default: api.host)")
    run_parser.add_argument("--port", type=int, default=None, help="Port (default: api.port)")
    run_parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    # tasktrack worker
    worker_parser = subparsers.add_parser("worker", help="Start the Celery notification worker")
    worker_parser.add_argument("--no-beat", action="store_true", help="Do not embed Celery Beat")
    worker_parser.add_argument("--concurrency", type=int, default=None, help="Worker processes")

    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args)
    elif args.command == "create-user":
        return cmd_create_user(args)
    elif args.command == "run":
        return cmd_run(args)
    elif args.command == "worker":
        return cmd_worker(args)
    else:
        parser.print_help()
        return 0


def _load(args: argparse.Namespace):
    from tasktrack.engine.config import load_settings
    from tasktrack.engine.errors import ConfigError

    try:
        return load_settings(args.config)
    except ConfigError as e:
        print(f"[ERROR] {e.message}")
        for err in e.context.get("errors", []):
            print(f"  - {'.'.join(str(p) for p in err['loc'])}: {err['msg']}")
        return None


def cmd_init(args: argparse.Namespace) -> int:
    """
    Bootstrap the database:
    1. Load config from tasktrack.yaml
    2. Create all tables (SQLAlchemy metadata.create_all)
    3. Create the 'admin' user (or reset its password if it exists)
    4. Issue and print the admin API key
    """
    print("=" * 60)
    print("  TaskTrack Initialization")
    print("=" * 60)

    settings = _load(args)
    if settings is None:
        return 1
    print("[OK] Configuration loaded")

    from sqlalchemy.exc import SQLAlchemyError

    from tasktrack.db.models import User
    from tasktrack.db.session import close_db, init_db, session_scope
    from tasktrack.security.auth import hash_password, issue_api_key

    try:
        factory = init_db(settings.database, create_tables=True)
        print("[OK] Database tables created")
    except SQLAlchemyError as e:
        print(f"[ERROR] Database initialization failed: {e}")
        return 1

    admin_password = args.admin_password
    if not admin_password:
        while True:
            admin_password = getpass.getpass("  Enter admin password: ")
            confirm = getpass.getpass("  Confirm password: ")
            if admin_password == confirm:
                break
            print("  Passwords do not match. Try again.")

    if len(admin_password) < settings.security.password_min_length:
        print(f"[ERROR] Password must be at least {settings.security.password_min_length} characters")
        return 1

    rounds = settings.security.bcrypt_rounds
    try:
        with session_scope(factory) as session:
            admin = session.query(User).filter_by(username="admin").first()
            if admin is not None:
                print("[INFO] Already initialized (admin user exists)")
                admin.password_hash = hash_password(admin_password, rounds=rounds)
                admin.is_active = True
                api_key = issue_api_key(session, admin, rounds=rounds)
                print("[OK] Admin password and API key rotated")
            else:
                admin = User(
                    username="admin",
                    email="admin@localhost",
                    full_name="Administrator",
                    role="admin",
                    password_hash=hash_password(admin_password, rounds=rounds),
                    is_active=True,
                )
                session.add(admin)
                session.flush()
                api_key = issue_api_key(session, admin, rounds=rounds)
                print("[OK] Created admin user: 'admin'")
    except SQLAlchemyError as e:
        print(f"[ERROR] Seed data failed: {e}")
        return 1
    finally:
        close_db()

    print(f"     API Key (save this — shown only once): {api_key}")
    print()
    print("  Run: tasktrack run")
    print("=" * 60)
    return 0


def cmd_create_user(args: argparse.Namespace) -> int:
    """Create a user with the given role and print its API key."""
    settings = _load(args)
    if settings is None:
        return 1

    from sqlalchemy.exc import IntegrityError, SQLAlchemyError

    from tasktrack.db.models import User
    from tasktrack.db.session import close_db, init_db, session_scope
    from tasktrack.security.auth import hash_password, issue_api_key

    if args.password is not None and len(args.password) < settings.security.password_min_length:
        print(f"[ERROR] Password must be at least {settings.security.password_min_length} characters")
        return 1

    rounds = settings.security.bcrypt_rounds
    try:
        factory = init_db(settings.database)
        with session_scope(factory) as session:
            user = User(
                username=args.username,
                email=args.email,
                full_name=args.full_name or args.username,
                role=args.role,
                password_hash=hash_password(args.password, rounds=rounds) if args.password else None,
                is_active=True,
            )
            session.add(user)
            session.flush()
            api_key = issue_api_key(session, user, rounds=rounds)
            user_id = user.id
    except IntegrityError:
        print(f"[ERROR] User '{args.username}' or email '{args.email}' already exists")
        return 1
    except SQLAlchemyError as e:
        print(f"[ERROR] Failed to create user: {e}")
        return 1
    finally:
        close_db()

    print(f"[OK] Created {args.role} '{args.username}' (id {user_id})")
    print(f"     API Key (save this — shown only once): {api_key}")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Start the FastAPI app under uvicorn."""
    settings = _load(args)
    if settings is None:
        return 1

    import uvicorn

    from tasktrack.engine.logging import init_logging, shutdown_logging

    log_cfg = settings.logging
    init_logging(
        log_dir=log_cfg.directory,
        level=log_cfg.level,
        flush_interval_ms=log_cfg.async_queue.flush_interval_ms,
        flush_batch_size=log_cfg.async_queue.flush_batch_size,
        max_queue_size=log_cfg.async_queue.max_queue_size,
    )
    host = args.host or settings.api.host
    port = args.port or settings.api.port
    print(f"Starting TaskTrack API on {host}:{port} ...")
    try:
        uvicorn.run(
            "tasktrack.api.app:create_app",
            factory=True,
            host=host,
            port=port,
            reload=args.reload,
            log_level=log_cfg.level.lower(),
        )
    except KeyboardInterrupt:
        print("\nServer stopped.")
    finally:
        shutdown_logging()
    return 0


def cmd_worker(args: argparse.Namespace) -> int:
    """Start the Celery worker for the notification queue."""
    settings = _load(args)
    if settings is None:
        return 1

    from tasktrack.engine.logging import init_logging, shutdown_logging
    from tasktrack.notifications.worker import get_celery_app

    init_logging(log_dir=settings.logging.directory, level=settings.logging.level)
    worker_argv = [
        "worker",
        "-Q", settings.celery.queue,
        "--loglevel", settings.logging.level,
        "--concurrency", str(args.concurrency or settings.celery.concurrency),
    ]
    if not args.no_beat:
        worker_argv.append("-B")

    print(f"Starting TaskTrack worker on queue '{settings.celery.queue}' ...")
    try:
        get_celery_app().worker_main(worker_argv)
    except KeyboardInterrupt:
        print("\nWorker stopped.")
    finally:
        shutdown_logging()
    return 0


if __name__ == "__main__":
    sys.exit(main())
