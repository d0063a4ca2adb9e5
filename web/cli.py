"""
CLI entry point for the Sandbox Codex web server.

Run:  python -m web [--port 8765] [--project <id>] [--backend local --dir /path/to/project]
"""

import argparse
import logging
import os

import web.state as _state
from config import api_config, app_config


def main():
    import uvicorn

    parser = argparse.ArgumentParser(description="Sandbox Codex: approval UI server")
    parser.add_argument("--port", type=int, default=8765, help="Server port (default: 8765)")
    parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--project", default=None, help="Project id (default: PROJECT_ID)")
    parser.add_argument("--workspace", default=None, help="Sandbox workspace id (default: WORKSPACE_ID)")
    parser.add_argument("--gateway", choices=["http", "bedrock"], default=None,
                        help="LLM gateway (default: GATEWAY_PROVIDER)")
    parser.add_argument("--backend", choices=["http", "local"], default=None,
                        help="Execution backend (default: BACKEND_PROVIDER)")
    parser.add_argument("--store", choices=["http", "file"], default=None,
                        help="Session store (default: SESSION_STORE)")
    parser.add_argument("--dir", default=None, help="Working directory for the local backend")
    parser.add_argument("--auto-approve", action="store_true", help="Run every tool call without approval")
    args = parser.parse_args()

    if args.project:
        app_config.project_id = args.project
    if args.workspace:
        app_config.workspace_id = args.workspace
    if args.gateway:
        app_config.gateway_provider = args.gateway
    if args.backend:
        app_config.backend_provider = args.backend
    if args.store:
        app_config.session_store = args.store
    if args.dir:
        app_config.working_directory = os.path.abspath(os.path.expanduser(args.dir))
    if args.auto_approve:
        app_config.auto_approve_all = True

    if app_config.backend_provider == "local" and not os.path.isdir(app_config.working_directory):
        print(f"\n  Error: directory not found: {app_config.working_directory}\n")
        raise SystemExit(1)

    # Our loggers; uvicorn's log_level only affects its own
    root_log = logging.getLogger()
    level = logging.DEBUG if app_config.debug_mode else getattr(logging, app_config.log_level.upper(), logging.INFO)
    root_log.setLevel(level)
    if not root_log.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        root_log.addHandler(h)

    try:
        _state.set_orchestrator(_state.build_orchestrator())
    except Exception as e:
        print(f"\n  Startup failed: {e}\n")
        raise SystemExit(1)

    print(f"\n  {app_config.title}: approval UI")
    print(f"  http://{args.host}:{args.port}")
    print(f"  Project: {app_config.project_id or 'local'}  "
          f"gateway={app_config.gateway_provider} backend={app_config.backend_provider} "
          f"store={app_config.session_store}")
    if app_config.auto_approve_all:
        print("  Auto-approve is ON: tool calls run without confirmation")
    uses_api = "http" in (app_config.gateway_provider, app_config.backend_provider, app_config.session_store)
    if uses_api and not api_config.has_token():
        print(f"  Warning: API_TOKEN is not set, requests to {api_config.api_url} are unauthenticated")
    print()

    from web import app
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")
