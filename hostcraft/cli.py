from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from typing import Any, Dict, Optional
from urllib import error, parse, request

from hostcraft.config import get_settings
from hostcraft.services import vault


def _api_request(
    *,
    base_url: str,
    path: str,
    method: str = "GET",
    json_body: Optional[Dict[str, Any]] = None,
    timeout: float = 300,
) -> Any:
    url = base_url.rstrip("/") + path
    headers: Dict[str, str] = {"Accept": "application/json"}
    data: Optional[bytes] = None

    if json_body is not None:
        data = json.dumps(json_body).encode("utf-8")
        headers["Content-Type"] = "application/json"

    req = request.Request(url=url, method=method.upper(), data=data, headers=headers)
    try:
        with request.urlopen(req, timeout=timeout) as response:
            body = response.read().decode("utf-8")
            return json.loads(body) if body else {}
    except error.HTTPError as exc:
        payload = exc.read().decode("utf-8")
        detail = payload
        try:
            parsed = json.loads(payload)
            if isinstance(parsed, dict) and "detail" in parsed:
                detail = str(parsed["detail"])
        except json.JSONDecodeError:
            pass
        raise RuntimeError(f"HTTP {exc.code}: {detail}") from exc


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _expect_dict(result: Any, what: str) -> Dict[str, Any]:
    if not isinstance(result, dict):
        raise RuntimeError(f"Unexpected response for {what}")
    return result


def _result_exit_code(result: Dict[str, Any]) -> int:
    return 0 if result.get("success", True) else 1


def cmd_generate_key(args: argparse.Namespace) -> int:
    print(vault.generate_key())
    return 0


def cmd_rotate_key(args: argparse.Namespace) -> int:
    # Imported here so API-only commands do not need the database drivers.
    from hostcraft.dependencies import get_sessionmaker
    from hostcraft.services.secrets import rotate_encryption_key

    vault.decode_key(args.old)
    vault.decode_key(args.new)
    settings = get_settings()

    async def _rotate() -> Dict[str, Any]:
        sessionmaker = get_sessionmaker(settings.database_url)
        async with sessionmaker() as session:
            outcome = await rotate_encryption_key(session, old_key=args.old, new_key=args.new)
        return asdict(outcome)

    result = asyncio.run(_rotate())
    _print_json(result)
    return 1 if result["failed"] or result["unrotated_settings"] else 0


def cmd_deploy(args: argparse.Namespace) -> int:
    body: Dict[str, Any] = {}
    if args.image:
        body["image_tag"] = args.image
    if args.commit:
        body["commit_hash"] = args.commit
    result = _expect_dict(
        _api_request(
            base_url=args.api_url,
            path=f"/workloads/{args.workload_id}/deployments",
            method="POST",
            json_body=body,
        ),
        "deploy",
    )
    _print_json(result)
    return _result_exit_code(result)


def cmd_scale(args: argparse.Namespace) -> int:
    result = _expect_dict(
        _api_request(
            base_url=args.api_url,
            path=f"/workloads/{args.workload_id}/deployments/scale",
            method="POST",
            json_body={"replicas": args.replicas},
        ),
        "scale",
    )
    _print_json(result)
    return _result_exit_code(result)


def cmd_rollback(args: argparse.Namespace) -> int:
    result = _expect_dict(
        _api_request(
            base_url=args.api_url,
            path=f"/workloads/{args.workload_id}/deployments/rollback",
            method="POST",
            json_body={},
        ),
        "rollback",
    )
    _print_json(result)
    return _result_exit_code(result)


def cmd_service_health(args: argparse.Namespace) -> int:
    result = _api_request(
        base_url=args.api_url,
        path=f"/workloads/{args.workload_id}/deployments/service-health",
    )
    _print_json(result)
    return 0


def cmd_backup_run(args: argparse.Namespace) -> int:
    result = _expect_dict(
        _api_request(
            base_url=args.api_url,
            path=f"/workloads/{args.workload_id}/backups",
            method="POST",
            json_body={"type": args.type},
        ),
        "backup run",
    )
    _print_json(result)
    return 0 if result.get("status") == "success" else 1


def cmd_backup_list(args: argparse.Namespace) -> int:
    result = _api_request(
        base_url=args.api_url,
        path=f"/workloads/{args.workload_id}/backups",
    )
    if not isinstance(result, list):
        raise RuntimeError(f"Unexpected response for /workloads/{args.workload_id}/backups")
    _print_json(result)
    return 0


def cmd_backup_restore(args: argparse.Namespace) -> int:
    body: Dict[str, Any] = {}
    if args.target_host:
        body["target_host_id"] = args.target_host
    result = _expect_dict(
        _api_request(
            base_url=args.api_url,
            path=f"/backups/{args.backup_id}/restore",
            method="POST",
            json_body=body,
        ),
        "backup restore",
    )
    _print_json(result)
    return _result_exit_code(result)


def cmd_backup_upload(args: argparse.Namespace) -> int:
    result = _expect_dict(
        _api_request(
            base_url=args.api_url,
            path=f"/backups/{args.backup_id}/upload",
            method="POST",
            json_body={},
        ),
        "backup upload",
    )
    _print_json(result)
    return 0 if result.get("status") == "success" else 1


def cmd_backup_prune(args: argparse.Namespace) -> int:
    result = _expect_dict(
        _api_request(base_url=args.api_url, path="/backups/prune", method="POST", json_body={}),
        "backup prune",
    )
    _print_json(result)
    return 1 if result.get("failed") else 0


def cmd_monitor_apps(args: argparse.Namespace) -> int:
    query = parse.urlencode({"recover": "false" if args.no_recover else "true"})
    result = _api_request(
        base_url=args.api_url,
        path=f"/monitor/applications?{query}",
        method="POST",
        json_body={},
    )
    _print_json(result)
    return 0


def cmd_monitor_servers(args: argparse.Namespace) -> int:
    result = _api_request(
        base_url=args.api_url,
        path="/monitor/servers",
        method="POST",
        json_body={},
    )
    _print_json(result)
    return 0


def cmd_prune_history(args: argparse.Namespace) -> int:
    query = parse.urlencode({"retention_days": args.days}) if args.days is not None else ""
    suffix = f"?{query}" if query else ""
    result = {
        "health_checks": _api_request(
            base_url=args.api_url, path=f"/monitor/prune{suffix}", method="POST", json_body={}
        ),
        "events": _api_request(
            base_url=args.api_url, path=f"/events/prune{suffix}", method="POST", json_body={}
        ),
    }
    _print_json(result)
    return 0


def cmd_uptime(args: argparse.Namespace) -> int:
    query = parse.urlencode({"hours": args.hours})
    result = _api_request(
        base_url=args.api_url,
        path=f"/workloads/{args.workload_id}/health/uptime?{query}",
    )
    _print_json(result)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hostcraft", description="HostCraft control plane CLI")
    parser.add_argument("--api-url", default="http://127.0.0.1:8000")

    sub = parser.add_subparsers(dest="command", required=True)

    generate_key = sub.add_parser("generate-key", help="Print a new base64 encryption key")
    generate_key.set_defaults(func=cmd_generate_key)

    rotate_key = sub.add_parser("rotate-key", help="Re-encrypt stored secrets under a new key")
    rotate_key.add_argument("--old", required=True)
    rotate_key.add_argument("--new", required=True)
    rotate_key.set_defaults(func=cmd_rotate_key)

    deploy = sub.add_parser("deploy", help="Deploy a workload")
    deploy.add_argument("workload_id")
    deploy.add_argument("--image")
    deploy.add_argument("--commit")
    deploy.set_defaults(func=cmd_deploy)

    scale = sub.add_parser("scale", help="Scale a swarm service")
    scale.add_argument("workload_id")
    scale.add_argument("replicas", type=int)
    scale.set_defaults(func=cmd_scale)

    rollback = sub.add_parser("rollback", help="Roll a workload back to its previous version")
    rollback.add_argument("workload_id")
    rollback.set_defaults(func=cmd_rollback)

    service_health = sub.add_parser("service-health", help="Show swarm service task health")
    service_health.add_argument("workload_id")
    service_health.set_defaults(func=cmd_service_health)

    backup_run = sub.add_parser("backup-run", help="Create a backup of a workload")
    backup_run.add_argument("workload_id")
    backup_run.add_argument("--type", default="full", choices=["full", "volume", "configuration"])
    backup_run.set_defaults(func=cmd_backup_run)

    backup_list = sub.add_parser("backup-list", help="List backups of a workload")
    backup_list.add_argument("workload_id")
    backup_list.set_defaults(func=cmd_backup_list)

    backup_restore = sub.add_parser("backup-restore", help="Restore a backup")
    backup_restore.add_argument("backup_id")
    backup_restore.add_argument("--target-host")
    backup_restore.set_defaults(func=cmd_backup_restore)

    backup_upload = sub.add_parser("backup-upload", help="Upload a backup to S3")
    backup_upload.add_argument("backup_id")
    backup_upload.set_defaults(func=cmd_backup_upload)

    backup_prune = sub.add_parser("backup-prune", help="Delete expired backups")
    backup_prune.set_defaults(func=cmd_backup_prune)

    monitor_apps = sub.add_parser("monitor-apps", help="Run one application health sweep")
    monitor_apps.add_argument("--no-recover", action="store_true")
    monitor_apps.set_defaults(func=cmd_monitor_apps)

    monitor_servers = sub.add_parser("monitor-servers", help="Run one server health sweep")
    monitor_servers.set_defaults(func=cmd_monitor_servers)

    prune_history = sub.add_parser(
        "prune-history", help="Delete health samples and events past retention"
    )
    prune_history.add_argument("--days", type=int, default=None)
    prune_history.set_defaults(func=cmd_prune_history)

    uptime = sub.add_parser("uptime", help="Show uptime percentage for a workload")
    uptime.add_argument("workload_id")
    uptime.add_argument("--hours", type=int, default=24)
    uptime.set_defaults(func=cmd_uptime)

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    try:
        exit_code = args.func(args)
    except Exception as exc:  # noqa: BLE001
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
