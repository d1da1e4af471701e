"""CLI client for a running NoteSync service."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

CONFIG_FILE = ".notesync-sync.json"
DEFAULT_SERVER = "http://127.0.0.1:8765"
RESOLUTION_ACTIONS = ("use_remote", "keep_local_as_copy", "force_upload")
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. http://127.0.0.1:8765)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def load_config(dir_path: Path) -> dict[str, str]:
    """Load client config from file."""
    config_path = dir_path / CONFIG_FILE
    if not config_path.exists():
        return {}
    config: dict[str, str] = json.loads(config_path.read_text())
    return config


def save_config(dir_path: Path, config: dict[str, str]) -> None:
    """Save client config to file."""
    config_path = dir_path / CONFIG_FILE
    config_path.write_text(json.dumps(config, indent=2))


class SyncApiError(Exception):
    """The service answered with an error status."""

    def __init__(self, status_code: int, detail: Any) -> None:
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class SyncClient:
    """Thin client for the ``/api/sync`` endpoints."""

    def __init__(
        self,
        server_url: str,
        *,
        timeout: float = 300.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.client = httpx.Client(base_url=self.server_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> SyncClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = self.client.request(method, path, **kwargs)
        if resp.is_error:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise SyncApiError(resp.status_code, detail)
        return resp.json()

    def status(self) -> dict[str, Any]:
        result: dict[str, Any] = self._call("GET", "/api/sync/status")
        return result

    def health(self) -> dict[str, Any]:
        result: dict[str, Any] = self._call("GET", "/api/health")
        return result

    def conflicts(self) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = self._call("GET", "/api/sync/conflicts")
        return result

    def incremental_sync(self) -> dict[str, Any]:
        result: dict[str, Any] = self._call("POST", "/api/sync/incremental")
        return result

    def full_restore(self) -> dict[str, Any]:
        result: dict[str, Any] = self._call("POST", "/api/sync/restore")
        return result

    def snapshot(self) -> dict[str, Any]:
        result: dict[str, Any] = self._call("POST", "/api/sync/snapshot")
        return result

    def resolve(self, note_id: str, action: str) -> dict[str, Any]:
        result: dict[str, Any] = self._call(
            "POST",
            f"/api/sync/conflicts/{note_id}/resolve",
            json={"action": action},
        )
        return result


def print_report(report: dict[str, Any]) -> None:
    """Print a pass summary and the notes that did not simply succeed."""
    print(f"{report['mode']}: {report['total']} notes")
    print(f"  Succeeded: {report['succeeded']}")
    print(f"  Failed:    {report['failed']}")
    print(f"  Conflicts: {report['conflicts']}")
    for result in report.get("results", []):
        if result.get("error"):
            print(f"    x {result['note_id']} ({result['action']}): {result['error']}")
        elif result["action"] == "conflict":
            print(f"    ! {result['note_id']} (conflict)")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="notesync-sync",
        description="Drive a running NoteSync service",
    )
    parser.add_argument("--dir", "-d", default=".", help="Config directory (default: current)")
    parser.add_argument("--server", "-s", help="Service URL")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// service URLs for non-localhost hosts",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("init", help="Save the service URL")
    subparsers.add_parser("status", help="Show sync state and counters")
    subparsers.add_parser("sync", help="Run an incremental sync")
    subparsers.add_parser("restore", help="Run a full restore from the bundle")
    subparsers.add_parser("snapshot", help="Publish a snapshot bundle now")
    subparsers.add_parser("conflicts", help="List unresolved conflicts")
    resolve_parser = subparsers.add_parser("resolve", help="Resolve a conflict")
    resolve_parser.add_argument("note_id")
    resolve_parser.add_argument("action", choices=RESOLUTION_ACTIONS)
    subparsers.add_parser("health", help="Check local database and remote store")

    args = parser.parse_args(argv)
    config_dir = Path(args.dir).resolve()

    if args.command is None:
        parser.print_help()
        return

    if args.command == "init":
        try:
            server_url = validate_server_url(
                args.server or DEFAULT_SERVER, args.allow_insecure_http
            )
        except ValueError as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        save_config(config_dir, {"server": server_url})
        print(f"Initialized client config in {config_dir / CONFIG_FILE}")
        return

    config = load_config(config_dir)
    configured_server_url = args.server or config.get("server") or DEFAULT_SERVER
    try:
        server_url = validate_server_url(configured_server_url, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    try:
        with SyncClient(server_url) as client:
            run_command(client, args)
    except SyncApiError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    except httpx.HTTPError as exc:
        print(f"Error: cannot reach {server_url}: {exc}")
        sys.exit(1)


def run_command(client: SyncClient, args: argparse.Namespace) -> None:
    if args.command == "status":
        status = client.status()
        stats = status["stats"]
        print(f"Device:     {status['device_id']}")
        print(f"State:      {status['state']}")
        print(f"Conflicts:  {status['conflict_count']}")
        print(f"Changelog:  version {status['last_seen_version']}")
        print(f"Syncs:      {stats['successful_syncs']} ok, {stats['failed_syncs']} failed")
        if stats.get("last_error"):
            print(f"Last error: {stats['last_error']}")

    elif args.command == "sync":
        print_report(client.incremental_sync())

    elif args.command == "restore":
        print_report(client.full_restore())

    elif args.command == "snapshot":
        snapshot = client.snapshot()
        if snapshot["generated"]:
            print(
                f"Published snapshot {snapshot['version']} "
                f"({snapshot['notes_count']} notes, {snapshot['size_bytes']} bytes)"
            )
        else:
            print("Snapshot already in progress")

    elif args.command == "conflicts":
        conflicts = client.conflicts()
        if not conflicts:
            print("No conflicts")
        for c in conflicts:
            print(
                f"  ! {c['note_id']}: local {c['local_hash'][:12]}, "
                f"remote {c['remote_hash'][:12]} from {c.get('remote_device') or 'unknown'}"
            )

    elif args.command == "resolve":
        result = client.resolve(args.note_id, args.action)
        print(f"Resolved {result['note_id']}: {result['action']}")
        if result.get("copy_id"):
            print(f"  Local copy saved as {result['copy_id']}")

    elif args.command == "health":
        health = client.health()
        print(f"Status:   {health['status']}")
        print(f"Database: {health['database']}")
        print(f"Remote:   {health['remote']}")
        if health.get("note_count") is not None:
            print(f"Notes:    {health['note_count']}")
        if health.get("error"):
            print(f"Error:    {health['error']}")
            sys.exit(1)


if __name__ == "__main__":
    main()
