"""Seed a running DropVault API with sample uploads and share links."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

from dropvault.clients.vault_client import VaultClient

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DATA_DIR = REPO_ROOT / "sample_data"

_SYNTHETIC_FILES: Sequence[Tuple[str, int]] = (
    ("quarterly-report.pdf", 2 * 1024 * 1024),
    ("team-photo.jpg", 850 * 1024),
    ("notes.txt", 12 * 1024),
)


def _discover_files(data_dir: Path) -> List[Tuple[str, int]]:
    if not data_dir.exists():
        return list(_SYNTHETIC_FILES)
    return [(path.name, path.stat().st_size) for path in sorted(data_dir.rglob("*")) if path.is_file() and path.stat().st_size]


def _progress_steps(step: float) -> Iterable[float]:
    value = 0.0
    while value < 100.0:
        value = min(100.0, value + step)
        yield value


def seed(client: VaultClient, files: Sequence[Tuple[str, int]], *, drive_progress: bool, password: str | None) -> None:
    for index, (name, size) in enumerate(files):
        print(f"Uploading {name} ({size} bytes)")
        upload = client.enqueue(name, size, tags=["seed"])
        handle_id = upload["handle_id"]
        if drive_progress:
            for percent in _progress_steps(25.0):
                client.report_progress(handle_id, percent)
        final = client.wait_for_upload(handle_id, on_progress=lambda s: print(f"   {s['progress']:.0f}%"))
        client.release(handle_id)
        if final["status"] != "completed":
            print(f" -> upload {handle_id} ended as {final['status']} ({final.get('error_kind')})")
            continue
        file_id = final["file_id"]
        public = index % 2 == 0
        share = client.share(
            file_id,
            public=public,
            password=None if public else password,
            expires_in="7" if public else "1",
        )
        print(f" -> file {file_id} shared at {share['link']}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed DropVault demo data")
    parser.add_argument("--rest-base", default="http://localhost:8000", help="REST base URL")
    parser.add_argument("--data-dir", type=Path, default=DEFAULT_DATA_DIR, help="Directory of sample files")
    parser.add_argument("--user-id", default="user-seeder")
    parser.add_argument("--password", default="demo-pass", help="Password applied to private shares")
    parser.add_argument(
        "--drive-progress",
        action="store_true",
        help="Report progress explicitly (server running with DROPVAULT_TRANSFER_MODE=external)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    client = VaultClient(base_url=args.rest_base, user_id=args.user_id, timeout=30)
    files = _discover_files(args.data_dir)
    if not files:
        raise SystemExit(f"No files found in {args.data_dir}")
    seed(client, files, drive_progress=args.drive_progress, password=args.password)


if __name__ == "__main__":
    main()
