"""Utility that launches a sample MySQL Docker container for mysqlgate."""

from __future__ import annotations

import argparse
import json
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mysqlgate.config import PROJECT_FILE, ProfileDocument, TopologyDocument
from mysqlgate.errors import ConfigurationError

DEFAULT_CONTAINER = "mysqlgate-sample-db"
DEFAULT_PORT = 3407
DEFAULT_PASSWORD = "mysqlgate"
DEFAULT_DB = "mysqlgate_demo"
DEFAULT_USER = "mysqlgate"
DOCKER_IMAGE = "mysql:8.4"
PROFILE_NAME = "docker-sample"


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(name: str, port: int, password: str, database: str, user: str) -> None:
    if container_exists(name):
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(
            [
                "docker",
                "run",
                "-d",
                "--name",
                name,
                "-e",
                f"MYSQL_ROOT_PASSWORD={password}",
                "-e",
                f"MYSQL_DATABASE={database}",
                "-e",
                f"MYSQL_USER={user}",
                "-e",
                f"MYSQL_PASSWORD={password}",
                "-p",
                f"{port}:3306",
                DOCKER_IMAGE,
            ]
        )
    wait_for_start(name, password)


def wait_for_start(name: str, password: str, retries: int = 30, delay: float = 2.0) -> None:
    for _ in range(retries):
        result = subprocess.run(
            ["docker", "exec", name, "mysqladmin", "ping", "-uroot", f"-p{password}", "--silent"],
            text=True,
            capture_output=True,
        )
        if result.returncode == 0:
            return
        time.sleep(delay)
    print("Warning: database did not report ready state; continuing anyway.")


def seed_data(name: str, database: str, user: str, password: str) -> None:
    sql = """
    CREATE TABLE IF NOT EXISTS accounts (
        id INT AUTO_INCREMENT PRIMARY KEY,
        email VARCHAR(255) NOT NULL UNIQUE,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    CREATE TABLE IF NOT EXISTS orders (
        id INT AUTO_INCREMENT PRIMARY KEY,
        account_id INT NOT NULL,
        total DECIMAL(10,2) NOT NULL,
        status VARCHAR(32) NOT NULL DEFAULT 'pending',
        FOREIGN KEY (account_id) REFERENCES accounts(id)
    );
    INSERT IGNORE INTO accounts (email) VALUES
        ('anna@example.com'),
        ('ben@example.com'),
        ('cara@example.com');
    INSERT INTO orders (account_id, total, status)
    SELECT id, ROUND(RAND() * 100, 2), 'complete' FROM accounts;
    """.strip()

    run(
        ["docker", "exec", "-i", name, "mysql", f"-u{user}", f"-p{password}", database],
        input=sql,
    )


def update_config(port: int, user: str, database: str, password: str) -> None:
    path = ROOT / PROJECT_FILE
    profile = ProfileDocument(
        host="127.0.0.1",
        port=port,
        user=user,
        password=password,
        database=database,
        description="Sample database started by scripts/setup_sample_db.py",
        environment="development",
    )
    try:
        document = TopologyDocument.model_validate_json(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        document = TopologyDocument(connections={PROFILE_NAME: profile}, default_connection=PROFILE_NAME)
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Refusing to overwrite unreadable {path}: {exc}") from exc
    if PROFILE_NAME in document.connections:
        print(f"Profile '{PROFILE_NAME}' already present in {path}; leaving as-is.")
        return
    connections = {**document.connections, PROFILE_NAME: profile}
    document = document.model_copy(update={"connections": connections})
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document.model_dump(by_alias=True, exclude_none=True), indent=2) + "\n")
    print(f"Added '{PROFILE_NAME}' profile to {path}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose MySQL on")
    parser.add_argument("--password", default=DEFAULT_PASSWORD, help="MySQL password (root and app user)")
    parser.add_argument("--database", default=DEFAULT_DB, help="Database name to create")
    parser.add_argument("--user", default=DEFAULT_USER, help="Application user")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        start_container(args.container, args.port, args.password, args.database, args.user)
        seed_data(args.container, args.database, args.user, args.password)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    try:
        update_config(args.port, args.user, args.database, args.password)
    except ConfigurationError as exc:
        print(f"error: {exc}")
        return 1
    print(
        f"Sample database is ready. Try `python -m mysqlgate test {PROFILE_NAME}` "
        f"or connect to mysql://{args.user}@127.0.0.1:{args.port}/{args.database}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
