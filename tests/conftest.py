"""Shared test fixtures for compose-e2e tests.

This module provides fixtures for exercising the harness without a
container engine:
- fake_cli: a small executable that echoes, fails and interleaves output
- fake_docker: a stateful stand-in for the compose lifecycle commands
- fake_session / docker_session: sessions bound to those executables
"""

import os
import stat
import sys
import textwrap
from pathlib import Path

import pytest

from compose_e2e.harness import Session, new_session

# =============================================================================
# Fake CLI - echoes, exits and interleaves output on demand
# =============================================================================

FAKE_CLI = """\
import os
import sys
import time

args = sys.argv[1:]
cmd = args[0] if args else ""

if cmd == "version":
    print("fakecli version 1.0.0")
elif cmd == "echo":
    print(" ".join(args[1:]))
elif cmd == "stderr":
    print(" ".join(args[1:]), file=sys.stderr)
elif cmd == "exit":
    print("about to fail")
    print("failure detail", file=sys.stderr)
    sys.exit(int(args[1]))
elif cmd == "interleave":
    for i in range(3):
        sys.stdout.write(f"out{i}\\n")
        sys.stdout.flush()
        time.sleep(0.05)
        sys.stderr.write(f"err{i}\\n")
        sys.stderr.flush()
        time.sleep(0.05)
elif cmd == "env":
    print(os.environ.get(args[1], ""))
elif cmd == "pwd":
    print(os.getcwd())
elif cmd == "sleep":
    time.sleep(float(args[1]))
    print("slept")
else:
    print(f"unknown command: {cmd}", file=sys.stderr)
    sys.exit(2)
"""

# =============================================================================
# Fake docker - remembers images, projects and resources between calls
# =============================================================================

FAKE_DOCKER = """\
import json
import os
import sys
from pathlib import Path

state = Path(os.environ["FAKE_DOCKER_STATE"])
state.mkdir(parents=True, exist_ok=True)
images = state / "images"
images.mkdir(exist_ok=True)
resources = state / "resources"
resources.mkdir(exist_ok=True)
volumes = state / "volumes"
volumes.mkdir(exist_ok=True)
projects = state / "projects"
projects.mkdir(exist_ok=True)
always_rebuild = os.environ.get("FAKE_DOCKER_ALWAYS_REBUILD") == "1"
fail_down = os.environ.get("FAKE_DOCKER_FAIL_DOWN") == "1"
drop_labels = [name for name in os.environ.get("FAKE_DOCKER_DROP_LABELS", "").split(",") if name]
writable_mounts = os.environ.get("FAKE_DOCKER_WRITABLE_MOUNTS") == "1"

BUILD_LINE = "#5 [2/2] COPY static /usr/share/nginx/html"
PREFIX = "com.docker.compose"

args = sys.argv[1:]


def option(name):
    return args[args.index(name) + 1] if name in args else None


def split_container(name):
    # <project>_<service>_<index>
    project, service, _ = name.rsplit("_", 2)
    return project, service


def container_json(name):
    project, service = split_container(name)
    labels = {
        PREFIX + ".container-number": "1",
        PREFIX + ".project": project,
        PREFIX + ".oneoff": "False",
        PREFIX + ".config-hash": "0123abcd",
        PREFIX + ".project.config_files": (projects / project).read_text(),
        PREFIX + ".project.working_dir": os.getcwd(),
        PREFIX + ".service": service,
        PREFIX + ".version": "0.0.0-fake",
        "my-label": "test",
    }
    for label in drop_labels:
        labels.pop(label, None)
    mounts = []
    if service == "nginx2":
        mounts = [
            {
                "Type": "volume",
                "Source": project + "_staticVol",
                "Target": "/usr/share/nginx/html",
                "ReadOnly": not writable_mounts,
            },
            {"Type": "volume", "Target": "/usr/src/app/node_modules"},
        ]
    return {
        "Name": "/" + name,
        "Config": {"Labels": labels, "Image": project + "_" + service},
        "HostConfig": {"Mounts": mounts},
        "State": {"Status": "running"},
    }


def no_such_object(name):
    print("Error: No such object: " + name, file=sys.stderr)
    sys.exit(1)


if args[:1] == ["version"]:
    print("Docker version 0.0.0-fake")
elif args[:1] == ["compose"]:
    project = option("--project-name") or "default"
    built = [project + "_nginx", "custom-nginx"]
    if "build" in args:
        print(BUILD_LINE)
        for image in built:
            (images / image).touch()
    elif "up" in args:
        if always_rebuild or not all((images / i).exists() for i in built):
            print(BUILD_LINE)
            for image in built:
                (images / image).touch()
        (projects / project).write_text(option("-f") or "docker-compose.yaml")
        for name in (project + "_web_1", project + "_nginx2_1", project + "_default"):
            (resources / name).touch()
        (volumes / (project + "_staticVol")).touch()
        print("Container " + project + "_web_1 Started")
    elif "down" in args:
        if fail_down:
            print("Error: network " + project + "_default has active endpoints", file=sys.stderr)
            sys.exit(1)
        for path in resources.glob(project + "_*"):
            path.unlink()
        print("Network " + project + "_default Removed")
    elif "ps" in args:
        print("NAME SERVICE STATUS")
        for path in sorted(resources.glob(project + "_web_*")):
            print(path.name + " web running")
    else:
        sys.exit(1)
elif args[:1] == ["rmi"]:
    target = images / args[1]
    if not target.exists():
        print("Error: No such image: " + args[1], file=sys.stderr)
        sys.exit(1)
    target.unlink()
    print("Untagged: " + args[1])
elif args[:2] == ["image", "inspect"]:
    if not (images / args[2]).exists():
        print("Error: No such image: " + args[2], file=sys.stderr)
        sys.exit(1)
    print("[{}]")
elif args[:1] == ["inspect"]:
    name = args[1]
    if name.endswith("_default") or not (resources / name).exists():
        no_such_object(name)
    data = container_json(name)
    if option("--format") == "{{ json .HostConfig.Mounts }}":
        print(json.dumps(data["HostConfig"]["Mounts"]))
    else:
        print(json.dumps([data]))
elif args[:2] == ["network", "inspect"]:
    name = args[2]
    if not name.endswith("_default") or not (resources / name).exists():
        no_such_object(name)
    labels = {
        PREFIX + ".network": "default",
        PREFIX + ".project": name[: -len("_default")],
        PREFIX + ".version": "0.0.0-fake",
    }
    print(json.dumps([{"Name": name, "Labels": labels, "Driver": "bridge"}]))
elif args[:2] == ["volume", "rm"]:
    target = volumes / args[2]
    if not target.exists():
        print("Error: No such volume: " + args[2], file=sys.stderr)
        sys.exit(1)
    target.unlink()
    print(args[2])
elif args[:1] == ["ps"] or args[:2] == ["network", "ls"]:
    for path in sorted(resources.iterdir()):
        print(path.name)
else:
    print("unsupported: " + " ".join(args), file=sys.stderr)
    sys.exit(1)
"""


def write_executable(path: Path, source: str) -> Path:
    """Write a Python script runnable directly by path."""
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(source))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_cli(tmp_path: Path) -> Path:
    """Path to the fake CLI executable."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return write_executable(bin_dir / "fakecli", FAKE_CLI)


@pytest.fixture
def fake_session(fake_cli: Path) -> Session:
    """Session bound to the fake CLI."""
    return new_session(fake_cli.parent, "fakecli")


@pytest.fixture
def fake_docker(tmp_path: Path) -> Path:
    """Path to the stateful fake docker executable."""
    bin_dir = tmp_path / "docker-bin"
    bin_dir.mkdir()
    return write_executable(bin_dir / "docker", FAKE_DOCKER)


@pytest.fixture
def docker_state(tmp_path: Path) -> Path:
    """State directory shared by every fake docker invocation of a test."""
    return tmp_path / "docker-state"


@pytest.fixture
def docker_session(fake_docker: Path, docker_state: Path) -> Session:
    """Session bound to the fake docker with its own state dir."""
    return new_session(
        fake_docker.parent,
        "docker",
        env={"FAKE_DOCKER_STATE": str(docker_state)},
    )


@pytest.fixture(autouse=True)
def _isolate_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep COMPOSE_E2E_* variables from the developer's shell out of tests."""
    for name in list(os.environ):
        if name.startswith("COMPOSE_E2E_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_executable():
    """Factory writing small Python programs as executables."""
    return write_executable
