import json
import os
import shlex
import subprocess
import tempfile
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

from pyhelper_utils.shell import run_command
from simple_logger.logger import get_logger

from utilities.constants import ContainerState, CriDefaults, Timeout
from utilities.exceptions import CriCommandError

LOGGER = get_logger(name=__name__)

NOT_FOUND_MESSAGES: tuple[str, ...] = ("no such image", "not found", "does not exist")


@dataclass(frozen=True)
class ImageRecord:
    """Image as reported by the CRI ImageStatus / ListImages calls."""

    id: str
    repo_tags: list[str] = field(default_factory=list)
    repo_digests: list[str] = field(default_factory=list)
    size: int | None = None
    uid: int | None = None
    username: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImageRecord":
        # crictl renders uint64/int64 proto fields as JSON strings
        uid = data.get("uid")
        size = data.get("size")
        return cls(
            id=data.get("id", ""),
            repo_tags=list(data.get("repoTags") or []),
            repo_digests=list(data.get("repoDigests") or []),
            size=int(size) if size is not None else None,
            uid=int(uid["value"]) if uid and uid.get("value") is not None else None,
            username=data.get("username") or "",
        )


@dataclass(frozen=True)
class ContainerStatus:
    id: str
    state: str
    exit_code: int = 0
    reason: str = ""
    message: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContainerStatus":
        return cls(
            id=data.get("id", ""),
            state=data.get("state", ContainerState.UNKNOWN),
            exit_code=int(data.get("exitCode") or 0),
            reason=data.get("reason") or "",
            message=data.get("message") or "",
        )


class ImageManagerService(Protocol):
    def pull_image(self, image: str, pod_config: dict[str, Any] | None = None) -> str: ...

    def image_status(self, image: str) -> ImageRecord | None: ...

    def remove_image(self, image: str) -> None: ...

    def list_images(self, image_filter: str | None = None) -> list[ImageRecord]: ...


class RuntimeService(Protocol):
    def run_pod_sandbox(self, config: dict[str, Any]) -> str: ...

    def stop_pod_sandbox(self, sandbox_id: str) -> None: ...

    def remove_pod_sandbox(self, sandbox_id: str) -> None: ...

    def create_container(self, sandbox_id: str, config: dict[str, Any], pod_config: dict[str, Any]) -> str: ...

    def start_container(self, container_id: str) -> None: ...

    def container_status(self, container_id: str) -> ContainerStatus: ...


def is_not_found_error(error: str) -> bool:
    error = error.lower()
    return any(message in error for message in NOT_FOUND_MESSAGES)


@contextmanager
def json_config_file(data: dict[str, Any]) -> Generator[str, Any, Any]:
    """Write a CRI config to a temporary JSON file for crictl and remove it afterwards."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as config_file:
        json.dump(data, config_file)

    try:
        yield config_file.name
    finally:
        os.unlink(config_file.name)


class CrictlClient:
    """
    ImageManagerService and RuntimeService implemented on top of the crictl CLI.

    Every call is a separate crictl process, so a single instance can be shared
    between the stress workers.
    """

    def __init__(
        self,
        runtime_endpoint: str,
        image_endpoint: str | None = None,
        crictl_path: str = CriDefaults.CRICTL_PATH,
        connection_timeout: int = Timeout.TIMEOUT_30SEC,
        command_timeout: int = Timeout.TIMEOUT_5MIN,
    ):
        self.runtime_endpoint = runtime_endpoint
        self.image_endpoint = image_endpoint or runtime_endpoint
        self.crictl_path = crictl_path
        self.connection_timeout = connection_timeout
        self.command_timeout = command_timeout

    def _base_command(self) -> list[str]:
        return [
            self.crictl_path,
            f"--runtime-endpoint={self.runtime_endpoint}",
            f"--image-endpoint={self.image_endpoint}",
            f"--timeout={self.connection_timeout}s",
        ]

    def run(self, *args: str) -> str:
        """
        Run a crictl sub command.

        Returns:
            str: stripped stdout

        Raises:
            CriCommandError: if crictl exits with a non-zero code or runs past the command timeout
        """
        command = self._base_command() + list(args)
        try:
            succeeded, out, err = run_command(
                command=command,
                verify_stderr=False,
                check=False,
                timeout=self.command_timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise CriCommandError(command=shlex.join(args), stderr=f"timed out after {self.command_timeout}s") from exc

        if not succeeded:
            raise CriCommandError(command=shlex.join(args), stderr=err.strip())

        return out.strip()

    def version(self) -> str:
        return self.run("version")

    def pull_image(self, image: str, pod_config: dict[str, Any] | None = None) -> str:
        if pod_config is None:
            out = self.run("pull", image)
        else:
            with json_config_file(data=pod_config) as pod_config_path:
                out = self.run("pull", f"--pod-config={pod_config_path}", image)

        # "Image is up to date for sha256:..."
        image_ref = out.split()[-1] if out else ""
        LOGGER.info(f"Pulled image {image}: {image_ref}")
        return image_ref

    def image_status(self, image: str) -> ImageRecord | None:
        try:
            out = self.run("inspecti", "-o", "json", image)
        except CriCommandError as exc:
            if is_not_found_error(error=exc.stderr):
                return None
            raise

        status = json.loads(out).get("status") if out else None
        return ImageRecord.from_dict(data=status) if status else None

    def remove_image(self, image: str) -> None:
        try:
            self.run("rmi", image)
        except CriCommandError as exc:
            if not is_not_found_error(error=exc.stderr):
                raise
            LOGGER.info(f"Image {image} already absent")

    def list_images(self, image_filter: str | None = None) -> list[ImageRecord]:
        args = ["images", "-o", "json"]
        if image_filter:
            args.append(image_filter)

        out = self.run(*args)
        return [ImageRecord.from_dict(data=image) for image in json.loads(out).get("images") or []]

    def run_pod_sandbox(self, config: dict[str, Any]) -> str:
        with json_config_file(data=config) as pod_config_path:
            return self.run("runp", pod_config_path)

    def stop_pod_sandbox(self, sandbox_id: str) -> None:
        self.run("stopp", sandbox_id)

    def remove_pod_sandbox(self, sandbox_id: str) -> None:
        self.run("rmp", sandbox_id)

    def create_container(self, sandbox_id: str, config: dict[str, Any], pod_config: dict[str, Any]) -> str:
        with (
            json_config_file(data=config) as container_config_path,
            json_config_file(data=pod_config) as pod_config_path,
        ):
            return self.run("create", sandbox_id, container_config_path, pod_config_path)

    def start_container(self, container_id: str) -> None:
        self.run("start", container_id)

    def container_status(self, container_id: str) -> ContainerStatus:
        out = self.run("inspect", "-o", "json", container_id)
        return ContainerStatus.from_dict(data=json.loads(out).get("status") or {})

    def list_pod_sandboxes(self) -> str:
        return self.run("pods")

    def list_containers(self) -> str:
        return self.run("ps", "-a")
