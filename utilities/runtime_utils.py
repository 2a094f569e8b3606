import re
from collections.abc import Sequence
from typing import Any

import shortuuid
from simple_logger.logger import get_logger
from timeout_sampler import TimeoutExpiredError, TimeoutSampler

from utilities.constants import ContainerState, CriDefaults, Labels, Timeout
from utilities.cri_client import ContainerStatus, ImageManagerService, RuntimeService
from utilities.exceptions import ContainerStateTimeoutError, CriCommandError
from utilities.image_utils import normalize_image_reference, pull_public_image

LOGGER = get_logger(name=__name__)


def sanitize_name(value: str) -> str:
    """Turn an image reference into something usable as a sandbox/container name."""
    return re.sub(r"[^a-zA-Z0-9_.-]", "-", value).strip("-.").lower()


def build_pod_sandbox_config(
    name_prefix: str = CriDefaults.SANDBOX_NAME_PREFIX,
    labels: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    Build a CRI PodSandboxConfig with a unique name and uid.

    Args:
        name_prefix (str): sandbox name prefix
        labels (dict[str, str] | None): sandbox labels

    Returns:
        dict[str, Any]: PodSandboxConfig as consumed by crictl
    """
    suffix = shortuuid.uuid().lower()
    return {
        "metadata": {
            "name": f"{sanitize_name(value=name_prefix)}-{suffix}",
            "uid": suffix,
            "namespace": CriDefaults.SANDBOX_NAMESPACE,
            "attempt": CriDefaults.DEFAULT_ATTEMPT,
        },
        "labels": dict(labels or {}),
        "linux": {},
    }


def build_test_image_pod_config() -> dict[str, Any]:
    """Sandbox config passed along with image pulls; the sandbox itself is never created."""
    return build_pod_sandbox_config(name_prefix="image-pull", labels=Labels.Sandbox.TEST)


def build_container_metadata(name: str, attempt: int = CriDefaults.DEFAULT_ATTEMPT) -> dict[str, Any]:
    return {"name": sanitize_name(value=name), "attempt": attempt}


def build_container_config(name: str, image: str, command: Sequence[str]) -> dict[str, Any]:
    return {
        "metadata": build_container_metadata(name=name),
        "image": {"image": image},
        "command": list(command),
        "linux": {},
    }


def create_pod_sandbox_for_container(
    runtime_client: RuntimeService,
    name_prefix: str = CriDefaults.SANDBOX_NAME_PREFIX,
) -> tuple[str, dict[str, Any]]:
    pod_config = build_pod_sandbox_config(name_prefix=name_prefix)
    LOGGER.info(f"Creating pod sandbox {pod_config['metadata']['name']}")
    sandbox_id = runtime_client.run_pod_sandbox(config=pod_config)
    return sandbox_id, pod_config


def create_container(
    runtime_client: RuntimeService,
    image_client: ImageManagerService,
    config: dict[str, Any],
    sandbox_id: str,
    pod_config: dict[str, Any],
) -> str:
    """
    Create a container, pulling its image first when it is not present.

    Returns:
        str: container id
    """
    image = normalize_image_reference(image=config["image"]["image"])
    if image_client.image_status(image=image) is None:
        pull_public_image(image_client=image_client, image_name=image, pod_config=pod_config)

    LOGGER.info(f"Creating container {config['metadata']['name']} in sandbox {sandbox_id}")
    container_id = runtime_client.create_container(sandbox_id=sandbox_id, config=config, pod_config=pod_config)
    if not container_id:
        raise CriCommandError(command="create", stderr=f"empty container id for {config['metadata']['name']}")

    return container_id


def wait_for_container_state(
    runtime_client: RuntimeService,
    container_id: str,
    expected_state: str = ContainerState.EXITED,
    wait_timeout: float = Timeout.TIMEOUT_2MIN,
    sleep: float = Timeout.TIMEOUT_4SEC,
) -> ContainerStatus:
    """
    Poll container status until it reaches `expected_state`.

    Backend errors while polling are retried until the deadline.

    Raises:
        ContainerStateTimeoutError: if the state is not reached within `wait_timeout` seconds
    """
    status: ContainerStatus | None = None
    try:
        for status in TimeoutSampler(
            wait_timeout=wait_timeout,
            sleep=sleep,
            func=runtime_client.container_status,
            container_id=container_id,
            exceptions_dict={CriCommandError: []},
            print_log=False,
        ):
            if status and status.state == expected_state:
                return status

    except TimeoutExpiredError as exc:
        last_state = status.state if status else "no status"
        raise ContainerStateTimeoutError(
            f"Container {container_id} did not reach {expected_state} within {wait_timeout}s, last state: {last_state}"
        ) from exc

    raise ContainerStateTimeoutError(f"Container {container_id} status polling stopped before {expected_state}")
