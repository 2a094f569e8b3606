"""
Parallel image pull stress.

One pipeline per image runs in its own worker thread:

    create sandbox -> pull image -> create container -> start -> wait for exit -> stop/remove sandbox

A pipeline never raises; whatever goes wrong is stored on its PullTask so that
one broken image cannot stop the others, and the sandbox is torn down on every
path. The run only passes when every pipeline and the final image cleanup pass.
"""

import threading
import time
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from simple_logger.logger import get_logger

from utilities.constants import ContainerState, CriDefaults, Timeout
from utilities.cri_client import ImageManagerService, RuntimeService
from utilities.exceptions import ContainerExitCodeError, StressRunError
from utilities.image_utils import pull_public_image, remove_image
from utilities.runtime_utils import (
    build_container_config,
    create_container,
    create_pod_sandbox_for_container,
    wait_for_container_state,
)

LOGGER = get_logger(name=__name__)


class TaskState:
    NOT_STARTED: str = "NotStarted"
    SANDBOX_CREATING: str = "SandboxCreating"
    IMAGE_PULLING: str = "ImagePulling"
    CONTAINER_CREATING: str = "ContainerCreating"
    CONTAINER_STARTING: str = "ContainerStarting"
    CONTAINER_RUNNING: str = "ContainerRunning"
    CONTAINER_EXITED: str = "ContainerExited"
    FAILED: str = "Failed"


@dataclass
class PullTask:
    image: str
    state: str = TaskState.NOT_STARTED
    failed_state: str | None = None
    sandbox_id: str = ""
    container_id: str = ""
    exit_code: int | None = None
    errors: list[str] = field(default_factory=list)
    cleanup_errors: list[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)
    finished_at: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == TaskState.CONTAINER_EXITED and not self.errors and not self.cleanup_errors

    @property
    def duration(self) -> float:
        return (self.finished_at or time.monotonic()) - self.started_at

    def advance(self, state: str) -> None:
        LOGGER.info(f"[{self.image}] {self.state} -> {state}")
        self.state = state

    def fail(self, error: BaseException) -> None:
        self.failed_state = self.state
        self.state = TaskState.FAILED
        self.errors.append(f"{type(error).__name__}: {error}")
        LOGGER.error(f"[{self.image}] failed in {self.failed_state}: {error}")

    def describe_failure(self) -> str:
        reached = self.failed_state or self.state
        details = self.errors + [f"cleanup: {error}" for error in self.cleanup_errors]
        return f"{self.image}: failed at {reached}: {'; '.join(details)}"


@dataclass
class StressRun:
    images: tuple[str, ...]
    tasks: list[PullTask] = field(default_factory=list)
    teardown_errors: list[str] = field(default_factory=list)
    completed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, task: PullTask) -> None:
        with self._lock:
            self.tasks.append(task)
            self.completed += 1
            completed = self.completed

        LOGGER.info(
            f"[{task.image}] finished as {task.state} in {task.duration:.1f}s ({completed}/{len(self.images)} done)"
        )

    @property
    def failed_tasks(self) -> list[PullTask]:
        return [task for task in self.tasks if not task.succeeded]

    @property
    def succeeded(self) -> bool:
        return self.completed == len(self.images) and not self.failed_tasks and not self.teardown_errors

    def failure_report(self) -> str:
        lines = [task.describe_failure() for task in sorted(self.failed_tasks, key=lambda _task: _task.image)]
        lines.extend(f"teardown: {error}" for error in self.teardown_errors)
        if self.completed != len(self.images):
            lines.append(f"only {self.completed} of {len(self.images)} pipelines reported back")
        return "\n".join(lines)


def remove_images_best_effort(image_client: ImageManagerService, images: Sequence[str]) -> list[str]:
    """Remove leftovers of previous runs; the images may legitimately not exist."""
    ignored_errors: list[str] = []
    for image in images:
        try:
            remove_image(image_client=image_client, image_name=image)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning(f"Ignoring failure to remove image {image} before stress run: {exc}")
            ignored_errors.append(f"{image}: {exc}")

    return ignored_errors


def teardown_pod_sandbox(runtime_client: RuntimeService, task: PullTask) -> None:
    if not task.sandbox_id:
        return

    for action, func in (("stop", runtime_client.stop_pod_sandbox), ("remove", runtime_client.remove_pod_sandbox)):
        try:
            func(sandbox_id=task.sandbox_id)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error(f"[{task.image}] failed to {action} pod sandbox {task.sandbox_id}: {exc}")
            task.cleanup_errors.append(f"{action} pod sandbox {task.sandbox_id}: {exc}")


def run_image_pipeline(
    runtime_client: RuntimeService,
    image_client: ImageManagerService,
    image: str,
    poll_timeout: float = Timeout.TIMEOUT_2MIN,
    poll_interval: float = Timeout.TIMEOUT_4SEC,
    command: Sequence[str] = CriDefaults.STRESS_COMMAND,
    pull_attempts: int = 1,
) -> PullTask:
    """
    Run one image through the full sandbox/container lifecycle.

    Args:
        runtime_client (RuntimeService): runtime service
        image_client (ImageManagerService): image service
        image (str): image reference
        poll_timeout (float): seconds to wait for the container to exit
        poll_interval (float): seconds between container status checks
        command (Sequence[str]): short lived command the container runs
        pull_attempts (int): image pull attempts

    Returns:
        PullTask: final state of the pipeline, never raises
    """
    task = PullTask(image=image)
    try:
        task.advance(state=TaskState.SANDBOX_CREATING)
        task.sandbox_id, pod_config = create_pod_sandbox_for_container(runtime_client=runtime_client, name_prefix=image)
        try:
            task.advance(state=TaskState.IMAGE_PULLING)
            pull_public_image(
                image_client=image_client,
                image_name=image,
                pod_config=pod_config,
                attempts=pull_attempts,
            )

            task.advance(state=TaskState.CONTAINER_CREATING)
            task.container_id = create_container(
                runtime_client=runtime_client,
                image_client=image_client,
                config=build_container_config(name=image, image=image, command=command),
                sandbox_id=task.sandbox_id,
                pod_config=pod_config,
            )

            task.advance(state=TaskState.CONTAINER_STARTING)
            runtime_client.start_container(container_id=task.container_id)

            task.advance(state=TaskState.CONTAINER_RUNNING)
            status = wait_for_container_state(
                runtime_client=runtime_client,
                container_id=task.container_id,
                expected_state=ContainerState.EXITED,
                wait_timeout=poll_timeout,
                sleep=poll_interval,
            )
            task.exit_code = status.exit_code
            if status.exit_code != 0:
                raise ContainerExitCodeError(
                    f"container {task.container_id} exited with code {status.exit_code} ({status.reason})"
                )

            task.advance(state=TaskState.CONTAINER_EXITED)

        finally:
            teardown_pod_sandbox(runtime_client=runtime_client, task=task)

    except Exception as exc:  # noqa: BLE001
        task.fail(error=exc)

    task.finished_at = time.monotonic()
    return task


def run_parallel_image_stress(
    runtime_client: RuntimeService,
    image_client: ImageManagerService,
    images: Sequence[str],
    max_workers: int | None = None,
    poll_timeout: float = Timeout.TIMEOUT_2MIN,
    poll_interval: float = Timeout.TIMEOUT_4SEC,
    command: Sequence[str] = CriDefaults.STRESS_COMMAND,
    pull_attempts: int = 1,
) -> StressRun:
    """
    Pull and run every image in `images` concurrently, then remove the images.

    Args:
        runtime_client (RuntimeService): runtime service
        image_client (ImageManagerService): image service
        images (Sequence[str]): image references, one pipeline each
        max_workers (int | None): cap on concurrent pipelines, defaults to one thread per image
        poll_timeout (float): seconds to wait for each container to exit
        poll_interval (float): seconds between container status checks
        command (Sequence[str]): short lived command every container runs
        pull_attempts (int): image pull attempts per pipeline

    Returns:
        StressRun: every pipeline's outcome plus teardown errors
    """
    run = StressRun(images=tuple(images))
    if not run.images:
        LOGGER.warning("No images given, nothing to stress")
        return run

    remove_images_best_effort(image_client=image_client, images=run.images)

    def _run_and_record(image: str) -> None:
        run.record(
            task=run_image_pipeline(
                runtime_client=runtime_client,
                image_client=image_client,
                image=image,
                poll_timeout=poll_timeout,
                poll_interval=poll_interval,
                command=command,
                pull_attempts=pull_attempts,
            )
        )

    workers = max_workers or len(run.images)
    LOGGER.info(f"Starting {len(run.images)} image pipelines with {workers} workers")
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="image-stress") as executor:
        futures: dict[Future[None], str] = {executor.submit(_run_and_record, image): image for image in run.images}
        wait(fs=futures)

    for future, image in futures.items():
        if exc := future.exception():
            task = PullTask(image=image)
            task.fail(error=exc)
            run.record(task=task)

    for image in run.images:
        try:
            remove_image(image_client=image_client, image_name=image)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error(f"Failed to remove image {image} after stress run: {exc}")
            run.teardown_errors.append(f"remove image {image}: {exc}")

    LOGGER.info(f"Stress run finished: {len(run.images) - len(run.failed_tasks)}/{len(run.images)} pipelines passed")
    return run


def verify_stress_run(run: StressRun) -> None:
    if not run.succeeded:
        raise StressRunError(
            f"{len(run.failed_tasks)} of {len(run.images)} image pipelines failed:\n{run.failure_report()}"
        )
