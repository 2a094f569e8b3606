import re
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from simple_logger.logger import get_logger

from utilities.constants import CriDefaults
from utilities.cri_client import ImageManagerService, ImageRecord
from utilities.exceptions import (
    CriCommandError,
    ImageListMismatchError,
    ImageNotFoundError,
    ImageStatusMismatchError,
    ImageValidationError,
)

LOGGER = get_logger(name=__name__)

IMAGE_ID_PATTERN = re.compile(r"^(sha256:)?[a-f0-9]{64}$")


def normalize_image_reference(image: str) -> str:
    """
    Append the implicit `latest` tag to a reference that has neither a tag nor a digest.

    Image ids and references with a registry port (e.g. `localhost:5000/busybox`) are handled.

    Args:
        image (str): image reference

    Returns:
        str: image reference with an explicit tag, digest or id
    """
    if "@" in image or IMAGE_ID_PATTERN.match(image):
        return image

    if ":" in image.rsplit("/", 1)[-1]:
        return image

    return f"{image}:{CriDefaults.DEFAULT_TAG}"


def pull_public_image(
    image_client: ImageManagerService,
    image_name: str,
    pod_config: dict[str, Any] | None = None,
    attempts: int = 1,
) -> str:
    """
    Pull an image and return the image reference reported by the runtime.

    Args:
        image_client (ImageManagerService): image service
        image_name (str): image reference, the `latest` tag is added when missing
        pod_config (dict[str, Any] | None): sandbox config sent along with the pull
        attempts (int): pull attempts; registry flakiness is not retried by default

    Raises:
        CriCommandError: if the last pull attempt fails
        ImageValidationError: if the runtime returns an empty image reference
    """
    image = normalize_image_reference(image=image_name)
    image_id = ""
    for attempt in range(1, attempts + 1):
        LOGGER.info(f"Pull image : {image} (attempt {attempt}/{attempts})")
        try:
            image_id = image_client.pull_image(image=image, pod_config=pod_config)
            break
        except CriCommandError as exc:
            if attempt == attempts:
                raise
            LOGGER.warning(f"Failed to pull {image}: {exc}")

    if not image_id:
        raise ImageValidationError(f"Image id of {image} should not be empty")

    return image_id


def get_image_status(image_client: ImageManagerService, image_name: str) -> ImageRecord:
    image = image_client.image_status(image=image_name)
    if image is None:
        raise ImageNotFoundError(f"Image {image_name} should be present")
    return image


def remove_image(image_client: ImageManagerService, image_name: str) -> None:
    """
    Remove an image if it exists.

    Removal is done by image id; a tag may point to a stale image left by a previous run.
    """
    LOGGER.info(f"Remove image : {image_name}")
    image = image_client.image_status(image=image_name)
    if image:
        LOGGER.info(f"Remove image by ID : {image.id}")
        image_client.remove_image(image=image.id)


def verify_image_removed(image_client: ImageManagerService, image_name: str) -> None:
    remove_image(image_client=image_client, image_name=image_name)

    LOGGER.info(f"Check image {image_name} is absent")
    if (image := image_client.image_status(image=image_name)) is not None:
        raise ImageValidationError(f"Image {image_name} should be removed, found {image.id}")


def pull_and_verify_public_image(
    image_client: ImageManagerService,
    image_name: str,
    pod_config: dict[str, Any] | None = None,
    status_check: Callable[[ImageRecord], None] | None = None,
) -> ImageRecord:
    """
    Pull an image that is known to be absent, verify its status and remove it again.

    Args:
        image_client (ImageManagerService): image service
        image_name (str): image reference
        pod_config (dict[str, Any] | None): sandbox config sent along with the pull
        status_check (Callable[[ImageRecord], None] | None): extra checks on the pulled image status

    Returns:
        ImageRecord: image status observed after the pull
    """
    remove_image(image_client=image_client, image_name=image_name)

    pull_public_image(image_client=image_client, image_name=image_name, pod_config=pod_config)

    LOGGER.info(f"Check image status to make sure pulling image succeeded : {image_name}")
    image = get_image_status(image_client=image_client, image_name=image_name)
    if not image.id:
        raise ImageValidationError(f"Image id of {image_name} should not be empty")

    if image.size is None:
        raise ImageValidationError(f"Image size of {image_name} should be set")

    if status_check:
        status_check(image)

    verify_image_removed(image_client=image_client, image_name=image_name)
    return image


def verify_image_status_references(image_client: ImageManagerService, image: ImageRecord) -> None:
    """
    Verify that image status by id, by every repo tag and by every repo digest returns the same image.

    Raises:
        ImageStatusMismatchError: listing every reference that resolved to a different status
    """
    errors: list[str] = []
    for reference in [image.id, *image.repo_tags, *image.repo_digests]:
        LOGGER.info(f"Check image status with {reference}")
        reference_image = image_client.image_status(image=reference)
        if reference_image != image:
            errors.append(f"image status with {reference!r}: expected {image}, got {reference_image}")

    if errors:
        raise ImageStatusMismatchError("\n".join(errors))


def verify_image_user(
    image_client: ImageManagerService,
    image_name: str,
    expected_uid: int,
    expected_username: str,
    description: str = "",
) -> None:
    image = get_image_status(image_client=image_client, image_name=image_name)
    uid = image.uid or 0

    errors: list[str] = []
    if uid != expected_uid:
        errors.append(f"{description}, Image Uid should be {expected_uid}, got {uid}")

    if image.username != expected_username:
        errors.append(f"{description}, Image Username should be {expected_username!r}, got {image.username!r}")

    if errors:
        raise ImageValidationError("\n".join(errors))


def remove_duplicates(values: Iterable[str]) -> list[str]:
    """Drop repeated values, keeping first-occurrence order."""
    return list(dict.fromkeys(values))


def pull_image_list(
    image_client: ImageManagerService,
    image_list: Sequence[str],
    pod_config: dict[str, Any] | None = None,
) -> list[str]:
    return [
        pull_public_image(image_client=image_client, image_name=image_name, pod_config=pod_config)
        for image_name in image_list
    ]


def remove_image_list(image_client: ImageManagerService, image_list: Sequence[str]) -> None:
    for image_name in image_list:
        remove_image(image_client=image_client, image_name=image_name)


def _list_images_by_id(image_client: ImageManagerService) -> dict[str, ImageRecord]:
    return {image.id: image for image in image_client.list_images()}


def verify_distinct_image_listing(
    image_client: ImageManagerService,
    image_list: Sequence[str],
    image_ids: Sequence[str],
) -> None:
    """
    Verify images pulled from `image_list` are listed as separate images with one repo tag each.

    `image_ids` must be in the same order as `image_list`.

    Raises:
        ImageListMismatchError: on id count or repo tag mismatch
    """
    unique_ids = remove_duplicates(values=image_ids)
    if len(unique_ids) != len(image_list):
        raise ImageListMismatchError(f"{len(image_list)} image ids should be returned, got {unique_ids}")

    images = _list_images_by_id(image_client=image_client)
    errors: list[str] = []
    for image_name, image_id in zip(image_list, unique_ids):
        image = images.get(image_id)
        if image is None:
            errors.append(f"Image {image_name} ({image_id}) is missing from the image list")
            continue

        if image.repo_tags != [normalize_image_reference(image=image_name)]:
            errors.append(f"Image {image_id} should only have repo tag {image_name}, got {image.repo_tags}")

    if errors:
        raise ImageListMismatchError("\n".join(errors))


def verify_same_image_listing(
    image_client: ImageManagerService,
    image_list: Sequence[str],
    image_ids: Sequence[str],
) -> None:
    """
    Verify tags in `image_list` that point at one image are listed as a single image carrying all of them.

    Raises:
        ImageListMismatchError: on id count or repo tag mismatch
    """
    unique_ids = remove_duplicates(values=image_ids)
    if len(unique_ids) != 1:
        raise ImageListMismatchError(f"Only 1 image id should be returned, got {unique_ids}")

    image = _list_images_by_id(image_client=image_client).get(unique_ids[0])
    if image is None:
        raise ImageListMismatchError(f"Image {unique_ids[0]} is missing from the image list")

    expected_tags = sorted(normalize_image_reference(image=image_name) for image_name in image_list)
    if sorted(image.repo_tags) != expected_tags:
        raise ImageListMismatchError(
            f"Image {image.id} should have {len(expected_tags)} repo tags {expected_tags}, "
            f"got {sorted(image.repo_tags)}"
        )
