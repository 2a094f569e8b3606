from collections.abc import Generator
from typing import Any

import pytest
from _pytest.fixtures import FixtureRequest
from pytest_testconfig import config as py_config

from utilities.cri_client import ImageManagerService
from utilities.image_utils import remove_image_list


@pytest.fixture(scope="function")
def removed_image_list(
    request: FixtureRequest,
    image_client: ImageManagerService,
) -> Generator[list[str], Any, Any]:
    """
    Image list named by `request.param` (a global config key), absent before and after the test.
    """
    image_list = list(py_config[request.param])
    remove_image_list(image_client=image_client, image_list=image_list)

    yield image_list

    remove_image_list(image_client=image_client, image_list=image_list)


@pytest.fixture(scope="session")
def stress_test_images() -> tuple[str, ...]:
    return tuple(py_config["stress_test_images"])
