import shutil
from typing import Any

import pytest
from pytest_testconfig import config as py_config
from simple_logger.logger import get_logger

from utilities.cri_client import CrictlClient, ImageManagerService, RuntimeService
from utilities.exceptions import CriCommandError
from utilities.runtime_utils import build_test_image_pod_config

LOGGER = get_logger(name=__name__)

pytest_plugins = [
    "tests.fixtures.fake_cri",
]


@pytest.fixture(scope="session")
def cri_client() -> CrictlClient:
    """
    crictl backed client for the runtime under test.

    An unreachable runtime is a setup error: every test using it errors out instead of failing.
    """
    crictl_path = py_config["crictl_path"]
    if not shutil.which(crictl_path):
        pytest.fail(f"crictl binary {crictl_path} not found")

    client = CrictlClient(
        runtime_endpoint=py_config["runtime_endpoint"],
        image_endpoint=py_config["image_endpoint"],
        crictl_path=crictl_path,
        connection_timeout=py_config["cri_connection_timeout"],
        command_timeout=py_config["cri_command_timeout"],
    )
    try:
        LOGGER.info(f"CRI runtime version:\n{client.version()}")
    except CriCommandError as exc:
        pytest.fail(f"CRI runtime at {py_config['runtime_endpoint']} is not reachable: {exc}")

    return client


@pytest.fixture(scope="session")
def image_client(cri_client: CrictlClient) -> ImageManagerService:
    return cri_client


@pytest.fixture(scope="session")
def runtime_client(cri_client: CrictlClient) -> RuntimeService:
    return cri_client


@pytest.fixture(scope="session")
def test_image_pod_config() -> dict[str, Any]:
    return build_test_image_pod_config()
