import os

from pytest import Item
from pytest_testconfig import config as py_config
from simple_logger.logger import get_logger

from utilities.cri_client import CrictlClient
from utilities.exceptions import CriCommandError

BASE_DIRECTORY_NAME = "cri-diagnostics-collected"
LOGGER = get_logger(name=__name__)


def set_diagnostics_base_directory(base_dir: str = "") -> str:
    py_config["diagnostics_base_directory"] = os.path.join(base_dir, BASE_DIRECTORY_NAME)
    return py_config["diagnostics_base_directory"]


def get_item_diagnostics_dir(item: Item) -> str:
    """
    Directory for one test's diagnostics.

    Example:
        item.fspath = "/home/user/git/cri-image-tests/tests/image/test_image_manager.py"
        item.name = "test_pull_image_with_tag"
        returns "cri-diagnostics-collected/test_image_manager/test_pull_image_with_tag"
    """
    module_name = os.path.splitext(os.path.basename(str(item.fspath)))[0]
    return os.path.join(py_config["diagnostics_base_directory"], module_name, item.name)


def collect_cri_diagnostics(client: CrictlClient, target_dir: str) -> list[str]:
    """
    Dump sandboxes, containers and images known to the runtime.

    Returns:
        list[str]: written file paths
    """
    os.makedirs(target_dir, exist_ok=True)
    collected: list[str] = []
    for file_name, func in (
        ("pods.txt", client.list_pod_sandboxes),
        ("containers.txt", client.list_containers),
        ("images.json", lambda: client.run("images", "-o", "json")),
    ):
        file_path = os.path.join(target_dir, file_name)
        try:
            output = func()
        except CriCommandError as exc:
            LOGGER.warning(f"Failed to collect {file_name}: {exc}")
            continue

        with open(file_path, "w") as fd:
            fd.write(output)
        collected.append(file_path)

    LOGGER.info(f"Collected CRI diagnostics in {target_dir}")
    return collected
