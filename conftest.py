import logging
import os
import pathlib
import shutil
from typing import Any

from _pytest.reports import TestReport
from _pytest.runner import CallInfo
from _pytest.terminal import TerminalReporter
from pytest import (
    Collector,
    CollectReport,
    Config,
    FixtureDef,
    FixtureRequest,
    Item,
    Parser,
    Session,
)
from pytest_testconfig import config as py_config

from utilities.constants import CriDefaults, Timeout
from utilities.cri_client import CrictlClient
from utilities.diagnostics import collect_cri_diagnostics, get_item_diagnostics_dir, set_diagnostics_base_directory
from utilities.logger import BASIC_LOGGER_NAME, separator, setup_logging

LOGGER = logging.getLogger(name=__name__)
BASIC_LOGGER = logging.getLogger(name=BASIC_LOGGER_NAME)

LIVE_CRI_MARKER = "cri"
STRESS_MARKER = "stress"


def pytest_addoption(parser: Parser) -> None:
    cri_group = parser.getgroup(name="CRI runtime")
    stress_group = parser.getgroup(name="Stress options")
    diagnostics_group = parser.getgroup(name="Diagnostics")

    # CRI runtime options
    cri_group.addoption(
        "--runtime-endpoint",
        default=os.environ.get("CONTAINER_RUNTIME_ENDPOINT"),
        help="CRI runtime service endpoint, e.g. unix:///run/containerd/containerd.sock. "
        "Tests that talk to a runtime are deselected when not set.",
    )
    cri_group.addoption(
        "--image-endpoint",
        default=os.environ.get("IMAGE_SERVICE_ENDPOINT"),
        help="CRI image service endpoint; defaults to the runtime endpoint",
    )
    cri_group.addoption(
        "--crictl-path",
        default=os.environ.get("CRICTL_PATH", CriDefaults.CRICTL_PATH),
        help="Path to the crictl binary",
    )
    cri_group.addoption(
        "--cri-timeout",
        type=int,
        default=Timeout.TIMEOUT_30SEC,
        help="Timeout in seconds for connecting to the CRI endpoints",
    )

    # Stress options
    stress_group.addoption(
        "--stress",
        action="store_true",
        help="Run the parallel image pulling stress tests",
    )
    stress_group.addoption(
        "--stress-max-workers",
        type=int,
        default=None,
        help="Cap the number of concurrent stress pipelines; one per image when not set",
    )

    diagnostics_group.addoption(
        "--collect-must-gather",
        help="Dump runtime sandboxes, containers and images on failure.",
        action="store_true",
        default=False,
    )


def pytest_collection_modifyitems(session: Session, config: Config, items: list[Item]) -> None:
    """
    Filter the collected items in-place.

    Tests marked `cri` need a live runtime and are deselected when no `--runtime-endpoint` is given.
    Tests marked `stress` additionally require `--stress`.
    """
    run_live_tests = bool(config.getoption(name="runtime_endpoint"))
    run_stress_tests = run_live_tests and config.getoption(name="stress")

    selected_tests: list[Item] = []
    deselected_tests: list[Item] = []

    for item in items:
        if STRESS_MARKER in item.keywords and not run_stress_tests:
            deselected_tests.append(item)

        elif LIVE_CRI_MARKER in item.keywords and not run_live_tests:
            deselected_tests.append(item)

        else:
            selected_tests.append(item)

    if deselected_tests:
        items[:] = selected_tests
        config.hook.pytest_deselected(items=deselected_tests)


def pytest_sessionstart(session: Session) -> None:
    log_file = session.config.getoption(name="log_file", default=None) or "cri-image-tests.log"
    log_level = session.config.getoption(name="log_cli_level", default=None) or logging.INFO

    if os.path.exists(log_file):
        pathlib.Path(log_file).unlink()

    session.config.option.log_listener = setup_logging(
        log_file=log_file,
        log_level=log_level,
        worker_name=os.environ.get("PYTEST_XDIST_WORKER", ""),
    )
    LOGGER.info(f"Writing tests log to {log_file}")

    diagnostics_dir = set_diagnostics_base_directory()
    shutil.rmtree(path=diagnostics_dir, ignore_errors=True)

    updated_global_config(config=session.config)


def updated_global_config(config: Config) -> None:
    """Copy the CRI command line options into the global config."""
    if runtime_endpoint := config.getoption(name="runtime_endpoint"):
        py_config["runtime_endpoint"] = runtime_endpoint
        py_config["image_endpoint"] = config.getoption(name="image_endpoint") or runtime_endpoint
        LOGGER.info(f"Running against runtime endpoint {runtime_endpoint}")
    else:
        LOGGER.info("No runtime endpoint given, only harness tests will run")

    py_config["crictl_path"] = config.getoption(name="crictl_path")
    py_config["cri_connection_timeout"] = config.getoption(name="cri_timeout")
    if max_workers := config.getoption(name="stress_max_workers"):
        py_config["stress_max_workers"] = max_workers


def pytest_fixture_setup(fixturedef: FixtureDef[Any], request: FixtureRequest) -> None:
    LOGGER.info(f"Executing {fixturedef.scope} fixture: {fixturedef.argname}")


def pytest_runtest_setup(item: Item) -> None:
    BASIC_LOGGER.info(f"\n{separator(symbol_='-', val=item.name)}")
    BASIC_LOGGER.info(f"{separator(symbol_='-', val='SETUP')}")


def pytest_runtest_call(item: Item) -> None:
    BASIC_LOGGER.info(f"{separator(symbol_='-', val='CALL')}")


def pytest_runtest_teardown(item: Item) -> None:
    BASIC_LOGGER.info(f"{separator(symbol_='-', val='TEARDOWN')}")


def pytest_report_teststatus(report: CollectReport, config: Config) -> None:
    test_name = report.head_line
    when = report.when
    call_str = "call"
    if report.passed:
        if when == call_str:
            BASIC_LOGGER.info(f"\nTEST: {test_name} STATUS: \033[0;32mPASSED\033[0m")

    elif report.skipped:
        BASIC_LOGGER.info(f"\nTEST: {test_name} STATUS: \033[1;33mSKIPPED\033[0m")

    elif report.failed:
        if when != call_str:
            BASIC_LOGGER.info(f"\nTEST: {test_name} [{when}] STATUS: \033[0;31mERROR\033[0m")
        else:
            BASIC_LOGGER.info(f"\nTEST: {test_name} STATUS: \033[0;31mFAILED\033[0m")


def pytest_sessionfinish(session: Session, exitstatus: int) -> None:
    if log_listener := getattr(session.config.option, "log_listener", None):
        log_listener.stop()

    diagnostics_dir = py_config.get("diagnostics_base_directory")
    if diagnostics_dir and os.path.exists(diagnostics_dir):
        for root, dirs, _ in os.walk(diagnostics_dir, topdown=False):
            for _dir in dirs:
                dir_path = os.path.join(root, _dir)
                if not os.listdir(dir_path):
                    shutil.rmtree(path=dir_path, ignore_errors=True)

    reporter: TerminalReporter | None = session.config.pluginmanager.get_plugin("terminalreporter")
    if reporter:
        reporter.summary_stats()


def pytest_exception_interact(node: Item | Collector, call: CallInfo[Any], report: TestReport | CollectReport) -> None:
    LOGGER.error(report.longreprtext)
    if not isinstance(node, Item) or LIVE_CRI_MARKER not in node.keywords:
        return

    if node.config.getoption("--collect-must-gather") and py_config.get("runtime_endpoint"):
        LOGGER.info(f"CRI diagnostics collection is enabled for {node.fspath}::{node.name}.")
        client = CrictlClient(
            runtime_endpoint=py_config["runtime_endpoint"],
            image_endpoint=py_config["image_endpoint"],
            crictl_path=py_config["crictl_path"],
            connection_timeout=py_config["cri_connection_timeout"],
        )
        try:
            collect_cri_diagnostics(client=client, target_dir=get_item_diagnostics_dir(item=node))
        except Exception as current_exception:  # noqa: BLE001
            LOGGER.warning(f"Failed to collect CRI diagnostics for {node.name}: {current_exception}")
