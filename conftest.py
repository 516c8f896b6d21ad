"""
Root pytest configuration shared by the kmcore and kmwallet test suites.
"""

from __future__ import annotations

import pytest
from pytest import StashKey

_strict_skips_key: StashKey[bool] = StashKey[bool]()


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--fail-on-skip",
        action="store_true",
        default=False,
        help="Report skipped kmcore/kmwallet tests as failures",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.stash[_strict_skips_key] = config.getoption("--fail-on-skip", default=False)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo[None]):
    """Turn a skip into a failure when ``--fail-on-skip`` is given.

    Deselected tests are unaffected; only tests skipped while running are.
    """
    outcome = yield
    report: pytest.TestReport = outcome.get_result()
    if not (item.config.stash.get(_strict_skips_key, False) and report.skipped):
        return

    reason = "unknown reason"
    if isinstance(report.longrepr, tuple) and len(report.longrepr) >= 3:
        reason = report.longrepr[2]
    elif report.longrepr:
        reason = str(report.longrepr)

    report.outcome = "failed"
    report.longrepr = f"{item.nodeid} skipped with --fail-on-skip: {reason}"
