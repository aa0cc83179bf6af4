import logging
from pathlib import Path
from typing import Literal

from playwright.async_api import ElementHandle, Page
from pydantic import BaseModel

from probebox.const import (
    CUSTOM_UI_TEST_DIRS,
    CUSTOM_UI_TEST_SUFFIXES,
    MAIN_CONTENT_SELECTOR,
    MAX_NAV_LINKS,
    NAV_LINK_SELECTORS,
    PRIMARY_ACTION_SELECTORS,
)
from probebox.schemas import FlowStep, UiFlowResult, UiFlowStep
from probebox.ui.matcher import (
    PriorityMatcher,
    internal_path,
    is_site_root,
    visible_href,
    visible_selector,
)

logger = logging.getLogger(__name__)


def baseline_flow() -> list[FlowStep]:
    return [
        FlowStep(action='navigate', target='/'),
        FlowStep(action='wait', target='body'),
        FlowStep(action='screenshot', value='01-homepage'),
        FlowStep(action='check_element', target=MAIN_CONTENT_SELECTOR),
    ]


def primary_action_matcher() -> PriorityMatcher[str]:
    return PriorityMatcher(
        PRIMARY_ACTION_SELECTORS, visible_selector, first_element_only=True
    )


def nav_link_matcher(base_url: str, limit: int = MAX_NAV_LINKS) -> PriorityMatcher[str]:
    async def extract(selector: str, element: ElementHandle) -> str | None:
        href = await visible_href(selector, element)
        return internal_path(href, base_url) if href else None

    return PriorityMatcher(NAV_LINK_SELECTORS, extract, exclude=is_site_root, limit=limit)


async def build_exploratory_flow(page: Page, base_url: str) -> list[FlowStep]:
    """Steps exercising whatever the current page offers to click or visit."""
    steps = []

    primary = await primary_action_matcher().first(page)
    if primary is not None:
        logger.info(f'Primary action: {primary}')
        steps += [
            FlowStep(action='screenshot', value='02-before-primary-click'),
            FlowStep(action='click', target=primary),
            FlowStep(action='wait', target='body'),
            FlowStep(action='screenshot', value='03-after-primary-click'),
        ]

    links = await nav_link_matcher(base_url).find_all(page)
    logger.info(f'Navigation links: {links}')
    for i, link in enumerate(links, start=1):
        steps += [
            FlowStep(action='navigate', target=link),
            FlowStep(action='wait', target='body'),
            FlowStep(action='screenshot', value=f'04-nav-{i}'),
        ]

    steps.append(FlowStep(action='screenshot', value='99-final'))
    return steps


class CustomFlowMarker(BaseModel):
    """A project-supplied UI test suite was found. It was not run."""

    directory: str
    files: list[str]
    executed: Literal[False] = False

    def to_flow_result(self) -> UiFlowResult:
        return UiFlowResult(
            name='Custom Flow (detected)',
            steps=[
                UiFlowStep(
                    action='check_element', target='body', passed=True, duration_ms=0
                )
            ],
            passed=True,
            duration_ms=0,
        )


def detect_custom_flow(project_path: Path | str | None) -> CustomFlowMarker | None:
    if project_path is None:
        return None
    root = Path(project_path)
    for test_dir in CUSTOM_UI_TEST_DIRS:
        directory = root / test_dir
        if not directory.is_dir():
            continue
        files = sorted(
            entry.name
            for entry in directory.iterdir()
            if entry.is_file() and entry.name.endswith(CUSTOM_UI_TEST_SUFFIXES)
        )
        if files:
            logger.info(
                f'Found custom UI tests in {directory}, they are reported but not run'
            )
            return CustomFlowMarker(directory=str(directory), files=files)
    return None
