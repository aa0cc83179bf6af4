from pathlib import Path

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from probebox.schemas import FlowStep, StageStatus, UiFlowResult, UiFlowStep
from probebox.ui import UiEvalResult, flows_to_stage, run_ui_evaluation
from probebox.ui.flows import (
    baseline_flow,
    build_exploratory_flow,
    detect_custom_flow,
    nav_link_matcher,
    primary_action_matcher,
)
from probebox.ui.matcher import internal_path
from probebox.ui.session import ErrorLog, FlowRunner

BASE_URL = 'http://127.0.0.1:3000'


class FakeElement:
    def __init__(self, visible: bool = True, href: str | None = None):
        self.visible = visible
        self.href = href

    async def is_visible(self) -> bool:
        return self.visible

    async def get_attribute(self, name: str) -> str | None:
        return self.href if name == 'href' else None


class FakePage:
    """The slice of playwright's Page that the flow engine drives."""

    def __init__(self, elements=None, failures=None, screenshot_error=None):
        self.elements = elements or {}
        self.failures = failures or {}
        self.screenshot_error = screenshot_error
        self.calls = []

    def _maybe_fail(self, action: str):
        if action in self.failures:
            raise self.failures[action]

    async def goto(self, url, timeout=None, wait_until=None):
        self.calls.append(('navigate', url))
        self._maybe_fail('navigate')

    async def wait_for_selector(self, selector, timeout=None):
        self.calls.append(('wait', selector))
        self._maybe_fail('wait')

    async def click(self, selector, timeout=None):
        self.calls.append(('click', selector))
        self._maybe_fail('click')

    async def fill(self, selector, value, timeout=None):
        self.calls.append(('fill', selector))

    async def screenshot(self, path, full_page=False):
        self.calls.append(('screenshot', Path(path).name))
        if self.screenshot_error is not None:
            raise self.screenshot_error
        Path(path).write_bytes(b'png')

    async def query_selector(self, selector):
        found = await self.query_selector_all(selector)
        return found[0] if found else None

    async def query_selector_all(self, selector):
        if ':has-text' in selector:
            raise PlaywrightError('Unsupported selector')
        return self.elements.get(selector, [])

    async def text_content(self, selector, timeout=None):
        return 'Welcome'


class FakeSession:
    def __init__(self, page: FakePage, fail_on_enter: bool = False):
        self.page = page
        self.errors = ErrorLog()
        self.fail_on_enter = fail_on_enter
        self.closed = False

    async def __aenter__(self):
        if self.fail_on_enter:
            raise PlaywrightError('Executable does not exist')
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True


def app_page(**kwargs) -> FakePage:
    elements = {'main, #root, #app, .app, [role="main"], body > div': [FakeElement()]}
    elements.update(kwargs.pop('elements', {}))
    return FakePage(elements=elements, **kwargs)


def runner_for(page: FakePage, tmp_path: Path, errors: ErrorLog | None = None) -> FlowRunner:
    return FlowRunner(page, errors or ErrorLog(), BASE_URL, tmp_path / 'shots', 1)


async def test_baseline_flow_passes(tmp_path):
    page = app_page()
    result = await runner_for(page, tmp_path).run('Baseline Flow', baseline_flow())
    assert result.passed
    assert [s.action for s in result.steps] == [
        'navigate',
        'wait',
        'screenshot',
        'check_element',
    ]
    assert page.calls[0] == ('navigate', BASE_URL + '/')
    assert Path(result.steps[2].screenshot).is_file()


async def test_flow_stops_at_first_failure(tmp_path):
    page = app_page(failures={'wait': PlaywrightTimeoutError('Timeout 1000ms exceeded')})
    result = await runner_for(page, tmp_path).run('Baseline Flow', baseline_flow())
    assert not result.passed
    assert len(result.steps) == 2
    failed = result.steps[1]
    assert not failed.passed
    assert 'Timeout' in failed.error
    assert failed.screenshot.endswith('baseline-flow-error-wait.png')
    assert ('screenshot', '01-homepage.png') not in page.calls


async def test_missing_main_content_fails(tmp_path):
    page = FakePage()
    result = await runner_for(page, tmp_path).run('Baseline Flow', baseline_flow())
    assert not result.passed
    assert result.steps[-1].error.startswith('Element not found')


async def test_error_screenshot_failure_is_swallowed(tmp_path):
    page = app_page(
        failures={'navigate': PlaywrightError('net::ERR_CONNECTION_REFUSED')},
        screenshot_error=PlaywrightError('Target closed'),
    )
    result = await runner_for(page, tmp_path).run('Baseline Flow', baseline_flow())
    assert len(result.steps) == 1
    assert result.steps[0].error == 'net::ERR_CONNECTION_REFUSED'
    assert result.steps[0].screenshot is None


async def test_flow_attaches_session_errors(tmp_path):
    errors = ErrorLog()
    errors.console.append('Uncaught TypeError')
    errors.network.append('404 http://127.0.0.1:3000/favicon.ico')
    result = await runner_for(app_page(), tmp_path, errors).run(
        'Baseline Flow', [FlowStep(action='wait', target='body')]
    )
    assert result.console_errors == ['Uncaught TypeError']
    assert result.network_errors == ['404 http://127.0.0.1:3000/favicon.ico']


async def test_primary_action_takes_first_visible_match():
    page = FakePage(
        elements={
            'button[type="submit"]': [FakeElement(visible=False)],
            'button.primary': [FakeElement()],
            'button.btn-primary': [FakeElement()],
        }
    )
    assert await primary_action_matcher().first(page) == 'button.primary'
    assert await primary_action_matcher().first(FakePage()) is None


async def test_nav_links_filtered_and_capped():
    page = FakePage(
        elements={
            'nav a': [
                FakeElement(href='/'),
                FakeElement(href='#top'),
                FakeElement(href='javascript:void(0)'),
                FakeElement(href='https://elsewhere.test/x'),
                FakeElement(href='/about'),
                FakeElement(href='/hidden', visible=False),
                FakeElement(href='/about'),
            ],
            'header a': [
                FakeElement(href='http://127.0.0.1:3000/docs?tab=1'),
                FakeElement(href='/pricing'),
                FakeElement(href='/blog'),
            ],
        }
    )
    links = await nav_link_matcher(BASE_URL).find_all(page)
    assert links == ['/about', '/docs?tab=1', '/pricing']


def test_internal_path():
    assert internal_path('/a', BASE_URL) == '/a'
    assert internal_path('a/b', BASE_URL) == '/a/b'
    assert internal_path('#x', BASE_URL) is None
    assert internal_path('JavaScript:alert(1)', BASE_URL) is None
    assert internal_path('mailto:me@example.test', BASE_URL) is None
    assert internal_path('//cdn.example.test/x', BASE_URL) is None
    assert internal_path('http://127.0.0.1:3000', BASE_URL) == '/'


async def test_exploratory_flow_structure():
    page = FakePage(
        elements={
            'button[type="submit"]': [FakeElement()],
            'nav a': [FakeElement(href='/one'), FakeElement(href='/two')],
        }
    )
    steps = await build_exploratory_flow(page, BASE_URL)
    assert [(s.action, s.target or s.value) for s in steps] == [
        ('screenshot', '02-before-primary-click'),
        ('click', 'button[type="submit"]'),
        ('wait', 'body'),
        ('screenshot', '03-after-primary-click'),
        ('navigate', '/one'),
        ('wait', 'body'),
        ('screenshot', '04-nav-1'),
        ('navigate', '/two'),
        ('wait', 'body'),
        ('screenshot', '04-nav-2'),
        ('screenshot', '99-final'),
    ]


async def test_exploratory_flow_on_empty_page():
    steps = await build_exploratory_flow(FakePage(), BASE_URL)
    assert steps == [FlowStep(action='screenshot', value='99-final')]


def test_detect_custom_flow(tmp_path):
    assert detect_custom_flow(tmp_path) is None
    (tmp_path / 'e2e').mkdir()
    (tmp_path / 'e2e' / 'README.md').write_text('')
    assert detect_custom_flow(tmp_path) is None
    (tmp_path / 'e2e' / 'login.spec.ts').write_text('')
    marker = detect_custom_flow(tmp_path)
    assert marker.files == ['login.spec.ts']
    assert marker.executed is False
    assert marker.to_flow_result().passed


def test_flows_to_stage_scores_steps():
    def step(passed, error=None):
        return UiFlowStep(action='wait', passed=passed, error=error, duration_ms=1)

    flows = [
        UiFlowResult(
            name='A',
            steps=[step(True), step(True), step(True)],
            passed=True,
            duration_ms=3,
            console_errors=['e1', 'e2', 'e3', 'e4'],
        ),
        UiFlowResult(
            name='B',
            steps=[step(True), step(False, 'boom')],
            passed=False,
            duration_ms=2,
        ),
    ]
    stage = flows_to_stage(flows, 5)
    assert stage.status == StageStatus.failed
    assert stage.score == 80
    assert stage.errors == ['e1', 'e2', 'e3', 'B/wait: boom']
    assert stage.details['passed_steps'] == 4


async def test_ui_evaluation_all_flows_pass(tmp_path):
    page = app_page(elements={'nav a': [FakeElement(href='/about')]})
    session = FakeSession(page)
    result = await run_ui_evaluation(
        tmp_path, BASE_URL, tmp_path / 'report', 1, session_factory=lambda _: session
    )
    assert result.success
    assert result.stage.score == 100
    assert result.stage.details['flows'] == 2
    assert session.closed
    assert all(Path(p).parent == tmp_path / 'report' / 'screenshots' for p in result.screenshots)
    assert any(p.endswith('04-nav-1.png') for p in result.screenshots)
    assert UiEvalResult.model_validate_json(result.model_dump_json()) == result


async def test_ui_evaluation_baseline_failure_skips_exploration(tmp_path):
    page = app_page(failures={'wait': PlaywrightTimeoutError('Timeout exceeded')})
    session = FakeSession(page)
    result = await run_ui_evaluation(
        tmp_path, BASE_URL, tmp_path, 1, session_factory=lambda _: session
    )
    assert result.stage.status == StageStatus.failed
    assert result.stage.details['flows'] == 1
    # navigate passed, wait failed, nothing else ran
    assert result.stage.score == 50
    assert not any(call[0] == 'click' for call in page.calls)
    assert session.closed


async def test_ui_evaluation_includes_detected_custom_flow(tmp_path):
    (tmp_path / 'tests' / 'ui').mkdir(parents=True)
    (tmp_path / 'tests' / 'ui' / 'home.spec.js').write_text('')
    session = FakeSession(app_page())
    result = await run_ui_evaluation(
        tmp_path, BASE_URL, tmp_path, 1, session_factory=lambda _: session
    )
    names = [flow['name'] for flow in result.stage.details['results']]
    assert names == ['Baseline Flow', 'Exploratory Flow', 'Custom Flow (detected)']


async def test_ui_evaluation_browser_unavailable(tmp_path):
    result = await run_ui_evaluation(
        tmp_path,
        BASE_URL,
        tmp_path,
        1,
        session_factory=lambda _: FakeSession(FakePage(), fail_on_enter=True),
    )
    assert result.stage.status == StageStatus.failed
    assert result.stage.score == 0
    assert 'Executable does not exist' in result.stage.errors[0]


@pytest.mark.parametrize('error', [RuntimeError('driver crashed'), ValueError('bad')])
async def test_ui_evaluation_releases_session_on_unexpected_error(tmp_path, error):
    page = app_page(failures={'navigate': error})
    session = FakeSession(page)
    result = await run_ui_evaluation(
        tmp_path, BASE_URL, tmp_path, 1, session_factory=lambda _: session
    )
    assert session.closed
    assert result.stage.status == StageStatus.failed
    assert result.stage.score == 0
