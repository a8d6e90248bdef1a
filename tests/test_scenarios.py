"""
Tests for the scenario catalog against a simulated HMR page.

The fake driver renders from the workspace files, and only picks up an
edit after a couple of reads, so scenarios must poll to pass.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

import pytest

from hmr_harness.errors import AssertionTimeout
from hmr_harness.registry import DEFAULT_INTEGRATIONS
from hmr_harness.scenarios import SCENARIOS
from hmr_harness.suite import SuiteContext, SuiteState
from hmr_harness.workspace import WorkspaceHandle


APP_SOURCE = """import { h } from 'preact';
import { useCounter } from './useCounter';

function Test() {
  const [count, increment] = useCounter();
  return (
    <div>
      <p className="value">Count: {count}</p>
      <button className="button" onClick={increment}>Increment</button>
    </div>
  );
}

export function App() {
  return (
    <div>
      <Test />
    </div>
  );
}
"""

COUNTER_SOURCE = """import { useState } from 'preact/hooks';

export const useCounter = () => {
  const [state, setState] = useState(0);
  return [state, () => setState(state + 1)];
};
"""

EFFECT_SOURCE = """import { h } from 'preact';
import { useEffect, useState } from 'preact/hooks';

export const Effect = () => {
  const [state, setState] = useState('');
  useEffect(() => { setState('hello world'); }, []);
  return <p id="effect-test">{state}</p>;
};
"""

GREETING_SOURCE = """import { h, Component } from 'preact';

export class Greeting extends Component {
  state = { greeting: 'hi' };

  changeGreeting() {
    this.setState({ greeting: 'bye' });
  }

  render() {
    return (
      <div>
        <p className="class-text">I'm a class component</p>
        <p className="greeting-text">{this.state.greeting}</p>
        <button className="greeting-button" onClick={() => this.changeGreeting()}>Change</button>
      </div>
    );
  }
}
"""

CONTEXT_SOURCE = """import { h, createContext } from 'preact';
import { useContext, useState } from 'preact/hooks';

const StoreContext = createContext();

export const StoreProvider = ({ children }) => {
  const [items, setItems] = useState([]);
  const add = (id) => {
    if (!items.includes(id)) setItems([...items, id])
  };
  return <StoreContext.Provider value={{ items, add }}>{children}</StoreContext.Provider>;
};

export const Store = () => {
  const { items, add } = useContext(StoreContext);
  return (
    <div>
      <div className="apple-div" onClick={() => add('apple')}>apple</div>
      <div className="peach-div" onClick={() => add('peach')}>peach</div>
      <ul className="store-items">{items.map((item) => <li>{item}</li>)}</ul>
    </div>
  );
};
"""

STYLES_SOURCE = """export const styles = `
  #color {
    background-color: #000;
  }
`;
"""

FIXTURE_FILES = {
    "app.jsx": APP_SOURCE,
    "useCounter.js": COUNTER_SOURCE,
    "effect.jsx": EFFECT_SOURCE,
    "greeting.jsx": GREETING_SOURCE,
    "context.jsx": CONTEXT_SOURCE,
    "styles.js": STYLES_SOURCE,
}

BUTTON_TEXT = re.compile(r'<button className="button"[^>]*>([^<]*)</button>')
INITIAL_STATE = re.compile(r"useState\((\d+)\)")
STEP = re.compile(r"state \+ (\d+)")
TESTER_TEXT = re.compile(r'className="tester">([^<]*)<')
EFFECT_TEXT = re.compile(r"useEffect\(\(\) => \{ setState\('([^']*)'\); \}, \[\]\);")
CLASS_TEXT = re.compile(r'className="class-text">([^<]*)<')
GREETING_METHOD = re.compile(r"this\.setState\(\{ greeting: '(\w+)' \}\);")
STRING_TAG = re.compile(r'const StringBasedComponent = "(\w+)";')
BACKGROUND = re.compile(r"background-color: (#[0-9a-f]{3});")
COLORS = {"#000": "rgb(0, 0, 0)", "#fff": "rgb(255, 255, 255)"}


def _search(pattern: re.Pattern, source: Optional[str]) -> Optional[str]:
    if source is None:
        return None
    match = pattern.search(source)
    return match.group(1) if match else None


class SimulatedPage:
    """
    Renders the fixture app from the workspace files.

    An edit becomes visible only after ``lag`` reads, like a debounced
    watcher plus rebuild. Component state (hook counter, class greeting,
    context items) survives edits unless the hook's initial state literal
    changes. List items are handed out as ``("li", index)`` handles.
    """

    def __init__(self, root: Path, lag: int = 2, hot: bool = True):
        self.root = root
        self.lag = lag
        self.hot = hot
        self._applied: dict[str, Optional[str]] = {}
        self._pending: dict[str, int] = {}
        self._initial = None
        self.count = 0
        self.greeting = "hi"
        self.items: list[str] = []
        self.clicks = 0
        self._refresh()

    def _current(self, name: str) -> Optional[str]:
        path = self.root / "src" / name
        return path.read_text(encoding="utf-8") if path.exists() else None

    def _source(self, name: str) -> Optional[str]:
        current = self._current(name)
        if name not in self._applied:
            self._applied[name] = current
            return current
        if current != self._applied[name] and self.hot:
            self._pending[name] = self._pending.get(name, 0) + 1
            if self._pending[name] > self.lag:
                self._applied[name] = current
                self._pending[name] = 0
        return self._applied[name]

    def _flush(self) -> None:
        # Clicks follow a settle delay, by which time pending updates landed
        if not self.hot:
            return
        for name in list(self._applied):
            self._applied[name] = self._current(name)
            self._pending[name] = 0

    def _refresh(self) -> None:
        initial = int(_search(INITIAL_STATE, self._source("useCounter.js")))
        if initial != self._initial:
            self._initial = initial
            self.count = initial

    def _mounted(self, marker: str) -> bool:
        return marker in (self._source("app.jsx") or "")

    # ----- BrowserDriver surface -----

    async def resolve_element(self, target):
        return target

    async def text_of(self, target):
        self._refresh()
        if isinstance(target, tuple):
            _, index = target
            return self.items[index] if index < len(self.items) else None
        if target == ".button":
            return _search(BUTTON_TEXT, self._source("app.jsx"))
        if target == ".value":
            return f"Count: {self.count}"
        if target == ".tester":
            if not self._mounted("<Tester />"):
                return None
            return _search(TESTER_TEXT, self._source("test.jsx"))
        if target == "#effect-test":
            return _search(EFFECT_TEXT, self._source("effect.jsx"))
        if target == ".class-text":
            return _search(CLASS_TEXT, self._source("greeting.jsx"))
        if target == ".greeting-text":
            return self.greeting
        if target in (".apple-div", ".peach-div"):
            return target[1:].split("-")[0]
        return None

    async def tag_name_of(self, target):
        if target != ".decorated-string-based-component":
            return None
        if not self._mounted('className="decorated-string-based-component"'):
            return None
        tag = _search(STRING_TAG, self._source("decoratedStringBasedComponent.jsx"))
        return tag.upper() if tag else None

    async def computed_style_property(self, selector, prop):
        assert selector == "#color"
        assert prop in ("backgroundColor", "background-color")
        return COLORS.get(_search(BACKGROUND, self._source("styles.js")), "")

    async def query_all(self, selector, within=None):
        if selector == "li" and within == ".store-items":
            return [("li", index) for index in range(len(self.items))]
        return []

    async def click(self, target):
        self._flush()
        self._refresh()
        self.clicks += 1
        if target == ".button":
            self.count += int(_search(STEP, self._source("useCounter.js")))
        elif target == ".greeting-button":
            self.greeting = _search(GREETING_METHOD, self._source("greeting.jsx"))
        elif target in (".apple-div", ".peach-div"):
            item = target[1:].split("-")[0]
            dedupe = "if (!items.includes(id))" in self._source("context.jsx")
            if not (dedupe and item in self.items):
                self.items.append(item)
        else:
            raise LookupError(f"No element matches {target!r}")


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "ws"
    (root / "src").mkdir(parents=True)
    for name, source in FIXTURE_FILES.items():
        (root / "src" / name).write_text(source, encoding="utf-8")
    return WorkspaceHandle("fake", root.resolve(), Path("/fixtures/fake"))


@pytest.fixture
def page(workspace):
    return SimulatedPage(workspace.path)


def make_context(settings, integration, workspace, page) -> SuiteContext:
    ctx = SuiteContext(integration=integration, settings=settings, workspace=workspace)
    ctx.driver = page
    ctx.state = SuiteState.PAGE_LOADED
    return ctx


@pytest.fixture
def ctx(settings, integration, workspace, page):
    return make_context(settings, integration, workspace, page)


def source_of(workspace, name):
    return (workspace.path / "src" / name).read_text(encoding="utf-8")


# ==================== Catalog ====================

class TestCatalog:
    """Test the scenario catalog itself."""

    def test_order(self):
        assert SCENARIOS.ids() == [
            "basic-component",
            "add-export",
            "add-file-and-import",
            "custom-hook",
            "resets-hook-state",
            "reruns-changed-effects",
            "class-components",
            "string-component-hoc",
            "change-methods",
            "hot-reload-context",
            "externally-defined-jsx",
        ]

    def test_descriptions(self):
        for scenario in SCENARIOS:
            assert scenario.description, scenario.id

    def test_select(self):
        selected = SCENARIOS.select(["custom-hook", "basic-component"])
        assert [s.id for s in selected] == ["basic-component", "custom-hook"]

    def test_select_unknown(self):
        with pytest.raises(KeyError):
            SCENARIOS.select(["does-not-exist"])

    def test_duplicate_registration(self):
        with pytest.raises(ValueError):
            SCENARIOS.scenario("basic-component")(lambda ctx: None)

    def test_every_default_integration_runs_basic_component(self):
        for config in DEFAULT_INTEGRATIONS:
            assert not config.is_excluded("basic-component")


# ==================== Scenarios ====================

class TestScenariosAgainstSimulatedPage:
    """Run catalog scenarios against a page that lags behind file edits."""

    @pytest.mark.asyncio
    async def test_basic_component(self, ctx, page, workspace):
        """Test the button text converges to the edited label."""
        await SCENARIOS.get("basic-component").run(ctx)

        assert await page.text_of(".button") == "Increment (+)"
        assert "Increment (+)" in source_of(workspace, "app.jsx")

    @pytest.mark.asyncio
    async def test_add_file_and_import(self, ctx, page, workspace):
        """Test the new module is imported once and its edit shows up."""
        await SCENARIOS.get("add-file-and-import").run(ctx)

        app = source_of(workspace, "app.jsx")
        assert app.startswith('import { Tester } from "./test.jsx";\n')
        assert app.count("<Tester />") == 1
        assert await page.text_of(".tester") == "Test2"

    @pytest.mark.asyncio
    async def test_custom_hook(self, ctx, page):
        """Test Count: 0 -> 1 -> 3 (step edit) -> 10 (initial state edit)."""
        await SCENARIOS.get("custom-hook").run(ctx)

        assert await page.text_of(".value") == "Count: 10"
        assert page.clicks == 2

    @pytest.mark.asyncio
    async def test_reruns_changed_effects(self, ctx, page, workspace):
        await SCENARIOS.get("reruns-changed-effects").run(ctx)

        assert "setState('changed world')" in source_of(workspace, "effect.jsx")
        assert await page.text_of("#effect-test") == "changed world"

    @pytest.mark.asyncio
    async def test_class_components(self, ctx, page):
        await SCENARIOS.get("class-components").run(ctx)

        assert await page.text_of(".class-text") == "I'm a reloaded class component"

    @pytest.mark.asyncio
    async def test_string_component_hoc(self, ctx, page, workspace):
        """Test the decorated host component switches from SPAN to DIV."""
        await SCENARIOS.get("string-component-hoc").run(ctx)

        assert 'const StringBasedComponent = "div";' in source_of(
            workspace, "decoratedStringBasedComponent.jsx"
        )
        assert await page.tag_name_of(".decorated-string-based-component") == "DIV"

    @pytest.mark.asyncio
    async def test_change_methods(self, ctx, page):
        """Test the edited method runs on the existing instance."""
        await SCENARIOS.get("change-methods").run(ctx)

        assert page.greeting == "hello"
        assert page.clicks == 2

    @pytest.mark.asyncio
    async def test_hot_reload_context(self, ctx, page, workspace):
        """Test stored items survive the provider edit and the list grows in order."""
        await SCENARIOS.get("hot-reload-context").run(ctx)

        assert "if (!items.includes(id))" not in source_of(workspace, "context.jsx")
        assert page.items == ["apple", "peach"]

    @pytest.mark.asyncio
    async def test_hot_reload_context_missing_item(self, ctx, page):
        """Test a list shorter than the polled index times out instead of raising."""
        page.click = _ignore_peach(page.click)

        with pytest.raises(AssertionTimeout) as exc_info:
            await SCENARIOS.get("hot-reload-context").run(ctx)

        assert exc_info.value.expected == "peach"
        assert exc_info.value.last_value is None
        assert exc_info.value.last_error is None

    @pytest.mark.asyncio
    async def test_externally_defined_jsx(self, ctx, page, workspace):
        await SCENARIOS.get("externally-defined-jsx").run(ctx)

        assert "background-color: #fff;" in source_of(workspace, "styles.js")
        assert await page.computed_style_property("#color", "backgroundColor") == "rgb(255, 255, 255)"

    @pytest.mark.asyncio
    async def test_full_catalog_in_order(self, ctx, page, workspace):
        """Test every scenario passes when run cumulatively on one page."""
        for scenario in SCENARIOS:
            await scenario.run(ctx)

        app = source_of(workspace, "app.jsx")
        assert app.count("<Tester />") == 1
        assert app.count('className="decorated-string-based-component"') == 1
        assert "export function Test" in app
        assert await page.text_of(".button") == "Increment (+)"
        assert await page.text_of(".value") == "Count: 10"
        assert await page.text_of(".tester") == "Test2"

    @pytest.mark.asyncio
    async def test_resets_hook_state_after_custom_hook(self, ctx, page):
        """Test the initializer edit finds nothing to change and the count holds."""
        await SCENARIOS.get("custom-hook").run(ctx)
        await SCENARIOS.get("resets-hook-state").run(ctx)

        assert await page.text_of(".value") == "Count: 10"

    @pytest.mark.asyncio
    async def test_broken_hmr_times_out(self, settings, integration, workspace):
        """Test a page that never applies updates fails with a diagnostic."""
        page = SimulatedPage(workspace.path, hot=False)
        ctx = make_context(settings, integration, workspace, page)

        with pytest.raises(AssertionTimeout) as exc_info:
            await SCENARIOS.get("basic-component").run(ctx)

        assert exc_info.value.expected == "Increment (+)"
        assert exc_info.value.last_value == "Increment"
        assert exc_info.value.elapsed >= settings.poll_timeout

    @pytest.mark.asyncio
    async def test_broken_style_update_times_out(self, settings, integration, workspace):
        page = SimulatedPage(workspace.path, hot=False)
        ctx = make_context(settings, integration, workspace, page)

        with pytest.raises(AssertionTimeout) as exc_info:
            await SCENARIOS.get("externally-defined-jsx").run(ctx)

        assert exc_info.value.last_value == "rgb(0, 0, 0)"


def _ignore_peach(click):
    async def wrapped(target):
        if target == ".peach-div":
            return None
        return await click(target)
    return wrapped
