"""
HMR Harness Scenario Catalog

The fixed scenario sequence every integration runs. Scenarios share the
workspace and the page: each one starts from the file and DOM state the
previous ones left behind, so HMR is exercised repeatedly and
cumulatively rather than once per fresh page.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from hmr_harness.mutation import chain, prepend, replace
from hmr_harness.polling import contains
from hmr_harness.scenarios.base import ScenarioCatalog

if TYPE_CHECKING:
    from hmr_harness.suite import SuiteContext

SCENARIOS = ScenarioCatalog()

APP = "src/app.jsx"
COUNTER_HOOK = "src/useCounter.js"

TESTER_SOURCE = """import { h } from 'preact';
export const Tester = () => <p className="tester">Test</p>;
"""

STRING_COMPONENT_SOURCE = """import { h } from 'preact';
const hoc = (val) => val;
const StringBasedComponent = "span";
const DecoratedStringBasedComponent = hoc(StringBasedComponent);
export default DecoratedStringBasedComponent;
"""


@SCENARIOS.scenario("basic-component")
async def basic_component(ctx: SuiteContext) -> None:
    """Editing a component's JSX text re-renders it in place."""
    button = await ctx.driver.resolve_element(".button")
    await ctx.expect_text(button, "Increment")

    await ctx.update_file(APP, replace("Increment", "Increment (+)"))
    await ctx.settle()

    await ctx.expect_text(button, "Increment (+)")


@SCENARIOS.scenario("add-export")
async def add_export(ctx: SuiteContext) -> None:
    """Exporting an extra binding from a component module keeps the UI intact."""
    await ctx.expect_text(".button", "Increment (+)")

    await ctx.update_file(APP, replace("function Test", "export function Test"))
    await ctx.settle()

    # Resolved by selector: the module may be re-mounted rather than patched
    await ctx.expect_text(".button", "Increment (+)")


@SCENARIOS.scenario("add-file-and-import")
async def add_file_and_import(ctx: SuiteContext) -> None:
    """A newly created module imported by an existing one renders and hot-updates."""
    await ctx.write_file("src/test.jsx", TESTER_SOURCE)
    await ctx.update_file(
        APP,
        chain(
            prepend('import { Tester } from "./test.jsx";\n'),
            replace("<Test />", "<Test />\n      <Tester />\n"),
        ),
    )
    await ctx.settle(long=True)

    await ctx.expect_text(".tester", "Test")
    tester = await ctx.driver.resolve_element(".tester")

    await ctx.update_file(
        "src/test.jsx",
        replace('<p className="tester">Test</p>', '<p className="tester">Test2</p>'),
    )
    await ctx.settle(long=True)

    await ctx.expect_text(tester, "Test2")


@SCENARIOS.scenario("custom-hook")
async def custom_hook(ctx: SuiteContext) -> None:
    """Hook edits keep state; changing the initial state resets it."""
    value = await ctx.driver.resolve_element(".value")
    button = await ctx.driver.resolve_element(".button")
    await ctx.expect_text(value, "Count: 0")

    await ctx.driver.click(button)
    await ctx.expect_text(value, "Count: 1")

    await ctx.update_file(COUNTER_HOOK, replace("state + 1", "state + 2"))
    await ctx.settle()

    await ctx.driver.click(button)
    await ctx.expect_text(value, "Count: 3")

    await ctx.update_file(COUNTER_HOOK, replace("useState(0)", "useState(10)"))
    await ctx.settle()

    await ctx.expect_text(value, "Count: 10")


@SCENARIOS.scenario("resets-hook-state")
async def resets_hook_state(ctx: SuiteContext) -> None:
    """A changed hook initializer leaves the counter at its new initial value."""
    value = await ctx.driver.resolve_element(".value")

    await ctx.update_file(COUNTER_HOOK, replace("useState(0);", "useState(10);"))
    await ctx.settle()

    await ctx.expect_text(value, "Count: 10")


@SCENARIOS.scenario("reruns-changed-effects")
async def reruns_changed_effects(ctx: SuiteContext) -> None:
    """An edited effect body runs again after the update."""
    value = await ctx.driver.resolve_element("#effect-test")
    await ctx.expect_text(value, "hello world")

    await ctx.update_file(
        "src/effect.jsx",
        replace(
            "useEffect(() => { setState('hello world'); }, []);",
            "useEffect(() => { setState('changed world'); }, []);",
        ),
    )
    await ctx.settle()

    await ctx.expect_text(value, "changed world")


@SCENARIOS.scenario("class-components")
async def class_components(ctx: SuiteContext) -> None:
    """Class component render output hot-updates."""
    text = await ctx.driver.resolve_element(".class-text")
    await ctx.expect_text(text, "I'm a class component")

    await ctx.update_file(
        "src/greeting.jsx",
        replace("I'm a class component", "I'm a reloaded class component"),
    )
    await ctx.settle()

    await ctx.expect_text(text, "I'm a reloaded class component")


@SCENARIOS.scenario("string-component-hoc")
async def string_component_hoc(ctx: SuiteContext) -> None:
    """A host-element component produced by a higher-order function swaps its tag."""
    await ctx.write_file("src/decoratedStringBasedComponent.jsx", STRING_COMPONENT_SOURCE)
    await ctx.update_file(
        APP,
        chain(
            prepend(
                'import DecoratedStringBasedComponent from '
                '"./decoratedStringBasedComponent.jsx";\n'
            ),
            replace(
                "<Test />",
                '<Test />\n      <DecoratedStringBasedComponent '
                'className="decorated-string-based-component" />\n',
            ),
        ),
    )
    await ctx.settle(long=True)

    selector = ".decorated-string-based-component"
    await ctx.expect_tag_name(selector, "SPAN")

    await ctx.update_file("src/decoratedStringBasedComponent.jsx", replace('"span"', '"div"'))
    await ctx.settle(long=True)

    await ctx.expect_tag_name(selector, "DIV")


@SCENARIOS.scenario("change-methods")
async def change_methods(ctx: SuiteContext) -> None:
    """Edited class methods take effect without losing the instance."""
    text = await ctx.driver.resolve_element(".greeting-text")
    button = await ctx.driver.resolve_element(".greeting-button")
    await ctx.expect_text(text, "hi")

    await ctx.driver.click(button)
    await ctx.expect_text(text, "bye")

    await ctx.update_file(
        "src/greeting.jsx",
        replace(
            "this.setState({ greeting: 'bye' });",
            "this.setState({ greeting: 'hello' });",
        ),
    )
    await ctx.settle()

    await ctx.driver.click(button)
    await ctx.expect_text(text, "hello")


@SCENARIOS.scenario("hot-reload-context")
async def hot_reload_context(ctx: SuiteContext) -> None:
    """Context provider logic hot-updates while its stored items survive."""
    apple = await ctx.driver.resolve_element(".apple-div")
    await ctx.expect_text(apple, "apple")

    await ctx.driver.click(apple)
    await ctx.expect(lambda: _item_text(ctx, 0), "apple", matcher=contains)

    await ctx.update_file(
        "src/context.jsx",
        replace(
            "if (!items.includes(id)) setItems([...items, id])",
            "setItems([...items, id])",
        ),
    )
    await ctx.settle()

    await ctx.driver.click(".peach-div")
    await ctx.expect(lambda: _item_text(ctx, 0), "apple", matcher=contains)
    await ctx.expect(lambda: _item_text(ctx, 1), "peach", matcher=contains)


async def _item_text(ctx: SuiteContext, index: int):
    items = await ctx.driver.query_all("li", within=".store-items")
    if index >= len(items):
        return None
    return await ctx.driver.text_of(items[index])


@SCENARIOS.scenario("externally-defined-jsx")
async def externally_defined_jsx(ctx: SuiteContext) -> None:
    """Styles defined in a plain module hot-update the component using them."""
    await ctx.expect(
        lambda: ctx.driver.computed_style_property("#color", "backgroundColor"),
        "rgb(0, 0, 0)",
    )

    await ctx.update_file(
        "src/styles.js",
        replace("background-color: #000;", "background-color: #fff;"),
    )
    await ctx.settle()

    await ctx.expect(
        lambda: ctx.driver.computed_style_property("#color", "backgroundColor"),
        "rgb(255, 255, 255)",
    )
