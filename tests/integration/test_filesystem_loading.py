from __future__ import annotations

import asyncio
import textwrap
from pathlib import Path

import pytest

from shimloader import Loader, load_config
from shimloader.errors import RetryLimitExceeded
from shimloader.types import CacheState, Strategy


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content), encoding="utf-8")


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    site = tmp_path / "site"
    _write(
        site / "app.py",
        """
        format_price = require("./lib/format")
        catalog = require("./lib/catalog")
        exports["lines"] = [format_price(item) for item in catalog["items"]]
        """,
    )
    _write(
        site / "lib" / "format.py",
        """
        currency = require("money")

        def format_price(item):
            return f"{item['name']}: {currency.symbol}{item['price']:.2f}"

        module.exports = format_price
        """,
    )
    _write(
        site / "lib" / "catalog.py",
        """
        def build(exports, items):
            exports["items"] = items["all"]

        define(["exports", "./items"], build)
        """,
    )
    _write(
        site / "lib" / "items.py",
        """
        define(lambda: {"all": [{"name": "tea", "price": 3}, {"name": "cake", "price": 4.5}]})
        """,
    )
    _write(site / "node_modules" / "money" / "package.json", '{"name": "money", "main": "src/money"}')
    _write(
        site / "node_modules" / "money" / "src" / "money.py",
        """
        class Currency:
            symbol = "$"

        module.exports = Currency()
        """,
    )
    _write(site / "cycle" / "left.py", "exports['right'] = require('./right')\n")
    _write(site / "cycle" / "right.py", "exports['left'] = require('./left')\n")
    _write(tmp_path / "config.yaml", "root: site\nretry_limit: 6\n")
    return tmp_path


@pytest.mark.parametrize("strategy", [Strategy.RERUN, Strategy.SUSPEND])
def test_mixed_conventions_load_from_disk(project: Path, strategy: Strategy) -> None:
    config = load_config(project / "config.yaml")

    async def scenario() -> tuple[object, Loader]:
        async with Loader.from_config(config, strategy=strategy) as loader:
            return await loader.load("./app"), loader

    value, loader = asyncio.run(scenario())

    assert value == {"lines": ["tea: $3.00", "cake: $4.50"]}
    assert all(entry.state is CacheState.RESOLVED for entry in loader.cache)
    root = config.root
    assert set(loader.cache.addresses()) == {
        f"{root}/app.py",
        f"{root}/lib/format.py",
        f"{root}/lib/catalog.py",
        f"{root}/lib/items.py",
        f"{root}/node_modules/money/src/money.py",
    }


def test_rerun_strategy_repeats_requiring_modules(project: Path) -> None:
    config = load_config(project / "config.yaml")
    loader = Loader.from_config(config)

    asyncio.run(loader.load("./app"))

    app_runs = [unit for unit in loader.host.dispatch_log if unit.startswith(f"{config.root}/app.py#")]
    assert len(app_runs) == 3


def test_cycle_on_disk_stops_at_retry_limit(project: Path) -> None:
    config = load_config(project / "config.yaml")
    loader = Loader.from_config(config)

    with pytest.raises(RetryLimitExceeded):
        asyncio.run(loader.load("./cycle/left"))

    assert loader.cache.peek(f"{config.root}/cycle/right.py").state is CacheState.FAILED
