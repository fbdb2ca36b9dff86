from __future__ import annotations

import pytest

from shimloader.errors import PathResolutionError
from shimloader.paths import normalize, resolve, with_extension
from shimloader.types import BareSpecifier


@pytest.mark.parametrize(
    "path, expected",
    [
        ("a/./b/../c", "a/c"),
        ("/a/../b", "/b"),
        ("/a//b///c", "/a/b/c"),
        ("/a/b/", "/a/b"),
        ("/..", "/"),
        ("/../../x", "/x"),
        ("../x", "../x"),
        ("./../x", "../x"),
        ("a/../../x", "../x"),
    ],
)
def test_normalize(path: str, expected: str) -> None:
    assert normalize(path) == expected


def test_absolute_url_resolves_to_itself() -> None:
    url = "https://cdn.example.com/lib/thing.py"
    assert resolve(url, None, root="/app") == url


def test_bare_name_is_package_marker() -> None:
    assert resolve("lodash", None, root="/app") == BareSpecifier("lodash")


def test_relative_specifier_without_context_uses_root() -> None:
    assert resolve("./lib/util", None, root="/app") == "/app/lib/util.py"


def test_relative_specifier_uses_directory_of_current_module() -> None:
    assert resolve("../shared/x", "/app/lib/a.py", root="/app") == "/app/shared/x.py"
    assert resolve("./b", "/app/lib/a.py", root="/app") == "/app/lib/b.py"


def test_absolute_path_is_kept() -> None:
    assert resolve("/opt/vendor/jq", "/app/a.py", root="/app") == "/opt/vendor/jq.py"


def test_package_subpath_resolves_under_modules_dir() -> None:
    assert resolve("lodash/fp", None, root="/app") == "/app/node_modules/lodash/fp.py"
    assert (
        resolve("pkg/sub", None, root="/app", modules_dir="vendor")
        == "/app/vendor/pkg/sub.py"
    )


def test_escaping_root_raises() -> None:
    with pytest.raises(PathResolutionError):
        resolve("../secret", None, root="/app")


def test_empty_specifier_raises() -> None:
    with pytest.raises(PathResolutionError):
        resolve("", None, root="/app")


def test_existing_extension_is_kept() -> None:
    assert resolve("./data/config.json", None, root="/app") == "/app/data/config.json"


def test_extension_heuristic_can_be_disabled() -> None:
    assert resolve("./bin/tool", None, root="/app", default_extension="") == "/app/bin/tool"


def test_with_extension_only_checks_last_segment() -> None:
    assert with_extension("/app/v1.2/mod", ".py") == "/app/v1.2/mod.py"


def test_url_root_normalises_path_only() -> None:
    root = "http://example.com/site"
    assert resolve("./a/../b", None, root=root) == "http://example.com/site/b.py"
    assert resolve("/abs/c", None, root=root) == "http://example.com/abs/c.py"
    assert (
        resolve("./d", "http://example.com/site/lib/x.py", root=root)
        == "http://example.com/site/lib/d.py"
    )


def test_url_root_cannot_be_escaped() -> None:
    with pytest.raises(PathResolutionError):
        resolve("../other", None, root="http://example.com/site")
