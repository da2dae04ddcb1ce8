import json
import sys

import atheris

with atheris.instrument_imports():
    from redhelper.assistant.element_locator import Selector, locate
    from redhelper.assistant.screen_digest import DIGEST_TEXT_LIMIT, digest, has_changed
    from redhelper.assistant.ui_tree import UiTree, UiTreeError


def TestOneInput(data: bytes) -> None:
    """Arbitrary UI tree payloads either parse cleanly or raise UiTreeError."""
    try:
        payload = json.loads(data.decode("utf-8", errors="ignore"))
    except ValueError:
        return
    try:
        tree = UiTree.from_dict(payload)
    except UiTreeError:
        return

    first = digest(tree)
    assert len(first.normalized_text) <= DIGEST_TEXT_LIMIT
    assert not has_changed(first, digest(tree))

    for by in ("text", "id", "content_desc", "bogus"):
        locate(tree, Selector(by=by, value="ok"))


def main() -> None:
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
