from datetime import datetime, timedelta, timezone

import pytest

from app.utils.slugs import node_slug, slugify
from app.utils.timeutils import as_utc


@pytest.mark.parametrize(
    "name,expected",
    [
        ("Unit 3: Grammar", "unit-3-grammar"),
        ("  --Hello__World--  ", "hello-world"),
        ("ABC", "abc"),
        ("语文", ""),
        ("", ""),
    ],
)
def test_slugify(name, expected):
    assert slugify(name) == expected


def test_node_slug_falls_back_for_non_ascii():
    assert node_slug("Math 101") == "math-101"
    fallback = node_slug("数学")
    assert fallback.startswith("node-")
    assert fallback[len("node-"):].isdigit()


def test_as_utc():
    naive = datetime(2024, 1, 1, 12, 0)
    shifted = datetime(2024, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

    assert as_utc(None) is None
    assert as_utc(naive) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert as_utc(shifted).hour == 12
    assert as_utc(shifted).tzinfo == timezone.utc
