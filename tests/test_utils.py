import sys

import numpy as np
import pandas as pd
import pytest

from dagstan import utils


def test_abbreviate() -> None:
    assert utils.abbreviate("probability_Toyota", 10) == "prbblty_Ty"
    assert utils.abbreviate("theta", 10) == "theta"
    assert utils.abbreviate("  theta  ", 10) == "theta"

    # Word starts are never dropped, so names may stay long
    assert utils.abbreviate("a_b_c_d_e_f", 3) == "a_b_c_d_e_f"


def test_first_occurrence_levels() -> None:
    levels, codes = utils.first_occurrence_levels(np.array(["b", "a", "b", "c"]))
    assert levels == ("b", "a", "c")
    np.testing.assert_array_equal(codes, [1, 2, 1, 3])

    levels, _ = utils.first_occurrence_levels(np.array([3, 1, 3]))
    assert levels == ("3", "1")

    with pytest.raises(ValueError, match="missing"):
        utils.first_occurrence_levels(np.array([1.0, np.nan]))


@pytest.mark.parametrize(
    "values,expected",
    [
        (np.array([1, 2, 3]), True),
        (np.array([True, False]), True),
        (np.array([1.0, 2.0]), True),
        (np.array([1.5, 2.0]), False),
        (np.array([np.inf]), False),
        (np.array(["1"]), False),
    ],
)
def test_is_integer_valued(values, expected) -> None:
    assert utils.is_integer_valued(values) is expected


def test_as_readonly_array() -> None:
    assert utils.as_readonly_array(None) is None

    array = utils.as_readonly_array(3)
    assert array.shape == (1,)
    assert not array.flags.writeable

    array = utils.as_readonly_array(pd.Index(["a", "b"]))
    assert array.tolist() == ["a", "b"]

    with pytest.raises(ValueError):
        utils.as_readonly_array([])


def test_wrap_text() -> None:
    assert utils.wrap_text("Average number of cards drawn", 12) == (
        "Average\nnumber of\ncards drawn"
    )
    assert utils.wrap_text("", 12) == ""


def test_lazy_import() -> None:
    assert utils.lazy_import("dagstan.graph") is sys.modules["dagstan.graph"]
    with pytest.raises(ImportError):
        utils.lazy_import("dagstan.not_a_module")
