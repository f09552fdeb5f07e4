# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Utility functions for the DagStan package.

This module provides small helpers that support the core functionality of
DagStan, including:

    - Lazy importing of heavy optional modules (plotting, Stan backend)
    - Conversion of user data to read-only NumPy arrays
    - First-occurrence index levels for plates
    - R-style label abbreviation and text wrapping for displays

Users will not typically need to interact with this module directly.
"""

from __future__ import annotations

import importlib.util
import sys
import textwrap

from typing import Optional

import numpy as np
import numpy.typing as npt
import pandas as pd

from dagstan import custom_types


def lazy_import(name: str):
    """Import a module only when it is first needed.

    This defers loading of heavy dependencies (HoloViews, graphviz, cmdstanpy)
    until a function that needs them is actually used.

    :param name: The fully qualified module name to import
    :type name: str

    :returns: The imported module
    :rtype: module

    :raises ImportError: If the specified module cannot be found

    .. note::
        If the module is already imported, returns the cached version
        from sys.modules.
    """
    # Check if the module is already imported
    if name in sys.modules:
        return sys.modules[name]

    # If not, import it lazily (modified from here:
    # https://docs.python.org/3/library/importlib.html#implementing-lazy-imports)
    spec = importlib.util.find_spec(name)
    if spec is None:
        raise ImportError(f"Module '{name}' not found.")

    # Create the module with a lazy loader
    spec.loader = importlib.util.LazyLoader(spec.loader)
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    spec.loader.exec_module(module)
    return module


def as_readonly_array(data: Optional[custom_types.DataVector]) -> Optional[npt.NDArray]:
    """Convert user-supplied data to a read-only NumPy array.

    :param data: Data vector to convert, or None
    :type data: Optional[custom_types.DataVector]

    :returns: A read-only copy of the data, or None if no data was given
    :rtype: Optional[npt.NDArray]

    :raises ValueError: If the data is empty or zero-dimensional
    """
    if data is None:
        return None

    # pandas objects carry their values in `to_numpy`
    if isinstance(data, (pd.Series, pd.Index)):
        array = data.to_numpy(copy=True)
    else:
        array = np.array(data, copy=True)

    if array.ndim == 0:
        array = array.reshape(1)
    if array.size == 0:
        raise ValueError("Data vectors must contain at least one value.")

    array.flags.writeable = False
    return array


def first_occurrence_levels(values: npt.NDArray) -> tuple[tuple[str, ...], npt.NDArray]:
    """Get the distinct values of a vector in first-occurrence order.

    :param values: The source vector
    :type values: npt.NDArray

    :returns: The distinct values as strings, in the order they first appear, and
        the 1-based level index of every entry of ``values``
    :rtype: tuple[tuple[str, ...], npt.NDArray]

    Example:
        >>> first_occurrence_levels(np.array(["b", "a", "b", "c"]))
        (('b', 'a', 'c'), array([1, 2, 1, 3]))
    """
    codes, uniques = pd.factorize(pd.Series(values.ravel()), sort=False)
    if (codes < 0).any():
        raise ValueError("Plate source data must not contain missing values.")
    return tuple(str(level) for level in uniques), codes.astype(np.int64) + 1


def is_integer_valued(values: npt.NDArray) -> bool:
    """Check whether an array holds integer data (integer or boolean dtype, or
    floats that are all whole numbers).
    """
    if values.dtype.kind in "iub":
        return True
    if values.dtype.kind == "f":
        return bool(np.all(np.isfinite(values)) and np.all(np.mod(values, 1) == 0))
    return False


def abbreviate(name: str, min_length: int) -> str:
    """Abbreviate a name in the manner of R's ``abbreviate``.

    Characters are dropped from the right until the name is no longer than
    ``min_length``: first lower-case vowels, then lower-case letters, then spaces.
    The first character of each word is never dropped, so the result may stay
    longer than ``min_length``.

    :param name: Name to abbreviate
    :type name: str
    :param min_length: Target length
    :type min_length: int

    :returns: The abbreviated name
    :rtype: str

    Example:
        >>> abbreviate("probability_Toyota", 10)
        'prbblty_Ty'
    """
    name = name.strip()
    if len(name) <= min_length:
        return name

    chars = list(name)

    def is_word_start(pos: int) -> bool:
        return pos == 0 or not chars[pos - 1].isalnum()

    for droppable in (
        lambda c: c in "aeiou",
        lambda c: c.islower(),
        lambda c: c == " ",
    ):
        pos = len(chars) - 1
        while len(chars) > min_length and pos > 0:
            if droppable(chars[pos]) and not is_word_start(pos):
                del chars[pos]
            pos -= 1

    return "".join(chars)


def wrap_text(text: str, width: int) -> str:
    """Wrap text onto multiple lines of at most ``width`` characters."""
    return "\n".join(textwrap.wrap(text, width=width)) or text

