# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Custom type definitions for DagStan.

This module provides type aliases used throughout the DagStan package for
data vectors, label collections, and node scopes. The aliases are defined with
runtime objects so that they can be checked by the package-wide typeguard
import hook.
"""

from typing import Any, Sequence, Union

import numpy as np
import pandas as pd

# Data passed by the user for observed nodes and plate sources
DataVector = Union[Sequence[Any], np.ndarray, pd.Series, pd.Index, int, float, np.number]
"""Type alias for observed data and plate source vectors.

Lists, tuples, NumPy arrays, pandas Series/Index objects, and single numbers are
accepted. Data is converted to a read-only NumPy array at declaration time.

:type: Union[Sequence[Any], np.ndarray, pd.Series, pd.Index, int, float, np.number]
"""

LabelArg = Union[str, Sequence[str]]
"""Type alias for arguments that accept either one label or a list of labels.

:type: Union[str, Sequence[str]]
"""

Scope = tuple[str, ...]
"""Ordered tuple of plate labels a compiled node varies over.

:type: tuple[str, ...]
"""
