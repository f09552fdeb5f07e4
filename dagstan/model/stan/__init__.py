# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Stan integration for DagStan.

This submodule emits Stan programs from compiled graphs and samples them
through a pluggable backend. The default backend drives CmdStan through
CmdStanPy; any object implementing
:py:class:`~dagstan.model.stan.stan_model.SamplingBackend` can take its place.
"""
