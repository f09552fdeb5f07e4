# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Compilation of DagStan graphs into Stan models.

Compilation proceeds in three stages, each in its own module:

    1. :py:mod:`~dagstan.model.resolver` determines the index levels of every
       plate and the scope of every node, synthesizing plate data nodes.
    2. :py:mod:`~dagstan.model.compiler` orders nodes by dependency, classifies
       and types them, and rewrites their right-hand sides with explicit
       subscripts.
    3. :py:mod:`~dagstan.model.stan.stan_model` emits the Stan program and runs
       it through a sampling backend, collecting the draws into a
       :py:class:`~dagstan.model.results.DrawsTable`.

Every stage is a pure function of its input, so a graph can be compiled any
number of times with identical results.
"""
