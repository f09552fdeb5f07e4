# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Stan code generation and sampling.

This module emits a complete Stan program from a
:py:class:`~dagstan.model.compiler.CompiledGraph` and hands it to a sampling
backend. The generated program is organized as follows:

    - ``data``: plate sizes (``<plate>_dim``), row lengths (``<label>_len``), and
      all observed nodes
    - ``parameters``: every unobserved node drawn from a distribution, constrained
      to its distribution's support
    - ``transformed parameters``: every deterministic node that is not defined
      per row
    - ``model``: prior and likelihood statements in dependency order, with
      per-row deterministic nodes computed as local variables

Every statement is a scalar statement nested in one ``for`` loop per dimension
of the node it defines. Consecutive statements sharing loops are combined into
the same loop.

Sampling is delegated to a :py:class:`SamplingBackend`. The default
:py:class:`CmdStanBackend` compiles and samples with CmdStanPy; failures raised
by CmdStan are not caught. Users will normally reach this module through
:py:meth:`Graph.to_stan() <dagstan.graph.graph.Graph.to_stan>` or
:py:meth:`Graph.mcmc() <dagstan.graph.graph.Graph.mcmc>`.
"""

from __future__ import annotations

import logging
import os.path
import weakref

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from tempfile import TemporaryDirectory
from typing import Any, Optional, Union

import pandas as pd

from cmdstanpy import CmdStanModel, format_stan_file

import dagstan

from dagstan import utils
from dagstan.defaults import (
    DEFAULT_CHAINS,
    DEFAULT_CPP_OPTIONS,
    DEFAULT_FORCE_COMPILE,
    DEFAULT_ITER_SAMPLING,
    DEFAULT_ITER_WARMUP,
    DEFAULT_MODEL_NAME,
    DEFAULT_STANC_OPTIONS,
)
from dagstan.graph.graph import Graph
from dagstan.model.compiler import CompiledGraph, CompiledNode, compile_graph

results = utils.lazy_import("dagstan.model.results")

logger = logging.getLogger(__name__)

# Number of spaces per indentation level in generated code
DEFAULT_INDENTATION = 4


class StanCodeBase(ABC, list):
    """Base class for nested blocks of Stan statements.

    Items are either statement strings or nested :py:class:`StanForLoop` objects.

    :param parent_loop: Enclosing block, or None at the top level
    :type parent_loop: Optional[StanCodeBase]
    """

    def __init__(self, parent_loop: Optional["StanCodeBase"] = None):
        super().__init__()
        self.parent_loop = parent_loop

    def add_statement(self, loops: tuple[tuple[str, str], ...], statement: str) -> None:
        """Add a statement nested in the given loops.

        The statement joins the most recently added loop where that loop matches,
        so consecutive statements over the same plates share their loops.

        :param loops: ``(loop variable, size name)`` pairs, outermost first
        :type loops: tuple[tuple[str, str], ...]
        :param statement: The statement, without a trailing semicolon
        :type statement: str
        """
        # Statements outside loops go directly into this block
        if len(loops) == 0:
            self.append(statement)
            return

        # Reuse the last loop if it iterates the same way, otherwise open a new one
        index, end = loops[0]
        if (
            len(self) > 0
            and isinstance(self[-1], StanForLoop)
            and (self[-1].index, self[-1].end) == (index, end)
        ):
            loop = self[-1]
        else:
            loop = StanForLoop(index, end, parent_loop=self)
            self.append(loop)
        loop.add_statement(loops[1:], statement)

    def finalize_line(self, text: str, indentation_level: int) -> str:
        """Indent a line of Stan code and terminate it with a semicolon where
        needed.

        :param text: Raw line of code
        :type text: str
        :param indentation_level: Number of indentation levels
        :type indentation_level: int

        :returns: The formatted line
        :rtype: str
        """
        formatted = f"{' ' * DEFAULT_INDENTATION * indentation_level}{text}"

        # Add a semicolon to the end if not a bracket or blank
        if text and text[-1] not in {"{", "}", ";"} and not text.startswith("//"):
            formatted += ";"

        return formatted

    def render_lines(self, indentation_level: int) -> list[str]:
        """Render every item of the block at the given indentation level."""
        lines = []
        for item in self:
            if isinstance(item, StanForLoop):
                lines.extend(item.render_lines(indentation_level))
            else:
                lines.append(self.finalize_line(item, indentation_level))
        return lines

    def combine_lines(self, indentation_level: int = 1) -> str:
        """Render the block as one string.

        :param indentation_level: Indentation of the block's items. Defaults to 1.
        :type indentation_level: int

        :returns: The rendered code
        :rtype: str
        """
        return "\n".join(self.render_lines(indentation_level))


class StanForLoop(StanCodeBase):
    """A ``for`` loop over ``1:end``.

    :param index: Loop variable
    :type index: str
    :param end: Stan name of the number of iterations
    :type end: str
    :param parent_loop: Enclosing block
    :type parent_loop: StanCodeBase
    """

    def __init__(self, index: str, end: str, parent_loop: StanCodeBase):
        super().__init__(parent_loop)
        self.index = index
        self.end = end

    def render_lines(self, indentation_level: int) -> list[str]:
        return (
            [self.finalize_line(f"for ({self.index} in 1:{self.end}) {{", indentation_level)]
            + super().render_lines(indentation_level + 1)
            + [self.finalize_line("}", indentation_level)]
        )


class StanBlock(StanCodeBase):
    """A named top-level block of a Stan program.

    :param name: Block name, e.g. ``model``
    :type name: str
    """

    def __init__(self, name: str):
        super().__init__(None)
        self.name = name

    def code(self) -> str:
        """Render the block, or an empty string if it holds nothing."""
        if len(self) == 0:
            return ""
        return f"{self.name} {{\n" + self.combine_lines(1) + "\n}"


class StanProgram:
    """The Stan program emitted for a compiled graph.

    :param compiled: The compiled graph
    :type compiled: CompiledGraph

    The program is built on initialization. Blocks are available individually
    through the ``*_block`` properties and combined through :py:meth:`code`.
    """

    def __init__(self, compiled: CompiledGraph):
        self.compiled = compiled

        self._data = StanBlock("data")
        self._parameters = StanBlock("parameters")
        self._transformed_parameters = StanBlock("transformed parameters")
        self._model = StanBlock("model")

        self._build()

    @staticmethod
    def _declaration(node: CompiledNode) -> str:
        return f"{node.stan_type} {node.label}"

    def _build(self) -> None:
        # Sizes first, then observed data in emission order
        for name in self.compiled.size_names:
            self._data.append(f"int<lower=1> {name}")
        for node in self.compiled.nodes_of_kind("data", "likelihood"):
            self._data.append(self._declaration(node))

        for node in self.compiled.nodes_of_kind("parameter"):
            self._parameters.append(self._declaration(node))

        # Transformed parameters are declared first and then assigned
        transformed = [
            node
            for node in self.compiled.nodes_of_kind("transformed")
            if not node.is_local
        ]
        for node in transformed:
            self._transformed_parameters.append(self._declaration(node))
        for node in transformed:
            self._transformed_parameters.add_statement(
                node.loops, f"{node.target} = {node.statement}"
            )

        # Model-block locals are declared at the top of the block
        for node in self.compiled.nodes:
            if node.is_local:
                self._model.append(self._declaration(node))
        for node in self.compiled.nodes:
            if node.is_local:
                self._model.add_statement(node.loops, f"{node.target} = {node.statement}")
            elif node.kind in ("parameter", "likelihood"):
                self._model.add_statement(node.loops, f"{node.target} ~ {node.statement}")

    @property
    def data_block(self) -> str:
        """Stan data block: sizes and observed nodes."""
        return self._data.code()

    @property
    def parameters_block(self) -> str:
        """Stan parameters block: latent draws from distributions."""
        return self._parameters.code()

    @property
    def transformed_parameters_block(self) -> str:
        """Stan transformed parameters block: deterministic nodes reported in the
        draws.
        """
        return self._transformed_parameters.code()

    @property
    def model_block(self) -> str:
        """Stan model block: priors, likelihoods, and per-row locals."""
        return self._model.code()

    def code(self) -> str:
        """Generate the complete Stan program.

        :returns: The program
        :rtype: str
        """
        # Join blocks that have contents
        return "\n".join(
            block
            for block in (
                self.data_block,
                self.parameters_block,
                self.transformed_parameters_block,
                self.model_block,
            )
            if len(block.strip()) > 0
        )


@dataclass(frozen=True)
class SampleOptions:
    """Options for a sampling run.

    :ivar iter_sampling: Retained draws per chain
    :ivar iter_warmup: Warmup iterations per chain
    :ivar chains: Number of chains
    :ivar seed: Random seed
    :ivar show_progress: Whether the backend shows progress bars
    :ivar backend_kwargs: Further keyword arguments for the backend
    """

    iter_sampling: int = DEFAULT_ITER_SAMPLING
    iter_warmup: int = DEFAULT_ITER_WARMUP
    chains: int = DEFAULT_CHAINS
    seed: Optional[int] = None
    show_progress: bool = False
    backend_kwargs: dict[str, Any] = field(default_factory=dict)


class SamplingBackend(ABC):
    """Interface of the engine that compiles a Stan program and samples from it."""

    @abstractmethod
    def compile_and_sample(
        self, program: StanProgram, data: dict[str, Any], options: SampleOptions
    ) -> pd.DataFrame:
        """Compile a program and draw posterior samples.

        :param program: The emitted Stan program
        :type program: StanProgram
        :param data: Stan data dictionary
        :type data: dict[str, Any]
        :param options: Sampling options
        :type options: SampleOptions

        :returns: One row per draw and one column per Stan output, with columns
            named the way CmdStan names them (``theta``, ``theta[1]``,
            ``theta[1,2]``). The optional ``chain__`` and ``draw__`` columns
            identify the chain and draw.
        :rtype: pd.DataFrame
        """


class CmdStanBackend(SamplingBackend):
    """Sampling backend running CmdStan through CmdStanPy.

    :param output_dir: Directory for the Stan file and executable. Defaults to
        None (a temporary directory removed with the backend).
    :type output_dir: Optional[str]
    :param force_compile: Whether to force recompilation. Defaults to False.
    :type force_compile: bool
    :param stanc_options: Options for the Stan compiler. Defaults to None (uses
        defaults).
    :type stanc_options: Optional[dict[str, Any]]
    :param cpp_options: Options for C++ compilation. Defaults to None (uses
        defaults).
    :type cpp_options: Optional[dict[str, Any]]
    :param model_name: Name of the Stan file and executable. Defaults to 'model'.
    :type model_name: str

    :ivar fit: The ``CmdStanMCMC`` object of the most recent run, or None
    """

    def __init__(
        self,
        output_dir: Optional[str] = None,
        force_compile: bool = DEFAULT_FORCE_COMPILE,
        stanc_options: Optional[dict[str, Any]] = None,
        cpp_options: Optional[dict[str, Any]] = None,
        model_name: str = DEFAULT_MODEL_NAME,
    ):
        self.force_compile = force_compile
        self.stanc_options = dict(stanc_options or DEFAULT_STANC_OPTIONS)
        self.cpp_options = dict(cpp_options or DEFAULT_CPP_OPTIONS)
        self.fit = None

        self._set_output_dir(output_dir)
        self.stan_executable_path = os.path.join(self.output_dir, model_name)

    def _set_output_dir(self, output_dir: Optional[str]) -> None:
        """Set the output directory, creating a temporary one that is cleaned up
        with the backend if none is given.

        :raises FileNotFoundError: If the given directory doesn't exist
        """
        if output_dir is None:
            tempdir = TemporaryDirectory()
            weakref.finalize(self, tempdir.cleanup)
            output_dir = tempdir.name

        if not os.path.exists(output_dir):
            raise FileNotFoundError(f"Output directory {output_dir} does not exist.")

        self.output_dir = output_dir

    @property
    def stan_program_path(self) -> str:
        """Path to the generated Stan program file."""
        return self.stan_executable_path + ".stan"

    def write_stan_program(self, program: StanProgram) -> str:
        """Write and format a Stan program.

        :param program: The program to write
        :type program: StanProgram

        :returns: Path to the written file
        :rtype: str
        """
        with open(self.stan_program_path, "w", encoding="utf-8") as f:
            f.write(program.code())

        format_stan_file(
            self.stan_program_path,
            overwrite_file=True,
            canonicalize=True,
            stanc_options=self.stanc_options,
        )
        return self.stan_program_path

    def build_model(self, program: StanProgram) -> CmdStanModel:
        """Write a program and compile it, reusing an existing executable unless
        recompilation is forced.
        """
        self.write_stan_program(program)
        return CmdStanModel(
            stan_file=self.stan_program_path,
            exe_file=(
                self.stan_executable_path
                if os.path.exists(self.stan_executable_path) and not self.force_compile
                else None
            ),
            force_compile=self.force_compile,
            stanc_options=self.stanc_options,
            cpp_options=self.cpp_options,
        )

    def compile_and_sample(
        self, program: StanProgram, data: dict[str, Any], options: SampleOptions
    ) -> pd.DataFrame:
        model = self.build_model(program)
        logger.info(
            "Sampling %d chain(s) of %d draws after %d warmup iterations",
            options.chains,
            options.iter_sampling,
            options.iter_warmup,
        )
        self.fit = model.sample(
            data=data,
            chains=options.chains,
            iter_sampling=options.iter_sampling,
            iter_warmup=options.iter_warmup,
            seed=options.seed,
            show_progress=options.show_progress,
            **options.backend_kwargs,
        )
        return self.fit.draws_pd()


class StanModel:
    """A graph compiled to Stan, ready for sampling.

    :param graph: The graph, or an already compiled graph
    :type graph: Union[Graph, CompiledGraph]
    :param backend: Sampling backend. Defaults to None, in which case a
        :py:class:`CmdStanBackend` is built from ``backend_kwargs``.
    :type backend: Optional[SamplingBackend]
    :param backend_kwargs: Keyword arguments for :py:class:`CmdStanBackend`

    :ivar compiled: The compiled graph
    :ivar program: The emitted Stan program
    :ivar backend: The sampling backend

    Example:
        >>> model = graph.to_stan()
        >>> print(model.code())
        >>> draws = model.sample(iter_sampling=500)
    """

    def __init__(
        self,
        graph: Union[Graph, CompiledGraph],
        backend: Optional[SamplingBackend] = None,
        **backend_kwargs,
    ):
        self.compiled = graph if isinstance(graph, CompiledGraph) else compile_graph(graph)
        self.program = StanProgram(self.compiled)

        if backend is None:
            backend = CmdStanBackend(**backend_kwargs)
        elif backend_kwargs:
            raise ValueError(
                "Backend keyword arguments can only be given when no backend is passed."
            )
        self.backend = backend

    def code(self) -> str:
        """Get the Stan program.

        :returns: The Stan code
        :rtype: str
        """
        return self.program.code()

    @property
    def data(self) -> dict[str, Any]:
        """The data dictionary passed to Stan."""
        return self.compiled.stan_data()

    def sample(
        self,
        iter_sampling: int = DEFAULT_ITER_SAMPLING,
        iter_warmup: int = DEFAULT_ITER_WARMUP,
        chains: int = DEFAULT_CHAINS,
        seed: Optional[int] = None,
        show_progress: bool = False,
        abbreviate: bool = False,
        **backend_kwargs,
    ) -> "results.DrawsTable":
        """Sample the posterior and collect the draws.

        :param iter_sampling: Retained draws per chain. Defaults to 1000.
        :type iter_sampling: int
        :param iter_warmup: Warmup iterations per chain. Defaults to 1000.
        :type iter_warmup: int
        :param chains: Number of chains. Defaults to 4.
        :type chains: int
        :param seed: Random seed. Defaults to None, in which case one is drawn
            from the global random number generator (see
            :py:func:`dagstan.manual_seed`).
        :type seed: Optional[int]
        :param show_progress: Whether to show progress bars. Defaults to False.
        :type show_progress: bool
        :param abbreviate: Whether to abbreviate draw column names. Defaults to
            False.
        :type abbreviate: bool
        :param backend_kwargs: Further keyword arguments for the backend

        :returns: The posterior draws
        :rtype: results.DrawsTable
        """
        if seed is None:
            seed = int(dagstan.RNG.integers(0, 2**32 - 1))

        options = SampleOptions(
            iter_sampling=iter_sampling,
            iter_warmup=iter_warmup,
            chains=chains,
            seed=seed,
            show_progress=show_progress,
            backend_kwargs=backend_kwargs,
        )
        raw = self.backend.compile_and_sample(self.program, self.data, options)
        return results.DrawsTable.from_stan_draws(
            raw, self.compiled, abbreviate=abbreviate
        )
