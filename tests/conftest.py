import numpy as np
import pandas as pd
import pytest

import dagstan as ds

from dagstan.model.results.draws import stan_column_names
from dagstan.model.stan.stan_model import SamplingBackend

CAR_MODELS = ("Toyota", "Subaru", "Ford", "Honda")


class FakeBackend(SamplingBackend):
    """
    Sampling backend that returns random draws in CmdStan's column layout
    without compiling anything. Every call is recorded.
    """

    def __init__(self, seed: int = 0, spaced_columns: bool = False):
        self.seed = seed
        self.spaced_columns = spaced_columns
        self.calls = []

    def compile_and_sample(self, program, data, options):
        self.calls.append((program, data, options))
        rng = np.random.default_rng(self.seed)
        n_draws = options.chains * options.iter_sampling

        columns = {
            "chain__": np.repeat(np.arange(1, options.chains + 1), options.iter_sampling),
            "draw__": np.tile(np.arange(1, options.iter_sampling + 1), options.chains),
            "lp__": rng.normal(size=n_draws),
        }
        for node in program.compiled.draw_nodes:
            for stan_name in stan_column_names(node):
                if self.spaced_columns:
                    stan_name = stan_name.replace(",", ", ")
                columns[stan_name] = rng.uniform(size=n_draws)

        return pd.DataFrame(columns)


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def card_data():
    """Card-drawing data: 1000 observations across four car models."""
    rng = np.random.default_rng(42)
    return pd.DataFrame(
        {
            "getCard": rng.integers(0, 2, size=1000),
            "carModel": np.array(CAR_MODELS)[np.arange(1000) % 4],
        }
    )


@pytest.fixture
def simple_graph(card_data):
    return (
        ds.Graph()
        .node("Get Card", "x", rhs="bernoulli(theta)", data=card_data.getCard)
        .node("Card Probability", "theta", rhs="uniform(0, 1)", child="x")
    )


@pytest.fixture
def car_graph(simple_graph, card_data):
    return simple_graph.plate(
        "Car Model",
        "y",
        node_labels="theta",
        data=card_data.carModel,
        add_data_node=True,
    )


@pytest.fixture
def spaced_backend():
    """Backend writing multi-index columns the way some CmdStanPy versions do
    (``z[1, 2]``)."""
    return FakeBackend(spaced_columns=True)
