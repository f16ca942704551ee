"""
Shared test fixtures for the specoracle test suite.

Provides: sample specification text, fake OpenAI embedding client, fast embedding config
Dependencies: pytest
System role: Test infrastructure and fixture management
"""

from types import SimpleNamespace
from typing import List
from unittest.mock import MagicMock

import pytest

from specoracle.core.embed import EmbeddingConfig


SAMPLE_SPEC_TEXT = """SECTION 624
SHOTCRETE

624.1-DESCRIPTION:
This work shall consist of furnishing and placing shotcrete on prepared surfaces in accordance with these specifications.

624.2-MATERIALS:
Materials shall meet the requirements of Section 601 and Section 707.1.

624.6-CONSTRUCTION METHODS:
General construction requirements for shotcrete application.

624.6.1-Excavation:
Excavation shall be performed as directed by the Engineer.

624.6.1.1-Scope:
Scope of the excavation work.

624.7-METHOD OF MEASUREMENT:
Shotcrete will be measured by the square yard.

624.8-BASIS OF PAYMENT:
The quantities will be paid for at the contract unit price.

PAY ITEMS:
624001-*         Shotcrete                       Square Yard
624002-*         Shotcrete Reinforcement         Pound

SECTION 625
DRILLED CAISSON FOUNDATIONS

625.1-DESCRIPTION:
This work shall consist of constructing drilled caisson foundations.
"""


@pytest.fixture
def sample_spec_text() -> str:
    return SAMPLE_SPEC_TEXT


def fake_vector(text: str, dimensions: int) -> List[float]:
    """Deterministic vector: first component is the text length."""
    return [float(len(text))] + [0.5] * (dimensions - 1)


def make_embedding_response(texts: List[str], dimensions: int, reverse: bool = False) -> SimpleNamespace:
    data = [
        SimpleNamespace(index=i, embedding=fake_vector(text, dimensions))
        for i, text in enumerate(texts)
    ]
    if reverse:
        data.reverse()
    return SimpleNamespace(data=data)


@pytest.fixture
def embedding_config() -> EmbeddingConfig:
    """Small vectors, no waiting between batches or retries."""
    return EmbeddingConfig(
        model="text-embedding-3-small",
        dimensions=3,
        batch_size=2,
        max_retries=2,
        retry_base_delay=0,
        batch_delay=0,
    )


@pytest.fixture
def fake_openai_client() -> MagicMock:
    """OpenAI client whose embeddings.create echoes deterministic vectors."""
    client = MagicMock()

    def create(model, input, dimensions):
        return make_embedding_response(list(input), dimensions)

    client.embeddings.create.side_effect = create
    return client
