"""Shared pytest fixtures: reset the event log and force the mock backend per test."""

import random

import pytest
from sqlmodel import SQLModel

from agentsim import models  # noqa: F401
from agentsim.agents.adapters.mock_adapter import MockBackendAdapter
from agentsim.config import settings
from agentsim.db import engine, new_session
from agentsim.runtime import SimulationRuntime


@pytest.fixture(autouse=True)
def reset_database():
    original = (settings.backend_mode, settings.auto_initialize_agents, settings.run_automatically)
    settings.backend_mode = "mock"
    settings.auto_initialize_agents = False
    settings.run_automatically = False
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield
    settings.backend_mode, settings.auto_initialize_agents, settings.run_automatically = original


@pytest.fixture
def backend():
    return MockBackendAdapter()


@pytest.fixture
def runtime(backend):
    return SimulationRuntime(backend, session_factory=new_session, rng=random.Random(7))
