"""Shared fixtures for the taskweave test-suite."""

import logging

import pytest

from taskweave.config import EngineConfig
from taskweave.engine import TaskEngine
from taskweave.engine_logging import observability_hooks, performance_monitor
from taskweave.models import Relationships, Task
from taskweave.store import TaskStore


@pytest.fixture(autouse=True)
def reset_observability():
    """Keep metrics and hooks from leaking between tests."""
    performance_monitor.reset()
    observability_hooks.clear()
    yield
    performance_monitor.reset()
    observability_hooks.clear()
    logger = logging.getLogger("taskweave")
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def config(tmp_path):
    return EngineConfig.for_project(tmp_path)


@pytest.fixture
def store(config):
    return TaskStore(config)


@pytest.fixture
def engine(config):
    return TaskEngine(config)


@pytest.fixture
def new_task(store):
    """Create a task through the store and return it."""

    def factory(title, phase=None, subdirectory=None, task_id="", **fields):
        relationship_fields = {
            key: fields.pop(key)
            for key in ("parent_task", "depends_on", "previous_task", "next_task", "sequence")
            if key in fields
        }
        task = Task(task_id=task_id, title=title, relationships=Relationships(**relationship_fields), **fields)
        created, _ = store.create(task, phase, subdirectory)
        return created

    return factory
