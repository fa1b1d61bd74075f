import pytest
import pytest_asyncio

from orderflow.catalog import WorkflowCatalog
from orderflow.config import EngineConfig
from orderflow.directory import InMemoryOrderDirectory
from orderflow.engine import TransitionEngine
from orderflow.persistence import InMemoryRepository
from orderflow.templates import default_templates


@pytest_asyncio.fixture
async def repository() -> InMemoryRepository:
    """In-memory repository with the built-in workflow templates installed."""
    repo = InMemoryRepository()
    for template in default_templates():
        await repo.put_definition(template)
    return repo


@pytest.fixture
def catalog(repository) -> WorkflowCatalog:
    return WorkflowCatalog(repository, repository)


@pytest.fixture
def directory(catalog) -> InMemoryOrderDirectory:
    directory = InMemoryOrderDirectory(catalog)
    directory.add_order("ord-1", tracking_numbers={"TRACK-1"})
    directory.add_order("ord-2")
    return directory


@pytest.fixture
def engine(repository, catalog, directory) -> TransitionEngine:
    return TransitionEngine.from_config(repository, catalog, directory, EngineConfig())
