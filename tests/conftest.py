from unittest.mock import AsyncMock, MagicMock

import pytest

from helpers import SAMPLE_TITLES
from title_finder.catalog import TitleCatalog


@pytest.fixture
def catalog() -> TitleCatalog:
    return TitleCatalog(SAMPLE_TITLES)


@pytest.fixture
def gemini() -> MagicMock:
    client = MagicMock()
    client.generate = AsyncMock(return_value="")
    return client
