import pytest

from orchestrator.models import Preferences


@pytest.fixture
def preferences() -> Preferences:
    return Preferences(
        origin="New York, USA",
        destination="Tokyo, Japan",
        duration=3,
        interests=["Anime", "History", "Foodie"],
        budget="moderate",
    )
