import time

import pytest

from codeowners_reconcile.utils.config import GithubSettings


@pytest.fixture
def patch_sleep(mocker):
    yield mocker.patch.object(time, "sleep")


@pytest.fixture
def settings() -> GithubSettings:
    return GithubSettings(
        token="some-token",
        username="codeowners-bot",
        email="codeowners-bot@example.com",
        max_retries=3,
        retry_backoff=1,
    )
