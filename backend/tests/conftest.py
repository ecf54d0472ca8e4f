from __future__ import annotations

import dataclasses

import pytest
from fastapi.testclient import TestClient

from questionnaire.config import Settings
from questionnaire.main import create_app
from questionnaire.services.storage import LocalStorage


@pytest.fixture
def settings(tmp_path) -> Settings:
    return dataclasses.replace(
        Settings.from_env(),
        data_dir=str(tmp_path / "data"),
        storage_backend="local",
        static_dir=str(tmp_path / "public"),
        gemini_api_key=None,
        backend_url="",
    )


@pytest.fixture
def storage(settings) -> LocalStorage:
    return LocalStorage(base_dir=settings.data_dir)


@pytest.fixture
def client(settings, storage) -> TestClient:
    return TestClient(create_app(settings, storage=storage))
