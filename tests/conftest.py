"""Pytest fixtures for MediGuard tests."""

import copy
import json
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from mediguard.config import Settings, get_settings
from mediguard.dependencies import get_history_store, get_llm_client
from mediguard.main import app

MODEL_ANSWER = {
    "summary": "The CT scan appears to be billed twice on the same date.",
    "insurancePlan": "Aetna PPO",
    "totalBilled": 1720,
    "potentialSavings": 9999,
    "issuesFound": 7,
    "items": [
        {
            "cptCode": "74177",
            "description": "CT abdomen and pelvis with contrast",
            "amount": 860,
            "status": "correct",
            "why": "A single CT of the abdomen and pelvis is supported by the visit.",
            "estimatedReasonableAmount": None,
        },
        {
            "cptCode": "74177",
            "description": "CT abdomen and pelvis with contrast (second charge)",
            "amount": 860,
            "status": "incorrect",
            "why": "The same scan is billed again on the same date of service.",
            "estimatedReasonableAmount": 430,
        },
    ],
    "disputeLetter": "Dear Billing Office,\n\nI am writing about a duplicate CT charge.\n\nSincerely,\nPat Doe",
    "questionAnswer": None,
}


class FakeCompletions:
    def __init__(self, answer):
        self.answer = answer
        self.calls = []
        self.error = None

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.answer)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeLLM:
    """Stands in for the OpenAI client: ``client.chat.completions.create``."""

    def __init__(self, answer=None):
        self.completions = FakeCompletions(answer if answer is not None else json.dumps(MODEL_ANSWER))
        self.chat = SimpleNamespace(completions=self.completions)

    @property
    def calls(self):
        return self.completions.calls


class FakeHistoryStore:
    def __init__(self):
        self.saved = []
        self.profiles = {}
        self.items = []

    def save_analysis(self, user_id, analysis, insurance_provider=None):
        self.saved.append((user_id, analysis, insurance_provider))

    def list_analyses(self, user_id):
        return [item for owner, item in self.items if owner == user_id]

    def get_analysis(self, user_id, analysis_id):
        for owner, item in self.items:
            if owner == user_id and item.id == analysis_id:
                return item
        return None

    def ensure_profile(self, user):
        from mediguard.history import Profile

        return self.profiles.setdefault(user.id, Profile(id=user.id, full_name=user.derive_name()))

    def upsert_profile(self, user_id, full_name):
        from mediguard.history import Profile

        self.profiles[user_id] = Profile(id=user_id, full_name=full_name)
        return self.profiles[user_id]


@pytest.fixture
def model_answer():
    return copy.deepcopy(MODEL_ANSWER)


@pytest.fixture
def settings():
    return Settings(openai_api_key="test-key", guest_analysis_limit=3)


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_store():
    return FakeHistoryStore()


@pytest.fixture
def client(settings, fake_llm, fake_store):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_llm_client] = lambda: fake_llm
    app.dependency_overrides[get_history_store] = lambda: fake_store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
