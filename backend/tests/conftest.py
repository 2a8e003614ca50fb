# backend/tests/conftest.py
"""
Shared fixtures: an isolated in-memory SQLite database per test, the
service graph bound to it, a seeded random source and a scripted
analysis generator.
"""

import os

# settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SENSITIVE_DECISION_TYPES"] = "escalation_decision"
os.environ["SENSITIVE_TERMS"] = "escalate,escalation"
os.environ["EXPERIMENT_MAX_DAYS"] = "30"

import random

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import agent_intelligence.models  # noqa: F401
from agent_intelligence.database import Base, build_engine, get_db
from agent_intelligence.dependencies import build_services, get_generator
from agent_intelligence.errors import ExternalDependencyFailure
from agent_intelligence.services.analysis_client import AnalysisOk, GeneratedVariant, IdentifiedPattern, OptimizationSuggestion


class FakeGenerator:
    """Analysis dependency returning a scripted result (or raising it)."""

    name = "fake"

    def __init__(self, result=None):
        self.result = result if result is not None else AnalysisOk(summary="Nothing notable.")
        self.prompts = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def variant_result(*names):
    return AnalysisOk(
        patterns=[IdentifiedPattern(pattern="Short subjects score higher", confidence=0.7, impact="medium")],
        suggestions=[OptimizationSuggestion(suggestion="Mention the deadline", priority="high")],
        variants=[
            GeneratedVariant(
                variant_name=name,
                prompt_template=f"Classify the email ({name}).",
                changes=f"Adds {name} guidance",
                rationale="Reviewers prefer concise labels",
            )
            for name in names
        ],
        summary="Two patterns found.",
    )


@pytest.fixture
def engine():
    test_engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def services(db, generator, rng):
    return build_services(db, generator=generator, rng=rng)


@pytest.fixture
def client(db, generator):
    from agent_intelligence.main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_generator] = lambda: generator
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def failing_generator():
    return FakeGenerator(ExternalDependencyFailure("analysis endpoint unreachable"))


@pytest.fixture(name="variant_result")
def variant_result_fixture():
    return variant_result
