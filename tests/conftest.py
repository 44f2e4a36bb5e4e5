"""Shared test fixtures."""
from __future__ import annotations

import pytest

from studyquiz.auth import hash_password
from studyquiz.db import Database
from studyquiz.models import GeneratedQuestion, GenerationParameters


@pytest.fixture
def tmp_db(tmp_path):
    """Create a fresh temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def mc_params():
    return GenerationParameters(
        question_type="multiple-choice",
        difficulty="medium",
        academic_level="high",
        question_count=2,
    )


@pytest.fixture
def tf_params():
    return GenerationParameters(
        question_type="true-false",
        difficulty="easy",
        academic_level="elementary",
        question_count=3,
    )


@pytest.fixture
def mc_items():
    """Two well-formed multiple-choice questions as the model returns them."""
    return [
        {
            "questionText": "Which organelle produces most of a cell's ATP?",
            "options": ["Nucleus", "Mitochondrion", "Ribosome", "Golgi apparatus"],
            "correctAnswer": "Mitochondrion",
        },
        {
            "questionText": "What carries genetic information in most organisms?",
            "options": ["DNA", "ATP", "Glucose", "Chlorophyll"],
            "correctAnswer": "DNA",
        },
    ]


@pytest.fixture
def tf_items():
    return [
        {"questionText": "The sun is a star.", "options": ["True", "False"], "correctAnswer": "True"},
        {"questionText": "Spiders have six legs.", "options": ["True", "False"], "correctAnswer": "False"},
        {"questionText": "Water freezes at 0 degrees Celsius.", "options": ["True", "False"], "correctAnswer": "True"},
    ]


@pytest.fixture
def sample_questions(mc_items):
    return [GeneratedQuestion.from_dict(d) for d in mc_items]


@pytest.fixture
def study_text():
    return (
        "Cells are the basic unit of life. The mitochondrion produces most of the "
        "cell's ATP, while DNA in the nucleus carries genetic information."
    )


@pytest.fixture
def alice(tmp_db):
    return tmp_db.create_user("Alice", "Adams", "alice@example.com", hash_password("wonderland"))


@pytest.fixture
def bob(tmp_db):
    return tmp_db.create_user("Bob", "Brown", "bob@example.com", hash_password("builder"))


@pytest.fixture
def saved_quiz(tmp_db, alice, study_text, mc_params, sample_questions):
    return tmp_db.save_quiz(alice["id"], "Cells", study_text, mc_params, sample_questions, "fake-llm")
