"""Read-only access to quiz definitions owned outside the game engine."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from errors import NotFound
from logger import get_logger
from models import QuestionDefinition, QuizDefinition

logger = get_logger("QuizRoom.quizzes")


class QuizProvider(ABC):
    @abstractmethod
    async def get_quiz(self, quiz_id: str) -> QuizDefinition: ...

    @abstractmethod
    async def get_questions(self, quiz_id: str) -> list[QuestionDefinition]: ...


class InMemoryQuizProvider(QuizProvider):
    def __init__(self):
        self._quizzes: dict[str, QuizDefinition] = {}
        self._questions: dict[str, list[QuestionDefinition]] = {}

    def add(self, quiz: QuizDefinition, questions: list[QuestionDefinition]) -> QuizDefinition:
        quiz = quiz.model_copy(update={"totalQuestions": len(questions)})
        self._quizzes[quiz.id] = quiz
        self._questions[quiz.id] = list(questions)
        return quiz

    async def get_quiz(self, quiz_id: str) -> QuizDefinition:
        if quiz_id not in self._quizzes:
            raise NotFound("Quiz not found")
        return self._quizzes[quiz_id]

    async def get_questions(self, quiz_id: str) -> list[QuestionDefinition]:
        if quiz_id not in self._questions:
            raise NotFound("Quiz not found")
        return list(self._questions[quiz_id])


class JsonDirectoryQuizProvider(QuizProvider):
    """Quizzes stored as ``<quiz_id>.json`` files exported by the authoring tool.

    File layout::

        {"title": "...", "timerEnabled": true, "timerSeconds": 20,
         "questions": [{"id": "q1", "text": "...",
                        "options": {"A": "...", "B": "...", "C": "...", "D": "..."},
                        "correctChoice": "B", "difficulty": "easy"}]}
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _load(self, quiz_id: str) -> dict:
        # Quiz ids are file stems; anything path-like is rejected outright
        if not quiz_id or Path(quiz_id).name != quiz_id:
            raise NotFound("Quiz not found")
        path = self.directory / f"{quiz_id}.json"
        if not path.is_file():
            raise NotFound("Quiz not found")
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    async def get_quiz(self, quiz_id: str) -> QuizDefinition:
        data = self._load(quiz_id)
        return QuizDefinition(
            id=quiz_id,
            title=data.get("title", quiz_id),
            timerEnabled=bool(data.get("timerEnabled", False)),
            timerSeconds=int(data.get("timerSeconds", 30)),
            totalQuestions=len(data.get("questions", [])),
        )

    async def get_questions(self, quiz_id: str) -> list[QuestionDefinition]:
        data = self._load(quiz_id)
        questions = []
        for i, raw in enumerate(data.get("questions", [])):
            try:
                questions.append(QuestionDefinition(**{"id": str(i), **raw}))
            except ValidationError as e:
                logger.error(f"❌ Invalid question {i} in quiz {quiz_id}: {e}")
                raise
        return questions


def validate_questions(questions: list[QuestionDefinition]) -> Optional[str]:
    """Return a problem description, or None when every question has options A-D"""
    for i, q in enumerate(questions):
        if len(q.options) != 4:
            return f"Question {i + 1} must have exactly 4 options"
    return None
