"""Arithmetic challenge that gates dismissal of a ringing alarm."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any

OPTION_COUNT = 4
DISTRACTOR_SPREAD = 5


@dataclass(frozen=True)
class QuizQuestion:
    left: int
    right: int
    answer: int
    options: tuple[int, ...]

    @property
    def prompt(self) -> str:
        return f"{self.left} + {self.right}"

    def to_public_dict(self) -> dict[str, Any]:
        # No answer here; this payload goes to clients.
        return {"prompt": self.prompt, "options": list(self.options)}


def make_question(rng: random.Random) -> QuizQuestion:
    left = rng.randint(1, 20)
    right = rng.randint(1, 10)
    answer = left + right
    options = [answer]
    while len(options) < OPTION_COUNT:
        wrong = answer + rng.randint(-DISTRACTOR_SPREAD, DISTRACTOR_SPREAD)
        if wrong > 0 and wrong not in options:
            options.append(wrong)
    rng.shuffle(options)
    return QuizQuestion(left=left, right=right, answer=answer, options=tuple(options))


@dataclass
class MathQuiz:
    questions: list[QuizQuestion]
    index: int = 0
    wrong_answers: int = field(default=0)

    @classmethod
    def generate(cls, question_count: int = 3, rng: random.Random | None = None) -> MathQuiz:
        if question_count < 1:
            raise ValueError("A quiz needs at least one question")
        rng = rng or random.Random()
        return cls(questions=[make_question(rng) for _ in range(question_count)])

    @property
    def solved(self) -> bool:
        return self.index >= len(self.questions)

    @property
    def current(self) -> QuizQuestion | None:
        if self.solved:
            return None
        return self.questions[self.index]

    def answer(self, option: int) -> bool:
        """Check `option` against the current question; advances only when correct."""
        question = self.current
        if question is None:
            return True
        if option == question.answer:
            self.index += 1
            return True
        self.wrong_answers += 1
        return False

    def to_public_dict(self) -> dict[str, Any]:
        current = self.current
        return {
            "question": current.to_public_dict() if current else None,
            "position": min(self.index + 1, len(self.questions)),
            "total": len(self.questions),
            "solved": self.solved,
        }
