import json
from dataclasses import replace

from title_finder.config import BASE_DIR, load_settings

PROMPTS_DIR = BASE_DIR / "prompts"

SAMPLE_TITLES = [
    "Chief Information Officer",
    "Chief Technology Officer",
    "IT Director",
    "IT Manager",
    "Director of Information Technology",
    "Vice President of Sales",
    "Sales Director",
    "Enterprise Account Executive",
    "Software Engineer",
    "Marketing Manager",
]


def make_settings(tmp_path=None, **overrides):
    settings = replace(load_settings(), gemini_api_key="test-key", prompts_dir=PROMPTS_DIR)
    if tmp_path is not None:
        settings = replace(settings, frontend_dir=tmp_path / "frontend", titles_path=tmp_path / "titles.csv")
    return replace(settings, **overrides)


def payload(**fields) -> str:
    return json.dumps(fields)


def titles_turn(high=(), medium=(), explore=(), message="Here are my suggestions:") -> dict:
    return {
        "role": "assistant",
        "content": payload(
            type="titles",
            message=message,
            titles={"high": list(high), "medium": list(medium), "explore": list(explore)},
            totalCount=len(high) + len(medium) + len(explore),
        ),
    }


def ready_turn(search_description: str, **context) -> dict:
    return {
        "role": "assistant",
        "content": payload(
            type="ready",
            message="Got it, searching now.",
            context=context,
            searchDescription=search_description,
        ),
    }


def question_turn(message: str, number: int = 1, total: int = 5, **context) -> dict:
    return {
        "role": "assistant",
        "content": payload(
            type="question",
            message=message,
            questionNumber=number,
            totalQuestions=total,
            context=context,
        ),
    }


def user_turn(content: str) -> dict:
    return {"role": "user", "content": content}
