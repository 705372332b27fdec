import json

import pytest

from helpers import PROMPTS_DIR, payload, question_turn, ready_turn, titles_turn, user_turn
from title_finder.agent_pipeline import (
    NO_MATCH_MESSAGE,
    NO_MATCH_REASONING,
    PARSE_FAILURE_REASONING,
    TitleFinderAgent,
    build_selection_prompt,
    parse_interview_output,
    parse_selection_output,
    resolve_working_context,
)
from title_finder.catalog import TitleCatalog
from title_finder.dialogue import DialogueContext
from title_finder.adk_runtime import AdkAgent
from title_finder.errors import MalformedRequestError, ReasoningServiceError, TitleFinderError
from title_finder.models import InterviewQuestion, InterviewReady, Recommendation


def make_agent(gemini, catalog):
    return TitleFinderAgent(
        gemini=gemini,
        catalog=catalog,
        prompts_dir=PROMPTS_DIR,
        model_flash="flash",
        model_pro="pro",
    )


def call_messages(gemini, index):
    return gemini.generate.call_args_list[index].args[1]


SELECTION_REPLY = "```json\n" + json.dumps(
    {
        "intro": "Sales leadership at enterprise SaaS companies.",
        "audienceName": "LinkedIn | Acme | Sales Leaders | VP | Enterprise SaaS",
        "high": ["Vice President of Sales", "sales director", "Chief Revenue Wizard"],
        "medium": ["Sales Director"],
        "reasoning": "VPs own the budget.",
        "tip": "Exclude your own company.",
    }
) + "\n```"


@pytest.mark.asyncio
async def test_blank_message_is_rejected_before_any_call(gemini, catalog):
    agent = make_agent(gemini, catalog)
    with pytest.raises(MalformedRequestError):
        await agent.handle_message("   ", [])
    gemini.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_interview_question_from_fenced_payload(gemini, catalog):
    gemini.generate.return_value = "```json\n" + payload(
        type="question",
        message="What seniority are you targeting?",
        questionNumber=2,
        totalQuestions=5,
        context={"company": "Acme CRM"},
    ) + "\n```"
    agent = make_agent(gemini, catalog)

    result = await agent.handle_message("We sell a CRM", [])

    assert isinstance(result, InterviewQuestion)
    assert result.message == "What seniority are you targeting?"
    assert result.question_number == 2
    assert result.total_questions == 5
    assert result.context.company == "Acme CRM"
    gemini.generate.assert_awaited_once()
    assert call_messages(gemini, 0)[-1] == {"role": "user", "content": "We sell a CRM"}


@pytest.mark.asyncio
async def test_interview_sends_trailing_window(gemini, catalog):
    history = []
    for index in range(7):
        history.append(user_turn(f"answer {index}"))
        history.append(question_turn(f"question {index}"))
    gemini.generate.return_value = payload(type="question", message="Company size?")
    agent = make_agent(gemini, catalog)

    await agent.handle_message("latest", history)

    messages = call_messages(gemini, 0)
    assert len(messages) == 11
    assert messages[0]["content"] == history[4]["content"]
    assert messages[-1]["content"] == "latest"


@pytest.mark.asyncio
async def test_interview_ready_signal(gemini, catalog):
    gemini.generate.return_value = 'Great, here is what I have: {"type": "ready", "message": "Searching now.", ' \
        '"context": {"seniority": "VP"}, "searchDescription": "VP of sales, enterprise SaaS"}'
    agent = make_agent(gemini, catalog)

    result = await agent.handle_message("VPs at enterprise SaaS", [])

    assert isinstance(result, InterviewReady)
    assert result.search_description == "VP of sales, enterprise SaaS"
    assert result.context.seniority == "VP"


def test_interview_parse_failure_returns_raw_question():
    result = parse_interview_output("Who do you sell to?")
    assert isinstance(result, InterviewQuestion)
    assert result.message == "Who do you sell to?"
    assert result.question_number == 0
    assert result.total_questions == 0


def test_interview_missing_fields_default():
    result = parse_interview_output("{}")
    assert isinstance(result, InterviewQuestion)
    assert result.message == ""
    assert result.question_number == 0
    assert result.context.company == ""


@pytest.mark.asyncio
async def test_ready_history_uses_search_description_verbatim(gemini, catalog):
    history = [
        user_turn("we sell widgets to factories"),
        ready_turn("VP of sales, enterprise SaaS", seniority="VP"),
    ]
    gemini.generate.side_effect = ["vice president, sales, director", SELECTION_REPLY]
    agent = make_agent(gemini, catalog)

    result = await agent.handle_message("ok go", history)

    assert gemini.generate.await_count == 2
    assert call_messages(gemini, 0) == [{"role": "user", "content": "VP of sales, enterprise SaaS"}]
    selection_prompt = call_messages(gemini, 1)[0]["content"]
    assert 'Target audience description: "VP of sales, enterprise SaaS"' in selection_prompt
    assert "Seniority: VP" in selection_prompt

    assert isinstance(result, Recommendation)
    assert result.message == "Sales leadership at enterprise SaaS companies."
    assert result.audience_name == "LinkedIn | Acme | Sales Leaders | VP | Enterprise SaaS"
    # Invented titles are dropped, spelling follows the catalog, tiers are not deduplicated.
    assert result.titles.high == ["Vice President of Sales", "Sales Director"]
    assert result.titles.medium == ["Sales Director"]
    assert result.titles.explore == []
    assert result.total_count == 3
    assert result.reasoning == "VPs own the budget."
    assert result.tip == "Exclude your own company."


@pytest.mark.asyncio
async def test_refinement_replays_user_turns(gemini, catalog):
    history = [
        user_turn("IT leaders"),
        titles_turn(high=["IT Director"], medium=["IT Manager"]),
        user_turn("mid-size companies"),
    ]
    gemini.generate.side_effect = ["CIO, chief information officer", payload(intro="Updated.", high=["IT Director"])]
    agent = make_agent(gemini, catalog)

    result = await agent.handle_message("add CIOs", history)

    assert call_messages(gemini, 0)[0]["content"] == "IT leaders mid-size companies add CIOs"
    selection_prompt = call_messages(gemini, 1)[0]["content"]
    assert "[high] IT Director" in selection_prompt
    assert 'Latest message: "add CIOs"' in selection_prompt
    assert "candidate job titles" in selection_prompt
    assert result.titles.high == ["IT Director"]
    assert result.total_count == 1


@pytest.mark.asyncio
async def test_no_candidates_short_circuits(gemini, catalog):
    gemini.generate.return_value = "zzzz, qqqq"
    agent = make_agent(gemini, catalog)

    result = await agent.generate("xyzzy plugh", [])

    assert gemini.generate.await_count == 1
    assert result.message == NO_MATCH_MESSAGE
    assert result.reasoning == NO_MATCH_REASONING
    assert result.total_count == 0
    assert result.titles.high == result.titles.medium == result.titles.explore == []


@pytest.mark.asyncio
async def test_empty_keywords_fall_back_to_message(gemini, catalog):
    gemini.generate.side_effect = ["", payload(intro="ok", high=["Sales Director"])]
    agent = make_agent(gemini, catalog)

    result = await agent.generate("sales director", [])

    assert "Sales Director" in call_messages(gemini, 1)[0]["content"]
    assert result.titles.high == ["Sales Director"]


@pytest.mark.asyncio
async def test_unparseable_selection_uses_positional_tiers(gemini):
    titles = [f"Engineer {index:02d}" for index in range(40)]
    agent = make_agent(gemini, TitleCatalog(titles))
    gemini.generate.side_effect = ["engineer", "Sorry, I cannot format that."]

    result = await agent.generate("engineer", [])

    assert result.message == "Sorry, I cannot format that."
    assert result.titles.high == titles[0:15]
    assert result.titles.medium == titles[15:30]
    assert result.titles.explore == []
    assert result.total_count == 30
    assert result.reasoning == PARSE_FAILURE_REASONING


def test_positional_fallback_with_few_candidates(catalog):
    result = parse_selection_output("not json", ["IT Director", "IT Manager"], catalog)
    assert result.titles.high == ["IT Director", "IT Manager"]
    assert result.titles.medium == []
    assert result.total_count == 2


def test_parsed_selection_defaults(catalog):
    result = parse_selection_output('{"high": "IT Director"}', ["IT Director"], catalog)
    assert result.message == "Here are my suggestions:"
    assert result.titles.high == []
    assert result.total_count == 0
    assert result.audience_name == ""


@pytest.mark.asyncio
async def test_reasoning_failure_propagates(gemini, catalog):
    gemini.generate.side_effect = ReasoningServiceError("timeout")
    agent = make_agent(gemini, catalog)
    with pytest.raises(ReasoningServiceError):
        await agent.handle_message("hello", [])


def test_resolve_working_context():
    history = [user_turn("one"), {"role": "assistant", "content": "q"}, user_turn("two")]
    assert resolve_working_context("three", history) == "one two three"
    assert resolve_working_context("three", history, "override text") == "override text"
    assert resolve_working_context("three", history, "   ") == "one two three"


def test_selection_prompt_lists_candidates():
    prompt = build_selection_prompt(
        "add CIOs",
        [user_turn("IT leaders")],
        ["IT Director", "Chief Information Officer"],
        "IT leaders add CIOs",
        DialogueContext(industry="Healthcare"),
    )
    assert "User: IT leaders" in prompt
    assert "Here are 2 candidate job titles" in prompt
    assert prompt.endswith("IT Director\nChief Information Officer")
    assert "Industry: Healthcare" in prompt


def test_duplicates_collapse_within_a_tier_only(catalog):
    raw = payload(high=["IT Director", "it director", "IT Director"], medium=["IT Director"])
    result = parse_selection_output(raw, ["IT Director"], catalog)
    assert result.titles.high == ["IT Director"]
    assert result.titles.medium == ["IT Director"]
    assert result.total_count == 2


@pytest.mark.asyncio
async def test_pipeline_without_result_raises(gemini, catalog):
    agent = make_agent(gemini, catalog)
    agent._agent = AdkAgent(steps=[])
    with pytest.raises(TitleFinderError):
        await agent.handle_message("hello", [])


@pytest.mark.asyncio
async def test_generation_without_recommendation_raises(gemini, catalog):
    agent = make_agent(gemini, catalog)
    agent._generation_agent = AdkAgent(steps=[])
    with pytest.raises(TitleFinderError):
        await agent.generate("sales director", [])
