import pytest
from fastapi.testclient import TestClient

from helpers import make_settings, payload, ready_turn, user_turn
from title_finder import website_scanner
from title_finder.app import client_key, create_app
from title_finder.errors import ReasoningServiceError


def make_client(tmp_path, gemini, catalog, **overrides):
    frontend = tmp_path / "frontend"
    frontend.mkdir(exist_ok=True)
    (frontend / "index.html").write_text("<html>title finder</html>", encoding="utf-8")
    (frontend / "app.js").write_text("console.log('hi')", encoding="utf-8")
    settings = make_settings(tmp_path, **overrides)
    return TestClient(create_app(settings=settings, gemini=gemini, catalog=catalog))


def test_health(tmp_path, gemini, catalog):
    client = make_client(tmp_path, gemini, catalog)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.text == "ok"


def test_blank_message_is_rejected(tmp_path, gemini, catalog):
    client = make_client(tmp_path, gemini, catalog)
    response = client.post("/api/chat", json={"message": "  ", "history": []})
    assert response.status_code == 400
    assert response.json() == {"error": "message required"}
    gemini.generate.assert_not_awaited()

    response = client.post("/api/chat", json={"history": []})
    assert response.status_code == 400


def test_chat_question_response_uses_camel_case(tmp_path, gemini, catalog):
    gemini.generate.return_value = payload(
        type="question",
        message="Which industry?",
        questionNumber=3,
        totalQuestions=5,
        context={"companySize": "200-1000"},
    )
    client = make_client(tmp_path, gemini, catalog)

    response = client.post("/api/chat", json={"message": "We sell HR software"})

    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "question"
    assert body["questionNumber"] == 3
    assert body["totalQuestions"] == 5
    assert body["context"]["companySize"] == "200-1000"


def test_chat_titles_response(tmp_path, gemini, catalog):
    gemini.generate.side_effect = [
        "CIO, chief information officer, IT director",
        payload(
            intro="IT decision makers.",
            audienceName="LinkedIn | Acme | IT Leaders | Director+ | Mid-Market",
            high=["Chief Information Officer", "IT Director"],
            medium=["IT Manager"],
            explore=[],
            reasoning="Budget owners first.",
            tip="Layer company size.",
        ),
    ]
    client = make_client(tmp_path, gemini, catalog)
    history = [user_turn("decision makers in IT"), ready_turn("decision makers in IT")]

    response = client.post("/api/chat", json={"message": "go ahead", "history": history})

    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "titles"
    assert body["audienceName"] == "LinkedIn | Acme | IT Leaders | Director+ | Mid-Market"
    assert body["titles"] == {
        "high": ["Chief Information Officer", "IT Director"],
        "medium": ["IT Manager"],
        "explore": [],
    }
    assert body["totalCount"] == 3
    assert body["tip"] == "Layer company size."


def test_reasoning_failure_returns_generic_error(tmp_path, gemini, catalog):
    gemini.generate.side_effect = ReasoningServiceError("boom")
    client = make_client(tmp_path, gemini, catalog)

    response = client.post("/api/chat", json={"message": "hello"})

    assert response.status_code == 500
    assert response.json() == {"error": "Something went wrong. Try again."}


def test_rate_limit_per_client(tmp_path, gemini, catalog):
    gemini.generate.return_value = payload(type="question", message="Who buys?")
    client = make_client(tmp_path, gemini, catalog, rate_limit_max=2)
    headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}

    assert client.post("/api/chat", json={"message": "a"}, headers=headers).status_code == 200
    assert client.post("/api/chat", json={"message": "b"}, headers=headers).status_code == 200
    limited = client.post("/api/chat", json={"message": "c"}, headers=headers)
    assert limited.status_code == 429
    assert limited.json()["error"] == "Too many requests. Please wait a minute."

    other = client.post("/api/chat", json={"message": "d"}, headers={"X-Forwarded-For": "198.51.100.1"})
    assert other.status_code == 200


def test_scan_website_rejects_bad_url(tmp_path, gemini, catalog):
    client = make_client(tmp_path, gemini, catalog)
    response = client.post("/api/scan-website", json={"url": "ftp://example.com"})
    assert response.status_code == 400
    gemini.generate.assert_not_awaited()


def test_scan_website_refuses_internal_hosts(tmp_path, gemini, catalog, monkeypatch):
    monkeypatch.setattr(website_scanner, "resolve_addresses", lambda host, port: ["127.0.0.1"])
    monkeypatch.setattr(website_scanner.requests, "get", lambda *a, **k: pytest.fail("fetched an internal host"))
    client = make_client(tmp_path, gemini, catalog)

    response = client.post("/api/scan-website", json={"url": "http://localhost/admin"})

    assert response.status_code == 400
    gemini.generate.assert_not_awaited()


def test_scan_website_returns_summary(tmp_path, gemini, catalog, monkeypatch):
    client = make_client(tmp_path, gemini, catalog)
    scanner = client.app.state.scanner
    monkeypatch.setattr(scanner, "fetch_text", lambda url: "Acme sells payroll software to HR teams.")
    gemini.generate.return_value = "Acme sells payroll software to mid-size HR teams."

    response = client.post("/api/scan-website", json={"url": "acme.com"})

    assert response.status_code == 200
    assert response.json() == {"url": "acme.com", "summary": "Acme sells payroll software to mid-size HR teams."}


def test_frontend_index_and_fallback(tmp_path, gemini, catalog):
    client = make_client(tmp_path, gemini, catalog)
    assert "title finder" in client.get("/").text
    assert "title finder" in client.get("/some/client/route").text
    assert "console.log" in client.get("/app.js").text
    assert client.get("/static/app.js").status_code == 200


def test_client_key_prefers_forwarded_headers():
    class FakeRequest:
        def __init__(self, headers, host="127.0.0.1"):
            self.headers = headers
            self.client = type("Client", (), {"host": host})()

    assert client_key(FakeRequest({"x-forwarded-for": "1.1.1.1, 2.2.2.2"})) == "1.1.1.1"
    assert client_key(FakeRequest({"x-real-ip": "3.3.3.3"})) == "3.3.3.3"
    assert client_key(FakeRequest({})) == "127.0.0.1"
