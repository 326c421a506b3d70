import fakeredis
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage
from langgraph.checkpoint.memory import MemorySaver

from agentloop.agents.agent_graph import build_agent_graph
from agentloop.api import agent, sessions
from agentloop.sessions.store import RedisSessionStore, get_session_store
from fakes import FakeChatModel, make_models


@pytest.fixture
def app():
    app = FastAPI()
    app.include_router(agent.router)
    app.include_router(sessions.router)
    return app


@pytest.fixture
def client(app):
    store = RedisSessionStore(fakeredis.FakeAsyncRedis(decode_responses=True))
    app.dependency_overrides[get_session_store] = lambda: store
    with TestClient(app) as client:
        yield client


def test_session_lifecycle(client):
    created = client.post("/api/sessions", json={"id": "s1", "user_id": "u1", "name": "research"})
    assert created.status_code == 201

    assert client.post("/api/sessions", json={"id": "s1", "user_id": "u1", "name": "again"}).status_code == 409

    listed = client.get("/api/sessions/users/u1").json()
    assert listed["count"] == 1

    updated = client.put("/api/sessions/s1", params={"user_id": "u1"}, json={"name": "renamed"})
    assert updated.json()["name"] == "renamed"

    assert client.get("/api/sessions/s1", params={"user_id": "u2"}).status_code == 404
    assert client.delete("/api/sessions/s1", params={"user_id": "u1"}).status_code == 204
    assert client.get("/api/sessions/s1", params={"user_id": "u1"}).status_code == 404


def test_invoke_without_graph_is_unavailable(client):
    assert client.post("/api/agent/invoke", json={"message": "hi"}).status_code == 503


def test_hybrid_turn_suspends_and_resumes(app, client, make_settings):
    settings = make_settings(agent_mode="hybrid", execution_mode="reactive", max_iterations=2)
    smart = FakeChatModel([
        AIMessage(content="WAITING_FOR_HUMAN_INPUT: which city?"),
        AIMessage(content="FINAL ANSWER: sunny in Paris"),
    ])
    app.state.agent_graph = build_agent_graph(make_models(smart), checkpointer=MemorySaver(), settings=settings)

    first = client.post("/api/agent/invoke", json={"message": "weather?", "thread_id": "t1", "user_id": "u1"}).json()
    assert first["status"] == "waiting_human_input"
    assert first["question"] == "which city?"

    resumed = client.post("/api/agent/threads/t1/resume", json={"input": "Paris", "user_id": "u1"}).json()
    assert resumed["status"] == "completed"
    assert resumed["current_graph_step"] >= 3

    assert client.post("/api/agent/threads/t1/resume", json={"input": "again"}).status_code == 409

    state = client.get("/api/agent/threads/t1").json()["state"]
    assert any(m["data"]["content"] == "Paris" for m in state["messages"])
    assert client.get("/api/agent/threads/unknown").status_code == 404
