from agentloop.core.llm import ModelHandle
from agentloop.core.models import Step, Task, TaskStatus, Thought
from agentloop.memory.ltm import EpisodicExtraction, LTMExtraction, LTMManager, SemanticExtraction, build_records
from agentloop.memory.types import Memories, STMContext
from fakes import FakeChatModel, FakeMemoryStore

CONFIG = {"configurable": {"thread_id": "thread-9", "user_id": "user-7"}}


def finished_task(status: TaskStatus = TaskStatus.COMPLETED) -> Task:
    return Task(
        thought=Thought(text="book a table"),
        steps=[Step(thought=Thought(text="find restaurant"), output="found Luigi's"),
               Step(thought=Thought(text="reserve"), output="reserved for 8pm")],
        status=status,
    )


def state_for(task: Task, make_stm_item) -> dict:
    stm = STMContext(items=[make_stm_item("s1", "reserved for 8pm")], total_inserted=1)
    return {"tasks": [task], "memories": Memories(stm=stm), "current_graph_step": 3}


def extraction(episodic: int = 1, semantic: int = 1) -> LTMExtraction:
    return LTMExtraction(
        episodic=[EpisodicExtraction(content=f"event {i}", source=["reserve_tool"]) for i in range(episodic)],
        semantic=[SemanticExtraction(fact=f"fact {i}", category="preference") for i in range(semantic)],
    )


def manager(settings, model=None, store=None) -> LTMManager:
    handle = ModelHandle.from_model("fast", model) if model is not None else None
    return LTMManager(settings, handle, store)


async def test_completed_task_is_extracted_and_stored(make_settings, make_stm_item):
    model = FakeChatModel(structured=[extraction()])
    store = FakeMemoryStore()
    task = finished_task()

    update = await manager(make_settings(), model, store).process(state_for(task, make_stm_item), CONFIG)

    assert update == {"last_node": "ltm_manager"}
    [(semantic, episodic)] = store.upserts
    assert semantic[0].fact == "fact 0"
    assert semantic[0].category == "preference"
    assert episodic[0].sources == ["reserve_tool"]
    for record in semantic + episodic:
        assert (record.user_id, record.run_id) == ("user-7", "thread-9")
        assert record.task_id == task.id
        assert record.step_id == task.steps[-1].id


async def test_planning_mode_extracts_from_whole_task(make_settings, make_stm_item):
    model = FakeChatModel(structured=[extraction()])
    await manager(make_settings(execution_mode="planning"), model, FakeMemoryStore()).process(
        state_for(finished_task(), make_stm_item), CONFIG
    )
    _, prompt = model.structured_calls[0]
    assert prompt[1].content.startswith("Task: book a table")
    assert "found Luigi's" in prompt[1].content


async def test_reactive_mode_extracts_from_latest_stm_item(make_settings, make_stm_item):
    model = FakeChatModel(structured=[extraction()])
    await manager(make_settings(execution_mode="reactive"), model, FakeMemoryStore()).process(
        state_for(finished_task(), make_stm_item), CONFIG
    )
    _, prompt = model.structured_calls[0]
    assert prompt[1].content == "reserved for 8pm"


async def test_extraction_is_bounded(make_settings, make_stm_item):
    settings = make_settings(max_insert_episodic_size=2, max_insert_semantic_size=1)
    model = FakeChatModel(structured=[extraction(episodic=4, semantic=3).model_dump()])
    store = FakeMemoryStore()

    await manager(settings, model, store).process(state_for(finished_task(), make_stm_item), CONFIG)

    [(semantic, episodic)] = store.upserts
    assert len(episodic) == 2
    assert len(semantic) == 1


async def test_unfinished_task_is_skipped(make_settings, make_stm_item):
    model = FakeChatModel(structured=[extraction()])
    store = FakeMemoryStore()
    task = finished_task(TaskStatus.IN_PROGRESS)

    await manager(make_settings(), model, store).process(state_for(task, make_stm_item), CONFIG)

    assert model.structured_calls == []
    assert store.upserts == []


async def test_failed_task_is_extracted(make_settings, make_stm_item):
    store = FakeMemoryStore()
    model = FakeChatModel(structured=[extraction()])
    await manager(make_settings(), model, store).process(
        state_for(finished_task(TaskStatus.FAILED), make_stm_item), CONFIG
    )
    assert len(store.upserts) == 1


async def test_memory_disabled_skips_everything(make_settings, make_stm_item):
    model = FakeChatModel(structured=[extraction()])
    store = FakeMemoryStore()
    await manager(make_settings(memory_enabled=False), model, store).process(
        state_for(finished_task(), make_stm_item), CONFIG
    )
    assert model.structured_calls == []
    assert store.upserts == []


async def test_empty_stm_is_skipped(make_settings):
    model = FakeChatModel(structured=[extraction()])
    state = {"tasks": [finished_task()], "memories": Memories(), "current_graph_step": 1}
    await manager(make_settings(), model, FakeMemoryStore()).process(state, CONFIG)
    assert model.structured_calls == []


async def test_store_failure_is_not_raised(make_settings, make_stm_item):
    store = FakeMemoryStore(fail_upsert=True)
    model = FakeChatModel(structured=[extraction()])

    update = await manager(make_settings(), model, store).process(state_for(finished_task(), make_stm_item), CONFIG)

    assert update == {"last_node": "ltm_manager"}
    assert len(store.upserts) == 1


async def test_extraction_failure_is_not_raised(make_settings, make_stm_item):
    store = FakeMemoryStore()
    model = FakeChatModel(structured=[RuntimeError("bad json")])

    update = await manager(make_settings(), model, store).process(state_for(finished_task(), make_stm_item), CONFIG)

    assert update == {"last_node": "ltm_manager"}
    assert store.upserts == []


def test_build_records_drops_blank_entries():
    raw = LTMExtraction(
        episodic=[EpisodicExtraction(content="  "), EpisodicExtraction(content="met Ana", source=[" "])],
        semantic=[SemanticExtraction(fact="", category="x")],
    )
    semantic, episodic = build_records(
        raw, user_id="u", run_id="r", task_id="t", step_id="s", max_episodic=5, max_semantic=5
    )
    assert semantic == []
    assert [e.content for e in episodic] == ["met Ana"]
    assert episodic[0].sources == ["conversation"]
