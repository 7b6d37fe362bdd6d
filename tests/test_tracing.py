from loguru import logger

from hivemind.tracing import FileTracer, GuardedTracer, NullTracer, guard, summarize_rows


class BrokenTracer:
    def __getattr__(self, name):
        def fail(*args):
            raise RuntimeError(f"{name} exploded")

        return fail


def test_null_tracer_is_silent():
    tracer = NullTracer()
    tracer.stage("SEARCH", "x")
    tracer.ranking([], None)
    assert tracer.finalize() is None


def test_guarded_tracer_swallows_errors():
    tracer = GuardedTracer(BrokenTracer())
    tracer.stage("SEARCH", "x")
    tracer.ai_exchange("judge", "p", "r")
    tracer.validation("validator", [{"a": 1}])
    tracer.ranking([{"title": "t"}], 0)
    tracer.error("orchestrator", "boom")
    assert tracer.finalize() is None


def test_guard_does_not_double_wrap():
    guarded = guard(None)
    assert isinstance(guarded.inner, NullTracer)
    assert guard(guarded) is guarded


def test_file_tracer_writes_only_its_own_records(tmp_path):
    tracer = FileTracer("42", "7", directory=tmp_path)
    tracer.stage("SEARCH", "5 anúncios")
    tracer.ranking([{"title": "Sirene SX72", "risk_score": 2.0, "match_status": "APPROVED", "total_price": 150.0}], 0)
    logger.info("unrelated record")
    path = tracer.finalize()

    assert path.parent == tmp_path
    assert path.name.startswith("task_42_item_7_")
    text = path.read_text(encoding="utf-8")
    assert "[SEARCH] 5 anúncios" in text
    assert "Sirene SX72" in text
    assert "unrelated record" not in text
    assert tracer.finalize() == path


def test_summarize_rows():
    class Row:
        def model_dump(self):
            return {"spec": "x"}

    assert summarize_rows([Row(), {"a": 1}, 3]) == [{"spec": "x"}, {"a": 1}, {"value": "3"}]
