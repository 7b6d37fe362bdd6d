import asyncio

from fakes import FakeMarketplace
from hivemind import worker
from hivemind.config import ProviderConfig
from hivemind.errors import BlockedByPortalError, PipelineAborted
from hivemind.identity_cache import JsonIdentityCache
from hivemind.marketplace import SharedBrowser
from hivemind.orchestrator import PipelineResult
from hivemind.pipeline_types import PipelineState, TenderItem
from hivemind.worker import item_sort_key, process_items


class CountingBrowser(SharedBrowser):
    def __init__(self):
        super().__init__()
        self.opened = 0
        self.closed = 0

    async def _open_session(self):
        self.opened += 1
        return FakeMarketplace()

    async def _close_session(self, session):
        self.closed += 1


def _items(*ids):
    return [TenderItem(id=i, description=f"Item {i}", max_price=100.0) for i in ids]


def _fake_pipeline(failures=None, seen=None, active=None):
    failures = failures or {}

    async def run(item, config, session, **kwargs):
        if seen is not None:
            seen.append((item.id, session, kwargs["cache"]))
        if active is not None:
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
            await asyncio.sleep(0.01)
            active["now"] -= 1
        if item.id in failures:
            raise failures[item.id]
        return PipelineResult(None, [], None, None, PipelineState(item=item))

    return run


def test_item_sort_key():
    ids = ["10", "b", "2", "a", "1"]
    assert sorted(ids, key=item_sort_key) == ["1", "2", "10", "a", "b"]


async def test_one_failure_does_not_stop_the_others(monkeypatch):
    monkeypatch.setattr(worker, "run_pipeline", _fake_pipeline({"2": RuntimeError("boom")}))
    browser = CountingBrowser()
    outcomes = await process_items(_items("3", "2", "1"), ProviderConfig(), browser, cache=JsonIdentityCache(path=None))

    assert [o.item_id for o in outcomes] == ["1", "2", "3"]
    assert [o.ok for o in outcomes] == [True, False, True]
    assert outcomes[1].error == "RuntimeError: boom"
    assert browser.opened == browser.closed == 3
    assert browser.open_sessions == 0


async def test_blocked_portal_is_reported_per_item(monkeypatch):
    monkeypatch.setattr(worker, "run_pipeline", _fake_pipeline({"1": BlockedByPortalError()}))
    outcomes = await process_items(_items("1", "2"), ProviderConfig(), CountingBrowser(),
                                   cache=JsonIdentityCache(path=None))
    assert outcomes[0].error == "BlockedByPortalError: BLOCKED_BY_PORTAL"
    assert outcomes[1].ok


async def test_each_item_gets_its_own_session_and_shares_the_cache(monkeypatch):
    seen = []
    monkeypatch.setattr(worker, "run_pipeline", _fake_pipeline(seen=seen))
    cache = JsonIdentityCache(path=None)
    await process_items(_items("1", "2"), ProviderConfig(), CountingBrowser(), cache=cache)
    sessions = {id(s) for _, s, _ in seen}
    assert len(sessions) == 2
    assert all(c is cache for _, _, c in seen)


async def test_concurrency_is_bounded(monkeypatch):
    active = {"now": 0, "max": 0}
    monkeypatch.setattr(worker, "run_pipeline", _fake_pipeline(active=active))
    await process_items(_items(*[str(i) for i in range(6)]), ProviderConfig(), CountingBrowser(),
                        concurrency=2, cache=JsonIdentityCache(path=None))
    assert active["max"] == 2


async def test_aborted_job_skips_items(monkeypatch):
    seen = []
    monkeypatch.setattr(worker, "run_pipeline", _fake_pipeline(seen=seen))
    browser = CountingBrowser()
    outcomes = await process_items(_items("1", "2"), ProviderConfig(), browser, is_aborted=lambda: True,
                                   cache=JsonIdentityCache(path=None))
    assert [o.error for o in outcomes] == ["aborted", "aborted"]
    assert seen == []
    assert browser.opened == 0


async def test_abort_inside_a_pipeline_is_not_a_failure(monkeypatch):
    monkeypatch.setattr(worker, "run_pipeline", _fake_pipeline({"1": PipelineAborted("stop")}))
    outcomes = await process_items(_items("1"), ProviderConfig(), CountingBrowser(), cache=JsonIdentityCache(path=None))
    assert outcomes[0].error == "aborted"
    assert not outcomes[0].ok
