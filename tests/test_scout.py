from fakes import FakeFetcher, FakeSearch, ScriptedLLM
from hivemind.errors import SearchProviderError
from hivemind.pipeline_types import KillSpec
from hivemind.scout import Scout, rank_results, relax_kill_specs, relax_queries
from hivemind.web_search import SearchResult

LONG_PAGE = "Sirene escolar SX72 da Acme com 72 músicas pré-gravadas. " * 5


def _entity(name, confidence):
    return {
        "found": True,
        "entity_name": name,
        "manufacturer": "Acme",
        "matched_specs": ["72 músicas"],
        "confidence": confidence,
        "evidence": "72 músicas pré-gravadas",
    }


def test_relax_kill_specs_ladder():
    specs = [KillSpec("72 músicas pré-gravadas", 10.0), KillSpec("entrada USB")]
    assert [s.text for s in relax_kill_specs(specs, 1)] == ["músicas pré-gravadas", "entrada USB"]
    assert [s.text for s in relax_kill_specs(specs, 2)] == ["72 músicas", "entrada USB"]
    assert relax_kill_specs(specs, 3) == specs
    assert relax_kill_specs(specs, 1)[0].weight == 10.0


def test_relax_kill_specs_never_empties_the_list():
    specs = [KillSpec("72")]
    assert relax_kill_specs(specs, 1) == specs


def test_relax_queries():
    queries = ['"72 músicas" site:com.br OR site:gov.br']
    assert relax_queries(queries, 0) == queries
    assert relax_queries(queries, 1) == ['"72 músicas"']
    assert relax_queries(queries, 2) == ["72 músicas"]


def test_rank_results_excludes_marketplaces_and_boosts_manufacturers():
    results = [
        SearchResult("Sirene no ML", "https://produto.mercadolivre.com.br/x"),
        SearchResult("Review", "https://blog.example.org/post"),
        SearchResult("Ficha técnica", "https://fabricante.com.br/ficha-tecnica"),
    ]
    ranked = rank_results(results)
    assert [r.link for r in ranked] == [
        "https://fabricante.com.br/ficha-tecnica",
        "https://blog.example.org/post",
    ]


async def test_investigate_keeps_confident_entities_sorted():
    search = FakeSearch(
        default=[
            SearchResult("p1", "https://a.example.org/p1"),
            SearchResult("p2", "https://b.example.org/p2"),
            SearchResult("p3", "https://c.example.org/p3"),
        ]
    )
    fetcher = FakeFetcher(
        {
            "https://a.example.org/p1": LONG_PAGE,
            "https://b.example.org/p2": LONG_PAGE,
            "https://c.example.org/p3": LONG_PAGE,
        }
    )
    llm = ScriptedLLM({"scout": [_entity("Fraca", 0.4), _entity("SX72", 0.9), _entity("Limite", 0.5)]})
    result = await Scout(search, fetcher, llm).investigate([KillSpec("72 músicas")], ["sirene 72 músicas"], 0)

    assert not result.retry
    assert [e.name for e in result.entities] == ["SX72", "Limite"]
    assert result.detected_model == "SX72"
    assert result.entities[0].source_url == "https://b.example.org/p2"
    assert result.pages_fetched == 3


async def test_results_are_deduplicated_and_queries_capped():
    same = [SearchResult("p", "https://a.example.org/p")]
    search = FakeSearch(default=same)
    fetcher = FakeFetcher({"https://a.example.org/p": LONG_PAGE})
    llm = ScriptedLLM({"scout": [_entity("SX72", 0.8)]})
    queries = ["q1", "q2", "q3", "q4"]
    result = await Scout(search, fetcher, llm).investigate([KillSpec("72 músicas")], queries, 0)
    assert search.queries == ["q1", "q2", "q3"]
    assert fetcher.fetched == ["https://a.example.org/p"]
    assert len(result.entities) == 1


async def test_short_pages_are_skipped_without_model_calls():
    search = FakeSearch(default=[SearchResult("p", "https://a.example.org/p")])
    fetcher = FakeFetcher({"https://a.example.org/p": "curto"})
    llm = ScriptedLLM(default=_entity("SX72", 0.9))
    result = await Scout(search, fetcher, llm).investigate([KillSpec("72 músicas")], ["q"], 0)
    assert llm.calls == []
    assert result.retry


async def test_empty_round_requests_next_relaxation_level():
    scout = Scout(FakeSearch(), FakeFetcher(), ScriptedLLM())
    specs = [KillSpec("72 músicas")]
    result = await scout.investigate(specs, ['"72 músicas" site:com.br'], 0)
    assert result.retry
    assert [s.text for s in result.relaxed_specs] == ["músicas"]
    assert result.relaxed_queries == ['"72 músicas"']


async def test_no_retry_at_maximum_level():
    scout = Scout(FakeSearch(), FakeFetcher(), ScriptedLLM())
    result = await scout.investigate([KillSpec("músicas")], ["músicas"], 3)
    assert not result.retry
    assert result.entities == []


async def test_search_errors_are_absorbed():
    search = FakeSearch(error=SearchProviderError("down"))
    result = await Scout(search, FakeFetcher(), ScriptedLLM()).investigate([KillSpec("72 músicas")], ["q"], 0)
    assert result.retry
    assert result.pages_fetched == 0


async def test_operators_stripped_from_level_two():
    search = FakeSearch()
    scout = Scout(search, FakeFetcher(), ScriptedLLM())
    await scout.investigate([KillSpec("músicas")], ["sirene site:com.br"], 2)
    assert search.queries == ["sirene"]
