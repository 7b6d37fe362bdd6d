from fakes import ScriptedLLM
from hivemind.judge import (
    Judge,
    below_price_floor,
    build_defense_report,
    fallback_match,
    find_kill_word,
    price_floor_reasoning,
    select_winner,
)
from hivemind.pipeline_types import (
    EnrichedListing,
    EnrichmentEvidence,
    GoldIdentity,
    JudgedCandidate,
    KitLine,
    KitPricing,
    MatchStatus,
    RawListing,
    SpecEvidence,
    TenderItem,
)

ITEM = TenderItem(id="1", description="Sirene escolar com 72 músicas", max_price=100.0)
GOLD = GoldIdentity(
    name="Acme Sonora Escolar",
    manufacturer="Acme",
    source_url="https://acme.com.br/sonora",
    validated_specs=[SpecEvidence(spec="72 músicas")],
    search_queries=["Acme Sonora Escolar"],
)
APPROVE = {"matches": True, "confidence": 0.9, "status": "APPROVED", "risk_score": 2, "reasoning": "Modelo confere"}


def _enriched(title="Sirene Acme Sonora Escolar 72 músicas", price=80.0, anomaly=False, evidence=None, n=0):
    listing = RawListing(
        title=title,
        price=price,
        link=f"https://l.com/{n}",
        source_strategy="identity",
        price_anomaly=anomaly,
        anomaly_reason="Preço 18% da mediana. Possível peça/sucata." if anomaly else "",
    )
    return EnrichedListing(listing=listing, evidence=evidence)


def _judged(status, risk, price, floor=False, n=0):
    return JudgedCandidate.judge(_enriched(price=price, n=n), status, risk, "ok", price_floor_rejected=floor)


def test_price_floor():
    assert below_price_floor(10, 100)
    assert not below_price_floor(15, 100)
    assert not below_price_floor(10, 0)
    assert not below_price_floor(0, 100)
    assert price_floor_reasoning(10, 100) == (
        "⛔ PREÇO VIL (R$ 10.00). Piso mínimo: R$ 15.00 (15% de R$ 100.00). "
        "Suspeita de acessório, peça de reposição ou sucata."
    )


def test_find_kill_word_ignores_case_and_accents():
    assert find_kill_word("Sirene USADA com defeito", ["usada"]) == "usada"
    assert find_kill_word("Peca de reposicao para sirene", ["peça de reposição"]) == "peça de reposição"
    assert find_kill_word("Sirene nova", ["usada", ""]) is None


def test_fallback_match_levels():
    assert fallback_match("Sirene Acme Sonora Escolar", GOLD.name) == (
        MatchStatus.APPROVED,
        2.0,
        "Título contém 3/3 palavras do modelo",
    )
    assert fallback_match("Acme Sonora genérica", GOLD.name)[0] is MatchStatus.UNCERTAIN
    assert fallback_match("Sirene barata", GOLD.name) == (
        MatchStatus.REJECTED,
        8.0,
        "Modelo não identificado no anúncio",
    )


async def test_price_floor_rejects_before_any_model_call():
    llm = ScriptedLLM(default=APPROVE)
    judged = await Judge(llm).judge_one(_enriched(price=10.0), ITEM, GOLD, ["72 músicas"], [])
    assert judged.match_status is MatchStatus.REJECTED
    assert judged.risk_score == 10.0
    assert judged.price_floor_rejected
    assert "PREÇO VIL" in judged.reasoning
    assert "R$ 15.00" in judged.reasoning
    assert llm.calls == []


async def test_anomaly_is_uncertain_without_model_call():
    llm = ScriptedLLM(default=APPROVE)
    judged = await Judge(llm).judge_one(_enriched(anomaly=True), ITEM, GOLD, [], [])
    assert judged.match_status is MatchStatus.UNCERTAIN
    assert judged.risk_score == 8.0
    assert judged.reasoning.startswith("Preço 18%")
    assert llm.calls == []


async def test_kill_word_rejects():
    llm = ScriptedLLM(default=APPROVE)
    judged = await Judge(llm).judge_one(_enriched(title="Sirene Acme Sonora usada"), ITEM, GOLD, [], ["usada"])
    assert judged.match_status is MatchStatus.REJECTED
    assert judged.risk_score == 10.0
    assert judged.reasoning == "Termo proibido no anúncio: usada"


async def test_generic_identity_is_uncertain():
    llm = ScriptedLLM(default=APPROVE)
    generic = GoldIdentity.generic("sirene escolar")
    judged = await Judge(llm).judge_one(_enriched(), ITEM, generic, [], [])
    assert judged.match_status is MatchStatus.UNCERTAIN
    assert judged.risk_score == 5.0
    assert llm.calls == []


async def test_model_verdict_is_used():
    llm = ScriptedLLM({"judge": [APPROVE]})
    judged = await Judge(llm).judge_one(_enriched(), ITEM, GOLD, ["72 músicas"], [])
    assert judged.match_status is MatchStatus.APPROVED
    assert judged.risk_score == 2.0
    assert judged.reasoning == "Modelo confere"
    assert "Acme Sonora Escolar" in llm.agent_calls("judge")[0]


async def test_approved_status_without_match_flag_is_downgraded():
    llm = ScriptedLLM({"judge": [{"matches": False, "status": "APPROVED", "risk_score": 40}]})
    judged = await Judge(llm).judge_one(_enriched(), ITEM, GOLD, [], [])
    assert judged.match_status is MatchStatus.UNCERTAIN
    assert judged.risk_score == 10.0


async def test_provider_down_uses_word_overlap():
    judged = await Judge(ScriptedLLM()).judge_one(_enriched(), ITEM, GOLD, [], [])
    assert judged.match_status is MatchStatus.APPROVED
    assert judged.risk_score == 2.0


async def test_refuting_evidence_downgrades_overlap_approval():
    evidence = EnrichmentEvidence(specs={"72 músicas": False}, confidence=0.7, source="x")
    judged = await Judge(ScriptedLLM()).judge_one(_enriched(evidence=evidence), ITEM, GOLD, [], [])
    assert judged.match_status is MatchStatus.UNCERTAIN
    assert judged.risk_score == 5.0
    assert "72 músicas" in judged.reasoning


def test_select_winner_lowest_risk_then_price():
    candidates = [
        _judged(MatchStatus.APPROVED, 2.0, 200.0, n=0),
        _judged(MatchStatus.APPROVED, 2.0, 150.0, n=1),
        _judged(MatchStatus.UNCERTAIN, 3.0, 90.0, n=2),
    ]
    assert select_winner(candidates) == (1, True)


def test_select_winner_best_effort_is_not_endorsed():
    candidates = [
        _judged(MatchStatus.UNCERTAIN, 5.0, 90.0, n=0),
        _judged(MatchStatus.REJECTED, 10.0, 10.0, floor=True, n=1),
        _judged(MatchStatus.REJECTED, 8.0, 50.0, n=2),
    ]
    assert select_winner(candidates) == (0, False)


def test_select_winner_never_picks_floor_rejects():
    candidates = [_judged(MatchStatus.REJECTED, 10.0, 10.0, floor=True)]
    assert select_winner(candidates) == (None, False)
    assert select_winner([]) == (None, False)


async def test_judge_picks_cheaper_of_two_approved():
    llm = ScriptedLLM(default=APPROVE)
    listings = [_enriched(price=200.0, n=0), _enriched(price=150.0, n=1)]
    item = TenderItem(id="1", description="Sirene", max_price=300.0)
    judged, winner, endorsed = await Judge(llm).judge(listings, item, GOLD, ["72 músicas"], [])
    assert winner == 1
    assert endorsed
    assert judged[winner].price == 150.0


def test_defense_report_for_endorsed_winner():
    candidates = [_judged(MatchStatus.APPROVED, 2.0, 150.0)]
    kit = KitPricing(items=(KitLine("Corneta", 2, 30.0, 60.0, "https://l.com/c", "Corneta"),), total=60.0)
    report = build_defense_report(ITEM, GOLD, ["72 músicas"], ["usada"], candidates, 0, True, kit)
    assert report.item_id == "1"
    assert report.identity_name == "Acme Sonora Escolar"
    assert not report.identity_is_generic
    assert report.winner["price"] == 150.0
    assert report.justification.startswith("Menor risco (2.0)")
    assert "Termos proibidos: usada" in report.methodology
    assert report.kit_total == 60.0
    assert report.candidate_count == 1


def test_defense_report_without_winner():
    report = build_defense_report(ITEM, None, [], [], [], None, False)
    assert report.winner is None
    assert report.identity_is_generic
    assert report.justification == "Nenhum candidato elegível encontrado."
    assert report.methodology.startswith("Busca direta")
