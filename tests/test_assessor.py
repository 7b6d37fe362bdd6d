from hivemind.assessor import assess, generate_alternative_queries, is_promising
from hivemind.pipeline_types import RawListing

TITLE = "Sirene Escolar Acme SX-72 com 72 músicas pré-gravadas e entrada USB"


def _listing(price, title=TITLE, anomaly=False):
    return RawListing(title=title, price=price, link=f"https://l.com/{price}", source_strategy="identity",
                      price_anomaly=anomaly)


def test_is_promising_price_window():
    assert is_promising(_listing(100), 200)
    assert is_promising(_listing(20), 200)
    assert not is_promising(_listing(19), 200)
    assert is_promising(_listing(300), 200)
    assert not is_promising(_listing(301), 200)


def test_is_promising_without_budget_ignores_price():
    assert is_promising(_listing(99999), None)
    assert is_promising(_listing(1), 0)


def test_short_text_and_anomalies_are_not_promising():
    assert not is_promising(_listing(100, title="Sirene"), 200)
    assert not is_promising(_listing(100, anomaly=True), 200)


def test_alternative_queries_priority():
    alternatives = generate_alternative_queries(
        ["Acme SX-72"], '"72 músicas"', ["entrada USB", "72 músicas pré-gravadas"], "sirene escolar musical"
    )
    assert alternatives == ["72 músicas", "entrada USB"]


def test_alternative_queries_skip_what_was_tried():
    alternatives = generate_alternative_queries(
        ["Acme SX-72", '"72 músicas"', "Entrada USB"], "72 músicas", ["entrada USB"], "sirene escolar musical"
    )
    assert alternatives == ["sirene escolar"]


def test_alternative_queries_can_run_dry():
    assert generate_alternative_queries(["sirene escolar"], None, ["USB"], "sirene escolar") == []


def test_assess_requests_more_when_too_few_promising():
    result = assess([_listing(100)], 200, 0, 3, ["Acme SX-72"], "72 músicas", [], "sirene escolar")
    assert result.needs_more
    assert result.retry
    assert result.alternative_queries == ["72 músicas", "sirene escolar"]


def test_assess_satisfied_with_two_promising():
    result = assess([_listing(100), _listing(150)], 200, 0, 3, [], "72 músicas", [], "sirene escolar")
    assert len(result.promising) == 2
    assert not result.needs_more
    assert result.alternative_queries == []


def test_assess_stops_at_retry_limit():
    result = assess([], 200, 3, 3, [], "72 músicas", [], "sirene escolar")
    assert not result.needs_more
    assert not result.retry


def test_assess_without_alternatives_does_not_retry():
    result = assess([], 200, 0, 3, ["sirene escolar"], None, [], "sirene escolar")
    assert result.needs_more
    assert not result.retry
