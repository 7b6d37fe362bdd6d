"""
Cross-referencer / judge.

Order of checks for every listing:

  1. price floor (pure price ratio, before anything else, no model call)
  2. price anomaly flag from the searcher
  3. kill-words from the tender's negative constraints
  4. model match against the gold identity, or word overlap when the model
     is unavailable; generic identities always end UNCERTAIN

Winner: lowest (risk, total price) among APPROVED / risk <= 3 candidates,
else a non-endorsed best-effort pick. Price-floor rejects are never picked.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from .config import (
    ANOMALY_RISK,
    APPROVED_OVERLAP,
    ENDORSE_MAX_RISK,
    GENERIC_RISK,
    JUDGE_DESCRIPTION_CHARS,
    PRICE_FLOOR_RATIO,
    UNCERTAIN_OVERLAP,
)
from .errors import ProviderError
from .llm import CompletionClient, user_message
from .normalize import clamp
from .pipeline_types import (
    DefenseReport,
    EnrichedListing,
    GoldIdentity,
    JudgedCandidate,
    KitPricing,
    MatchStatus,
    TenderItem,
)
from .text_utils import contains_phrase, significant_words, word_overlap_ratio

MATCH_PROMPT = """Você identifica produtos em anúncios de marketplace.

PRODUTO ALVO:
Nome: {name}
Fabricante: {manufacturer}
Especificações validadas: {validated}

ANÚNCIO:
Título: {title}
Preço: R$ {price:.2f}
Atributos: {attributes}
Descrição: {description}
{evidence}
ESPECIFICAÇÕES DO EDITAL:
{specs}

O anúncio é claramente o mesmo produto que o alvo? Anúncios com descrição pobre
podem ser aprovados se identificam o modelo correto.

Responda SOMENTE em JSON:
```json
{{"matches": true, "confidence": 0.0, "status": "APPROVED", "risk_score": 0, "reasoning": "..."}}
```"""

Verdict = Tuple[MatchStatus, float, str]


# ---------------------------------------------------------------------------
# Deterministic pieces
# ---------------------------------------------------------------------------

def price_floor(max_price: float) -> float:
    return max_price * PRICE_FLOOR_RATIO


def below_price_floor(price: float, max_price: float) -> bool:
    return max_price > 0 and 0 < price < price_floor(max_price)


def price_floor_reasoning(price: float, max_price: float) -> str:
    return (
        f"⛔ PREÇO VIL (R$ {price:.2f}). "
        f"Piso mínimo: R$ {price_floor(max_price):.2f} "
        f"({PRICE_FLOOR_RATIO * 100:.0f}% de R$ {max_price:.2f}). "
        "Suspeita de acessório, peça de reposição ou sucata."
    )


def find_kill_word(text: str, negative_constraints: List[str]) -> Optional[str]:
    for word in negative_constraints:
        if word and contains_phrase(text, word):
            return word
    return None


def fallback_match(title: str, identity_name: str) -> Verdict:
    """Share of identity-name words found in the listing title."""
    words = significant_words(identity_name)
    ratio = word_overlap_ratio(identity_name, title)
    hits = round(ratio * len(words))
    if ratio > APPROVED_OVERLAP:
        return MatchStatus.APPROVED, 2.0, f"Título contém {hits}/{len(words)} palavras do modelo"
    if ratio > UNCERTAIN_OVERLAP:
        return MatchStatus.UNCERTAIN, 5.0, "Correspondência parcial - requer verificação"
    return MatchStatus.REJECTED, 8.0, "Modelo não identificado no anúncio"


def _parse_verdict(data: Dict[str, Any]) -> Verdict:
    try:
        risk = float(data.get("risk_score", 5))
    except (TypeError, ValueError):
        risk = 5.0
    risk = min(10.0, max(0.0, risk))
    if data.get("matches") is True:
        status = MatchStatus.APPROVED
    else:
        try:
            status = MatchStatus(str(data.get("status", "UNCERTAIN")).upper())
        except ValueError:
            status = MatchStatus.UNCERTAIN
        if status is MatchStatus.APPROVED:
            status = MatchStatus.UNCERTAIN
    return status, risk, str(data.get("reasoning") or "")


def _sort_key(idx: int, cand: JudgedCandidate) -> Tuple[float, float, int]:
    return cand.risk_score, cand.total_price, idx


def select_winner(candidates: List[JudgedCandidate]) -> Tuple[Optional[int], bool]:
    """Returns (index, endorsed)."""
    qualified = [
        (i, c)
        for i, c in enumerate(candidates)
        if not c.price_floor_rejected
        and (c.match_status is MatchStatus.APPROVED or c.risk_score <= ENDORSE_MAX_RISK)
    ]
    if qualified:
        return min(qualified, key=lambda ic: _sort_key(*ic))[0], True
    pool = [(i, c) for i, c in enumerate(candidates) if not c.price_floor_rejected]
    if pool:
        return min(pool, key=lambda ic: _sort_key(*ic))[0], False
    return None, False


# ---------------------------------------------------------------------------
# Defense report
# ---------------------------------------------------------------------------

def build_methodology(identity: Optional[GoldIdentity], kill_specs: List[str], negative_constraints: List[str]) -> str:
    if identity is None or identity.is_generic:
        text = "Busca direta no marketplace sem identidade validada; candidatos exigem revisão manual."
        if negative_constraints:
            text += f" Termos proibidos verificados: {', '.join(negative_constraints)}."
        return text
    lines = [
        f"1. Especificações decisivas extraídas do edital: {', '.join(kill_specs[:3]) or '-'}",
        "2. Fabricante/modelo localizado na web aberta",
        f"3. \"{identity.name}\" validado contra a fonte do fabricante ({identity.source_url or 'fonte confirmada'})",
        "4. Busca no marketplace pelo modelo validado",
        "5. Anúncios comparados ao modelo; ordenação por risco e depois preço total",
    ]
    if negative_constraints:
        lines.insert(1, f"   Termos proibidos: {', '.join(negative_constraints)}")
    return "\n".join(lines)


def build_defense_report(
    item: TenderItem,
    identity: Optional[GoldIdentity],
    kill_specs: List[str],
    negative_constraints: List[str],
    candidates: List[JudgedCandidate],
    winner_index: Optional[int],
    endorsed: bool,
    kit_pricing: Optional[KitPricing] = None,
) -> DefenseReport:
    winner: Optional[Dict[str, Any]] = None
    if winner_index is not None:
        w = candidates[winner_index]
        winner = w.to_dict()
        if endorsed:
            justification = (
                f"Menor risco ({w.risk_score:.1f}) e menor preço total (R$ {w.total_price:.2f}) "
                f"entre os candidatos aprovados. {w.reasoning}"
            )
        else:
            justification = (
                "Escolha de melhor esforço, sem endosso: nenhum candidato aprovado ou com risco "
                f"até {ENDORSE_MAX_RISK:.0f}. {w.reasoning}"
            )
    else:
        justification = "Nenhum candidato elegível encontrado."

    return DefenseReport(
        item_id=item.id,
        description=item.description,
        max_price=item.max_price,
        identity_name=identity.name if identity else None,
        identity_manufacturer=identity.manufacturer if identity else None,
        identity_source_url=identity.source_url if identity else None,
        identity_is_generic=identity.is_generic if identity else True,
        kill_specs=tuple(kill_specs),
        negative_constraints=tuple(negative_constraints),
        winner=winner,
        endorsed=endorsed,
        justification=justification.strip(),
        methodology=build_methodology(identity, kill_specs, negative_constraints),
        kit_lines=kit_pricing.items if kit_pricing else (),
        kit_total=kit_pricing.total if kit_pricing else 0.0,
        candidate_count=len(candidates),
    )


# ---------------------------------------------------------------------------
# Judge
# ---------------------------------------------------------------------------

class Judge:
    def __init__(self, llm: CompletionClient):
        self.llm = llm

    async def _model_match(
        self, cand: EnrichedListing, identity: GoldIdentity, kill_specs: List[str]
    ) -> Verdict:
        lst = cand.listing
        evidence = ""
        if cand.evidence is not None:
            evidence = (
                f"EVIDÊNCIA EXTERNA (confiança {cand.evidence.confidence:.2f}): "
                f"confirmadas={', '.join(cand.evidence.confirmed) or '-'}; "
                f"refutadas={', '.join(cand.evidence.refuted) or '-'}\n"
            )
        prompt = MATCH_PROMPT.format(
            name=identity.name,
            manufacturer=identity.manufacturer or "Desconhecido",
            validated=", ".join(s.spec for s in identity.validated_specs) or "-",
            title=lst.title,
            price=lst.price,
            attributes=", ".join(lst.attributes) or "-",
            description=clamp(lst.description, JUDGE_DESCRIPTION_CHARS) or "-",
            evidence=evidence,
            specs=", ".join(kill_specs),
        )
        try:
            data, _ = await self.llm.complete_json(user_message(prompt), agent="judge")
        except ProviderError as exc:
            logger.debug("Judge model unavailable, word overlap for {!r}: {}", lst.title[:40], exc)
            status, risk, reason = fallback_match(lst.title, identity.name)
            if status is MatchStatus.APPROVED and cand.evidence is not None and cand.evidence.refuted:
                return (
                    MatchStatus.UNCERTAIN,
                    GENERIC_RISK,
                    f"{reason}; evidência externa refuta: {', '.join(cand.evidence.refuted)}",
                )
            return status, risk, reason
        return _parse_verdict(data)

    async def judge_one(
        self,
        cand: EnrichedListing,
        item: TenderItem,
        identity: Optional[GoldIdentity],
        kill_specs: List[str],
        negative_constraints: List[str],
    ) -> JudgedCandidate:
        lst = cand.listing
        if below_price_floor(lst.price, item.max_price):
            return JudgedCandidate.judge(
                cand, MatchStatus.REJECTED, 10.0, price_floor_reasoning(lst.price, item.max_price), price_floor_rejected=True
            )
        if lst.price_anomaly:
            return JudgedCandidate.judge(cand, MatchStatus.UNCERTAIN, ANOMALY_RISK, lst.anomaly_reason or "Anomalia de preço")
        kill_word = find_kill_word(lst.full_text, negative_constraints)
        if kill_word:
            return JudgedCandidate.judge(cand, MatchStatus.REJECTED, 10.0, f"Termo proibido no anúncio: {kill_word}")
        if identity is None or identity.is_generic:
            return JudgedCandidate.judge(
                cand, MatchStatus.UNCERTAIN, GENERIC_RISK, "Identidade genérica - validação manual recomendada"
            )
        status, risk, reason = await self._model_match(cand, identity, kill_specs)
        return JudgedCandidate.judge(cand, status, risk, reason)

    async def judge(
        self,
        listings: List[EnrichedListing],
        item: TenderItem,
        identity: Optional[GoldIdentity],
        kill_specs: List[str],
        negative_constraints: List[str],
    ) -> Tuple[List[JudgedCandidate], Optional[int], bool]:
        judged = []
        for cand in listings:
            judged.append(await self.judge_one(cand, item, identity, kill_specs, negative_constraints))
        rejected = sum(1 for c in judged if c.price_floor_rejected)
        if rejected:
            logger.info(
                "Price floor rejected {} listings (below R$ {:.2f})", rejected, price_floor(item.max_price)
            )
        winner, endorsed = select_winner(judged)
        if winner is not None:
            w = judged[winner]
            logger.info(
                "Winner #{} risk={} total=R$ {:.2f} endorsed={} | {}",
                winner,
                w.risk_score,
                w.total_price,
                endorsed,
                w.title[:60],
            )
        else:
            logger.info("No eligible winner among {} candidates", len(judged))
        return judged, winner, endorsed
