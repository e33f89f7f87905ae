"""
Cloudinha Analytics — AI Insights
====================================

Turns a summary of the funnel and recent conversations into categorised
product insights through a text-completion provider.

Generated insights are cached in an external store:
  - a request without force_refresh returns any entry younger than the TTL
  - a forced refresh still returns the latest entry while it is inside the
    regeneration cooldown
  - every response reports whether the data changed since the cached entry
    (content hash of the 7-day message count, user count, preference count
    and local date)

A completion that cannot be parsed never fails the request; it becomes a
single synthetic "alert" insight.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from scripts.analytics.reports import funnel_report
from scripts.analytics.repository import (
    MESSAGES_TABLE,
    PREFERENCES_TABLE,
    PROFILES_TABLE,
    AnalyticsRepository,
)
from scripts.analytics.row_fetcher import FilterOp, OrderBy, RowFilter
from scripts.analytics.sessions import ENGAGEMENT_WINDOW
from scripts.lib.ai_provider import ai_complete
from scripts.lib.errors import InsightParseError
from scripts.lib.logger import setup_logger
from scripts.lib.settings import (
    INSIGHT_CACHE_TTL_HOURS,
    INSIGHT_COOLDOWN_MINUTES,
    UTC_OFFSET_HOURS,
)
from scripts.lib.utils import to_local

logger = setup_logger("insights")

CATEGORIES = ("alert", "bottleneck", "pattern", "opportunity")
PRIORITIES = ("high", "medium", "low")

RECENT_MESSAGE_SAMPLE = 100
USER_MESSAGE_EXAMPLES = 15
TOP_KEYWORDS = 10
KEYWORDS = (
    "sisu", "prouni", "fies", "nota", "corte", "inscricao", "inscrição",
    "curso", "medicina", "direito", "engenharia", "como", "quando", "onde", "quanto",
)
_NON_LETTERS = re.compile(r"[^a-záéíóúãõâêôç]")

SYSTEM_PROMPT = """Você é um Product Manager AI especializado na Cloudinha, um chatbot educacional que ajuda jovens brasileiros a encontrar oportunidades de ensino superior (SISU, ProUni, FIES).

Analise os dados fornecidos e gere insights acionáveis nas categorias:
1. alert - métricas que precisam de atenção urgente
2. bottleneck - onde usuários estão abandonando o funil
3. pattern - temas frequentes e dúvidas recorrentes nas conversas
4. opportunity - melhorias priorizadas por impacto

Seja específico, use números e sugira ações concretas.

Responda SEMPRE em JSON válido:
{
  "insights": [
    {
      "category": "alert" | "bottleneck" | "pattern" | "opportunity",
      "title": "Título curto",
      "description": "Descrição com dados",
      "action": "Ação recomendada",
      "priority": "high" | "medium" | "low"
    }
  ]
}"""

PARSE_FAILURE_INSIGHT = {
    "category": "alert",
    "title": "Erro ao processar insights",
    "description": "Não foi possível processar a resposta da AI. Tente novamente.",
    "action": "Clique em 'Gerar novos insights'",
    "priority": "high",
}


class InsightCache(Protocol):
    """External key-value store for generated insights."""

    def latest(self, since: datetime) -> Optional[Dict[str, Any]]:
        ...

    def put(self, entry: Dict[str, Any]) -> None:
        ...


CompleteFn = Callable[..., Awaitable[Any]]


# ─── Parsing ────────────────────────────────────────────────

def _extract_json_object(content: str) -> Dict[str, Any]:
    start = content.find("{")
    if start < 0:
        raise InsightParseError("No JSON object in completion", excerpt=content)
    try:
        payload, _ = json.JSONDecoder().raw_decode(content[start:])
    except json.JSONDecodeError as e:
        raise InsightParseError(f"Invalid JSON: {e}", excerpt=content[start:]) from e
    if not isinstance(payload, dict):
        raise InsightParseError("Completion JSON is not an object", excerpt=content[start:])
    return payload


def _validate_insights(payload: Dict[str, Any]) -> List[Dict[str, str]]:
    items = payload.get("insights")
    if not isinstance(items, list):
        raise InsightParseError("Missing insights list")

    insights = []
    for item in items:
        if not isinstance(item, dict) or item.get("category") not in CATEGORIES:
            continue
        priority = item.get("priority")
        insights.append({
            "category": item["category"],
            "title": str(item.get("title") or ""),
            "description": str(item.get("description") or ""),
            "action": str(item.get("action") or ""),
            "priority": priority if priority in PRIORITIES else "medium",
        })

    if not insights:
        raise InsightParseError("No valid insights in completion")
    return insights


def parse_insights(content: Optional[str]) -> List[Dict[str, str]]:
    """
    Parse completion text into validated insights.

    Reads the first JSON object in the text. Items with an unknown category
    are dropped and unknown priorities become "medium". Anything unusable
    yields one synthetic alert instead of an exception.
    """
    try:
        return _validate_insights(_extract_json_object(content or ""))
    except InsightParseError as e:
        logger.warning("Could not parse AI insights: %s", e)
        return [dict(PARSE_FAILURE_INSIGHT)]


# ─── Data Context ───────────────────────────────────────────

def data_hash(message_count: int, user_count: int, preference_count: int, local_date: str) -> str:
    raw = f"msgs:{message_count}-users:{user_count}-prefs:{preference_count}-date:{local_date}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def keyword_counts(texts: List[str]) -> List[tuple]:
    """Most frequent words (longer than 3 letters) containing a tracked keyword."""
    counts: Counter = Counter()
    for text in texts:
        for word in text.lower().split():
            clean = _NON_LETTERS.sub("", word)
            if len(clean) > 3 and any(kw in clean for kw in KEYWORDS):
                counts[clean] += 1
    return counts.most_common(TOP_KEYWORDS)


def build_prompt(
    funnel: List[dict],
    recent_messages: List[dict],
    user_count: int,
    preference_count: int,
) -> str:
    user_texts = [
        m.get("content") or "" for m in recent_messages if m.get("sender") == "user"
    ]
    workflows = Counter(m["workflow"] for m in recent_messages if m.get("workflow"))
    total = len(recent_messages)

    lines = ["## Funil de Conversão"]
    lines += [f"- {f['stage_label']}: {f['count']}" for f in funnel]

    lines += [
        "",
        "## Estatísticas de Conversas (7 dias)",
        f"- Mensagens na amostra: {total}",
        f"- Mensagens de usuários: {len(user_texts)}",
        f"- Usuários cadastrados: {user_count}",
        f"- Usuários com preferências: {preference_count}",
        "",
        "## Distribuição por Workflow",
    ]
    lines += [
        f"- {wf}: {count} mensagens ({round(count / max(total, 1) * 100)}%)"
        for wf, count in workflows.most_common()
    ] or ["Sem dados suficientes"]

    lines += ["", "## Palavras-chave Mais Frequentes"]
    lines += [f"- {word}: {count} menções" for word, count in keyword_counts(user_texts)] \
        or ["Sem dados suficientes"]

    lines += ["", "## Exemplos de Mensagens de Usuários"]
    for text in user_texts[:USER_MESSAGE_EXAMPLES]:
        suffix = "..." if len(text) > 80 else ""
        lines.append(f'- "{text[:80]}{suffix}"')

    conversion = round(preference_count / user_count * 100) if user_count else 0
    lines += ["", "## Métricas-Chave", f"- Conversão cadastro→preferências: {conversion}%"]

    return "Analise os seguintes dados e gere insights acionáveis:\n\n" + "\n".join(lines)


def _cached_response(entry: Dict[str, Any], current_hash: str, cooldown: bool = False) -> dict:
    return {
        "insights": entry.get("insights") or [],
        "generated_at": entry.get("created_at"),
        "data_context": entry.get("data_context") or {},
        "from_cache": True,
        "data_changed": entry.get("data_hash") != current_hash,
        "cooldown": cooldown,
    }


# ─── Generation ─────────────────────────────────────────────

async def generate_insights(
    repo: AnalyticsRepository,
    cache: InsightCache,
    force_refresh: bool = False,
    complete_fn: CompleteFn = ai_complete,
    now: Optional[datetime] = None,
) -> dict:
    """
    Return cached insights when allowed, otherwise generate and cache new ones.

    Raises:
        AIProviderError: The completion provider failed.
        DataFetchError: Source tables or the cache could not be read.
    """
    now = now or datetime.now(timezone.utc)
    week_ago = now - ENGAGEMENT_WINDOW

    message_count, user_count, preference_count = await asyncio.gather(
        repo.count(MESSAGES_TABLE, [RowFilter("created_at", FilterOp.GTE, week_ago.isoformat())]),
        repo.count(PROFILES_TABLE),
        repo.count(PREFERENCES_TABLE),
    )
    local_date = to_local(now, UTC_OFFSET_HOURS).date().isoformat()
    current_hash = data_hash(message_count, user_count, preference_count, local_date)

    if force_refresh:
        since = now - timedelta(minutes=INSIGHT_COOLDOWN_MINUTES)
    else:
        since = now - timedelta(hours=INSIGHT_CACHE_TTL_HOURS)
    cached = await asyncio.to_thread(cache.latest, since)
    if cached:
        logger.info(
            "Serving cached insights (forced=%s, data changed=%s)",
            force_refresh, cached.get("data_hash") != current_hash,
        )
        return _cached_response(cached, current_hash, cooldown=force_refresh)

    funnel, recent_messages = await asyncio.gather(
        funnel_report(repo, now=now),
        repo.page(
            MESSAGES_TABLE,
            "content, sender, workflow, created_at",
            [RowFilter("created_at", FilterOp.GTE, week_ago.isoformat())],
            limit=RECENT_MESSAGE_SAMPLE,
            order_by=OrderBy("created_at", desc=True),
        ),
    )

    prompt = build_prompt(funnel, recent_messages, user_count, preference_count)
    response = await complete_fn(
        task="insights",
        system_prompt=SYSTEM_PROMPT,
        user_prompt=prompt,
        json_mode=True,
    )
    insights = parse_insights(response.content)

    data_context = {
        "total_messages": len(recent_messages),
        "user_messages": sum(1 for m in recent_messages if m.get("sender") == "user"),
        "funnel_stages": len(funnel),
        "total_users": user_count,
        "users_with_preferences": preference_count,
    }
    entry = {"insights": insights, "data_context": data_context, "data_hash": current_hash}
    try:
        await asyncio.to_thread(cache.put, entry)
    except Exception as e:
        logger.error("Failed to cache insights: %s", e)

    logger.info("Generated %d insights", len(insights))
    return {
        "insights": insights,
        "generated_at": now.isoformat(),
        "data_context": data_context,
        "from_cache": False,
        "data_changed": False,
        "cooldown": False,
    }
