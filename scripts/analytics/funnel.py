"""
Cloudinha Analytics — Funnel Classifier
==========================================

Maps an entity's life-cycle signals to exactly one funnel stage.

The precedence lives in a single versioned FunnelPolicy loaded from
configs/analytics_policy.yaml and passed to every report that labels
users, so the funnel summary, the user list and the CRM exports can
never disagree about a user's stage.

Canonical precedence (policy v1), most advanced first:
  saved_favorite      -> favorited
  match_completed     -> match_completed
  match_started       -> match_started
  preferences_defined -> preferences_defined
  onboarding_completed-> onboarded
  sent_message        -> activated
  (none)              -> registered
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple

from scripts.lib.errors import ConfigError
from scripts.lib.logger import setup_logger
from scripts.lib.settings import load_policy_config

logger = setup_logger("funnel")


class FunnelSignal(str, Enum):
    SAVED_FAVORITE = "saved_favorite"
    MATCH_COMPLETED = "match_completed"
    MATCH_STARTED = "match_started"
    PREFERENCES_DEFINED = "preferences_defined"
    ONBOARDING_COMPLETED = "onboarding_completed"
    SENT_MESSAGE = "sent_message"


class FunnelStage(str, Enum):
    REGISTERED = "registered"
    ACTIVATED = "activated"
    ONBOARDED = "onboarded"
    PREFERENCES_DEFINED = "preferences_defined"
    MATCH_STARTED = "match_started"
    MATCH_COMPLETED = "match_completed"
    FAVORITED = "favorited"

    @property
    def label(self) -> str:
        return STAGE_LABELS[self]


STAGE_LABELS = {
    FunnelStage.REGISTERED: "Cadastrados",
    FunnelStage.ACTIVATED: "Ativação",
    FunnelStage.ONBOARDED: "Onboarding Completo",
    FunnelStage.PREFERENCES_DEFINED: "Preferências Definidas",
    FunnelStage.MATCH_STARTED: "Match Iniciado",
    FunnelStage.MATCH_COMPLETED: "Match Realizado",
    FunnelStage.FAVORITED: "Salvaram Favoritos",
}


@dataclass(frozen=True)
class FunnelSignals:
    """Boolean life-cycle facts for one entity."""
    saved_favorite: bool = False
    match_completed: bool = False
    match_started: bool = False
    preferences_defined: bool = False
    onboarding_completed: bool = False
    sent_message: bool = False

    def is_set(self, signal: FunnelSignal) -> bool:
        return getattr(self, signal.value)


@dataclass(frozen=True)
class FunnelPolicy:
    """Versioned, ordered mapping from signals to stages."""
    version: int
    precedence: Tuple[Tuple[FunnelSignal, FunnelStage], ...]
    baseline: FunnelStage = FunnelStage.REGISTERED

    def __post_init__(self):
        signals = [signal for signal, _ in self.precedence]
        if len(set(signals)) != len(signals):
            raise ConfigError("Funnel precedence lists a signal more than once")

    def classify(self, signals: FunnelSignals) -> FunnelStage:
        for signal, stage in self.precedence:
            if signals.is_set(signal):
                return stage
        return self.baseline


def policy_from_config(config: Dict[str, Any]) -> FunnelPolicy:
    """Build a FunnelPolicy from the parsed analytics policy YAML."""
    entries = (config.get("funnel") or {}).get("precedence") or []
    if not entries:
        raise ConfigError("Funnel precedence is empty")

    precedence = []
    for entry in entries:
        try:
            precedence.append((FunnelSignal(entry["signal"]), FunnelStage(entry["stage"])))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid funnel precedence entry {entry!r}: {e}")

    return FunnelPolicy(version=int(config.get("version", 1)), precedence=tuple(precedence))


DEFAULT_POLICY = policy_from_config(load_policy_config())


def classify(signals: FunnelSignals, policy: FunnelPolicy = DEFAULT_POLICY) -> FunnelStage:
    """Return the stage of the highest-precedence true signal."""
    return policy.classify(signals)


# ─── Funnel Summary Steps ───────────────────────────────────
# The summary report counts every user holding a signal (cumulative),
# and adds the 7-day active/inactive split.

class FunnelStep(str, Enum):
    REGISTERED = "registered"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ACTIVATED = "activated"
    ONBOARDED = "onboarded"
    PREFERENCES_DEFINED = "preferences_defined"
    MATCH_STARTED = "match_started"
    MATCH_COMPLETED = "match_completed"
    FAVORITED = "favorited"


FUNNEL_STEP_ORDER = tuple(FunnelStep)

STEP_LABELS = {
    FunnelStep.REGISTERED: "Cadastrados",
    FunnelStep.ACTIVE: "Ativos (7d)",
    FunnelStep.INACTIVE: "Inativos (7d)",
    FunnelStep.ACTIVATED: "Ativação",
    FunnelStep.ONBOARDED: "Onboarding Completo",
    FunnelStep.PREFERENCES_DEFINED: "Preferências Definidas",
    FunnelStep.MATCH_STARTED: "Match Iniciado",
    FunnelStep.MATCH_COMPLETED: "Match Realizado",
    FunnelStep.FAVORITED: "Salvaram Favoritos",
}

STEP_DESCRIPTIONS = {
    FunnelStep.REGISTERED: "Total de usuários cadastrados",
    FunnelStep.ACTIVE: "Usuários com mensagem, favorito ou preferência atualizada nos últimos 7 dias",
    FunnelStep.INACTIVE: "Usuários cadastrados sem nenhuma atividade nos últimos 7 dias",
    FunnelStep.ACTIVATED: "Usuários que enviaram ao menos 1 mensagem",
    FunnelStep.ONBOARDED: "Usuários com onboarding concluído (perfil ou workflow de onboarding)",
    FunnelStep.PREFERENCES_DEFINED: "Usuários com registro em user_preferences",
    FunnelStep.MATCH_STARTED: "Usuários que iniciaram o workflow de match",
    FunnelStep.MATCH_COMPLETED: "Usuários que receberam resultado do match (workflow_data preenchido)",
    FunnelStep.FAVORITED: "Usuários que salvaram ao menos 1 favorito",
}

# Summary steps that correspond one-to-one with a classifier signal
STEP_SIGNALS = {
    FunnelStep.ACTIVATED: FunnelSignal.SENT_MESSAGE,
    FunnelStep.ONBOARDED: FunnelSignal.ONBOARDING_COMPLETED,
    FunnelStep.PREFERENCES_DEFINED: FunnelSignal.PREFERENCES_DEFINED,
    FunnelStep.MATCH_STARTED: FunnelSignal.MATCH_STARTED,
    FunnelStep.MATCH_COMPLETED: FunnelSignal.MATCH_COMPLETED,
    FunnelStep.FAVORITED: FunnelSignal.SAVED_FAVORITE,
}
