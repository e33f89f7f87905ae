"""Tests for the funnel classifier and its policy."""

import itertools

import pytest

from scripts.analytics.funnel import (
    DEFAULT_POLICY,
    FunnelPolicy,
    FunnelSignal,
    FunnelSignals,
    FunnelStage,
    classify,
    policy_from_config,
)
from scripts.lib.errors import ConfigError

STAGE_RANK = [
    FunnelStage.REGISTERED,
    FunnelStage.ACTIVATED,
    FunnelStage.ONBOARDED,
    FunnelStage.PREFERENCES_DEFINED,
    FunnelStage.MATCH_STARTED,
    FunnelStage.MATCH_COMPLETED,
    FunnelStage.FAVORITED,
]

SIGNAL_NAMES = [s.value for s in FunnelSignal]


def signals(**flags):
    return FunnelSignals(**flags)


class TestClassify:
    def test_no_signals_is_registered(self):
        assert classify(signals()) == FunnelStage.REGISTERED

    def test_only_message(self):
        assert classify(signals(sent_message=True)) == FunnelStage.ACTIVATED

    def test_favorite_beats_everything(self):
        all_true = signals(**{name: True for name in SIGNAL_NAMES})
        assert classify(all_true) == FunnelStage.FAVORITED

    def test_favorite_without_message_still_favorited(self):
        assert classify(signals(saved_favorite=True)) == FunnelStage.FAVORITED

    def test_match_completed_beats_match_started(self):
        s = signals(match_started=True, match_completed=True, sent_message=True)
        assert classify(s) == FunnelStage.MATCH_COMPLETED

    def test_preferences_beat_onboarding(self):
        s = signals(preferences_defined=True, onboarding_completed=True)
        assert classify(s) == FunnelStage.PREFERENCES_DEFINED

    def test_adding_a_signal_never_lowers_the_stage(self):
        for combo in itertools.product([False, True], repeat=len(SIGNAL_NAMES)):
            flags = dict(zip(SIGNAL_NAMES, combo))
            base_rank = STAGE_RANK.index(classify(FunnelSignals(**flags)))
            for name in SIGNAL_NAMES:
                if flags[name]:
                    continue
                raised = STAGE_RANK.index(classify(FunnelSignals(**{**flags, name: True})))
                assert raised >= base_rank


class TestPolicy:
    def test_default_policy_loaded_from_yaml(self):
        assert DEFAULT_POLICY.version == 1
        assert DEFAULT_POLICY.precedence[0] == (FunnelSignal.SAVED_FAVORITE, FunnelStage.FAVORITED)
        assert DEFAULT_POLICY.precedence[-1] == (FunnelSignal.SENT_MESSAGE, FunnelStage.ACTIVATED)

    def test_duplicate_signal_rejected(self):
        with pytest.raises(ConfigError):
            FunnelPolicy(version=2, precedence=(
                (FunnelSignal.SENT_MESSAGE, FunnelStage.ACTIVATED),
                (FunnelSignal.SENT_MESSAGE, FunnelStage.ONBOARDED),
            ))

    def test_custom_policy_reorders(self):
        policy = policy_from_config({
            "version": 2,
            "funnel": {"precedence": [
                {"signal": "sent_message", "stage": "activated"},
                {"signal": "saved_favorite", "stage": "favorited"},
            ]},
        })
        s = signals(sent_message=True, saved_favorite=True)
        assert policy.version == 2
        assert classify(s, policy) == FunnelStage.ACTIVATED

    def test_unknown_stage_rejected(self):
        with pytest.raises(ConfigError):
            policy_from_config({"funnel": {"precedence": [{"signal": "sent_message", "stage": "vip"}]}})

    def test_empty_precedence_rejected(self):
        with pytest.raises(ConfigError):
            policy_from_config({"funnel": {}})

    def test_stage_labels(self):
        assert FunnelStage.FAVORITED.label == "Salvaram Favoritos"
        assert FunnelStage.REGISTERED.label == "Cadastrados"
