import json

import pytest

from gellobit.db import SessionLocal, session_scope
from gellobit.db.models import AIProviderSetting, FeedSource
from gellobit.db.settings_store import load_settings, set_settings
from gellobit.errors import AIRejected, AIUnavailable, ConfigurationError
from gellobit.utils.llm.llm_client import ProviderConfig
from gellobit.utils.llm.llm_pipeline import (
    GatePolicy,
    build_policy,
    evaluate,
    parse_verdict,
    resolve_provider_config,
)


def _policy(threshold: float = 0.6, **overrides) -> GatePolicy:
    return GatePolicy(
        kind="giveaway",
        quality_threshold=threshold,
        provider=ProviderConfig(provider="ollama", model="test-model"),
        **overrides,
    )


def test_threshold_is_inclusive(verdict) -> None:
    accepted = parse_verdict(json.dumps(verdict(confidence=0.6)), _policy(0.6))
    assert accepted.confidence_score == 0.6

    with pytest.raises(AIRejected) as exc:
        parse_verdict(json.dumps(verdict(confidence=0.599)), _policy(0.6))
    assert exc.value.confidence == 0.599


def test_invalid_content_is_a_rejection() -> None:
    with pytest.raises(AIRejected) as exc:
        parse_verdict('{"valid": false, "reason": "INVALID CONTENT: expired"}', _policy())
    assert "expired" in exc.value.reason


@pytest.mark.parametrize("reply", [
    "I cannot help with that.",
    '{"valid": "yes", "confidence_score": 0.9, "title": "t", "content": "c"}',
    '{"valid": true, "confidence_score": 1.7, "title": "t", "content": "c"}',
    '{"valid": true, "title": "t", "content": "c"}',
    '{"valid": true, "confidence_score": 0.9, "content": "c"}',
    '[{"valid": true}]',
])
def test_malformed_replies_are_unavailable_not_rejected(reply) -> None:
    with pytest.raises(AIUnavailable):
        parse_verdict(reply, _policy())


def test_field_constraints_truncate(verdict) -> None:
    long_title = "Win " + " ".join(["amazing"] * 40)
    long_excerpt = " ".join(f"word{n}" for n in range(50))
    raw = verdict(
        title=long_title,
        excerpt=long_excerpt,
        content="```html\n<h1>Win</h1><p>Body</p>\n```",
        deadline="March 3, 2031",
        prize_value="x" * 400,
        location=None,
    )

    result = parse_verdict(json.dumps(raw), _policy(title_max_chars=60))

    assert len(result.title) <= 60
    assert not result.title.endswith(" ")
    assert result.excerpt.endswith("...")
    assert len(result.excerpt.split(" ")) == 20
    assert len(result.excerpt) <= 160
    assert result.content == "<p>Body</p>"
    assert result.deadline.year == 2031 and result.deadline.month == 3
    assert len(result.prize_value) <= 255
    assert result.location is None
    assert result.provider == "ollama"


def test_unparseable_deadline_is_dropped(verdict) -> None:
    result = parse_verdict(json.dumps(verdict(deadline="while supplies last")), _policy())
    assert result.deadline is None


def test_evaluate_builds_category_prompt(fake_llm, verdict) -> None:
    client = fake_llm(verdict())
    result = evaluate("Win a Laptop", "Body text", "https://x.com/a", _policy(), client=client)

    system_prompt, user_prompt, model = client.calls[0]
    assert "TITLE: Win a Laptop" in user_prompt
    assert "SOURCE URL: https://x.com/a" in user_prompt
    assert "Body text" in user_prompt
    assert '"valid": false' in user_prompt
    assert model == "test-model"
    assert system_prompt
    assert result.title == "Win a Laptop"


def _feed(**kw) -> FeedSource:
    values = dict(id=1, name="f", url="https://f.example.com/rss", opportunity_type="giveaway",
                  output_type="opportunity", quality_threshold=None)
    values.update(kw)
    return FeedSource(**values)


def test_provider_precedence(monkeypatch) -> None:
    with session_scope() as db:
        db.add(AIProviderSetting(provider="openai", model="gpt-4o-mini", api_key="sk-1", is_active=True))
        db.add(AIProviderSetting(provider="anthropic", model="claude-default", api_key="ak-1", is_active=False))

    with SessionLocal() as db:
        settings = load_settings(db)

        override = resolve_provider_config(db, _feed(ai_provider="anthropic", ai_model="claude-feed"), settings)
        assert (override.provider, override.model, override.api_key) == ("anthropic", "claude-feed", "ak-1")

        missing_row = resolve_provider_config(db, _feed(ai_provider="deepseek", ai_model="deepseek-chat"), settings)
        assert (missing_row.provider, missing_row.model) == ("openai", "gpt-4o-mini")

        assert resolve_provider_config(db, _feed(), settings).provider == "openai"


def test_env_fallback_and_missing_provider(monkeypatch) -> None:
    with SessionLocal() as db:
        settings = load_settings(db)
        config = resolve_provider_config(db, _feed(), settings)
        assert (config.provider, config.model) == ("ollama", "test-model")

        monkeypatch.delenv("LLM_PROVIDER")
        with pytest.raises(ConfigurationError):
            resolve_provider_config(db, _feed(), settings)


def test_build_policy_uses_global_threshold_and_prompt_override() -> None:
    with session_scope() as db:
        set_settings(db, {"general.quality_threshold": 0.8, "prompts.giveaway": "Only accept laptop giveaways."})

    with SessionLocal() as db:
        settings = load_settings(db)
        policy = build_policy(db, _feed(), settings)
        assert policy.quality_threshold == 0.8
        assert policy.prompt_override == "Only accept laptop giveaways."
        assert policy.kind == "giveaway"

        assert build_policy(db, _feed(output_type="blog_post"), settings).kind == "blog_post"
        with pytest.raises(ConfigurationError):
            build_policy(db, _feed(quality_threshold=1.5), settings)
        with pytest.raises(ConfigurationError):
            build_policy(db, _feed(opportunity_type="lottery"), settings)
