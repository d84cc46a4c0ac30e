from __future__ import annotations

import json

import pytest

from config.classification import (
    DEFAULT_AGENT_KEYWORDS,
    DEFAULT_RULES,
    ClassificationConfigError,
    ProxyMarker,
    load_rules,
)


def test_load_rules_without_path_returns_defaults():
    assert load_rules(None) is DEFAULT_RULES
    assert DEFAULT_RULES.version == "builtin-1"
    assert "reserv" in DEFAULT_RULES.agent_keywords


def test_load_rules_from_yaml_replaces_lists(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text(
        "version: '2026-10'\n"
        "agent_keywords:\n"
        "  - Concierge\n"
        "  - concierge\n"
        "  - travel\n"
        "proxy_markers:\n"
        "  relay.example.net: relay-proxy\n",
        encoding="utf-8",
    )

    rules = load_rules(path)

    assert rules.version == "2026-10"
    assert rules.agent_keywords == ("concierge", "travel")
    assert rules.proxy_markers == (ProxyMarker("relay.example.net", "relay-proxy"),)
    # Keys absent from the file keep their built-in values
    assert rules.placeholder_first_names == DEFAULT_RULES.placeholder_first_names


def test_load_rules_extend_defaults_from_json(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(
        json.dumps(
            {
                "version": "ext-1",
                "extend_defaults": True,
                "agent_keywords": ["newagency", "travel"],
                "proxy_markers": [{"marker": "relay.example.net", "category": "relay-proxy"}],
            }
        ),
        encoding="utf-8",
    )

    rules = load_rules(str(path))

    assert rules.agent_keywords[: len(DEFAULT_AGENT_KEYWORDS)] == DEFAULT_AGENT_KEYWORDS
    assert rules.agent_keywords[-1] == "newagency"
    assert rules.agent_keywords.count("travel") == 1
    assert rules.proxy_markers[-1] == ProxyMarker("relay.example.net", "relay-proxy")
    assert len(rules.proxy_markers) == len(DEFAULT_RULES.proxy_markers) + 1


def test_load_rules_requires_version(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"agent_keywords": ["x"]}), encoding="utf-8")

    with pytest.raises(ClassificationConfigError, match="version"):
        load_rules(path)


def test_load_rules_missing_file(tmp_path):
    with pytest.raises(ClassificationConfigError, match="does not exist"):
        load_rules(tmp_path / "missing.yaml")


def test_load_rules_invalid_yaml(tmp_path):
    path = tmp_path / "rules.yml"
    path.write_text("version: [unclosed\n", encoding="utf-8")

    with pytest.raises(ClassificationConfigError, match="Failed to parse"):
        load_rules(path)


def test_load_rules_rejects_incomplete_proxy_marker(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"version": "1", "proxy_markers": [{"marker": "x.com"}]}), encoding="utf-8")

    with pytest.raises(ClassificationConfigError, match="marker and category"):
        load_rules(path)
