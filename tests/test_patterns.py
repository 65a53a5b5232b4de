"""Tests for pattern rule validation and table loading."""

import json

import pytest

from patterns import (
    BUILTIN_RULES, compile_rule, compile_rules, load_pattern_file, load_pattern_table,
)
from protocol import ErrorType, PatternError, RiskLevel


def raw(**overrides):
    rule = {
        "id": "my-rule",
        "error_type": "configuration_error",
        "regex": "MYAPP_HOME is not set",
        "confidence": 0.9,
        "explanation": "MYAPP_HOME must point at the checkout",
        "fixes": [{"command": "export MYAPP_HOME=$PWD", "explanation": "point it here", "risk": "low"}],
    }
    rule.update(overrides)
    return rule


class TestCompileRule:
    def test_valid(self):
        rule = compile_rule(raw())
        assert rule.id == "my-rule"
        assert rule.error_type is ErrorType.CONFIGURATION_ERROR
        assert rule.base_confidence == 0.9
        assert rule.fix_templates[0].declared_risk is RiskLevel.LOW

    @pytest.mark.parametrize("error_type", ["PermissionDenied", "PERMISSION_DENIED", "permission_denied"])
    def test_error_type_spellings(self, error_type):
        assert compile_rule(raw(error_type=error_type)).error_type is ErrorType.PERMISSION_DENIED

    def test_risk_defaults_to_low(self):
        rule = compile_rule(raw(fixes=[{"command": "ls", "explanation": "look"}]))
        assert rule.fix_templates[0].declared_risk is RiskLevel.LOW

    def test_multiline_anchors(self):
        rule = compile_rule(raw(regex="^fatal: .*$"))
        assert rule.regex.search("warning: x\nfatal: boom\n")

    @pytest.mark.parametrize("overrides", [
        {"id": ""},
        {"error_type": "disk_full"},
        {"regex": "("},
        {"regex": ""},
        {"confidence": 0},
        {"confidence": 1.5},
        {"confidence": "high"},
        {"confidence": True},
        {"fixes": "chmod +x"},
        {"fixes": [{"command": "", "explanation": "x"}]},
        {"fixes": [{"command": "echo {unclosed", "explanation": "x"}]},
        {"fixes": [{"command": "ls", "explanation": "x", "risk": "high"}]},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(PatternError):
            compile_rule(raw(**overrides))

    def test_not_a_dict(self):
        with pytest.raises(PatternError):
            compile_rule(["id", "regex"])


class TestCompileRules:
    def test_invalid_rules_skipped_with_warning(self, capsys):
        rules = compile_rules([raw(), raw(id="bad", regex="(")], source="test")
        assert [r.id for r in rules] == ["my-rule"]
        assert "skipping rule #2" in capsys.readouterr().err

    def test_builtins_all_valid(self):
        assert len(compile_rules(BUILTIN_RULES)) == len(BUILTIN_RULES)


class TestLoadTable:
    def test_builtin_table(self):
        table = load_pattern_table()
        assert isinstance(table, tuple)
        assert len({r.id for r in table}) == len(table)
        assert table[0].id == "script-not-executable"

    def test_user_rules_come_first(self, tmp_path):
        path = tmp_path / "patterns.json"
        path.write_text(json.dumps([raw()]))
        table = load_pattern_table(str(path))
        assert table[0].id == "my-rule"
        assert len(table) == len(BUILTIN_RULES) + 1

    def test_duplicate_id_first_wins(self, tmp_path, capsys):
        path = tmp_path / "patterns.json"
        path.write_text(json.dumps([raw(id="command-not-found", confidence=0.5)]))
        table = load_pattern_table(str(path))
        rules = [r for r in table if r.id == "command-not-found"]
        assert len(rules) == 1
        assert rules[0].base_confidence == 0.5
        assert "duplicate id" in capsys.readouterr().err

    def test_missing_file(self, tmp_path, capsys):
        assert load_pattern_file(str(tmp_path / "nope.json")) == []
        assert "not found" in capsys.readouterr().err

    def test_bad_json(self, tmp_path):
        path = tmp_path / "patterns.json"
        path.write_text("{not json")
        assert load_pattern_file(str(path)) == []

    def test_not_utf8(self, tmp_path, capsys):
        path = tmp_path / "patterns.json"
        path.write_bytes(b'[{"id": "x\xff"}]')
        assert load_pattern_file(str(path)) == []
        assert "could not read" in capsys.readouterr().err
        assert len(load_pattern_table(str(path))) == len(BUILTIN_RULES)

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "patterns.json"
        path.write_text(json.dumps(raw()))
        assert load_pattern_file(str(path)) == []
        assert len(load_pattern_table(str(path))) == len(BUILTIN_RULES)
