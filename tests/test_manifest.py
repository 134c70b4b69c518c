import textwrap

import pandas as pd
import pytest
import yaml

from qualitysync.core.manifest import (
    ManifestError,
    load_manifest,
    parse_list,
    parse_pairs,
    save_manifest,
    write_back_path,
)

MANIFEST = textwrap.dedent("""
  qualityGates:
    - name: Corporate
      default: true
      conditions:
        - {metric: new_coverage, op: LT, error: 80}
        - {metric: new_bugs, error: "0"}
  qualityProfiles:
    - name: Corp Java
      language: java
      rules:
        - rule: java:S1144
        - rule: java:S107
          severity: MAJOR
          params: {max: 7}
""")


def _write(tmp_path, text, name="manifest.yml"):
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return str(p)


def test_load_yaml_manifest(tmp_path):
    m = load_manifest(_write(tmp_path, MANIFEST))

    gate = m.quality_gates[0]
    assert gate.name == "Corporate" and gate.default is True
    assert [(c.metric, c.op, c.error, c.id) for c in gate.conditions] == [
        ("new_coverage", "LT", "80", None),
        ("new_bugs", None, "0", None),
    ]
    profile = m.quality_profiles[0]
    assert (profile.name, profile.language, profile.key) == ("Corp Java", "java", None)
    assert profile.rules[1].params == {"max": "7"}
    assert profile.rules[0].severity is None


def test_duplicate_condition_is_rejected(tmp_path):
    text = textwrap.dedent("""
      qualityGates:
        - name: Corporate
          conditions:
            - {metric: coverage, op: LT, error: 80}
            - {metric: coverage, op: LT, error: 70}
    """)
    with pytest.raises(ManifestError, match="duplicate condition"):
        load_manifest(_write(tmp_path, text))


def test_duplicate_rule_is_rejected(tmp_path):
    text = textwrap.dedent("""
      qualityProfiles:
        - name: Corp
          language: java
          rules: [{rule: "java:S1"}, {rule: "java:S1"}]
    """)
    with pytest.raises(ManifestError, match="duplicate rule"):
        load_manifest(_write(tmp_path, text))


def test_profile_without_language_is_rejected(tmp_path):
    with pytest.raises(ManifestError):
        load_manifest(_write(tmp_path, "qualityProfiles: [{name: Corp}]\n"))


def test_unsupported_and_missing_files(tmp_path):
    with pytest.raises(ManifestError, match="Unsupported"):
        load_manifest(_write(tmp_path, "x", name="manifest.txt"))
    with pytest.raises(ManifestError, match="not found"):
        load_manifest(str(tmp_path / "nope.yml"))


def test_save_keeps_late_initialized_ids(tmp_path):
    path = _write(tmp_path, MANIFEST)
    m = load_manifest(path)
    m.quality_gates[0].conditions[1].id = "c42"
    m.quality_gates[0].conditions[1].op = "GT"
    m.quality_profiles[0].key = "AX1"

    save_manifest(m, path)

    data = yaml.safe_load(open(path, encoding="utf-8"))
    assert data["qualityGates"][0]["conditions"][1] == {"id": "c42", "metric": "new_bugs", "op": "GT", "error": "0"}
    assert data["qualityProfiles"][0]["key"] == "AX1"
    assert load_manifest(path).quality_gates[0].conditions[1].id == "c42"


def test_write_back_path(tmp_path):
    m = load_manifest(_write(tmp_path, MANIFEST))
    assert write_back_path(m) == m.source
    m.source = str(tmp_path / "quality.xlsx")
    assert write_back_path(m) == str(tmp_path / "quality.resolved.yml")


def test_parse_pairs():
    assert parse_pairs("a=1; b = 2;") == {"a": "1", "b": "2"}
    assert parse_pairs("") is None
    with pytest.raises(ManifestError):
        parse_pairs("novalue")


def _xlsx(path, sheets):
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, index=False)


def test_load_xlsx_manifest(tmp_path):
    path = str(tmp_path / "quality.xlsx")
    _xlsx(
        path,
        {
            "QualityGates": [{"Name": "Corporate", "Default": "true"}],
            "Conditions": [
                {"Gate": "Corporate", "Metric": "new_coverage", "Op": "LT", "Error": "80", "Id": "c1"},
                {"Gate": "Corporate", "Metric": "new_bugs", "Op": None, "Error": "0", "Id": None},
            ],
            "QualityProfiles": [{"Name": "Corp Java", "Language": "java", "Key": None, "Default": None}],
            "Rules": [
                {"Profile": "Corp Java", "Rule": "java:S107", "Severity": "MAJOR", "Params": "max=7", "Impacts": None},
                {"Profile": "Corp Java", "Rule": "java:S1144", "Severity": None, "Params": None, "Impacts": "MAINTAINABILITY=LOW"},
            ],
        },
    )

    m = load_manifest(path)

    gate = m.quality_gates[0]
    assert gate.default is True
    assert [(c.metric, c.op, c.error, c.id) for c in gate.conditions] == [
        ("new_coverage", "LT", "80", "c1"),
        ("new_bugs", None, "0", None),
    ]
    profile = m.quality_profiles[0]
    assert profile.key is None and profile.default is None
    assert profile.rules[0].params == {"max": "7"} and profile.rules[0].impacts is None
    assert profile.rules[1].impacts == {"MAINTAINABILITY": "LOW"} and profile.rules[1].severity is None


def test_xlsx_missing_columns(tmp_path):
    path = str(tmp_path / "quality.xlsx")
    _xlsx(path, {"QualityGates": [{"Name": "Corporate"}], "Conditions": [{"Gate": "Corporate", "Metric": "bugs"}]})
    with pytest.raises(ManifestError, match="Conditions: Missing required columns: Error"):
        load_manifest(path)


def test_xlsx_condition_for_unknown_gate(tmp_path):
    path = str(tmp_path / "quality.xlsx")
    _xlsx(
        path,
        {
            "QualityGates": [{"Name": "Corporate"}],
            "Conditions": [{"Gate": "Other", "Metric": "bugs", "Error": "0"}],
        },
    )
    with pytest.raises(ManifestError, match="unknown gate"):
        load_manifest(path)


SETTINGS_MANIFEST = textwrap.dedent("""
  settings:
    - settings:
        sonar.scm.disabled: true
    - component: web
      prune: true
      settings:
        sonar.exclusions: ["**/gen/**", "**/vendor/**"]
        sonar.issue.ignore.multicriteria:
          fieldValues: {ruleKey: "java:S100", resourceKey: "**/*.java"}
""")


def test_load_settings_manifest(tmp_path):
    m = load_manifest(_write(tmp_path, SETTINGS_MANIFEST))

    assert m.quality_gates == [] and m.quality_profiles == []
    global_scope, web = m.settings
    assert (global_scope.scope, global_scope.prune) == ("(global)", False)
    assert global_scope.settings[0].value == "true"
    assert (web.component, web.prune) == ("web", True)
    assert web.settings[0].values == ["**/gen/**", "**/vendor/**"]
    assert web.settings[1].field_values == {"ruleKey": "java:S100", "resourceKey": "**/*.java"}


def test_settings_survive_save(tmp_path):
    path = _write(tmp_path, SETTINGS_MANIFEST)
    save_manifest(load_manifest(path), path)

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    assert "qualityGates" in data
    assert data["settings"][1] == {
        "component": "web",
        "prune": True,
        "settings": {
            "sonar.exclusions": ["**/gen/**", "**/vendor/**"],
            "sonar.issue.ignore.multicriteria": {
                "fieldValues": {"ruleKey": "java:S100", "resourceKey": "**/*.java"}
            },
        },
    }


@pytest.mark.parametrize(
    "text, message",
    [
        (
            """
            settings:
              - component: web
                settings: {sonar.exclusions: null}
            """,
            "web: sonar.exclusions needs exactly one of value, values or fieldValues",
        ),
        (
            """
            settings:
              - settings: {sonar.scm.disabled: "true"}
              - settings: {sonar.cpd.exclusions: "x"}
            """,
            r"Settings for \(global\) declared twice",
        ),
        (
            """
            settings:
              - settings: [sonar.scm.disabled]
            """,
            "must be a mapping",
        ),
    ],
)
def test_invalid_settings_are_rejected(tmp_path, text, message):
    with pytest.raises(ManifestError, match=message):
        load_manifest(_write(tmp_path, textwrap.dedent(text)))


def test_load_xlsx_settings_only(tmp_path):
    path = str(tmp_path / "settings.xlsx")
    _xlsx(
        path,
        {
            "Settings": [
                {"Component": None, "Key": "sonar.scm.disabled", "Value": "true", "Values": None, "FieldValues": None, "Prune": None},
                {"Component": "web", "Key": "sonar.exclusions", "Value": None, "Values": "a; b", "FieldValues": None, "Prune": None},
                {"Component": "web", "Key": "sonar.issue.ignore.multicriteria", "Value": None, "Values": None, "FieldValues": "ruleKey=java:S100", "Prune": "yes"},
            ],
        },
    )

    m = load_manifest(path)

    global_scope, web = m.settings
    assert global_scope.component is None and global_scope.prune is False
    assert [(s.key, s.value) for s in global_scope.settings] == [("sonar.scm.disabled", "true")]
    assert web.prune is True
    assert web.settings[0].values == ["a", "b"] and web.settings[0].value is None
    assert web.settings[1].field_values == {"ruleKey": "java:S100"}


def test_parse_list():
    assert parse_list("a; b ;") == ["a", "b"]
    assert parse_list("") is None
