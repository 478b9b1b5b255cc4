"""
Tests for flow_settings.

Validates:
- Defaults match the builder's canvases
- Construction from dict (merges over defaults, ignores junk)
- YAML override file
"""

from quizflow.flow_settings import (
    FlowSettings,
    settings_from_dict,
    load_flow_settings,
    settings_to_dict,
)


class TestFlowSettingsDefaults:

    def test_grid(self):
        s = FlowSettings()
        assert s.grid_columns == 4
        assert (s.grid_origin_x, s.grid_origin_y) == (100, 100)

    def test_spacing_per_mode(self):
        s = FlowSettings()
        assert s.grid_spacing("edit") == (220, 180)
        assert s.grid_spacing("analytics") == (250, 220)

    def test_activity_window(self):
        assert FlowSettings().activity_window_minutes == 5

    def test_max_visible_components(self):
        assert FlowSettings().max_visible_components == 8


class TestSettingsFromDict:

    def test_none_returns_defaults(self):
        assert settings_from_dict(None) == FlowSettings()

    def test_empty_dict_returns_defaults(self):
        assert settings_from_dict({}) == FlowSettings()

    def test_partial_override(self):
        s = settings_from_dict({"analytics_col_width": 300})
        assert s.analytics_col_width == 300
        # Other fields remain at defaults.
        assert s.grid_columns == 4

    def test_ignores_unknown_and_bad_values(self):
        s = settings_from_dict({
            "grid_columns": "6",
            "edit_col_width": float("nan"),
            "activity_window_minutes": True,
            "colour": "blue",
        })
        assert s == FlowSettings()

    def test_int_fields_must_be_positive(self):
        assert settings_from_dict({"grid_columns": 0}).grid_columns == 4
        assert settings_from_dict({"grid_columns": 3.0}).grid_columns == 3

    def test_round_trip(self):
        s = FlowSettings(grid_columns=3, activity_window_minutes=10)
        assert settings_from_dict(settings_to_dict(s)) == s


class TestLoadFlowSettings:

    def test_no_path(self, monkeypatch):
        monkeypatch.delenv("FLOW_SETTINGS_PATH", raising=False)
        assert load_flow_settings() == FlowSettings()

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "flow.yaml"
        path.write_text("flow:\n  grid_columns: 3\n  activity_window_minutes: 10\n")
        s = load_flow_settings(str(path))
        assert s.grid_columns == 3
        assert s.activity_window_minutes == 10

    def test_env_var(self, tmp_path, monkeypatch):
        path = tmp_path / "flow.yaml"
        path.write_text("flow:\n  edit_row_height: 200\n")
        monkeypatch.setenv("FLOW_SETTINGS_PATH", str(path))
        assert load_flow_settings().edit_row_height == 200

    def test_missing_file(self, tmp_path):
        assert load_flow_settings(str(tmp_path / "nope.yaml")) == FlowSettings()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "flow.yaml"
        path.write_text("flow: [unclosed\n")
        assert load_flow_settings(str(path)) == FlowSettings()

    def test_no_flow_section(self, tmp_path):
        path = tmp_path / "flow.yaml"
        path.write_text("other:\n  grid_columns: 2\n")
        assert load_flow_settings(str(path)) == FlowSettings()
