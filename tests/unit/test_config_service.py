import json
from services.config_service import ConfigManager


def write_config(tmp_path, content):
    path = tmp_path / "config.json"
    path.write_text(content)
    return str(path)


def test_dotted_and_nested_get(tmp_path):
    path = write_config(tmp_path, json.dumps({"pricebook": {"max_category_levels": 6}}))
    config = ConfigManager(path)

    assert config.get("pricebook.max_category_levels") == 6
    assert config.get("pricebook", "max_category_levels") == 6
    assert config.get("pricebook.missing", default=3) == 3
    assert config.pricebook_settings() == {"max_category_levels": 6}


def test_invalid_json_loads_empty(tmp_path):
    config = ConfigManager(write_config(tmp_path, "{not json"))
    assert config.config == {}
    assert config.last_load_error is not None
    assert config.pricebook_settings() == {}


def test_bundled_config_has_pricebook_section(config_manager):
    settings = config_manager.pricebook_settings()
    assert settings["max_category_levels"] == 10
    assert settings["destination_schema_version"] == 1
