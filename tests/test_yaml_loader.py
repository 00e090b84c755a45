# tests/test_yaml_loader.py
from utils.yaml_loader import load_yaml_file, normalize_keys_recursive


def test_normalize_keys_recursive():
    data = {"Max Tokens": 10, "Nested": [{"Owner Id": "u"}]}
    assert normalize_keys_recursive(data) == {"max_tokens": 10, "nested": [{"owner_id": "u"}]}


def test_load_yaml_file(tmp_path):
    path = tmp_path / "manifest.yaml"
    path.write_text("Operations:\n  - Type: general\n", encoding="utf-8")
    assert load_yaml_file(str(path)) == {"operations": [{"type": "general"}]}
    assert load_yaml_file(str(path), normalize_keys=False) == {
        "Operations": [{"Type": "general"}]
    }


def test_load_yaml_file_failures(tmp_path):
    assert load_yaml_file(str(tmp_path / "notes.txt")) is None
    assert load_yaml_file(str(tmp_path / "missing.yaml")) is None

    broken = tmp_path / "broken.yaml"
    broken.write_text("a: [1, 2\n", encoding="utf-8")
    assert load_yaml_file(str(broken)) is None

    listing = tmp_path / "list.yml"
    listing.write_text("- 1\n- 2\n", encoding="utf-8")
    assert load_yaml_file(str(listing)) is None

    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_yaml_file(str(empty)) == {}
