"""
Prompt Library Tests
"""

import json
import pytest

from promptkit.domain.errors import PromptExistsError, TemplateError, UnknownPromptError
from promptkit.domain.models import Instruction, Prompt
from promptkit.domain.template.prompt_library import PromptLibrary


def _definition(name: str, text: str = "Summarize {text}") -> dict:
    return {
        "name": name,
        "version": "2.0",
        "instruction": {"text": text},
        "variables": [{"name": "text"}],
    }


class TestPromptLibrary:
    """Registration and lookup"""

    def test_register_and_get(self, trip_prompt):
        library = PromptLibrary()
        library.register(trip_prompt)
        assert library.get("trip_planner") is trip_prompt

    def test_duplicate_name_rejected(self, trip_prompt):
        library = PromptLibrary()
        library.register(trip_prompt)
        with pytest.raises(PromptExistsError):
            library.register(trip_prompt)

    def test_overwrite_replaces(self, trip_prompt):
        library = PromptLibrary()
        library.register(trip_prompt)
        replacement = trip_prompt.model_copy(update={"version": "2.0"})

        library.register(replacement, overwrite=True)

        assert library.get("trip_planner").version == "2.0"

    def test_unknown_prompt(self):
        with pytest.raises(UnknownPromptError):
            PromptLibrary().get("missing")

    def test_list_is_sorted(self):
        library = PromptLibrary()
        for name in ("zeta", "alpha", "mid"):
            library.register(Prompt(name=name, instruction=Instruction(text="Do it")))
        assert [p.name for p in library.list()] == ["alpha", "mid", "zeta"]

    def test_remove(self, trip_prompt):
        library = PromptLibrary()
        library.register(trip_prompt)
        assert library.remove("trip_planner") is True
        assert library.remove("trip_planner") is False
        assert library.list() == []


class TestPromptFiles:
    """Loading definitions from JSON"""

    def test_load_single_object(self, tmp_path):
        path = tmp_path / "summarize.json"
        path.write_text(json.dumps(_definition("summarize")), encoding="utf-8")

        loaded = PromptLibrary().load_file(path)

        assert [p.name for p in loaded] == ["summarize"]
        assert loaded[0].version == "2.0"

    def test_load_list(self, tmp_path):
        path = tmp_path / "many.json"
        path.write_text(json.dumps([_definition("a"), _definition("b")]), encoding="utf-8")

        library = PromptLibrary()
        library.load_file(path)

        assert [p.name for p in library.list()] == ["a", "b"]

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(TemplateError, match="not valid JSON"):
            PromptLibrary().load_file(path)

    def test_invalid_definition(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"name": "bad"}), encoding="utf-8")
        with pytest.raises(TemplateError, match="Invalid prompt definition"):
            PromptLibrary().load_file(path)

    def test_duplicate_variable_names_rejected(self, tmp_path):
        definition = _definition("dup")
        definition["variables"] = [{"name": "text"}, {"name": "text"}]
        path = tmp_path / "dup.json"
        path.write_text(json.dumps(definition), encoding="utf-8")
        with pytest.raises(TemplateError):
            PromptLibrary().load_file(path)

    def test_load_directory(self, tmp_path):
        (tmp_path / "one.json").write_text(json.dumps(_definition("one")), encoding="utf-8")
        (tmp_path / "two.json").write_text(json.dumps(_definition("two")), encoding="utf-8")
        (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

        library = PromptLibrary()
        loaded = library.load_directory(tmp_path)

        assert sorted(p.name for p in loaded) == ["one", "two"]
