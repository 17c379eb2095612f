"""Tests for tutor_chat.persistence — JSON file snapshots."""

from pathlib import Path

from tutor_chat.models import InteractionMessage, NarrationMessage, message_list_adapter
from tutor_chat.persistence import JsonFilePersistence, file_stem, slugify


def _history(scenario_id: str = "aristotle_general"):
    return [
        NarrationMessage(scenario_id=scenario_id, content="Welcome!", tag="greeting"),
        InteractionMessage(scenario_id=scenario_id, role="user", content="hi"),
        InteractionMessage(scenario_id=scenario_id, role="assistant", content="Hello!"),
    ]


class TestSlugify:
    def test_plain_id_unchanged(self) -> None:
        assert slugify("aristotle_general") == "aristotle_general"

    def test_special_characters(self) -> None:
        assert slugify("herophilus_menu_Circulation & Gas") == "herophilus_menu_circulation-gas"

    def test_accents_folded(self) -> None:
        assert slugify("pâsteur_general") == "pasteur_general"

    def test_empty_falls_back(self) -> None:
        assert slugify("!!!") == "untitled"


class TestFileStem:
    def test_plain_id_keeps_its_name(self) -> None:
        assert file_stem("aristotle_general") == "aristotle_general"

    def test_folded_id_gets_digest(self) -> None:
        stem = file_stem("mendel_menu?topic_id=heredity")
        assert stem.startswith("mendel_menu-topic_id-heredity-")
        assert stem != file_stem("mendel_menu?topic_id=Heredity")

    def test_case_variants_do_not_share_a_stem(self) -> None:
        assert file_stem("A_general") != file_stem("a_general")


class TestJsonFilePersistence:
    def test_creates_directory(self, tmp_path: Path) -> None:
        JsonFilePersistence(tmp_path / "data")
        assert (tmp_path / "data" / "scenarios").is_dir()

    def test_snapshot_then_restore(self, persistence: JsonFilePersistence) -> None:
        history = _history()
        persistence.snapshot("aristotle_general", history)
        restored = persistence.restore("aristotle_general")
        assert restored == history
        assert isinstance(restored[0], NarrationMessage)

    def test_writes_one_file_per_scenario(self, tmp_path: Path) -> None:
        p = JsonFilePersistence(tmp_path)
        p.snapshot("aristotle_general", _history())
        assert (tmp_path / "scenarios" / "aristotle_general.json").is_file()

    def test_missing_file_restores_empty(self, persistence: JsonFilePersistence) -> None:
        assert persistence.restore("nobody_general") == []

    def test_corrupt_file_restores_empty(self, tmp_path: Path) -> None:
        p = JsonFilePersistence(tmp_path)
        (tmp_path / "scenarios" / "aristotle_general.json").write_text("{oops")
        assert p.restore("aristotle_general") == []

    def test_streaming_and_return_greetings_not_saved(
        self, persistence: JsonFilePersistence
    ) -> None:
        sid = "aristotle_general"
        history = _history(sid) + [
            NarrationMessage(scenario_id=sid, content="Welcome back!", tag="session_return"),
            InteractionMessage(scenario_id=sid, role="assistant", content="Par", is_streaming=True),
        ]
        persistence.snapshot(sid, history)
        assert persistence.restore(sid) == history[:3]

    def test_restore_filters_other_scenarios(self, tmp_path: Path) -> None:
        p = JsonFilePersistence(tmp_path)
        # A file holding another scenario's messages is ignored
        (tmp_path / "scenarios" / "a_general.json").write_bytes(
            message_list_adapter.dump_json(_history("b_general"))
        )
        assert p.restore("a_general") == []

    def test_ids_with_the_same_slug_use_separate_files(self, tmp_path: Path) -> None:
        p = JsonFilePersistence(tmp_path)
        menu_a = "x_menu?topic=b&c"
        menu_b = "x_menu?topic=b=c"
        p.snapshot(menu_a, _history(menu_a))
        p.snapshot(menu_b, _history(menu_b)[:1])
        assert len(p.restore(menu_a)) == 3
        assert len(p.restore(menu_b)) == 1

    def test_snapshot_overwrites(self, persistence: JsonFilePersistence) -> None:
        history = _history()
        persistence.snapshot("aristotle_general", history)
        persistence.snapshot("aristotle_general", history[:1])
        assert persistence.restore("aristotle_general") == history[:1]

    def test_delete(self, persistence: JsonFilePersistence) -> None:
        persistence.snapshot("aristotle_general", _history())
        persistence.delete("aristotle_general")
        assert persistence.restore("aristotle_general") == []
        persistence.delete("aristotle_general")
