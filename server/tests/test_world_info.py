"""
Tests for world info scanning
"""
from models import Character, ChatMessage, WorldInfoEntry, WorldInfoSettings
from services.prompt import activate_world_info, build_scan_window, scan_world_info


def entry(uid, **kwargs) -> WorldInfoEntry:
    return WorldInfoEntry(uid=str(uid), **kwargs)


class TestScanWindow:
    """Tests for build_scan_window()."""

    def test_window_contents_and_lowercase(self):
        character = Character(name="Lyra", description="An ELF ranger.", scenario="The Old Road.")
        history = [
            ChatMessage(content="First", is_user=True),
            ChatMessage(content="Second"),
            ChatMessage(content="Third", is_user=True),
        ]
        window = build_scan_window("Hello THERE", history, character, depth=2)
        assert window == "hello there second third an elf ranger. the old road."

    def test_zero_depth_skips_history(self):
        character = Character(name="Lyra")
        history = [ChatMessage(content="dragon", is_user=True)]
        assert "dragon" not in build_scan_window("hi", history, character, depth=0)

    def test_uses_displayed_swipe(self):
        character = Character(name="Lyra")
        message = ChatMessage(content="old", swipes=["old", "castle"], swipe_id=1)
        assert "castle" in build_scan_window("", [message], character, depth=1)


class TestScanWorldInfo:
    """Tests for scan_world_info()."""

    def test_constant_entry_always_activates(self):
        constant = entry(1, constant=True, content="Always")
        assert scan_world_info([constant], "") == [constant]
        assert scan_world_info([constant], "anything at all") == [constant]

    def test_whole_word_match(self):
        dragon = entry(1, key=["dragon"], match_whole_words=True)
        assert scan_world_info([dragon], "a Dragon appeared") == [dragon]
        assert scan_world_info([dragon], "a dragonfly appeared") == []

    def test_substring_match_without_whole_word(self):
        dragon = entry(1, key=["dragon"])
        assert scan_world_info([dragon], "a dragonfly appeared") == [dragon]

    def test_case_sensitive_key(self):
        sensitive = entry(1, key=["Dragon"], case_sensitive=True)
        assert scan_world_info([sensitive], "a dragon") == []
        assert scan_world_info([sensitive], "a Dragon") == [sensitive]

    def test_blank_keys_never_match(self):
        blank = entry(1, key=["", "   "])
        assert scan_world_info([blank], "anything") == []

    def test_disabled_entries_never_activate(self):
        disabled = entry(1, key=["dragon"], constant=True, enabled=False)
        assert scan_world_info([disabled], "dragon") == []

    def test_selective_entry_needs_secondary_key(self):
        selective = entry(1, key=["dragon"], secondary_key=["cave"], selective=True)
        assert scan_world_info([selective], "the dragon flies") == []
        assert scan_world_info([selective], "the dragon sleeps in a cave") == [selective]

    def test_secondary_keys_ignored_when_not_selective(self):
        plain = entry(1, key=["dragon"], secondary_key=["cave"])
        assert scan_world_info([plain], "the dragon flies") == [plain]

    def test_sorted_by_order(self):
        entries = [
            entry("a", constant=True, order=5),
            entry("b", constant=True, order=1),
            entry("c", constant=True, order=3),
        ]
        assert [e.order for e in scan_world_info(entries, "")] == [1, 3, 5]

    def test_ties_keep_original_order(self):
        entries = [entry(uid, constant=True, order=10) for uid in "xyz"]
        assert [e.uid for e in scan_world_info(entries, "")] == ["x", "y", "z"]

    def test_deterministic(self):
        entries = [
            entry(1, key=["sword"], order=2),
            entry(2, key=["shield"], order=2),
            entry(3, constant=True, order=1),
        ]
        text = "a sword and a shield"
        assert scan_world_info(entries, text) == scan_world_info(entries, text)


class TestActivateWorldInfo:
    """Tests for activate_world_info()."""

    def test_scan_depth_limits_history(self):
        character = Character(name="Lyra")
        history = [
            ChatMessage(content="the dragon", is_user=True),
            ChatMessage(content="nothing"),
            ChatMessage(content="still nothing", is_user=True),
        ]
        dragon = entry(1, key=["dragon"])
        assert activate_world_info([dragon], "hi", history, character, WorldInfoSettings(depth=2)) == []
        assert activate_world_info([dragon], "hi", history, character, WorldInfoSettings(depth=3)) == [dragon]

    def test_new_message_is_scanned(self):
        character = Character(name="Lyra")
        dragon = entry(1, key=["dragon"])
        assert activate_world_info([dragon], "Dragon!", [], character, WorldInfoSettings()) == [dragon]
