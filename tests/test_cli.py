"""Tests for the book_digest command-line parser."""

import pytest

from scripts.book_digest import _parse_tags, build_parser


class TestRunArguments:
    def test_run_options_are_parsed(self):
        args = build_parser().parse_args(
            [
                "run",
                "chapters.json",
                "--book",
                "moby.epub",
                "--mode",
                "mindmap",
                "--select",
                "c1",
                "c2",
                "--custom-prompt",
                "Mention every date",
                "--custom-only",
            ]
        )

        assert args.book == "moby.epub"
        assert args.mode == "mindmap"
        assert args.select == ["c1", "c2"]
        assert args.custom_prompt == "Mention every date"
        assert args.custom_only is True

    def test_custom_prompt_help_names_the_stages_it_reaches(self, capsys, monkeypatch):
        monkeypatch.setenv("COLUMNS", "200")

        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "--help"])

        help_text = capsys.readouterr().out
        assert "chapter summaries and mind maps" in help_text
        assert "every prompt" not in help_text


class TestParseTags:
    def test_pairs_become_mapping(self):
        assert _parse_tags(["c1=Voyage", "c2=Voyage"]) == {"c1": "Voyage", "c2": "Voyage"}

    def test_no_pairs_is_none(self):
        assert _parse_tags(None) is None

    def test_malformed_pair_exits(self):
        with pytest.raises(SystemExit):
            _parse_tags(["c1"])
