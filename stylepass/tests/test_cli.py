from unittest.mock import MagicMock

import pytest

from stylepass import cli
from stylepass.errors import AnalysisError
from stylepass.history import HistoryStore
from stylepass.types import ContentIdea, ScriptLine


@pytest.fixture
def service(monkeypatch, passport):
    service = MagicMock()
    service.analyze_video.return_value = passport
    service.analyze_via_search.return_value = passport
    monkeypatch.setattr(cli, "GeminiService", lambda: service)
    return service


def test_resolve(capsys):
    assert cli.main(["resolve", "https://youtu.be/dQw4w9WgXcQ?t=30"]) == 0
    out = capsys.readouterr().out
    assert "Platform: youtube" in out
    assert "Video id: dQw4w9WgXcQ" in out


def test_resolve_unrecognised_link(capsys):
    assert cli.main(["resolve", "https://www.youtube.com/@creator"]) == 1
    assert "could not resolve" in capsys.readouterr().out


def test_analyze_file_prints_passport_and_records_history(tmp_path, service, capsys):
    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"mp4")
    assert cli.main(["analyze", "--file", str(clip), "--platform", "youtube", "--views", "100"]) == 0

    out = capsys.readouterr().out
    assert "Fast-talking tech explainer" in out
    assert "182 WPM" in out
    assert service.analyze_video.call_args[0][1].views == 100
    assert HistoryStore().latest().platform == "youtube"


def test_analyze_url_failure_exits_non_zero(service, capsys):
    service.analyze_via_search.side_effect = AnalysisError("quota exceeded")
    assert cli.main(["analyze", "--url", "https://www.tiktok.com/@a/video/1", "--platform", "tiktok"]) == 1
    assert "Error: quota exceeded" in capsys.readouterr().err


def test_history_listing_show_and_delete(passport, capsys):
    item = HistoryStore().add(passport, None, "instagram")

    assert cli.main(["history"]) == 0
    assert item.id in capsys.readouterr().out
    assert cli.main(["history", "--show", item.id]) == 0
    assert '"words_per_minute": 182' in capsys.readouterr().out
    assert cli.main(["history", "--delete", item.id]) == 0
    assert cli.main(["history", "--delete", item.id]) == 1
    capsys.readouterr()
    assert cli.main(["history"]) == 0
    assert "History is empty." in capsys.readouterr().out


def test_script_requires_history(service, capsys):
    assert cli.main(["script", "coffee"]) == 1
    assert "Run 'analyze' first" in capsys.readouterr().err


def test_script_with_export(tmp_path, service, passport):
    HistoryStore().add(passport, None, "youtube")
    service.generate_script.return_value = [
        ScriptLine(time_range="00:00-00:03", visual="Mug", audio="Wait for it")
    ]
    out_dir = tmp_path / "exports"
    assert cli.main(["script", "coffee", "--export", "txt", "--out-dir", str(out_dir)]) == 0
    assert (out_dir / "script_coffee.txt").read_text().startswith("[00:00-00:03]\nVISUAL: Mug")


def test_compare_checks_selection_size(service, passport, capsys):
    item = HistoryStore().add(passport, None, "youtube")
    assert cli.main(["compare", item.id]) == 1
    assert "between 2 and 5" in capsys.readouterr().err
    service.compare_videos.assert_not_called()


def test_compare_with_json_export(tmp_path, service, passport):
    history = HistoryStore()
    ids = [history.add(passport, None, "youtube").id for _ in range(2)]
    service.compare_videos.return_value = "VIDEO 1 WINS"
    assert cli.main(["compare", *ids, "--export", "json", "--out-dir", str(tmp_path)]) == 0
    assert '"text": "VIDEO 1 WINS"' in (tmp_path / "comparison_analysis.json").read_text()


def test_ideas_generic_ignores_history(service, passport, capsys):
    HistoryStore().add(passport, None, "youtube")
    service.generate_content_ideas.return_value = [
        ContentIdea(title="Street tacos", hook="Sizzle", format="ASMR", why_it_works="Sound")
    ]
    assert cli.main(["ideas", "street food", "--generic"]) == 0
    assert service.generate_content_ideas.call_args[0] == ("street food", None)
    assert "[1] Street tacos (ASMR)" in capsys.readouterr().out
