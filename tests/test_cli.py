from __future__ import annotations

from pathlib import Path

import pytest

from avatar_composer.cli import main
from avatar_composer.config import get_settings

from conftest import make_part, write_part_glb


@pytest.fixture(autouse=True)
def work_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("WORK_DIR", str(tmp_path / "work"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_cli_writes_both_assets(tmp_path: Path, body_part, hair_part, capsys: pytest.CaptureFixture):
    body = write_part_glb(tmp_path / "body.glb", body_part)
    hair = write_part_glb(tmp_path / "hair.glb", hair_part)
    output_dir = tmp_path / "out"

    exit_code = main([str(body), str(hair), "--output-dir", str(output_dir), "--animation", "Wave"])

    assert exit_code == 0
    assert (output_dir / "custom_avatar.glb").read_bytes()[:4] == b"glTF"
    assert (output_dir / "custom_avatar.gltf").exists()
    assert capsys.readouterr().out.strip() == str(output_dir / "custom_avatar.glb")


def test_cli_reports_composition_errors(tmp_path: Path):
    part = write_part_glb(tmp_path / "static.glb", make_part("static", with_mesh=False))

    assert main([str(part), "--output-dir", str(tmp_path / "out")]) == 1
    assert not (tmp_path / "out").exists()


def test_cli_reports_missing_files(tmp_path: Path):
    assert main([str(tmp_path / "missing.glb"), "--output-dir", str(tmp_path / "out")]) == 2
