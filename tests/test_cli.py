from __future__ import annotations

import json
from pathlib import Path

import pytest

from reelsync import cli
from tests.conftest import asset_payload, encode


def _payload_file(tmp_path: Path) -> Path:
    target = tmp_path / "ready.json"
    target.write_bytes(encode(asset_payload("video.asset.ready", "asset-1", playback_id="pb-1")))
    return target


def _sign(provider: str, path: Path, capsys) -> dict[str, str]:
    cli.main(["sign", provider, "--file", str(path)])
    return json.loads(capsys.readouterr().out)


@pytest.mark.parametrize("provider", ["media", "identity", "workflow"])
def test_signed_payload_verifies(provider, tmp_path, capsys):
    path = _payload_file(tmp_path)
    headers = _sign(provider, path, capsys)
    header_args = []
    for name, value in headers.items():
        header_args += ["--header", f"{name}:{value}"]

    cli.main(["verify", provider, "--file", str(path), *header_args])
    assert "Verified" in capsys.readouterr().out


def test_tampered_payload_is_rejected(tmp_path, capsys):
    path = _payload_file(tmp_path)
    headers = _sign("media", path, capsys)
    path.write_bytes(path.read_bytes().replace(b"pb-1", b"pb-9"))

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["verify", "media", "--file", str(path), "--header", f"mux-signature:{headers['mux-signature']}"])
    assert excinfo.value.code == 1
    assert "signature_mismatch" in capsys.readouterr().out


def test_sign_can_emit_curl(tmp_path, capsys):
    path = _payload_file(tmp_path)
    cli.main(["sign", "media", "--file", str(path), "--curl", "http://localhost:8000/v1/webhooks/media"])
    output = capsys.readouterr().out
    assert output.startswith("curl -X POST http://localhost:8000/v1/webhooks/media")
    assert "-H 'mux-signature: t=" in output


def test_missing_file_exits(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["sign", "media", "--file", str(tmp_path / "absent.json")])
    assert excinfo.value.code == 2


def test_configuration_check_flags_missing_keys(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--check"])
    output = capsys.readouterr().out
    assert excinfo.value.code == 1
    assert "text generation key" in output
    assert ".env.example" in output
