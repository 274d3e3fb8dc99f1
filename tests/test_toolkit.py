"""
toolkit（共通I/O部品）のテスト。

狙い：
- filterdir から呼ばれる形では通りにくい細かい仕様（.env の書き方、GITHUB_OUTPUT の追記、HTTP エラー）を押さえる
"""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

import toolkit


def test_parse_bool_truthy_and_falsey() -> None:
    # テスト意図：env 文字列を bool に解釈するルールが想定どおりか確認する
    assert toolkit.parse_bool("1") is True
    assert toolkit.parse_bool("YES") is True
    assert toolkit.parse_bool("on") is True

    assert toolkit.parse_bool("0") is False
    assert toolkit.parse_bool("No") is False
    assert toolkit.parse_bool("off") is False


def test_parse_provided_options_handles_equals_form() -> None:
    provided = toolkit.parse_provided_options(["--timeout=3", "--verbose", "value"])
    assert provided == {"--timeout", "--verbose"}
    assert toolkit.parse_provided_options(None) == set()


def test_load_env_file_accepts_hyphenated_input_names(tmp_path: Path) -> None:
    # テスト意図：Actions の inputs 名（INPUT_XXX-YYY）も .env から読めること
    env_path = tmp_path / ".env"
    env_path.write_text(
        "\n".join(
            [
                "# comment",
                "",
                "export INPUT_MANUAL-DIRECTORIES='alpha,beta'",
                'INPUT_TARGET-PARENT-PATH="apps"',
                "NO_EQUAL_SIGN",
            ]
        ),
        encoding="utf-8",
    )

    env = toolkit.load_env_file(env_path, toolkit.setup_logger("test", False))

    assert env["INPUT_MANUAL-DIRECTORIES"] == "alpha,beta"
    assert env["INPUT_TARGET-PARENT-PATH"] == "apps"
    assert "NO_EQUAL_SIGN" not in env


def test_load_env_file_missing_returns_empty(tmp_path: Path) -> None:
    assert toolkit.load_env_file(tmp_path / "nope.env", toolkit.setup_logger("test", False)) == {}


def test_get_env_prefers_env_file_and_ignores_empty(monkeypatch: pytest.MonkeyPatch) -> None:
    # テスト意図：.env > OS環境変数、空文字は未設定扱い
    monkeypatch.setenv("FILTERDIR_TIMEOUT", "99")
    assert toolkit.get_env("FILTERDIR_TIMEOUT", {"FILTERDIR_TIMEOUT": "2"}) == "2"
    assert toolkit.get_env("FILTERDIR_TIMEOUT", {"FILTERDIR_TIMEOUT": ""}) == "99"

    monkeypatch.setenv("FILTERDIR_OUT", "")
    assert toolkit.get_env("FILTERDIR_OUT", {}) is None


def test_dumps_compact_matches_single_line_json() -> None:
    assert toolkit.dumps_compact(["app1", "app3"]) == '["app1","app3"]'
    assert toolkit.dumps_compact([]) == "[]"
    assert toolkit.dumps_compact(["データ"]) == '["データ"]'


def test_write_output_appends_name_value(tmp_path: Path) -> None:
    # テスト意図：$GITHUB_OUTPUT は追記（既存の行を消さない）
    out = tmp_path / "github_output"
    out.write_text("other=1\n", encoding="utf-8")
    logger = toolkit.setup_logger("test", False)

    assert toolkit.write_output(out, "filtered-dir-path", '["a"]', logger) is True
    assert out.read_text(encoding="utf-8") == 'other=1\nfiltered-dir-path=["a"]\n'


def test_write_output_without_path_and_multiline(tmp_path: Path) -> None:
    logger = toolkit.setup_logger("test", False)
    assert toolkit.write_output(None, "x", "1", logger) is True
    assert toolkit.write_output(tmp_path / "o", "x", "1\n2", logger) is False


def test_write_json_file_reports_failure(tmp_path: Path) -> None:
    logger = toolkit.setup_logger("test", False)
    ok_path = tmp_path / "report.json"
    assert toolkit.write_json_file(ok_path, {"directories": ["a"]}, logger) is True
    assert json.loads(ok_path.read_text(encoding="utf-8")) == {"directories": ["a"]}

    assert toolkit.write_json_file(tmp_path / "missing" / "report.json", {}, logger) is False


def test_get_json_uses_given_client_and_raises_on_error_status() -> None:
    # テスト意図：4xx/5xx は握りつぶさず HTTPStatusError として呼び出し側へ
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/ok":
            return httpx.Response(200, json=[{"filename": "a"}])
        return httpx.Response(404, json={"message": "Not Found"})

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        data = toolkit.get_json(
            "https://api.example.test/ok",
            headers={"Authorization": "Bearer t"},
            params={"page": 2},
            client=client,
        )
        assert data == [{"filename": "a"}]
        assert seen[0].headers["Authorization"] == "Bearer t"
        assert seen[0].url.params["page"] == "2"

        with pytest.raises(httpx.HTTPStatusError):
            toolkit.get_json("https://api.example.test/missing", client=client)
