"""
CI向け小ツール共通の「I/Oまわり」部品集（toolkit）

狙い：
- CLIツールで毎回出てくる「だいたい同じ処理」をまとめる
  例：logger構成、.env読み取り、bool変換、JSON保存、GITHUB_OUTPUT 書き込み、HTTP GET
- ツール本体（filterdir.py）は「そのツール固有の処理」に集中できるようにする

注意：
- ここに入れるのは「どのツールでも同じ意味で使えるもの」だけ
- ツール固有の優先順位・引数名・payload構造・エラー種別はツール側で持つ
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Mapping

import httpx


def parse_provided_options(argv: list[str] | None) -> set[str]:
    """CLI で明示された --option の集合（env / config で上書きしない対象）。"""
    if argv is None:
        return set()
    provided: set[str] = set()
    for token in argv:
        if token.startswith("--"):
            provided.add(token.split("=", 1)[0])
    return provided


def parse_bool(value: str) -> bool:
    """FILTERDIR_VERBOSE などの文字列を bool にする（1/true/yes/y/on と 0/false/no/n/off）。"""
    v = value.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return bool(v)


def load_env_file(path: Path, logger: logging.Logger) -> dict[str, str]:
    """
    .env 形式（KEY=VALUE）を読む。

    対応範囲：
    - 空行/コメント(#...)は無視する
    - `export KEY=VALUE` を許容する
    - 値の前後のクォート（' "）は剥がす
    - `=` を含まない行は無視する
    - キーに `-` を含んでもよい（INPUT_GITHUB-TOKEN のような Actions 流の名前）
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.error("env file load failed: %s (%s)", path, exc)
        return {}

    env: dict[str, str] = {}
    for row in text.splitlines():
        line = row.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip()
        if len(val) >= 2 and ((val.startswith('"') and val.endswith('"')) or (val.startswith("'") and val.endswith("'"))):
            val = val[1:-1]
        if key:
            env[key] = val
    return env


def get_env(name: str, env_file: Mapping[str, str]) -> str | None:
    """
    環境変数取得。

    優先順位：env_file（.env） > OS環境変数。空文字は「未設定」と同じ扱い。
    """
    v = env_file.get(name)
    if v is not None and v != "":
        return v
    v = os.getenv(name)
    if v is not None and v != "":
        return v
    return None


def setup_logger(name: str, verbose: bool) -> logging.Logger:
    """stderr 向けの logger。stdout は JSON 配列と ::error:: 専用にしておく。"""
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    logger.propagate = False

    logger.handlers.clear()

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(handler)
    return logger


def dumps_compact(value: Any) -> str:
    """1行のJSON文字列にする（`["a","b"]` の形。GITHUB_OUTPUT にそのまま書ける）。"""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def write_json_file(path: Path, payload: dict[str, Any], logger: logging.Logger) -> bool:
    """--out の payload を保存する。書けなければ False（呼び出し側は GITHUB_OUTPUT に進まない）。"""
    try:
        out_path = path.expanduser().resolve()
        out_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        logger.info("payload written to %s", out_path)
        return True
    except OSError as exc:
        logger.error("failed to write payload to %s: %s", path, exc)
        return False


def write_output(path: Path | None, name: str, value: str, logger: logging.Logger) -> bool:
    """
    GitHub Actions の出力ファイル（$GITHUB_OUTPUT）に `name=value` を追記する。

    仕様：
    - path が None（Actions の外で動いている）なら何もしないで True
    - value は1行前提（複数行は heredoc 形式が必要になるので受け付けない）
    """
    if path is None:
        logger.info("GITHUB_OUTPUT is not set; skipped output %s", name)
        return True
    if "\n" in value:
        logger.error("output value must be a single line: %s", name)
        return False
    try:
        with path.open("a", encoding="utf-8") as fh:
            fh.write(f"{name}={value}\n")
        logger.info("output written: %s", name)
        return True
    except OSError as exc:
        logger.error("failed to write output %s to %s: %s", name, path, exc)
        return False


def get_json(
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    params: Mapping[str, Any] | None = None,
    timeout: float = 10.0,
    client: httpx.Client | None = None,
) -> Any:
    """
    GET して JSON を返す（I/O）。

    仕様：
    - 4xx/5xx は httpx.HTTPStatusError として呼び出し側へ投げる（ここでは握りつぶさない）
    - client を渡されたらそれを使う（テストで MockTransport を差し込むため）
    """
    if client is not None:
        resp = client.get(url, headers=headers, params=params, timeout=timeout)
        resp.raise_for_status()
        return resp.json()

    with httpx.Client(timeout=timeout) as own_client:
        resp = own_client.get(url, headers=headers, params=params)
        resp.raise_for_status()
        return resp.json()
