"""
filterdir: PR で変更のあったサブディレクトリを絞り込む CI 用ツール

狙い：
- 「target-parent-path 直下のどのディレクトリに変更が入ったか」を JSON 配列で出す
  （後続ジョブで「変更のあった app だけ build/test する」ために使う）
- 入力（CLI / env / .env / config / Actions の event）→ 判定（純粋関数）→ 出力（stdout / GITHUB_OUTPUT / ファイル）
  の流れを分ける

モード：
- pull-request モード：PR の変更ファイル一覧（GitHub API）とディレクトリ名を突き合わせる
- manual モード：カンマ区切りの指定（空なら全部）を、実在するディレクトリで絞る
  manual の指定がある、または PR の文脈が無い（push / workflow_dispatch など）ときに manual になる
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import posixpath
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Sequence

import httpx

import toolkit

LOGGER_NAME = "filterdir"
OUTPUT_NAME = "filtered-dir-path"

DEFAULT_API_URL = "https://api.github.com"
PER_PAGE = 100
# GitHub の pulls/files は 3000 件（100件 x 30ページ）で打ち切られる
MAX_PAGES = 30

ENV_TARGET_PARENT_PATH = "INPUT_TARGET-PARENT-PATH"
ENV_GITHUB_TOKEN_INPUT = "INPUT_GITHUB-TOKEN"
ENV_MANUAL_DIRECTORIES = "INPUT_MANUAL-DIRECTORIES"


# -------------------------
# エラー種別
# -------------------------


class FilterDirError(Exception):
    """filterdir が境界（main）まで伝播させるエラーの基底。"""


class MissingCredentialError(FilterDirError):
    """pull-request モードなのにトークンが無い。"""


class ContextError(FilterDirError):
    """pull-request モードなのに PR 番号が無い。"""


class NotFoundError(FilterDirError):
    """走査対象のディレクトリが無い。"""


class UpstreamError(FilterDirError):
    """GitHub API 呼び出しの失敗（メッセージはそのまま運ぶ）。"""


# -------------------------
# データモデル（DTO）
# -------------------------


@dataclass(frozen=True)
class PullRequestRef:
    owner: str
    repo: str
    number: int


@dataclass(frozen=True)
class PullRequestFile:
    """
    pulls/files API の1レコード。

    API の dict をそのまま持ち回らず、境界で型を確定させる：
    - filename は必須（文字列でなければ UpstreamError）
    - status は無くてもよい
    """

    filename: str
    status: str = ""

    @classmethod
    def from_api(cls, record: Any) -> "PullRequestFile":
        if not isinstance(record, dict):
            raise UpstreamError(f"unexpected file record: {record!r}")
        filename = record.get("filename")
        if not isinstance(filename, str):
            raise UpstreamError(f"file record without filename: {record!r}")
        status = record.get("status")
        return cls(filename=filename, status=status if isinstance(status, str) else "")


@dataclass(frozen=True)
class Settings:
    """
    境界で1回だけ解決した設定。

    run() から下は環境変数を読まない（トークンのフォールバックもここで済ませておく）。
    """

    target_parent_path: str = "."
    github_token: str | None = None
    manual_directories: str = ""
    pull_request: PullRequestRef | None = None
    api_url: str = DEFAULT_API_URL
    timeout: float = 10.0


@dataclass(frozen=True)
class Result:
    mode: str
    directories: list[str]


# -------------------------
# CLIパース（I/O境界：入力）
# -------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    CLI引数を定義して、解析結果（args）を返す。

    env/configの優先順位や補完は別関数（resolve_effective_args）でやる。
    """
    parser = argparse.ArgumentParser(
        description="List the direct subdirectories of a parent path that contain changed files."
    )

    parser.add_argument(
        "--target-parent-path",
        default=None,  # env/configで上書きできるように「未指定(None)」を区別する
        help="走査対象の親ディレクトリ（省略時はカレントディレクトリ）",
    )
    parser.add_argument("--github-token", default=None, help="GitHub API 用トークン（省略時は GITHUB_TOKEN）")
    parser.add_argument(
        "--manual-directories",
        default=None,
        help='manual モードで使うディレクトリ名のカンマ区切り（例: "alpha,beta"）',
    )
    parser.add_argument("--repository", default=None, help="owner/repo（省略時は GITHUB_REPOSITORY）")
    parser.add_argument("--pr-number", type=int, default=None, help="PR 番号（省略時は GITHUB_EVENT_PATH の event から読む）")
    parser.add_argument("--api-url", default=None, help=f"GitHub API のURL（default: {DEFAULT_API_URL}）")
    parser.add_argument("--timeout", type=float, default=10.0, help="HTTPのタイムアウト秒数（default: 10.0）")
    parser.add_argument("--out", type=Path, default=None, help="Write the JSON payload to a file (e.g., report.json).")
    parser.add_argument("--verbose", action="store_true", help="進捗ログを表示する")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON config file path (e.g., config.json). CLI args override config.",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from a .env file before processing (e.g., .env).",
    )

    return parser.parse_args(argv)


# -------------------------
# 設定ファイル（JSON）/ env（I/O境界：入力）
# -------------------------


def load_config(path: Path, logger: logging.Logger) -> dict[str, Any]:
    """
    JSON設定ファイルを読み込む。

    期待する例：
      {"target_parent_path": "apps", "manual_directories": "alpha,beta", "timeout": 5}
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.error("config load failed: %s (%s)", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.error("config must be a JSON object: %s", path)
        return {}
    return data


def apply_config(args: argparse.Namespace, cfg: dict[str, Any], provided: set[str]) -> None:
    """configの値を args に反映する（ただしCLI指定が優先）。"""
    if "--target-parent-path" not in provided and "target_parent_path" in cfg:
        args.target_parent_path = str(cfg["target_parent_path"])
    if "--manual-directories" not in provided and "manual_directories" in cfg:
        args.manual_directories = str(cfg["manual_directories"])
    if "--timeout" not in provided and "timeout" in cfg:
        args.timeout = cfg["timeout"]
    if "--out" not in provided and "out" in cfg:
        args.out = Path(str(cfg["out"]))
    if "--verbose" not in provided and "verbose" in cfg:
        args.verbose = bool(cfg["verbose"])


def apply_env(
    args: argparse.Namespace,
    env_file: dict[str, str],
    provided: set[str],
    logger: logging.Logger,
) -> None:
    """
    envの値を args に反映する（ただしCLI指定が優先）。

    対応する環境変数名：
      INPUT_TARGET-PARENT-PATH, INPUT_GITHUB-TOKEN, INPUT_MANUAL-DIRECTORIES（Actions の inputs）
      GITHUB_TOKEN（トークンのフォールバック）, GITHUB_REPOSITORY, GITHUB_API_URL
      FILTERDIR_TIMEOUT, FILTERDIR_OUT, FILTERDIR_VERBOSE
    """
    if "--target-parent-path" not in provided:
        v = toolkit.get_env(ENV_TARGET_PARENT_PATH, env_file)
        if v:
            args.target_parent_path = v
    if "--manual-directories" not in provided:
        v = toolkit.get_env(ENV_MANUAL_DIRECTORIES, env_file)
        if v:
            args.manual_directories = v

    # input が空なら GITHUB_TOKEN に落とす（CLI で空文字を渡されたときも同じ）
    if not args.github_token:
        v = toolkit.get_env(ENV_GITHUB_TOKEN_INPUT, env_file) or toolkit.get_env("GITHUB_TOKEN", env_file)
        if v:
            args.github_token = v

    if "--repository" not in provided:
        v = toolkit.get_env("GITHUB_REPOSITORY", env_file)
        if v:
            args.repository = v
    if "--api-url" not in provided:
        v = toolkit.get_env("GITHUB_API_URL", env_file)
        if v:
            args.api_url = v

    if "--timeout" not in provided:
        v = toolkit.get_env("FILTERDIR_TIMEOUT", env_file)
        if v:
            args.timeout = v
    if "--out" not in provided:
        v = toolkit.get_env("FILTERDIR_OUT", env_file)
        if v:
            args.out = Path(v)
    if "--verbose" not in provided:
        v = toolkit.get_env("FILTERDIR_VERBOSE", env_file)
        if v is not None:
            args.verbose = toolkit.parse_bool(v)

    logger.info("env applied (CLI overrides env)")


def load_event_pull_request_number(path: Path, logger: logging.Logger) -> int | None:
    """
    Actions の event payload（GITHUB_EVENT_PATH）から PR 番号を取り出す。

    push / workflow_dispatch など pull_request を含まない event なら None。
    読めない event も None 扱い（manual モードに倒れる）。
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("event payload load failed: %s (%s)", path, exc)
        return None
    if not isinstance(payload, dict):
        return None
    pr = payload.get("pull_request")
    if not isinstance(pr, dict):
        return None
    number = pr.get("number")
    if isinstance(number, int) and not isinstance(number, bool):
        return number
    return None


def split_repository(value: str) -> tuple[str, str] | None:
    """`owner/repo` を分解する。形が合わなければ None。"""
    owner, sep, repo = value.strip().partition("/")
    if not sep or not owner or not repo or "/" in repo:
        return None
    return owner, repo


# -------------------------
# 実行フロー組み立て（設定解決）
# -------------------------


def resolve_effective_args(argv: list[str] | None) -> tuple[argparse.Namespace, dict[str, str], logging.Logger]:
    """
    CLI/env/config を統合して「最終的に使う args」を確定する。

    優先順位：CLI > env（.env > OS環境変数） > config > 既定値
    """
    if argv is None:
        argv = sys.argv[1:]
    args = parse_args(argv)
    provided = toolkit.parse_provided_options(argv)

    # まずはCLIのverboseで暫定loggerを作る（env/configでverboseが変わったら作り直す）
    logger = toolkit.setup_logger(LOGGER_NAME, args.verbose)

    env_file: dict[str, str] = {}
    if args.env_file is not None:
        env_file = toolkit.load_env_file(args.env_file, logger)

    if args.config is None and "--config" not in provided:
        v = toolkit.get_env("FILTERDIR_CONFIG", env_file)
        if v:
            args.config = Path(v)

    if args.config is not None:
        cfg = load_config(args.config, logger)
        apply_config(args, cfg, provided)

    apply_env(args, env_file, provided, logger)

    logger = toolkit.setup_logger(LOGGER_NAME, args.verbose)
    return args, env_file, logger


def validate_args(args: argparse.Namespace) -> int:
    """入力検証。失敗したら終了コード（2）を返す。"""
    # env/config から来た timeout は文字列のままなので、ここで数値にする
    try:
        timeout = float(args.timeout)
    except (TypeError, ValueError):
        print(f"Error: --timeout must be a number: {args.timeout}", file=sys.stderr)
        return 2
    if timeout <= 0:
        print(f"Error: --timeout must be greater than 0: {args.timeout}", file=sys.stderr)
        return 2
    args.timeout = timeout
    if args.repository is not None and split_repository(args.repository) is None:
        print(f"Error: --repository must look like owner/repo: {args.repository}", file=sys.stderr)
        return 2
    if args.pr_number is not None and args.pr_number <= 0:
        print(f"Error: --pr-number must be a positive integer: {args.pr_number}", file=sys.stderr)
        return 2
    return 0


def build_settings(args: argparse.Namespace, env_file: dict[str, str], logger: logging.Logger) -> Settings:
    """
    args を Settings に固める。

    PR の文脈は --pr-number があればそれ、無ければ GITHUB_EVENT_PATH の event から。
    owner/repo が分からなければ PR の文脈は無いものとして扱う。
    """
    number = args.pr_number
    if number is None:
        event_path = toolkit.get_env("GITHUB_EVENT_PATH", env_file)
        if event_path:
            number = load_event_pull_request_number(Path(event_path), logger)

    pull_request: PullRequestRef | None = None
    if number is not None:
        parts = split_repository(args.repository) if args.repository else None
        if parts is None:
            logger.warning("pull request #%d found but repository is unknown; ignoring it", number)
        else:
            pull_request = PullRequestRef(owner=parts[0], repo=parts[1], number=number)

    return Settings(
        target_parent_path=args.target_parent_path or ".",
        github_token=args.github_token or None,
        manual_directories=args.manual_directories or "",
        pull_request=pull_request,
        api_url=(args.api_url or DEFAULT_API_URL).rstrip("/"),
        timeout=args.timeout,
    )


# -------------------------
# Directory Lister（I/O）
# -------------------------


def list_subdirectories(base_path: Path) -> list[str]:
    """
    base_path 直下のディレクトリ名を返す。

    - 順序はファイルシステムの列挙順のまま（ソートしない）
    - 通常ファイルやその他のエントリ（symlink 含む）は除外
    - 再帰はしない（直下だけ）
    """
    if not base_path.exists():
        raise NotFoundError(f"Target directory does not exist: {base_path}")
    if not base_path.is_dir():
        raise NotFoundError(f"Target path is not a directory: {base_path}")

    with os.scandir(base_path) as it:
        return [entry.name for entry in it if entry.is_dir(follow_symlinks=False)]


# -------------------------
# Change Source
# -------------------------


def fetch_changed_files(
    token: str,
    pull_request: PullRequestRef | None,
    *,
    api_url: str = DEFAULT_API_URL,
    timeout: float = 10.0,
    client: httpx.Client | None = None,
) -> list[str]:
    """
    PR の変更ファイルパス一覧を、API が返した順で返す。

    - pull_request が無ければ ContextError
    - API の失敗は UpstreamError（リトライしない、メッセージはそのまま）
    - 100件ずつページを進め、100件未満のページが来たら終わり
    """
    if pull_request is None:
        raise ContextError("This action only works on pull requests")

    url = f"{api_url}/repos/{pull_request.owner}/{pull_request.repo}/pulls/{pull_request.number}/files"
    headers = {
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": "2022-11-28",
    }

    files: list[PullRequestFile] = []
    for page in range(1, MAX_PAGES + 1):
        try:
            data = toolkit.get_json(
                url,
                headers=headers,
                params={"per_page": PER_PAGE, "page": page},
                timeout=timeout,
                client=client,
            )
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamError(str(exc)) from exc

        if not isinstance(data, list):
            raise UpstreamError(f"unexpected response for {url}: {data!r}")
        files.extend(PullRequestFile.from_api(record) for record in data)
        if len(data) < PER_PAGE:
            break

    return [f.filename for f in files]


def parse_manual_list(raw_input: str) -> list[str]:
    """
    カンマ区切りを分解する。

    "a, b ,c,,  " -> ["a", "b", "c"]（前後の空白は剥がし、空要素は捨てる）
    """
    return [name.strip() for name in raw_input.split(",") if name.strip()]


# -------------------------
# Matcher / Selector（純粋関数）
# -------------------------


def _normalize(path: str) -> str:
    # バックスラッシュ区切り（Windows 由来のパス）も "/" に寄せて比べる
    return path.replace("\\", "/")


def join_candidate(parent_path: str, name: str) -> str:
    """`parent/name` を作る（"./app" -> "app"、末尾の "/" は落とす）。"""
    return posixpath.normpath(posixpath.join(_normalize(parent_path), name))


def select_changed_dirs(dirs: Iterable[str], changed_paths: Sequence[str], parent_path: str) -> list[str]:
    """
    変更ファイルを含むディレクトリだけを、dirs の順で返す。

    一致の条件（どちらか）：
    - 変更パスが `parent/d` そのもの
    - 変更パスが `parent/d/` で始まる（"src/app1" は "src/app10/x.ts" に一致しない）

    パスの相対化はしない（変更パスはそのまま parent_path と比べる）。
    """
    normalized = [_normalize(p) for p in changed_paths]
    selected: list[str] = []
    for d in dirs:
        candidate = join_candidate(parent_path, d)
        prefix = candidate + "/"
        if any(p == candidate or p.startswith(prefix) for p in normalized):
            selected.append(d)
    return selected


def select_manual_dirs(requested: Sequence[str], available: Sequence[str]) -> list[str]:
    """
    manual モードの絞り込み。

    - requested が空なら available をそのまま（= 全部）
    - そうでなければ requested の順で、available にあるものだけ（無いものは黙って落とす）
    """
    if not requested:
        return list(available)
    known = set(available)
    return [name for name in requested if name in known]


def is_manual_mode(requested: Sequence[str], pull_request: PullRequestRef | None) -> bool:
    """manual の指定がある、または PR の文脈が無いなら manual モード。"""
    return bool(requested) or pull_request is None


# -------------------------
# 実行（コア）
# -------------------------


def run(settings: Settings, logger: logging.Logger, client: httpx.Client | None = None) -> Result:
    """
    設定を受け取って、選ばれたディレクトリ名の一覧を返す。

    途中のエラー（FilterDirError）は握りつぶさずに呼び出し側へ投げる。
    """
    requested = parse_manual_list(settings.manual_directories)
    root = Path(settings.target_parent_path).expanduser().resolve()

    if is_manual_mode(requested, settings.pull_request):
        logger.info("Running in manual mode")
        available = list_subdirectories(root)
        selected = select_manual_dirs(requested, available)
        logger.info("Manual target directories: %s", toolkit.dumps_compact(selected))
        return Result(mode="manual", directories=selected)

    if not settings.github_token:
        raise MissingCredentialError("GitHub token is required")

    available = list_subdirectories(root)
    changed = fetch_changed_files(
        settings.github_token,
        settings.pull_request,
        api_url=settings.api_url,
        timeout=settings.timeout,
        client=client,
    )
    logger.info("Found %d changed files", len(changed))

    selected = select_changed_dirs(available, changed, settings.target_parent_path)
    logger.info("Directories with changes: %s", toolkit.dumps_compact(selected))
    return Result(mode="pull_request", directories=selected)


# -------------------------
# 出力（I/O境界：stdout / GITHUB_OUTPUT / ファイル）
# -------------------------


def build_json_payload(settings: Settings, result: Result) -> dict[str, Any]:
    """--out 用の辞書を組み立てる。"""
    return {
        "mode": result.mode,
        "target_parent_path": settings.target_parent_path,
        "directories": result.directories,
    }


def main(argv: list[str] | None = None, client: httpx.Client | None = None) -> int:
    """
    実行入口（テストからも呼べる形）。

    resolve_effective_args（設定解決）→ validate_args（入力検証）→ run（実処理）→ 出力（副作用）
    失敗は `::error::` で Actions に伝えて終了コード 1。
    """
    args, env_file, logger = resolve_effective_args(argv)

    rc = validate_args(args)
    if rc != 0:
        return rc

    settings = build_settings(args, env_file, logger)

    try:
        result = run(settings, logger, client=client)
    except FilterDirError as exc:
        logger.error("%s", exc)
        print(f"::error::{exc}")
        return 1

    value = toolkit.dumps_compact(result.directories)

    # --out が書けなかったら GITHUB_OUTPUT には何も出さない（中途半端な結果を残さない）
    if args.out is not None:
        if not toolkit.write_json_file(args.out, build_json_payload(settings, result), logger):
            return 1

    output_path = toolkit.get_env("GITHUB_OUTPUT", env_file)
    if not toolkit.write_output(Path(output_path) if output_path else None, OUTPUT_NAME, value, logger):
        return 1

    print(value)
    return 0
