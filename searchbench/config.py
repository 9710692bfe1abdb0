"""設定モジュール: 環境変数・定数定義."""

import os
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- Elasticsearch ---
ES_HOST: str = os.environ.get("SEARCHBENCH_ES_HOST", "http://127.0.0.1:9200").rstrip("/")
BENCH_INDEX_NAME: str = os.environ.get("SEARCHBENCH_INDEX", "items")
SANITY_TEST_INDEX_NAME = "test"

# --- リクエスト設定 ---
# 未設定なら requests のデフォルト (タイムアウトなし)
_timeout = os.environ.get("SEARCHBENCH_REQUEST_TIMEOUT", "")
REQUEST_TIMEOUT: float | None = float(_timeout) if _timeout else None

# --- 検索ベンチマーク ---
PAGE_SIZE = 120
FETCH_MAX = 240  # 1 クエリあたりの最大取得件数
PROGRESS_EVERY = 100  # N クエリごとに進捗ログ
PREVIEW_HITS = 10  # fetch_source 時にログへ出す件数

# --- インポート・インデックス ---
BATCH_SIZE = 5000
FILENAME_FILTER = ".csv.gz"
IMPORT_PROGRESS_EVERY = 10_000
BULK_WARN_BYTES = 10_000_000

# --- 変更ログ ---
ONE_DAY_MS = 24 * 60 * 60 * 1000

# --- ログ ---
LOG_DIR = Path(os.environ.get("SEARCHBENCH_LOG_DIR", _PROJECT_ROOT / "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)
