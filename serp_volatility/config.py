"""設定モジュール — 環境変数・定数定義."""

import os
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- Supabase ---
# クライアント生成時に参照する（import 時には必須にしない）
SUPABASE_URL: str = os.environ.get("SUPABASE_URL", "")
SUPABASE_SECRET_KEY: str = os.environ.get("SUPABASE_SECRET_KEY", "")
SUPABASE_SCHEMA: str = os.environ.get("SUPABASE_SCHEMA", "rank_tracker")

KEYWORD_TARGETS_TABLE = "keyword_targets"
SNAPSHOTS_TABLE = "serp_snapshots"
DB_PAGE_SIZE = 1000  # PostgREST の行数上限に合わせる

# --- ボラティリティスコア ---
# 正規化キャップ
RANK_SHIFT_CAP = 20  # 平均順位変動（位）
MAX_SHIFT_CAP = 50  # 最大順位変動（位）
FEATURE_CHANGE_CAP = 5  # 1 ペアあたりの平均 SERP 機能変化数

# 重み（合計 1.0）
WEIGHT_RANK_SHIFT = 0.40
WEIGHT_MAX_SHIFT = 0.25
WEIGHT_AI_CHURN = 0.20
WEIGHT_FEATURE_VOLATILITY = 0.15

# --- レジーム / バケット境界 ---
# calm < 1 <= shifting < 30 <= unstable < 60 <= chaotic
HIGH_VOLATILITY_THRESHOLD = 60
MEDIUM_VOLATILITY_THRESHOLD = 30
LOW_VOLATILITY_THRESHOLD = 1

REGIMES = ("calm", "shifting", "unstable", "chaotic")

# --- 成熟度 ---
MATURITY_DEVELOPING_MIN_SAMPLES = 5
MATURITY_STABLE_MIN_SAMPLES = 20

MATURITIES = ("preliminary", "developing", "stable")

# --- AI Overview ---
AI_OVERVIEW_STATUSES = ("absent", "present", "unknown")

# --- リクエストパラメータ ---
WINDOW_DAYS_MIN = 1
WINDOW_DAYS_MAX = 365
ALERTS_WINDOW_DAYS_MAX = 30

ALERT_THRESHOLD_DEFAULT = 60
ALERT_THRESHOLD_MIN = 0
ALERT_THRESHOLD_MAX = 100

SPIKE_THRESHOLD_DEFAULT = 75.00
SPIKE_THRESHOLD_MIN = 0
SPIKE_THRESHOLD_MAX = 100

CONCENTRATION_THRESHOLD_DEFAULT = 0.80
CONCENTRATION_THRESHOLD_MIN = 0
CONCENTRATION_THRESHOLD_MAX = 1

MIN_MATURITY_DEFAULT = "developing"

FEED_LIMIT_DEFAULT = 20
FEED_LIMIT_MAX = 50
ALERTS_LIMIT_DEFAULT = 100
ALERTS_LIMIT_MAX = 200
LIMIT_MIN = 1

SPIKES_TOP_N_DEFAULT = 3
SPIKES_TOP_N_MAX = 10
BREAKDOWN_TOP_N_DEFAULT = 20
BREAKDOWN_TOP_N_MAX = 50
HISTORY_LIMIT_DEFAULT = 50
HISTORY_LIMIT_MAX = 200
HISTORY_TOP_N_DEFAULT = 10
HISTORY_TOP_N_MAX = 20
TOP_N_MIN = 1

# --- アラート重大度 ---
SEVERITY_CONCENTRATION = 7
SEVERITY_SPIKE = 6
SEVERITY_RECOVERY = 1

TOP_RISK_KEYWORDS = 3

# --- ログ ---
LOG_DIR = Path(os.environ.get("LOG_DIR", _PROJECT_ROOT / "logs"))
