"""Keyword tables and thresholds used by the task classifier and workload analysis.

ASCII keywords match at a word start (``generate`` also matches ``generated``);
entries flagged as whole words must also end at a word boundary. CJK keywords
match as plain substrings.
"""

from __future__ import annotations

import re
from typing import Mapping

LEXICON_VERSION = 3

HIGH_COMPLEXITY_SCORE = 6
MEDIUM_COMPLEXITY_SCORE = 3

# (exclusive lower bound, weight), evaluated top-down
PROMPT_LENGTH_TIERS: tuple[tuple[int, int], ...] = ((2000, 3), (500, 2), (100, 1))
FILE_COUNT_TIERS: tuple[tuple[int, int], ...] = ((5, 3), (2, 2), (0, 1))
WORKFLOW_MARKER_WEIGHT = 3
ANALYSIS_WITH_FILES_WEIGHT = 2

LONG_PROMPT_CHARS = 2000
SHORT_PROMPT_CHARS = 500
COMPLEX_PROMPT_CHARS = 1000
MULTI_STEP_THRESHOLD = 3
QUESTION_MIN_CHARS = 20

COMPLEXITY_KEYWORDS: tuple[str, ...] = (
    "analyze",
    "compare",
    "evaluate",
    "synthesize",
    "optimize",
    "complex",
    "detailed",
    "comprehensive",
    "thorough",
    "in-depth",
)

CODE_KEYWORDS: tuple[str, ...] = (
    "function",
    "class",
    "import",
    "export",
    "const",
    "def",
    "return",
    "public",
    "private",
    "protected",
    "static",
    "code",
    "programming",
    "script",
    "algorithm",
    "debug",
    "refactor",
    "if __name__",
    "コード",
    "プログラム",
)
CODE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"```"),
    re.compile(r"\.(?:js|ts|py|java|cpp|c|go|rs|php)\b"),
)

CURRENT_INFO_KEYWORDS: tuple[str, ...] = (
    "latest",
    "recent",
    "current",
    "today",
    "now",
    "news",
    "trends",
    "this year",
    "this month",
    "this week",
    "search",
    "breaking",
    "what is happening",
    "update",
    "weather",
    "stock",
    "最新",
    "現在",
    "今日",
    "天気",
    "ニュース",
    "株価",
    "検索",
    "当前",
    "今天",
    "最近",
)

GENERATION_KEYWORDS: tuple[str, ...] = (
    "generate",
    "create",
    "make",
    "produce",
    "draw",
    "design",
    "paint",
    "compose",
    "synthesize",
    "render",
    "生成",
    "作成",
    "作る",
    "描く",
    "つくる",
    "合成",
)

IMAGE_KEYWORDS: tuple[str, ...] = (
    "image",
    "picture",
    "photo",
    "illustration",
    "drawing",
    "artwork",
    "visual",
    "graphic",
    "sketch",
    "painting",
    "画像",
    "写真",
    "イラスト",
    "絵",
    "図",
    "ピクチャー",
)
AUDIO_KEYWORDS: tuple[str, ...] = (
    "audio",
    "sound",
    "music",
    "voice",
    "speech",
    "narration",
    "音声",
    "音楽",
    "サウンド",
    "声",
    "ナレーション",
)
VIDEO_KEYWORDS: tuple[str, ...] = (
    "video",
    "movie",
    "animation",
    "clip",
    "動画",
    "ビデオ",
    "アニメーション",
)

DOCUMENT_KEYWORDS: tuple[str, ...] = (
    "document",
    "pdf",
    "analyze",
    "extract",
    "summarize",
    "compare",
    "text",
    "file",
    "content",
    "read",
    "process",
    "ドキュメント",
    "文書",
    "分析",
    "抽出",
    "要約",
)

# Whole-word tables; prefix matching would make ``def`` hit ``define``.
WHOLE_WORD_TABLES = frozenset({"code"})

WORKFLOW_KIND_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("generation", ("generat", "creat", "生成", "作成")),
    ("conversion", ("convert", "transform", "変換")),
    ("extraction", ("extract", "抽出", "取得")),
)

SEARCH_DISABLE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(summarize|要約|まとめ).*(this|これ|この)"),
    re.compile(r"^(translate|翻訳|訳).*(following|以下|次の)"),
    re.compile(r"^(format|整形|フォーマット).*(document|文書|ドキュメント)"),
    re.compile(r"^(explain|説明|解説).*(code|コード|プログラム)"),
    re.compile(r"^(analyze|分析|解析).*(attached|添付|provided|提供)"),
    re.compile(r"^(review|レビュー|確認).*(document|文書|file|ファイル)"),
    re.compile(r"^(check|チェック|確認).*(grammar|文法|syntax|構文)"),
    re.compile(r"^(hello|hi)\b|^(こんにちは|はじめまして)"),
    re.compile(r"^(thanks|thank you|ありがとう|感謝)"),
    re.compile(r"^(help|ヘルプ|助け|手伝)"),
    re.compile(r"^(calculate|計算|compute|算出)"),
    re.compile(r"^(solve|解く|解決).*(equation|方程式|problem|問題)"),
)
SEARCH_TEMPORAL_KEYWORDS: tuple[str, ...] = (
    "latest",
    "current",
    "recent",
    "today",
    "yesterday",
    "this week",
    "this month",
    "this year",
    "now",
    "currently",
    "breaking",
    "update",
    "news",
    "trend",
    "最新",
    "現在",
    "今",
    "今日",
    "昨日",
    "今週",
    "今月",
    "今年",
    "最近",
    "トレンド",
    "ニュース",
    "更新",
    "動向",
    "状況",
    "当前",
    "现在",
    "今天",
    "昨天",
    "本周",
    "本月",
    "趋势",
)
SEARCH_WEB_INDICATORS: tuple[str, ...] = (
    "stock price",
    "weather",
    "stock market",
    "株価",
    "天気",
    "市場",
    "价格",
    "天气",
)
SEARCH_QUESTION_WORDS: tuple[str, ...] = ("what", "who", "when", "where", "how", "why", "何", "いつ", "どこ", "なぜ", "どう")
YEAR_PATTERN = re.compile(r"20[2-3][0-9]")

FILE_REFERENCE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"@([^\s]+\.\w+)"),
    re.compile(r"file://[^\s]+"),
    re.compile(r"[^\s]+\.(?:pdf|png|jpg|jpeg|gif|txt|docx|xlsx|mp3|mp4|wav)\b", re.IGNORECASE),
)

FILE_KIND_BY_EXTENSION: Mapping[str, str] = {
    "png": "image",
    "jpg": "image",
    "jpeg": "image",
    "gif": "image",
    "bmp": "image",
    "webp": "image",
    "mp3": "audio",
    "wav": "audio",
    "m4a": "audio",
    "flac": "audio",
    "mp4": "video",
    "mov": "video",
    "avi": "video",
    "webm": "video",
    "pdf": "pdf",
    "txt": "text",
    "md": "text",
    "doc": "document",
    "docx": "document",
    "xlsx": "document",
    "pptx": "document",
}

SOURCE_EXTENSIONS = frozenset(
    {
        "py",
        "js",
        "ts",
        "tsx",
        "jsx",
        "java",
        "go",
        "rs",
        "c",
        "cpp",
        "h",
        "cs",
        "rb",
        "php",
        "swift",
        "kt",
        "sh",
        "sql",
        "json",
        "yaml",
        "yml",
        "toml",
        "ini",
        "cfg",
        "xml",
        "html",
        "htm",
        "css",
        "md",
    }
)

# Static per-backend profile: (estimated duration seconds, cost per step)
BACKEND_BASE_ESTIMATES: Mapping[str, tuple[float, float]] = {
    "claude": (60.0, 0.01),
    "gemini": (30.0, 0.0),
    "aistudio": (120.0, 0.005),
}
HEAVY_ACTION_MARKERS: tuple[str, ...] = ("complex", "analysis")
HEAVY_ACTION_DURATION_FACTOR = 2.0
HEAVY_ACTION_COST_FACTOR = 1.5

ACTION_TASK_TYPES: Mapping[str, str] = {
    "analyze_requirements": "text_processing",
    "process_multimodal": "multimodal_processing",
    "synthesize_results": "text_processing",
    "synthesize_analysis": "text_processing",
    "analyze_with_grounding": "text_processing",
    "process_documents": "document_processing",
    "analyze_documents": "document_processing",
    "extract_content": "extraction",
    "extract_data": "extraction",
    "convert_format": "conversion",
    "convert_files": "conversion",
    "analyze_source_content": "content_analysis",
    "develop_generation_strategy": "strategy_development",
    "generate_content": "content_generation",
}
DEFAULT_TASK_TYPE = "text_processing"


def _keyword_pattern(keyword: str, *, whole_word: bool) -> str:
    escaped = re.escape(keyword)
    if not keyword.isascii():
        return escaped
    suffix = r"(?![a-z0-9_])" if whole_word else ""
    return rf"(?<![a-z0-9_]){escaped}{suffix}"


def compile_table(keywords: tuple[str, ...], *, whole_word: bool = False) -> tuple[tuple[str, re.Pattern[str]], ...]:
    return tuple((keyword, re.compile(_keyword_pattern(keyword, whole_word=whole_word))) for keyword in keywords)


COMPILED_TABLES: Mapping[str, tuple[tuple[str, re.Pattern[str]], ...]] = {
    name: compile_table(table, whole_word=name in WHOLE_WORD_TABLES)
    for name, table in (
        ("complexity", COMPLEXITY_KEYWORDS),
        ("code", CODE_KEYWORDS),
        ("current_info", CURRENT_INFO_KEYWORDS),
        ("generation", GENERATION_KEYWORDS),
        ("image", IMAGE_KEYWORDS),
        ("audio", AUDIO_KEYWORDS),
        ("video", VIDEO_KEYWORDS),
        ("document", DOCUMENT_KEYWORDS),
        ("search_temporal", SEARCH_TEMPORAL_KEYWORDS),
        ("search_web", SEARCH_WEB_INDICATORS),
        ("search_question", SEARCH_QUESTION_WORDS),
    )
}


def matches(table: str, text: str) -> list[str]:
    """Return the keywords from ``table`` found in ``text`` (lower-cased by the caller)."""
    return [keyword for keyword, pattern in COMPILED_TABLES[table] if pattern.search(text)]


def detect_file_kind(path: str) -> str:
    extension = file_extension(path)
    return FILE_KIND_BY_EXTENSION.get(extension, "unknown")


def file_extension(path: str) -> str:
    name = path.rsplit("/", 1)[-1].lower()
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1]
