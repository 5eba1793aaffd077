from prometheus_client import Counter, Histogram

# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "teachercoach_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "teachercoach_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)

# Analysis pipeline
ANALYSIS_TOTAL = Counter(
    "teachercoach_video_analysis_total",
    "Video analysis outcomes",
    ["outcome"],
)
ANALYSIS_SECONDS = Histogram(
    "teachercoach_video_analysis_seconds",
    "Duration of a video analysis request in seconds",
    buckets=(1, 5, 10, 30, 60, 120, 300, 600),
)
ANALYSIS_TOKENS_TOTAL = Counter(
    "teachercoach_video_analysis_tokens_total",
    "Tokens reported by the generation backend",
    ["direction"],
)
READINESS_POLLS_TOTAL = Counter(
    "teachercoach_file_readiness_total",
    "Terminal outcomes of file readiness polling",
    ["outcome"],
)
CLEANUP_TOTAL = Counter(
    "teachercoach_file_cleanup_total",
    "Best-effort file deletions",
    ["status"],
)
