"""Application constants."""

USER_AGENT = "geosite/0.3 (+site-investigation analysis)"
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20

UNCLASSIFIED = "Unclassified"

FLAG_DUPLICATE = "duplicate"
FLAG_OUTLIER = "outlier"
FLAG_IMPOSSIBLE = "impossibleCoordinate"
QUALITY_FLAGS = (FLAG_DUPLICATE, FLAG_OUTLIER, FLAG_IMPOSSIBLE)

ANNOTATION_FIELDS = ("region", "quality_flags", "cluster_id")

WGS84_SRID = 4326

JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "event",
    "status",
    "duration_ms",
    "rows_in",
    "rows_out",
    "error_code",
    "message",
)
