"""
Configuration management (SSOT).

This module defines ALL configuration for the invoice reconciler.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Matching thresholds are data, not constants: the scoring tiers were tuned
  empirically and are expected to be adjusted per deployment.
- Amount tiers are evaluated in order with strict "<" comparisons,
  date tiers with inclusive "<=" comparisons.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import yaml


@dataclass
class DriveConfig:
    """Remote file store (Google Drive v3) configuration.

    Token issuance and refresh are handled outside this application; the
    token here is used as-is.
    """

    base_url: str = "https://www.googleapis.com/drive/v3"
    token: str = ""
    # Folder scanned when no per-scan override or year mapping applies
    root_folder_id: str | None = None
    # Drive query fragment selecting invoice candidates
    file_filter: str = "mimeType='application/pdf'"
    # Subfolder levels expanded below the root folder
    max_folder_depth: int = 5
    # Safety cap on listed files per scan
    max_files: int = 1000
    page_size: int = 200
    timeout_seconds: int = 30
    max_retries: int = 3


@dataclass
class ExtractionConfig:
    """Extraction pipeline settings."""

    # Shorter text layers are usually scans misreported as text PDFs
    text_layer_min_chars: int = 200
    local_ocr_min_chars: int = 20
    remote_ocr_min_chars: int = 20
    local_ocr_enabled: bool = True
    remote_ocr_enabled: bool = True
    # Tesseract language string
    ocr_languages: str = "eng+fra"
    ocr_dpi: int = 300
    # Per-page timeout for rasterization and recognition (seconds)
    ocr_timeout_seconds: int = 15
    # raw_text is truncated to this many characters when cached
    raw_text_max_chars: int = 2000


def _default_amount_tiers() -> list[tuple[Decimal, int]]:
    return [(Decimal("0.02"), 50), (Decimal("0.5"), 40), (Decimal("2"), 25)]


def _default_date_tiers() -> list[tuple[int, int]]:
    return [(1, 35), (3, 25), (7, 15), (14, 8)]


@dataclass
class MatchingConfig:
    """Invoice ↔ transaction scoring settings.

    A match is accepted only when the best score is strictly greater than
    accept_threshold. With the default tiers no single signal reaches 60,
    so two strong signals are required.
    """

    # (max absolute difference, points), first tier with diff < limit wins
    amount_tiers: list[tuple[Decimal, int]] = field(default_factory=_default_amount_tiers)
    amount_relative_tolerance: Decimal = Decimal("0.05")
    amount_relative_points: int = 20
    # (max day difference, points), first tier with days <= limit wins
    date_tiers: list[tuple[int, int]] = field(default_factory=_default_date_tiers)
    date_baseline_points: int = 3
    vendor_contains_points: int = 30
    vendor_token_points: int = 20
    vendor_min_token_length: int = 4
    accept_threshold: int = 60
    # Candidate window: +/- days around the invoice's best-guess date
    window_days: int = 30
    candidate_limit: int = 50
    # Statement-level lines that never need a supporting document
    excluded_label_prefixes: list[str] = field(default_factory=lambda: ["COUPONS"])
    # Currencies whose amounts may appear inside a bank label ("100,05 USD")
    label_currencies: list[str] = field(default_factory=lambda: ["USD"])


@dataclass
class ScanConfig:
    """Scan job settings."""

    # Finished jobs are forgotten after this many seconds
    job_retention_seconds: int = 3600
    sweep_interval_seconds: int = 600
    max_concurrent_scans: int = 4


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    drive: DriveConfig = field(default_factory=DriveConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.drive.base_url:
            errors.append("drive.base_url is required")
        if not self.drive.token:
            errors.append("drive.token is required")
        if self.drive.max_folder_depth < 1:
            errors.append("drive.max_folder_depth must be >= 1")
        if self.drive.max_files < 1:
            errors.append("drive.max_files must be >= 1")

        limits = [limit for limit, _ in self.matching.amount_tiers]
        if limits != sorted(limits):
            errors.append("matching.amount_tiers must be sorted by limit")
        days = [limit for limit, _ in self.matching.date_tiers]
        if days != sorted(days):
            errors.append("matching.date_tiers must be sorted by limit")
        if self.matching.window_days < 0:
            errors.append("matching.window_days must be >= 0")

        if self.scan.job_retention_seconds < 0:
            errors.append("scan.job_retention_seconds must be >= 0")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return default


def _tiers(raw: list | None, default: list, cast) -> list:
    if not raw:
        return default
    return [(cast(limit), int(points)) for limit, points in raw]


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - DRIVE_URL
    - DRIVE_TOKEN
    - DRIVE_ROOT_FOLDER_ID
    - INVOICE_RECONCILER_DB
    - INVOICE_RECONCILER_LOCAL_OCR (true/false)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Drive config
    drive_data = data.get("drive", {})
    drive = DriveConfig(
        base_url=os.environ.get(
            "DRIVE_URL", drive_data.get("base_url", "https://www.googleapis.com/drive/v3")
        ),
        token=os.environ.get("DRIVE_TOKEN", drive_data.get("token", "")),
        root_folder_id=os.environ.get("DRIVE_ROOT_FOLDER_ID", drive_data.get("root_folder_id")),
        file_filter=drive_data.get("file_filter", "mimeType='application/pdf'"),
        max_folder_depth=drive_data.get("max_folder_depth", 5),
        max_files=drive_data.get("max_files", 1000),
        page_size=drive_data.get("page_size", 200),
        timeout_seconds=drive_data.get("timeout_seconds", 30),
        max_retries=drive_data.get("max_retries", 3),
    )

    # Extraction config
    extraction_data = data.get("extraction", {})
    extraction = ExtractionConfig(
        text_layer_min_chars=extraction_data.get("text_layer_min_chars", 200),
        local_ocr_min_chars=extraction_data.get("local_ocr_min_chars", 20),
        remote_ocr_min_chars=extraction_data.get("remote_ocr_min_chars", 20),
        local_ocr_enabled=_env_bool(
            "INVOICE_RECONCILER_LOCAL_OCR", extraction_data.get("local_ocr_enabled", True)
        ),
        remote_ocr_enabled=extraction_data.get("remote_ocr_enabled", True),
        ocr_languages=extraction_data.get("ocr_languages", "eng+fra"),
        ocr_dpi=extraction_data.get("ocr_dpi", 300),
        ocr_timeout_seconds=extraction_data.get("ocr_timeout_seconds", 15),
        raw_text_max_chars=extraction_data.get("raw_text_max_chars", 2000),
    )

    # Matching config
    matching_data = data.get("matching", {})
    matching = MatchingConfig(
        amount_tiers=_tiers(
            matching_data.get("amount_tiers"),
            _default_amount_tiers(),
            lambda v: Decimal(str(v)),
        ),
        amount_relative_tolerance=Decimal(
            str(matching_data.get("amount_relative_tolerance", "0.05"))
        ),
        amount_relative_points=matching_data.get("amount_relative_points", 20),
        date_tiers=_tiers(matching_data.get("date_tiers"), _default_date_tiers(), int),
        date_baseline_points=matching_data.get("date_baseline_points", 3),
        vendor_contains_points=matching_data.get("vendor_contains_points", 30),
        vendor_token_points=matching_data.get("vendor_token_points", 20),
        vendor_min_token_length=matching_data.get("vendor_min_token_length", 4),
        accept_threshold=matching_data.get("accept_threshold", 60),
        window_days=matching_data.get("window_days", 30),
        candidate_limit=matching_data.get("candidate_limit", 50),
        excluded_label_prefixes=matching_data.get("excluded_label_prefixes", ["COUPONS"]),
        label_currencies=matching_data.get("label_currencies", ["USD"]),
    )

    # Scan config
    scan_data = data.get("scan", {})
    scan = ScanConfig(
        job_retention_seconds=scan_data.get("job_retention_seconds", 3600),
        sweep_interval_seconds=scan_data.get("sweep_interval_seconds", 600),
        max_concurrent_scans=scan_data.get("max_concurrent_scans", 4),
    )

    # State DB
    state_db = os.environ.get(
        "INVOICE_RECONCILER_DB", data.get("state_db_path", "data/state.db")
    )

    return Config(
        drive=drive,
        extraction=extraction,
        matching=matching,
        scan=scan,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Invoice reconciler configuration
#
# The Drive token is issued and refreshed elsewhere; paste a valid access
# token here or export DRIVE_TOKEN.

drive:
  base_url: "https://www.googleapis.com/drive/v3"
  token: "YOUR_DRIVE_ACCESS_TOKEN"
  root_folder_id: null                     # Scan the whole drive when unset
  file_filter: "mimeType='application/pdf'"
  max_folder_depth: 5                      # Subfolder recursion bound
  max_files: 1000                          # Safety cap per scan
  page_size: 200
  timeout_seconds: 30
  max_retries: 3

extraction:
  text_layer_min_chars: 200                # Shorter text layers are ignored
  local_ocr_min_chars: 20
  remote_ocr_min_chars: 20
  local_ocr_enabled: true                  # Needs tesseract + poppler installed
  remote_ocr_enabled: true                 # Drive document conversion
  ocr_languages: "eng+fra"
  ocr_dpi: 300
  ocr_timeout_seconds: 15
  raw_text_max_chars: 2000

# Scoring tiers (empirically tuned, keep in sync with your data)
matching:
  amount_tiers: [[0.02, 50], [0.5, 40], [2, 25]]   # diff < limit
  amount_relative_tolerance: 0.05
  amount_relative_points: 20
  date_tiers: [[1, 35], [3, 25], [7, 15], [14, 8]] # days <= limit
  date_baseline_points: 3
  vendor_contains_points: 30
  vendor_token_points: 20
  vendor_min_token_length: 4
  accept_threshold: 60                     # score must be strictly greater
  window_days: 30
  candidate_limit: 50
  excluded_label_prefixes: ["COUPONS"]
  label_currencies: ["USD"]

scan:
  job_retention_seconds: 3600
  sweep_interval_seconds: 600
  max_concurrent_scans: 4

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
