import os
from pathlib import Path


# Load env vars from local files without overriding existing variables
def _load_env_from_files() -> None:
    """Load key=value lines from optional local files into os.environ if not already set.
    Priority: repo/.env, ENV_FILE path, data/secrets.env.
    Comments (#) and blank lines are ignored. Does not override existing env vars.
    """
    repo_root = Path(__file__).resolve().parents[1]
    candidates = [
        repo_root / ".env",
        Path(os.getenv("ENV_FILE", "")) if os.getenv("ENV_FILE") else None,
        repo_root / "data" / "secrets.env",
    ]
    for p in [c for c in candidates if c]:
        if not (p.exists() and p.is_file()):
            continue
        for line in p.read_text().splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            k, v = line.split("=", 1)
            k = k.strip()
            v = v.strip().strip('"').strip("'")
            if k and (k not in os.environ):
                os.environ[k] = v


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


# Load local env before reading values into Settings
_load_env_from_files()


class Settings:
    # Networking
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))

    # Paths
    _REPO_ROOT: Path = Path(__file__).resolve().parents[1]  # Anchor default to repo root: <repo>/data
    DATA_DIR: Path = Path(os.getenv("DATA_DIR", str(_REPO_ROOT / "data")))
    LOGS_DIR: Path = DATA_DIR / "logs"

    # Debugging
    DEBUG: bool = _env_bool("DEBUG", "false")

    # OCR engine (Tesseract via pytesseract)
    TESSERACT_LANG: str = os.getenv("TESSERACT_LANG", "eng")
    # Page segmentation mode: 6 = assume a single uniform block of text
    OCR_PSM: int = int(os.getenv("OCR_PSM", "6"))
    # OCR engine mode: 1=LSTM only, 3=default
    OCR_OEM: int = int(os.getenv("OCR_OEM", "3"))
    # DPI hint for Tesseract; phone photos benefit from a higher user-defined DPI
    OCR_USER_DPI: int = int(os.getenv("OCR_USER_DPI", "300"))
    # Allow/deny lists; empty means no constraint is passed to the engine
    OCR_CHAR_WHITELIST: str = os.getenv("OCR_CHAR_WHITELIST", "")
    OCR_CHAR_BLACKLIST: str = os.getenv("OCR_CHAR_BLACKLIST", "")
    # Preserve spaces: keeps "Ticket No:" style labels apart from their values
    OCR_PRESERVE_SPACES: bool = _env_bool("OCR_PRESERVE_SPACES", "true")

    # Preprocessing: when false, quality triage still runs but filters are never applied
    OCR_ENABLE_PREPROCESSING: bool = _env_bool("OCR_ENABLE_PREPROCESSING", "true")
    # Baseline contrast applied with every preprocessing pass (triage suggestions override it)
    OCR_DEFAULT_CONTRAST: float = float(os.getenv("OCR_DEFAULT_CONTRAST", "1.1"))

    # Quality triage: longest side of the analysis thumbnail
    QUALITY_MAX_ANALYSIS_SIZE: int = int(os.getenv("QUALITY_MAX_ANALYSIS_SIZE", "200"))

    # Batch scheduling
    # Number of concurrent recognition workers, independent of batch size
    BATCH_WORKERS: int = int(os.getenv("BATCH_WORKERS", "3"))
    # Upper bound on files accepted per HTTP batch upload
    BATCH_MAX_FILES: int = int(os.getenv("BATCH_MAX_FILES", "50"))
    # Finished batch snapshots the HTTP layer keeps for polling; oldest are dropped first
    BATCH_HISTORY_SIZE: int = int(os.getenv("BATCH_HISTORY_SIZE", "100"))

    # Field extraction
    # Confidence given to a pattern match that cannot be located in the OCR geometry
    EXTRACT_DEFAULT_CONFIDENCE: float = float(os.getenv("EXTRACT_DEFAULT_CONFIDENCE", "50"))

    # Fusion tuning (env overridable)
    # Similarity above which the two detectors are considered to agree
    FUSION_AGREEMENT_THRESHOLD: float = float(os.getenv("FUSION_AGREEMENT_THRESHOLD", "0.8"))
    # Confidence bonus for corroborated fields
    FUSION_AGREEMENT_BONUS: float = float(os.getenv("FUSION_AGREEMENT_BONUS", "10"))
    # Preferred source must exceed this confidence to win a disagreement
    FUSION_MIN_PREFERRED_CONFIDENCE: float = float(os.getenv("FUSION_MIN_PREFERRED_CONFIDENCE", "50"))

    # Fields below this confidence are flagged for manual verification
    REVIEW_CONFIDENCE_THRESHOLD: float = float(os.getenv("REVIEW_CONFIDENCE_THRESHOLD", "60"))


settings = Settings()
