"""
Model Download Script

Fetches the MediaPipe face detection model files into the configured model
directory so the client can start without network access later.

Usage:
    python scripts/download_models.py
    python scripts/download_models.py --variant fast --model-dir storage/models
    python scripts/download_models.py --force
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from core.config import configure_logging, get_model_dir, resolve_path
from core.errors import ModelLoadFailed
from core.face_detector import MODEL_FILES, ensure_model


def main() -> int:
    parser = argparse.ArgumentParser(description="Download face detection models")
    parser.add_argument(
        "--variant",
        choices=sorted(MODEL_FILES) + ["all"],
        default="all",
        help="Model variant to fetch (default: all)",
    )
    parser.add_argument("--model-dir", default=None, help="Target directory (default: from config.yaml)")
    parser.add_argument("--force", action="store_true", help="Re-download files that already exist")
    args = parser.parse_args()

    configure_logging()

    model_dir = resolve_path(args.model_dir) if args.model_dir else get_model_dir()

    variants = sorted(MODEL_FILES) if args.variant == "all" else [args.variant]

    failed = 0
    for variant in variants:
        filename, _ = MODEL_FILES[variant]
        target = model_dir / filename
        if args.force and target.exists():
            target.unlink()

        try:
            path = ensure_model(variant, model_dir)
        except ModelLoadFailed as e:
            print(f"  [FAIL] {variant}: {e}")
            failed += 1
            continue

        size_mb = path.stat().st_size / (1024 * 1024)
        print(f"  [OK] {variant}: {path} ({size_mb:.1f} MB)")

    if failed:
        print(f"{failed} model(s) could not be downloaded")
        return 1

    print("All models ready")
    return 0


if __name__ == "__main__":
    sys.exit(main())
