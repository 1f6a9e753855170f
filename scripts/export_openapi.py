#!/usr/bin/env python3
"""
Write the API's OpenAPI document to openapi.yaml at the project root.

Usage:
    python scripts/export_openapi.py [output-path]
"""

import sys
from pathlib import Path

import yaml

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from venue_availability.main import app  # noqa: E402

REQUIRED_FIELDS = ("openapi", "info", "paths")


def build_schema() -> dict:
    """Render the OpenAPI document from the FastAPI app."""
    schema = app.openapi()
    missing = [field for field in REQUIRED_FIELDS if field not in schema]
    if missing:
        print(f"Error: generated schema is missing {', '.join(missing)}")
        sys.exit(1)
    return schema


def main() -> None:
    output = Path(sys.argv[1]) if len(sys.argv) > 1 else project_root / "openapi.yaml"
    schema = build_schema()

    with open(output, "w") as f:
        yaml.safe_dump(schema, f, sort_keys=False, allow_unicode=True)

    paths = schema.get("paths", {})
    print(f"Wrote {output} ({len(paths)} paths):")
    for path, methods in paths.items():
        for method, details in methods.items():
            print(f"  - {method.upper()} {path} -> {details.get('operationId', '?')}")


if __name__ == "__main__":
    main()
