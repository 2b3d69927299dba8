"""Simple healthcheck script for local/cron monitoring."""

import json
import sys

from ytcatalog.config import get_settings
from ytcatalog.engine import collection_stats
from ytcatalog.models import CatalogSnapshot


def main() -> int:
    """Run healthcheck and return exit code."""
    settings = get_settings()

    issues: list[str] = []

    store_path = settings.store_path
    if not store_path.exists():
        issues.append(f"Store not found at {store_path}")
    else:
        # Read directly: JsonCatalogStore.load hides corruption behind an empty snapshot
        try:
            snapshot = CatalogSnapshot.model_validate(json.loads(store_path.read_text()))
        except (OSError, ValueError) as e:
            issues.append(f"Store unreadable: {e}")
        else:
            if not snapshot.collections and not snapshot.channels:
                issues.append("No collections in store")
            for collection in snapshot.collections:
                stats = collection_stats(collection)
                pending = stats["total_videos"] - stats["enriched_videos"]
                print(f"  {collection.name}: {pending} videos awaiting enrichment")

    if not settings.youtube_api_key:
        issues.append("Missing YouTube API key")

    if issues:
        print("UNHEALTHY")
        for issue in issues:
            print(f"  - {issue}")
        return 1

    print("HEALTHY")
    return 0


if __name__ == "__main__":
    sys.exit(main())
