from app.registry import LinkRegistry


def fetch_storage_totals(registry: LinkRegistry) -> dict[str, int]:
    return {
        "live_links": len(registry),
        "total_bytes": registry.total_bytes(),
    }
