"""Cap table export to CSV and JSON."""

import csv
import io
import json
from datetime import datetime, timezone
from typing import Optional

from chainequity_api.analytics.captable import CapTable, format_units
from chainequity_api.ledger.corporate import BASIS_POINTS

EXPORT_FORMATS = ("csv", "json")


def _iso(timestamp: Optional[int]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def export_csv(table: CapTable, decimals: int = 18) -> str:
    """Holder rows followed by a summary footer."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["Address", "Balance", "Ownership %", "Last Updated"])
    for entry in table.entries:
        writer.writerow([
            entry.address,
            format_units(entry.display_balance, decimals),
            f"{entry.ownership_percentage:.4f}",
            _iso(entry.last_updated_timestamp) or "N/A",
        ])
    writer.writerow([])
    writer.writerow(["Total Supply", format_units(table.total_supply, decimals), "", ""])
    writer.writerow(["Total Holders", table.holder_count, "", ""])
    writer.writerow(["Split Multiplier", f"{table.split_multiplier / BASIS_POINTS}x", "", ""])
    writer.writerow(["Block Number", table.block_number if table.block_number is not None else "N/A", "", ""])
    writer.writerow(["Generated At", _iso(table.generated_at), "", ""])
    return buffer.getvalue()


def export_json(table: CapTable, decimals: int = 18) -> str:
    """Metadata block plus holder list, pretty-printed."""
    document = {
        "metadata": {
            "symbol": table.symbol,
            "name": table.name,
            "total_supply": format_units(table.total_supply, decimals),
            "holder_count": table.holder_count,
            "split_multiplier": table.split_multiplier,
            "block_number": table.block_number,
            "generated_at": _iso(table.generated_at),
        },
        "holders": [
            {
                "address": entry.address,
                "balance": format_units(entry.display_balance, decimals),
                "ownership_percentage": f"{entry.ownership_percentage:.4f}%",
                "last_updated": _iso(entry.last_updated_timestamp),
            }
            for entry in table.entries
        ],
    }
    return json.dumps(document, indent=2)


def export_cap_table(table: CapTable, fmt: str, decimals: int = 18) -> str:
    """Export in one of ``EXPORT_FORMATS``."""
    if fmt == "csv":
        return export_csv(table, decimals)
    if fmt == "json":
        return export_json(table, decimals)
    raise ValueError(f"Unsupported export format {fmt!r}; expected one of {', '.join(EXPORT_FORMATS)}")
