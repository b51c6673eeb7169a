"""Output formatter — one JSON object per record (NDJSON), compatible with jq."""

import json

from logsegment.models import Record


def format_json(record: Record) -> str:
    return json.dumps(record.to_dict(), ensure_ascii=False)
