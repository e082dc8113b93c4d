from datetime import datetime
import uuid

from models import RequestKind

REQUEST_PREFIXES = {
    RequestKind.BLOOD: "BR",
    RequestKind.PLASMA: "PR",
    RequestKind.ORGAN: "OR",
}


def generate_request_id(kind: RequestKind, now: datetime) -> str:
    # Random suffix: fan-out creates many records within the same instant
    suffix = uuid.uuid4().hex[:8].upper()
    return f"{REQUEST_PREFIXES[kind]}-{now.strftime('%Y%m%d')}-{suffix}"


def generate_batch_id(now: datetime) -> str:
    return f"BATCH-{now.strftime('%Y%m%d')}-{uuid.uuid4().hex[:10].upper()}"
