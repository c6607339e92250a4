import hashlib
import logging

import pytest

from app.infrastructure.audit.std_logger import StdAuditLogger
from app.infrastructure.scanning.signature_scanner import EICAR_SIGNATURE, SignatureScanner


@pytest.mark.asyncio
async def test_eicar_is_flagged():
    result = await SignatureScanner().scan(b"prefix " + EICAR_SIGNATURE, "eicar.txt")
    assert not result.clean
    assert result.threat == "EICAR-Test-File"


@pytest.mark.asyncio
async def test_blocklisted_checksum_is_flagged():
    data = b"known bad payload"
    scanner = SignatureScanner([hashlib.sha256(data).hexdigest().upper()])
    assert (await scanner.scan(data, "x.bin")).clean is False
    assert (await scanner.scan(b"something else", "y.bin")).clean is True


def test_audit_logger_writes_json_line(caplog):
    caplog.set_level(logging.INFO, logger="app.infrastructure.audit.std_logger")
    StdAuditLogger().log("file_upload", "u1", entity_id="f1", details={"size": 3})
    message = caplog.records[-1].getMessage()
    assert message.startswith("AUDIT: ")
    assert '"action": "file_upload"' in message
    assert '"entity_id": "f1"' in message
