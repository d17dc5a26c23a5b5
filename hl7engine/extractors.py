"""
Message header extraction.

Derives the message-level ``Metadata`` summary from the MSH segment of a
parsed message.
"""

from datetime import datetime
from typing import Optional, Tuple

import structlog

from .exceptions import InvalidMessageStructureError, MissingRequiredFieldError
from .models import Message, Metadata
from .timestamps import try_parse_hl7_datetime

logger = structlog.get_logger(__name__)

# MSH field numbers
SENDING_APPLICATION = 3
SENDING_FACILITY = 4
RECEIVING_APPLICATION = 5
RECEIVING_FACILITY = 6
MESSAGE_DATETIME = 7
MESSAGE_TYPE = 9
CONTROL_ID = 10
PROCESSING_ID = 11
VERSION_ID = 12


# Message Header Extractor
class MSHExtractor:
    """
    Extracts metadata from the MSH (Message Header) segment.

    Key fields:
    - MSH-4 / MSH-6: Sending / receiving facility
    - MSH-7: Message date/time
    - MSH-9: Message type (e.g., ADT^A01^ADT_A01)
    - MSH-10: Message control ID
    - MSH-12: Version ID
    """

    def __init__(self, message: Message):
        self.message = message

    def _text(self, field_index: int, component: int = None) -> Optional[str]:
        path = f"MSH.{field_index}"
        if component is not None:
            path += f".{component}"
        value = self.message.value_at(path)
        return value or None

    def extract_message_type(self) -> Tuple[str, str, str]:
        """
        Extract message code, trigger event and message structure.

        Returns:
            Tuple of (code, trigger, structure), e.g. ("ADT", "A01", "")
        """
        return (
            self._text(MESSAGE_TYPE, 1) or "",
            self._text(MESSAGE_TYPE, 2) or "",
            self._text(MESSAGE_TYPE, 3) or "",
        )

    def extract_control_id(self) -> Optional[str]:
        """Extract message control ID (MSH-10)."""
        return self._text(CONTROL_ID)

    def extract_timestamp(self) -> Optional[datetime]:
        """
        Extract the message timestamp (MSH-7).

        Returns None rather than raising when the value is missing or not
        a valid HL7 timestamp.
        """
        raw_ts = self._text(MESSAGE_DATETIME, 1)
        if not raw_ts:
            return None

        timestamp = try_parse_hl7_datetime(raw_ts)
        if timestamp is None:
            logger.debug("Unparseable message timestamp", value=raw_ts)
        return timestamp

    def extract_metadata(self) -> Metadata:
        """
        Build the full metadata summary.

        Raises:
            InvalidMessageStructureError: If the message has no MSH segment
            MissingRequiredFieldError: If MSH-9 or MSH-12 is absent or empty
        """
        if self.message.header is None:
            raise InvalidMessageStructureError("message has no MSH segment", segment="MSH")

        if not self._text(MESSAGE_TYPE):
            raise MissingRequiredFieldError("MSH", MESSAGE_TYPE, "Message Type")
        if not self._text(VERSION_ID):
            raise MissingRequiredFieldError("MSH", VERSION_ID, "Version ID")

        return self.partial_metadata()

    def partial_metadata(self) -> Metadata:
        """Build metadata from whatever header fields are present."""
        if self.message.header is None:
            return Metadata()

        code, trigger, structure = self.extract_message_type()
        return Metadata(
            message_type=self._text(MESSAGE_TYPE),
            message_code=code or None,
            trigger_event=trigger or None,
            message_structure=structure or None,
            version_id=self._text(VERSION_ID, 1),
            sending_application=self._text(SENDING_APPLICATION),
            sending_facility=self._text(SENDING_FACILITY),
            receiving_application=self._text(RECEIVING_APPLICATION),
            receiving_facility=self._text(RECEIVING_FACILITY),
            control_id=self.extract_control_id(),
            processing_id=self._text(PROCESSING_ID, 1),
            timestamp=self.extract_timestamp(),
        )


# Convenience function
def extract_metadata(message: Message) -> Metadata:
    """
    Derive metadata from a parsed message.

    Raises:
        MissingRequiredFieldError: If MSH-9 or MSH-12 is absent
    """
    return MSHExtractor(message).extract_metadata()
