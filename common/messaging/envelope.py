import base64
import binascii
import json
import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Union

from marshmallow import Schema, fields, post_load, ValidationError


@dataclass(frozen=True)
class MessageEnvelope:
    """Transport-agnostic message. Every handler is written against this shape."""

    message_id: str
    correlation_id: str
    type: str
    payload: bytes = b''
    attempt: int = 0

    @classmethod
    def create(
        cls,
        type: str,
        correlation_id: str,
        payload: Union[Dict[str, Any], bytes, None] = None,
        message_id: Optional[str] = None,
        attempt: int = 0
    ) -> 'MessageEnvelope':
        return cls(
            message_id=message_id or str(uuid.uuid4()),
            correlation_id=str(correlation_id),
            type=type,
            payload=encode_payload(payload),
            attempt=attempt
        )

    def payload_dict(self) -> Dict[str, Any]:
        return decode_payload(self.payload)

    def with_attempt(self, attempt: int) -> 'MessageEnvelope':
        return replace(self, attempt=attempt)


def encode_payload(payload: Union[Dict[str, Any], bytes, None]) -> bytes:
    if payload is None:
        return b''
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    return json.dumps(payload, sort_keys=True, default=str).encode('utf-8')


def decode_payload(payload: bytes) -> Dict[str, Any]:
    if not payload:
        return {}
    data = json.loads(payload.decode('utf-8'))
    if not isinstance(data, dict):
        raise ValueError(f"Envelope payload must be a JSON object, got {type(data).__name__}")
    return data


class Base64Bytes(fields.Field):
    """bytes <-> base64 text, so binary payloads survive JSON transports."""

    def _serialize(self, value, attr, obj, **kwargs):
        if value is None:
            return None
        return base64.b64encode(value).decode('ascii')

    def _deserialize(self, value, attr, data, **kwargs):
        if not isinstance(value, str):
            raise ValidationError('Payload must be a base64 string.')
        try:
            return base64.b64decode(value.encode('ascii'), validate=True)
        except (binascii.Error, ValueError) as error:
            raise ValidationError('Payload is not valid base64.') from error


class MessageEnvelopeSchema(Schema):
    message_id = fields.UUID(required=True, metadata={'description': 'Message ID (UUID)'})
    correlation_id = fields.UUID(required=True, metadata={'description': 'Saga correlation ID (UUID)'})
    type = fields.String(required=True, metadata={'description': 'Event or command type'})
    payload = Base64Bytes(load_default=b'', metadata={'description': 'Payload bytes (base64)'})
    attempt = fields.Integer(load_default=0, metadata={'description': 'Delivery/park attempt'})

    @post_load
    def make_envelope(self, data, **kwargs):
        data['message_id'] = str(data['message_id'])
        data['correlation_id'] = str(data['correlation_id'])
        return MessageEnvelope(**data)


envelope_schema = MessageEnvelopeSchema()


def serialize_envelope(envelope: MessageEnvelope) -> str:
    return json.dumps(envelope_schema.dump(envelope))


def deserialize_envelope(raw: Union[str, bytes, Dict[str, Any]]) -> MessageEnvelope:
    """Raises marshmallow.ValidationError on malformed input."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode('utf-8')
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as error:
            raise ValidationError(f'Envelope is not valid JSON: {error}') from error
    return envelope_schema.load(raw)
