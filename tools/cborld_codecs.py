#!/usr/bin/env python3
"""
cborld_codecs.py - Value codecs for CBOR-LD term values

Each term in a CBOR-LD document is associated with a codec variant. A codec
instance is loaded once with the value found in the CBOR tree and later
materialized into its plain JSON-LD value.

Variants:
    SimpleType          pass-through scalar
    Url                 URL with a well-known prefix compressed to one byte
    Context             @context value, compressed to a registry code
    XsdDateTime         xsd:dateTime compressed to epoch seconds
    Base64Pad           padded base64 string stored as raw bytes
    CodecMap            application term map threaded through as @codec
    CompressedCborld    whole-document wrapper for tag 0x0501
    UncompressedCborld  whole-document wrapper for tag 0x0500

Usage:
    from cborld_codecs import CodecVariant, create_codec

    codec = create_codec(CodecVariant.XSD_DATE_TIME)
    codec.load(1609459200)
    codec.materialize()   # '2021-01-01T00:00:00Z'
"""

import base64
import binascii
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from cbor2 import CBORTag

from cborld_error import CborldError


# Envelope tags
UNCOMPRESSED_TAG = 0x0500
COMPRESSED_TAG = 0x0501

# Application context codes must stay above this value
MAX_REGISTRY_CONTEXT_CODE = 0x7FFF

# Well-known JSON-LD contexts and their registry codes
CONTEXT_TABLE = {
    0x10: 'https://www.w3.org/ns/activitystreams',
    0x11: 'https://www.w3.org/2018/credentials/v1',
    0x12: 'https://www.w3.org/ns/did/v1',
    0x13: 'https://w3id.org/security/suites/ed25519-2018/v1',
    0x14: 'https://w3id.org/security/suites/ed25519-2020/v1',
    0x15: 'https://w3id.org/cit/v1',
    0x16: 'https://w3id.org/age/v1',
    0x17: 'https://w3id.org/security/suites/x25519-2020/v1',
    0x18: 'https://w3id.org/veres-one/v1',
    0x19: 'https://w3id.org/webkms/v1',
    0x1A: 'https://w3id.org/zcap/v1',
    0x1B: 'https://w3id.org/security/suites/hmac-2019/v1',
    0x1C: 'https://w3id.org/security/suites/aes-2019/v1',
    0x1D: 'https://w3id.org/vaccination/v1',
    0x1E: 'https://w3id.org/vc-revocation-list-2020/v1',
    0x1F: 'https://w3id.org/dcc/v1',
    0x20: 'https://w3id.org/vc/status-list/v1',
}

# Reverse map for encoding
CONTEXT_CODES = {url: code for code, url in CONTEXT_TABLE.items()}

# URL prefixes compressed to a single leading byte
URL_PREFIXES = {
    0x01: 'http://',
    0x02: 'https://',
    0x03: 'urn:uuid:',
    0x04: 'did:v1:nym:',
    0x05: 'did:key:',
}

XSD_DATETIME_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


class CodecVariant(str, Enum):
    """Closed set of codec variants. Values are the names used in term maps."""
    BASE64_PAD = 'Base64Pad'
    URL = 'Url'
    CONTEXT = 'Context'
    SIMPLE_TYPE = 'SimpleType'
    XSD_DATE_TIME = 'XsdDateTime'
    CODEC_MAP = 'CodecMap'
    COMPRESSED_CBORLD = 'CompressedCborld'
    UNCOMPRESSED_CBORLD = 'UncompressedCborld'


def to_codec_variant(codec) -> CodecVariant:
    """Normalize a codec name or variant to a CodecVariant."""
    if isinstance(codec, CodecVariant):
        return codec
    try:
        return CodecVariant(codec)
    except ValueError:
        raise CborldError(
            'ERR_INVALID_CODEC',
            f"Unknown codec '{codec}'; expected one of "
            f"{', '.join(v.value for v in CodecVariant)}.") from None


def reverse_app_context_map(
        app_context_map: Optional[Dict[str, int]]) -> Dict[int, str]:
    """Invert an application {url: code} map, validating the codes."""
    reverse = {}
    for url, code in (app_context_map or {}).items():
        if (isinstance(code, bool) or not isinstance(code, int)
                or code <= MAX_REGISTRY_CONTEXT_CODE):
            raise CborldError(
                'ERR_INVALID_APP_CONTEXT_CODE',
                f"Application context code for '{url}' must be an integer "
                f"greater than {MAX_REGISTRY_CONTEXT_CODE}, got {code!r}.")
        reverse[code] = url
    return reverse


def context_url_for_code(code: int, app_contexts: Dict[int, str]) -> str:
    """Look up a context code in the registry or the application map."""
    if code <= MAX_REGISTRY_CONTEXT_CODE:
        url = CONTEXT_TABLE.get(code)
    else:
        url = app_contexts.get(code)
    if url is None:
        raise CborldError(
            'ERR_UNDEFINED_COMPRESSED_CONTEXT',
            f"Undefined compressed context code {code:#x}.")
    return url


# =============================================================================
# Codec variants
# =============================================================================

class Codec:
    """Base codec: holds one value, loaded once, materialized on demand."""

    variant: CodecVariant = None

    def __init__(self):
        self.value = None
        self.loaded = False

    def load(self, value: Any, term_codec_map: Optional[Dict] = None,
             app_context_map: Optional[Dict[str, int]] = None) -> 'Codec':
        if self.loaded:
            raise ValueError(f"{type(self).__name__} is already loaded")
        self.value = value
        self.loaded = True
        return self

    def materialize(self) -> Any:
        return self.value

    def encode(self, value: Any,
               app_context_map: Optional[Dict[str, int]] = None) -> Any:
        """Convert a JSON-LD value to its CBOR wire form."""
        return value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.value!r})"


class SimpleTypeCodec(Codec):
    variant = CodecVariant.SIMPLE_TYPE


class UrlCodec(Codec):
    """URLs with a known prefix travel as bytes: prefix code + remainder."""
    variant = CodecVariant.URL

    def encode(self, value, app_context_map=None):
        if not isinstance(value, str):
            return value
        for code, prefix in URL_PREFIXES.items():
            if value.startswith(prefix):
                return bytes([code]) + value[len(prefix):].encode('utf-8')
        return value

    def materialize(self):
        if isinstance(self.value, str):
            return self.value
        if isinstance(self.value, bytes) and self.value:
            prefix = URL_PREFIXES.get(self.value[0])
            if prefix is not None:
                try:
                    return prefix + self.value[1:].decode('utf-8')
                except UnicodeDecodeError as e:
                    raise CborldError(
                        'ERR_UNKNOWN_CBORLD_ENCODING',
                        f"Invalid UTF-8 in compressed URL: {e}") from e
        raise CborldError(
            'ERR_UNKNOWN_CBORLD_ENCODING',
            f"Unknown URL encoding: {self.value!r}")


class ContextCodec(Codec):
    """@context values: registry or application codes, or literal URLs."""
    variant = CodecVariant.CONTEXT

    def __init__(self):
        super().__init__()
        self._app_contexts = {}

    def load(self, value, term_codec_map=None, app_context_map=None):
        super().load(value)
        self._app_contexts = reverse_app_context_map(app_context_map)
        return self

    def encode(self, value, app_context_map=None):
        if not isinstance(value, str):
            return value
        if value in CONTEXT_CODES:
            return CONTEXT_CODES[value]
        reverse_app_context_map(app_context_map)
        return (app_context_map or {}).get(value, value)

    def materialize(self):
        if isinstance(self.value, str):
            return self.value
        if isinstance(self.value, int) and not isinstance(self.value, bool):
            return context_url_for_code(self.value, self._app_contexts)
        raise CborldError(
            'ERR_UNKNOWN_CBORLD_ENCODING',
            f"Unknown @context encoding: {self.value!r}")


class XsdDateTimeCodec(Codec):
    """xsd:dateTime at whole-second UTC precision travels as epoch seconds."""
    variant = CodecVariant.XSD_DATE_TIME

    def encode(self, value, app_context_map=None):
        if not isinstance(value, str):
            return value
        try:
            dt = datetime.strptime(value, XSD_DATETIME_FORMAT)
        except ValueError:
            return value
        # Only compress when decoding reproduces the exact string
        if dt.strftime(XSD_DATETIME_FORMAT) != value:
            return value
        return int(dt.replace(tzinfo=timezone.utc).timestamp())

    def materialize(self):
        if isinstance(self.value, str):
            return self.value
        if isinstance(self.value, int) and not isinstance(self.value, bool):
            try:
                dt = datetime.fromtimestamp(self.value, tz=timezone.utc)
            except (OverflowError, OSError, ValueError) as e:
                raise CborldError(
                    'ERR_UNKNOWN_CBORLD_ENCODING',
                    f"Date-time out of range: {self.value}") from e
            return dt.strftime(XSD_DATETIME_FORMAT)
        raise CborldError(
            'ERR_UNKNOWN_CBORLD_ENCODING',
            f"Unknown xsd:dateTime encoding: {self.value!r}")


class Base64PadCodec(Codec):
    variant = CodecVariant.BASE64_PAD

    def encode(self, value, app_context_map=None):
        if not isinstance(value, str):
            return value
        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return value
        if base64.b64encode(raw).decode('ascii') != value:
            return value
        return raw

    def materialize(self):
        if isinstance(self.value, bytes):
            return base64.b64encode(self.value).decode('ascii')
        if isinstance(self.value, str):
            return self.value
        raise CborldError(
            'ERR_UNKNOWN_CBORLD_ENCODING',
            f"Unknown base64 encoding: {self.value!r}")


class CodecMapCodec(Codec):
    """
    Wraps the application term map so it is realized under @codec.

    Materializes back to {term: codec name}, the same shape the
    application supplied.
    """
    variant = CodecVariant.CODEC_MAP

    def load(self, value, term_codec_map=None, app_context_map=None):
        if value is not None and not isinstance(value, Mapping):
            raise CborldError(
                'ERR_UNKNOWN_CBORLD_ENCODING',
                f"@codec value must be a map of term to codec name, got "
                f"{value!r}.")
        terms = {term: to_codec_variant(codec)
                 for term, codec in (value or {}).items()}
        return super().load(terms)

    def materialize(self):
        return {term: variant.value for term, variant in self.value.items()}


class UncompressedCborldCodec(Codec):
    """Whole-document wrapper for an uncompressed (pass-through) document."""
    variant = CodecVariant.UNCOMPRESSED_CBORLD
    tag = UNCOMPRESSED_TAG

    def encode(self, value, app_context_map=None):
        return CBORTag(self.tag, value)

    def materialize(self):
        return CBORTag(self.tag, self.value)


class CompressedCborldCodec(UncompressedCborldCodec):
    """Whole-document wrapper for a compressed document payload."""
    variant = CodecVariant.COMPRESSED_CBORLD
    tag = COMPRESSED_TAG


CODECS = {
    CodecVariant.BASE64_PAD: Base64PadCodec,
    CodecVariant.URL: UrlCodec,
    CodecVariant.CONTEXT: ContextCodec,
    CodecVariant.SIMPLE_TYPE: SimpleTypeCodec,
    CodecVariant.XSD_DATE_TIME: XsdDateTimeCodec,
    CodecVariant.CODEC_MAP: CodecMapCodec,
    CodecVariant.COMPRESSED_CBORLD: CompressedCborldCodec,
    CodecVariant.UNCOMPRESSED_CBORLD: UncompressedCborldCodec,
}

# Envelope tag -> wrapper codec
ENVELOPE_CODECS = {
    UNCOMPRESSED_TAG: CodecVariant.UNCOMPRESSED_CBORLD,
    COMPRESSED_TAG: CodecVariant.COMPRESSED_CBORLD,
}


def create_codec(variant) -> Codec:
    """Instantiate the codec class registered for a variant."""
    return CODECS[to_codec_variant(variant)]()
