#!/usr/bin/env python3
"""
cborld_decode.py - CBOR-LD to JSON-LD decoder

Decodes CBOR-LD bytes back into a JSON-LD document.

Pipeline:
    bytes -> cbor2 -> envelope tag
      0x0500  uncompressed: the tagged value is the document
      0x0501  compressed:   context URLs -> term codec map
                            -> decoding map (term keys, codec leaves)
                            -> JSON-LD document

Context resolution is the only step that may wait on I/O; building and
realizing the decoding map is synchronous.

Usage:
    from cborld_decode import from_cborld

    document = await from_cborld(
        cborld_bytes,
        app_context_map={'https://example.org/app/v1': 0x8000},
        app_term_map={'amount': 'SimpleType'},
        document_loader=loader)

CLI:
    python tools/cborld_decode.py decode doc.cborld --contexts manifest.yaml
    python tools/cborld_decode.py decode doc.hex --hex --config app.yaml
    python tools/cborld_decode.py dump doc.cborld
"""

import argparse
import asyncio
import json
import logging
import pprint
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import cbor2
from cbor2 import CBORTag

from cborld_codecs import (
    Codec, CodecVariant, ENVELOPE_CODECS, create_codec,
)
from cborld_context import (
    CODEC_TERM_ID, DocumentLoader, StaticDocumentLoader,
    get_cborld_context_urls, get_term_codec_map, load_app_config,
)
from cborld_error import CborldError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecodingMap:
    """Term-keyed tree mirroring a CBOR map; leaves are loaded codecs."""
    entries: Tuple[Tuple[str, Any], ...]

    def items(self):
        return iter(self.entries)


@dataclass(frozen=True)
class DecodingSequence:
    """Mirror of a CBOR array; elements are codecs or DecodingMaps."""
    elements: Tuple[Any, ...]


def to_plain(value: Any) -> Any:
    """Convert decoded CBOR containers to plain dicts and lists.

    Newer cbor2 releases decode tag contents as frozendict and tuple.
    """
    if isinstance(value, Mapping):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


# =============================================================================
# Header dispatch
# =============================================================================

def decode_envelope(cbor_value: Any) -> Codec:
    """Wrap the top-level CBOR value in its envelope codec."""
    tag = cbor_value.tag if isinstance(cbor_value, CBORTag) else None
    variant = ENVELOPE_CODECS.get(tag)
    if variant is None:
        raise CborldError(
            'ERR_NOT_CBORLD',
            'Input is not valid CBOR-LD; missing CBOR-LD header '
            '(0x0500 or 0x0501).')
    return create_codec(variant).load(cbor_value.value)


# =============================================================================
# Decoding map construction
# =============================================================================

def _load_codec(entry, value, term_codec_map, app_context_map) -> Codec:
    return create_codec(entry.codec).load(
        value, term_codec_map=term_codec_map, app_context_map=app_context_map)


def generate_decoding_map(cbor_map: Dict[Any, Any],
                          term_codec_map: Dict[int, Any],
                          app_term_map: Optional[Dict[str, Any]] = None,
                          app_context_map: Optional[Dict[str, int]] = None
                          ) -> DecodingMap:
    """
    Build a decoding map from a compressed CBOR map.

    Every key must be in the term codec map. Nested maps recurse; array
    elements are loaded with the codec of the array's key. A non-empty
    application term map is added first under @codec.
    """
    entries = []

    if app_term_map:
        codec_map = create_codec(CodecVariant.CODEC_MAP).load(
            app_term_map, term_codec_map=term_codec_map)
        entries.append((term_codec_map[CODEC_TERM_ID].value, codec_map))

    for key, value in cbor_map.items():
        entry = term_codec_map.get(key)
        if entry is None:
            raise CborldError(
                'ERR_UNKNOWN_CBORLD_TERM',
                f"Unknown term '{key}' was detected in CBOR-LD input.")

        if key == CODEC_TERM_ID and app_term_map:
            raise CborldError(
                'ERR_UNKNOWN_CBORLD_ENCODING',
                '@codec is supplied by both the input and the application '
                'term map.')

        if entry.codec is CodecVariant.CODEC_MAP:
            decoded = _load_codec(
                entry, value, term_codec_map, app_context_map)
        elif isinstance(value, Mapping):
            decoded = generate_decoding_map(
                value, term_codec_map, app_context_map=app_context_map)
        elif isinstance(value, (list, tuple)):
            elements = []
            for element in value:
                if isinstance(element, Mapping):
                    elements.append(generate_decoding_map(
                        element, term_codec_map,
                        app_context_map=app_context_map))
                elif isinstance(element, (list, tuple)):
                    raise CborldError(
                        'ERR_UNSUPPORTED_CBORLD_SHAPE',
                        f"Arrays of arrays are not supported; found one "
                        f"under '{entry.value}'.")
                else:
                    elements.append(_load_codec(
                        entry, element, term_codec_map, app_context_map))
            decoded = DecodingSequence(tuple(elements))
        else:
            decoded = _load_codec(
                entry, value, term_codec_map, app_context_map)

        entries.append((entry.value, decoded))

    return DecodingMap(tuple(entries))


# =============================================================================
# Realization
# =============================================================================

def _unknown_encoding(key: str, value: Any) -> CborldError:
    return CborldError(
        'ERR_UNKNOWN_CBORLD_ENCODING',
        f"Unknown encoding for '{key}' detected in CBOR-LD input: "
        f"{pprint.pformat(value)}")


def decode_map(decoding_map: DecodingMap) -> Dict[str, Any]:
    """Realize a decoding map into a plain JSON-LD object."""
    document = {}

    for key, value in decoding_map.items():
        if isinstance(value, DecodingMap):
            document[key] = decode_map(value)
        elif isinstance(value, DecodingSequence):
            decoded = []
            for element in value.elements:
                if isinstance(element, DecodingMap):
                    decoded.append(decode_map(element))
                elif isinstance(element, Codec):
                    decoded.append(element.materialize())
                else:
                    raise _unknown_encoding(key, element)
            document[key] = decoded
        elif isinstance(value, Codec):
            document[key] = value.materialize()
        else:
            raise _unknown_encoding(key, value)

    return document


# =============================================================================
# Entry point
# =============================================================================

async def from_cborld(cborld_bytes: bytes,
                      app_context_map: Optional[Dict[str, int]] = None,
                      app_term_map: Optional[Dict[str, Any]] = None,
                      document_loader: Optional[DocumentLoader] = None,
                      diagnose: Optional[Callable[[str], None]] = None
                      ) -> Any:
    """
    Convert CBOR-LD bytes to a JSON-LD document.

    Args:
        cborld_bytes: CBOR-LD encoded bytes.
        app_context_map: {context URL: code}, codes > 0x7FFF.
        app_term_map: {term: codec name} for application-specific terms.
        document_loader: callable(url) returning the context document,
            directly or as an awaitable. Its errors propagate unchanged.
        diagnose: optional callback receiving diagnostic strings.

    Raises:
        CborldError: on any CBOR-LD format violation.
    """
    cbor_value = cbor2.loads(cborld_bytes)
    envelope = decode_envelope(cbor_value)

    if envelope.variant is CodecVariant.UNCOMPRESSED_CBORLD:
        jsonld_document = to_plain(envelope.value)
    else:
        cbor_map = envelope.value
        if not isinstance(cbor_map, Mapping):
            raise CborldError(
                'ERR_NOT_CBORLD',
                f"Compressed CBOR-LD payload must be a map, got "
                f"{type(cbor_map).__name__}.")
        context_urls = get_cborld_context_urls(cbor_map, app_context_map)
        logger.debug("context urls: %s", context_urls)
        term_codec_map = await get_term_codec_map(
            context_urls, app_term_map=app_term_map,
            document_loader=document_loader, decode=True)

        decoding_map = generate_decoding_map(
            cbor_map, term_codec_map, app_term_map=app_term_map,
            app_context_map=app_context_map)
        jsonld_document = decode_map(decoding_map)

    if diagnose:
        diagnose('Diagnostic CBOR Object:')
        diagnose(pprint.pformat(cbor_value))
        diagnose('Diagnostic JSON-LD Object:')
        diagnose(pprint.pformat(jsonld_document))

    return jsonld_document


# =============================================================================
# CLI
# =============================================================================

def _read_input(path: Path, is_hex: bool) -> bytes:
    if is_hex:
        return bytes.fromhex(''.join(path.read_text().split()))
    return path.read_bytes()


def main():
    parser = argparse.ArgumentParser(
        description='Decode CBOR-LD to JSON-LD')
    subparsers = parser.add_subparsers(dest='command', required=True)

    decode_parser = subparsers.add_parser('decode', help='Decode to JSON-LD')
    decode_parser.add_argument('input', type=Path, help='CBOR-LD input file')
    decode_parser.add_argument('--hex', action='store_true',
                               help='Input file contains hex text')
    decode_parser.add_argument('--config', type=Path,
                               help='YAML file with application maps')
    decode_parser.add_argument('--contexts', type=Path,
                               help='YAML manifest of url: context file')
    decode_parser.add_argument('--diagnose', action='store_true',
                               help='Print diagnostics to stderr')
    decode_parser.add_argument('-o', '--output', type=Path,
                               help='Output file (default: stdout)')

    dump_parser = subparsers.add_parser('dump', help='Dump raw CBOR tree')
    dump_parser.add_argument('input', type=Path, help='CBOR-LD input file')
    dump_parser.add_argument('--hex', action='store_true',
                             help='Input file contains hex text')

    args = parser.parse_args()
    data = _read_input(args.input, args.hex)

    if args.command == 'dump':
        print(pprint.pformat(cbor2.loads(data)))
        return

    config = load_app_config(args.config) if args.config else None
    loader = (StaticDocumentLoader.from_manifest(args.contexts)
              if args.contexts else StaticDocumentLoader())
    diagnose = ((lambda message: print(message, file=sys.stderr))
                if args.diagnose else None)

    try:
        document = asyncio.run(from_cborld(
            data,
            app_context_map=config.app_context_map if config else None,
            app_term_map=config.app_term_map if config else None,
            document_loader=loader,
            diagnose=diagnose))
    except CborldError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    output = json.dumps(document, indent=2, default=str)
    if args.output:
        args.output.write_text(output + '\n')
        print(f"Decoded to {args.output}", file=sys.stderr)
    else:
        print(output)


if __name__ == '__main__':
    main()
