#!/usr/bin/env python3
"""
cborld_context.py - Context discovery and term codec map construction

Turns the context references embedded in a compressed CBOR-LD map into an
ordered list of context URLs, resolves them through a document loader, and
compiles the term definitions into a Term Codec Map.

Term ID scheme:
    0..26    JSON-LD keywords, fixed order (@context = 0, @type = 1, ...)
    99       @codec, the application term map pseudo-term
    100..    context terms, in context order then declaration order,
             followed by application terms not defined by any context

Term IDs are positional, so the context URL order must match the order used
when the document was compressed.

Usage:
    from cborld_context import get_cborld_context_urls, get_term_codec_map

    urls = get_cborld_context_urls(cbor_map, app_context_map)
    term_codec_map = await get_term_codec_map(
        urls, app_term_map=app_term_map, document_loader=loader)
    term_codec_map[100]   # TermCodec(value='name', codec=CodecVariant.SIMPLE_TYPE)
"""

import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Set

import yaml

from cborld_codecs import (
    CodecVariant, context_url_for_code, reverse_app_context_map,
    to_codec_variant,
)
from cborld_error import CborldError


logger = logging.getLogger(__name__)


JSONLD_KEYWORDS = [
    '@context', '@type', '@id', '@value', '@direction', '@graph',
    '@included', '@index', '@json', '@language', '@list', '@nest',
    '@reverse', '@base', '@container', '@default', '@embed', '@explicit',
    '@none', '@omitDefault', '@prefix', '@preserve', '@protected',
    '@requireAll', '@set', '@version', '@vocab',
]

KEYWORDS = {keyword: term_id for term_id, keyword in enumerate(JSONLD_KEYWORDS)}

CONTEXT_TERM_ID = KEYWORDS['@context']
CODEC_TERM = '@codec'
CODEC_TERM_ID = 99
FIRST_CUSTOM_TERM_ID = 100

KEYWORD_CODECS = {
    '@context': CodecVariant.CONTEXT,
    '@id': CodecVariant.URL,
}

XSD_DATETIME_TYPES = {
    'xsd:dateTime',
    'http://www.w3.org/2001/XMLSchema#dateTime',
}

XSD_BASE64_TYPES = {
    'xsd:base64Binary',
    'http://www.w3.org/2001/XMLSchema#base64Binary',
}


class TermCodec(NamedTuple):
    """Term codec map entry.

    `value` is the term string when the map is keyed by term ID (decode
    mode) and the term ID when keyed by term (encode mode).
    """
    value: Any
    codec: CodecVariant


DocumentLoader = Callable[[str], Any]


# =============================================================================
# Context URL discovery
# =============================================================================

def get_cborld_context_urls(cbor_map: Dict[Any, Any],
                            app_context_map: Optional[Dict[str, int]] = None
                            ) -> List[str]:
    """
    Collect the context URLs referenced by a compressed CBOR-LD map.

    Context values live under term ID 0 at any depth. Integer codes are
    mapped through the registry (<= 0x7FFF) or the application context map
    (> 0x7FFF); strings are literal URLs. Order is depth-first in map order,
    duplicates keep their first position.
    """
    app_contexts = reverse_app_context_map(app_context_map)
    urls: List[str] = []

    def add(value):
        if isinstance(value, (list, tuple)):
            for item in value:
                add(item)
            return
        if isinstance(value, str):
            url = value
        elif isinstance(value, int) and not isinstance(value, bool):
            url = context_url_for_code(value, app_contexts)
        else:
            raise CborldError(
                'ERR_UNDEFINED_COMPRESSED_CONTEXT',
                f"Unsupported @context value in CBOR-LD input: {value!r}")
        if url not in urls:
            urls.append(url)

    def collect(node):
        if isinstance(node, Mapping):
            for key, value in node.items():
                if key == CONTEXT_TERM_ID and not isinstance(key, bool):
                    add(value)
                else:
                    collect(value)
        elif isinstance(node, (list, tuple)):
            for item in node:
                collect(item)

    collect(cbor_map)
    return urls


# =============================================================================
# Context resolution
# =============================================================================

async def _load_document(document_loader: DocumentLoader, url: str) -> Any:
    """Call the loader, awaiting the result when it is awaitable."""
    result = document_loader(url)
    if inspect.isawaitable(result):
        result = await result
    return result


def _context_entries(document: Any, url: str) -> List[Any]:
    """Extract the @context entries from a loaded context document."""
    # Remote document wrapper, with or without documentUrl
    if isinstance(document, Mapping) and '@context' not in document:
        inner = document.get('document')
        if isinstance(inner, Mapping) and (
                'documentUrl' in document or '@context' in inner):
            document = inner
    if not isinstance(document, Mapping):
        raise CborldError(
            'ERR_UNDEFINED_COMPRESSED_CONTEXT',
            f"Context '{url}' did not resolve to a JSON-LD object.")
    context = document.get('@context', document)
    return list(context) if isinstance(context, (list, tuple)) else [context]


async def _resolve_context(url: str, document_loader: DocumentLoader,
                           seen: Set[str], resolved: List[Dict[str, Any]]):
    if url in seen:
        return
    seen.add(url)

    document = await _load_document(document_loader, url)
    for entry in _context_entries(document, url):
        if isinstance(entry, str):
            await _resolve_context(entry, document_loader, seen, resolved)
        elif isinstance(entry, Mapping):
            resolved.append(entry)
        elif entry is not None:
            raise CborldError(
                'ERR_UNDEFINED_COMPRESSED_CONTEXT',
                f"Invalid @context entry in '{url}': {entry!r}")


async def resolve_contexts(context_urls: List[str],
                           document_loader: Optional[DocumentLoader]
                           ) -> List[Dict[str, Any]]:
    """
    Resolve context URLs to term-definition mappings, preserving order.

    Contexts that import other contexts by URL are expanded in place. Loader
    errors propagate unchanged.
    """
    if context_urls and document_loader is None:
        raise CborldError(
            'ERR_UNDEFINED_COMPRESSED_CONTEXT',
            f"No document loader available to resolve {context_urls[0]}.")

    resolved: List[Dict[str, Any]] = []
    seen: Set[str] = set()
    for url in context_urls:
        await _resolve_context(url, document_loader, seen, resolved)
    logger.debug("resolved %d context(s) into %d term block(s)",
                 len(context_urls), len(resolved))
    return resolved


# =============================================================================
# Term codec map
# =============================================================================

def codec_for_definition(term: str, definition: Any = None) -> CodecVariant:
    """Select the value codec for a term from its context definition."""
    if term in KEYWORDS:
        return KEYWORD_CODECS.get(term, CodecVariant.SIMPLE_TYPE)

    # Keyword alias, e.g. "id": "@id"
    if isinstance(definition, str):
        return KEYWORD_CODECS.get(definition, CodecVariant.SIMPLE_TYPE)

    if isinstance(definition, Mapping):
        if definition.get('@id') in KEYWORD_CODECS:
            return KEYWORD_CODECS[definition['@id']]
        value_type = definition.get('@type')
        if value_type in ('@id', '@vocab'):
            return CodecVariant.URL
        if value_type in XSD_DATETIME_TYPES:
            return CodecVariant.XSD_DATE_TIME
        if value_type in XSD_BASE64_TYPES:
            return CodecVariant.BASE64_PAD

    return CodecVariant.SIMPLE_TYPE


async def get_term_codec_map(context_urls: List[str],
                             app_term_map: Optional[Dict[str, Any]] = None,
                             document_loader: Optional[DocumentLoader] = None,
                             decode: bool = True) -> Dict[Any, TermCodec]:
    """
    Build the Term Codec Map for a set of context URLs.

    In decode mode the map is keyed by term ID and each entry's value is the
    term; otherwise it is keyed by term and each entry's value is the ID.
    Application terms are applied last and win on collision.
    """
    contexts = await resolve_contexts(context_urls, document_loader)

    # term -> [term_id, codec], insertion ordered
    terms: Dict[str, list] = {}
    for keyword, term_id in KEYWORDS.items():
        terms[keyword] = [term_id, codec_for_definition(keyword)]
    terms[CODEC_TERM] = [CODEC_TERM_ID, CodecVariant.CODEC_MAP]

    next_id = FIRST_CUSTOM_TERM_ID

    def define(term, codec):
        nonlocal next_id
        if term in terms:
            terms[term][1] = codec
        else:
            terms[term] = [next_id, codec]
            next_id += 1

    for context in contexts:
        for term, definition in context.items():
            if term.startswith('@'):
                continue
            define(term, codec_for_definition(term, definition))

    for term, codec in (app_term_map or {}).items():
        define(term, to_codec_variant(codec))

    logger.debug("term codec map: %d terms (%d from contexts/app)",
                 len(terms), next_id - FIRST_CUSTOM_TERM_ID)

    if decode:
        return {term_id: TermCodec(term, codec)
                for term, (term_id, codec) in terms.items()}
    return {term: TermCodec(term_id, codec)
            for term, (term_id, codec) in terms.items()}


# =============================================================================
# Document loaders and application configuration
# =============================================================================

class StaticDocumentLoader:
    """
    Resolves context URLs from preloaded documents.

    Unknown URLs raise KeyError, which propagates out of decoding.

    Usage:
        loader = StaticDocumentLoader({'https://example.org/ctx': ctx})
        loader = StaticDocumentLoader.from_manifest('contexts/manifest.yaml')
    """

    def __init__(self, documents: Optional[Dict[str, Any]] = None):
        self.documents = dict(documents or {})

    def add(self, url: str, document: Any):
        self.documents[url] = document

    def __call__(self, url: str) -> Any:
        if url not in self.documents:
            raise KeyError(f"Context not found: {url}")
        return self.documents[url]

    @classmethod
    def from_manifest(cls, manifest_path) -> 'StaticDocumentLoader':
        """
        Load contexts listed in a YAML manifest of `url: filename`.

        Filenames are relative to the manifest. JSON files are read with the
        YAML parser, which accepts JSON.
        """
        manifest_path = Path(manifest_path)
        manifest = yaml.safe_load(manifest_path.read_text()) or {}
        loader = cls()
        for url, filename in manifest.items():
            path = manifest_path.parent / filename
            loader.add(url, yaml.safe_load(path.read_text()))
        return loader


@dataclass
class AppConfig:
    """Application context and term maps."""
    app_context_map: Dict[str, int] = field(default_factory=dict)
    app_term_map: Dict[str, str] = field(default_factory=dict)


def load_app_config(path) -> AppConfig:
    """
    Load application maps from YAML.

    Format:
        contexts:
          https://example.org/app/v1: 32768
        terms:
          amount: SimpleType
          issued: XsdDateTime
    """
    config = yaml.safe_load(Path(path).read_text()) or {}
    app_context_map = dict(config.get('contexts') or {})
    app_term_map = dict(config.get('terms') or {})

    reverse_app_context_map(app_context_map)
    for codec in app_term_map.values():
        to_codec_variant(codec)

    return AppConfig(app_context_map=app_context_map,
                     app_term_map=app_term_map)
